"""orderflow management CLI.

Usage:
    python src/manage.py setup-db   # Create all tables
    python src/manage.py drop-db    # Drop all tables
    python src/manage.py run-jobs   # Run due scheduled jobs once
"""

import argparse
import sys


def _domain():
    from orderflow.domain import orderflow

    print("Initializing orderflow domain...")
    orderflow.init()
    return orderflow


def setup_database():
    """Create the database schema."""
    from orderflow.utils.db import setup_db

    domain = _domain()
    print("Creating orderflow database schema...")
    providers = setup_db(domain)
    print(f"  schema ready ({', '.join(providers) or 'no SQL providers'}).")
    print("Done.")


def drop_database():
    """Drop the database schema."""
    from orderflow.utils.db import drop_db

    domain = _domain()
    print("Dropping orderflow database schema...")
    providers = drop_db(domain)
    print(f"  schema dropped ({', '.join(providers) or 'no SQL providers'}).")
    print("Done.")


def run_jobs():
    """Run every scheduled job that is due now, once."""
    from orderflow.gateway import configure_gateways_from_env
    from orderflow.scheduling.worker import JobWorker

    domain = _domain()
    configure_gateways_from_env()
    with domain.domain_context():
        summary = JobWorker().run_due()

    for job in summary["jobs"]:
        print(f"  {job['job_key']}: {job['status']}")
    print(f"Ran {len(summary['jobs'])} job(s), expired {summary['approvals_expired']} approval request(s).")


def main():
    parser = argparse.ArgumentParser(description="orderflow management")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("setup-db", help="Create all database tables")
    subparsers.add_parser("drop-db", help="Drop all database tables")
    subparsers.add_parser("run-jobs", help="Run due scheduled jobs once")

    args = parser.parse_args()

    if args.command == "setup-db":
        setup_database()
    elif args.command == "drop-db":
        drop_database()
    elif args.command == "run-jobs":
        run_jobs()
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
