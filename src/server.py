"""Background runner for orderflow.

Starts the Protean Engine (outbox processing and event subscriptions for
asynchronous event handlers and projectors) and the scheduled job worker,
which polls for due jobs.

Usage:
    python src/server.py                 # Engine and job worker
    python src/server.py --only engine   # Only the Protean Engine
    python src/server.py --only jobs     # Only the job worker
"""

import argparse
import asyncio

import structlog
from protean.server.engine import Engine

logger = structlog.get_logger(__name__)


def _get_domain():
    """Import and initialize the orderflow domain."""
    from orderflow.domain import orderflow
    from orderflow.gateway import configure_gateways_from_env

    orderflow.init()
    configure_gateways_from_env()
    return orderflow


async def run_jobs(domain, interval: float):
    from orderflow.scheduling.worker import JobWorker
    from orderflow.utils.logging import log_context

    worker = JobWorker()
    while True:
        with domain.domain_context(), log_context(component="job-worker"):
            try:
                worker.run_due()
            except Exception:
                logger.exception("Job worker pass failed")
        await asyncio.sleep(interval)


async def run(only, interval):
    domain = _get_domain()
    tasks = []
    if only in (None, "engine"):
        tasks.append(Engine(domain).run())
    if only in (None, "jobs"):
        tasks.append(run_jobs(domain, interval))

    await asyncio.gather(*tasks)


def main():
    from orderflow.utils.logging import configure_logging

    parser = argparse.ArgumentParser(description="orderflow background runner")
    parser.add_argument("--only", choices=["engine", "jobs"], help="Run a single component (default: both)")
    parser.add_argument("--interval", type=float, default=60.0, help="Seconds between job worker passes")
    args = parser.parse_args()

    configure_logging()
    asyncio.run(run(args.only, args.interval))


if __name__ == "__main__":
    main()
