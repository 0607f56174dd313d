"""Job worker: runs scheduled jobs that are due.

Each job runs in its own unit of work, so one failing job never holds back
the others. Auto-delivery re-enters the lifecycle engine; running it twice is
harmless because the engine reports an order that is already Delivered as
unchanged. Refunds call the provider outside any unit of work and record the
result afterwards. A failed job backs off exponentially and is given up
after the policy's attempt budget.
"""

import structlog
from protean import handle
from protean.fields import Boolean, DateTime, String
from protean.utils.globals import current_domain

from orderflow.approval.decisions import expire_approvals
from orderflow.domain import orderflow
from orderflow.errors import InvalidTransition
from orderflow.gateway import get_gateway
from orderflow.order.lifecycle import Actor, OrderLifecycleEngine, TransitionOutcome
from orderflow.order.order import Order, OrderStatus
from orderflow.policy import get_policy
from orderflow.scheduling.job import JobKind, JobStatus, ScheduledJob
from orderflow.utils.clock import utcnow

logger = structlog.get_logger(__name__)


@orderflow.command(part_of="ScheduledJob")
class RunScheduledTransition:
    job_key = String(required=True, max_length=255)
    as_of = DateTime()


@orderflow.command(part_of="ScheduledJob")
class RecordJobResult:
    job_key = String(required=True, max_length=255)
    succeeded = Boolean(required=True)
    skipped = Boolean(default=False)
    detail = String(max_length=1000, sanitize=False)
    error = String(max_length=1000, sanitize=False)
    as_of = DateTime()


@orderflow.command_handler(part_of=ScheduledJob)
class ScheduledJobHandler:
    @handle(RunScheduledTransition)
    def run_transition(self, command):
        repo = current_domain.repository_for(ScheduledJob)
        job = repo.get(command.job_key)
        now = command.as_of or utcnow()
        if job.status != JobStatus.SCHEDULED.value:
            return job.status

        try:
            result = OrderLifecycleEngine().request_transition(
                job.order_id,
                job.target_status,
                Actor.system("job-worker"),
                job.reason,
                delivery_confirmed=True,
                now=now,
            )
        except InvalidTransition as exc:
            job.skip(exc.reason, now=now)
        else:
            if result.outcome == TransitionOutcome.UNCHANGED:
                job.complete(f"Order already {result.to_status}", now=now)
            else:
                job.complete(f"{result.from_status} -> {result.to_status}", now=now)

        repo.add(job)
        logger.info("Scheduled transition run", job_key=job.job_key, status=job.status, detail=job.detail)
        return job.status

    @handle(RecordJobResult)
    def record_result(self, command):
        repo = current_domain.repository_for(ScheduledJob)
        job = repo.get(command.job_key)
        now = command.as_of or utcnow()
        if job.status != JobStatus.SCHEDULED.value:
            return job.status

        if command.succeeded:
            job.complete(command.detail, now=now)
        elif command.skipped:
            job.skip(command.detail, now=now)
        else:
            job.record_failure(command.error or "Unknown error", get_policy().max_job_attempts, now=now)

        repo.add(job)
        return job.status


class JobWorker:
    def run_due(self, as_of=None) -> dict:
        """Run every job due at ``as_of`` and expire stale approval requests."""
        as_of = as_of or utcnow()
        due = current_domain.repository_for(ScheduledJob).due(as_of)
        results = [{"job_key": job.job_key, "kind": job.kind, "status": self._run(job, as_of)} for job in due]

        summary = {
            "as_of": as_of.isoformat(),
            "jobs": results,
            "approvals_expired": expire_approvals(now=as_of),
        }
        if results:
            logger.info("Due jobs processed", count=len(results))
        return summary

    def _run(self, job: ScheduledJob, as_of) -> str:
        try:
            if job.kind == JobKind.REFUND.value:
                return self._refund(job, as_of)
            return current_domain.process(RunScheduledTransition(job_key=job.job_key, as_of=as_of), asynchronous=False)
        except Exception as exc:
            logger.exception("Scheduled job failed", job_key=job.job_key, kind=job.kind)
            return self._record(job, as_of, succeeded=False, error=str(exc))

    def _refund(self, job: ScheduledJob, as_of) -> str:
        if not job.payment_reference:
            return self._record(job, as_of, succeeded=False, skipped=True, detail="No captured payment to refund")

        order = current_domain.repository_for(Order).get(job.order_id)
        result = get_gateway(job.provider or order.payment_provider or "stripe").create_refund(
            payment_reference=job.payment_reference,
            amount=order.pricing.total,
            reason=job.reason or f"Order {order.order_number} {OrderStatus(order.status).value.lower()}",
        )

        if result.success:
            logger.info("Refund issued", job_key=job.job_key, order_id=str(order.id), refund_id=result.refund_id)
            return self._record(job, as_of, succeeded=True, detail=f"Refund {result.refund_id} {result.status}")

        logger.warning("Refund rejected by provider", job_key=job.job_key, reason=result.failure_reason)
        return self._record(job, as_of, succeeded=False, error=result.failure_reason or "Refund rejected")

    def _record(self, job, as_of, succeeded, skipped=False, detail=None, error=None) -> str:
        return current_domain.process(
            RecordJobResult(
                job_key=job.job_key,
                succeeded=succeeded,
                skipped=skipped,
                detail=detail,
                error=error,
                as_of=as_of,
            ),
            asynchronous=False,
        )
