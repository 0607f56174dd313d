"""ScheduledJob aggregate: durable "run at or after T" work for the job worker.

A job's identity is a deterministic key such as ``auto-deliver:<order id>``,
so scheduling the same work twice yields one record. Jobs that fail are
retried with exponential backoff until the attempt budget runs out.
"""

from datetime import timedelta
from enum import Enum

import structlog
from protean.exceptions import ValidationError
from protean.fields import DateTime, Identifier, Integer, String
from protean.utils.globals import current_domain

from orderflow.domain import orderflow
from orderflow.utils.clock import as_utc, utcnow

logger = structlog.get_logger(__name__)


class JobKind(Enum):
    AUTO_DELIVER = "AutoDeliver"
    REFUND = "Refund"


class JobStatus(Enum):
    SCHEDULED = "Scheduled"
    COMPLETED = "Completed"
    SKIPPED = "Skipped"
    FAILED = "Failed"


def auto_delivery_key(order_id) -> str:
    return f"auto-deliver:{order_id}"


def refund_key(order_id, payment_reference) -> str:
    return f"refund:{order_id}:{payment_reference or 'unreferenced'}"


@orderflow.aggregate
class ScheduledJob:
    job_key = String(identifier=True, max_length=255)
    kind = String(required=True, choices=JobKind)
    order_id = Identifier(required=True)
    target_status = String(max_length=20)
    provider = String(max_length=50)
    payment_reference = String(max_length=255)
    reason = String(max_length=1000, sanitize=False)
    run_after = DateTime(required=True)
    status = String(choices=JobStatus, default=JobStatus.SCHEDULED.value)
    attempts = Integer(default=0, min_value=0)
    last_error = String(max_length=1000, sanitize=False)
    detail = String(max_length=1000, sanitize=False)
    created_at = DateTime()
    completed_at = DateTime()

    @classmethod
    def schedule(
        cls,
        job_key,
        kind,
        order_id,
        run_after,
        target_status=None,
        reason=None,
        provider=None,
        payment_reference=None,
    ):
        return cls(
            job_key=job_key,
            kind=JobKind(kind).value,
            order_id=order_id,
            target_status=target_status,
            provider=provider,
            payment_reference=payment_reference,
            reason=reason,
            run_after=run_after,
            status=JobStatus.SCHEDULED.value,
            attempts=0,
            created_at=utcnow(),
        )

    def is_due(self, as_of) -> bool:
        return self.status == JobStatus.SCHEDULED.value and as_utc(self.run_after) <= as_utc(as_of)

    def _finish(self, status, detail, now):
        if self.status != JobStatus.SCHEDULED.value:
            raise ValidationError({"status": [f"Job {self.job_key} is already {self.status.lower()}"]})
        self.status = status.value
        self.detail = detail
        self.completed_at = now or utcnow()

    def complete(self, detail=None, now=None):
        self._finish(JobStatus.COMPLETED, detail, now)

    def skip(self, detail=None, now=None):
        """The work no longer applies, e.g. the order already moved on."""
        self._finish(JobStatus.SKIPPED, detail, now)

    def record_failure(self, error, max_attempts, now=None):
        """Count a failed run; back off or give up once the budget is spent."""
        now = now or utcnow()
        self.attempts = (self.attempts or 0) + 1
        self.last_error = str(error)[:1000]
        if self.attempts >= max_attempts:
            self._finish(JobStatus.FAILED, f"Gave up after {self.attempts} attempts", now)
        else:
            self.run_after = now + timedelta(minutes=2**self.attempts)


@orderflow.repository(part_of=ScheduledJob)
class ScheduledJobRepository:
    def find(self, job_key) -> ScheduledJob | None:
        return self._dao.query.filter(job_key=job_key).all().first

    def due(self, as_of) -> list[ScheduledJob]:
        scheduled = self._dao.query.filter(status=JobStatus.SCHEDULED.value).all().items
        return sorted((job for job in scheduled if job.is_due(as_of)), key=lambda job: as_utc(job.run_after))

    def for_order(self, order_id) -> list[ScheduledJob]:
        return self._dao.query.filter(order_id=str(order_id)).all().items


def schedule_job(job_key, kind, order_id, run_after, **fields) -> ScheduledJob:
    """Persist a job unless one with the same key already exists."""
    repo = current_domain.repository_for(ScheduledJob)
    existing = repo.find(job_key)
    if existing is not None:
        return existing

    job = ScheduledJob.schedule(job_key=job_key, kind=kind, order_id=str(order_id), run_after=run_after, **fields)
    repo.add(job)
    logger.info("Job scheduled", job_key=job_key, kind=job.kind, run_after=str(run_after))
    return job
