"""PaymentEvent aggregate: the durable record of one provider notification.

The identity is ``<provider>:<provider event id>``, so a provider retrying a
delivery finds the record it already created instead of creating a second
one. Apart from how it was processed and how often processing was retried,
the record never changes after it is written.
"""

from enum import Enum

from protean.exceptions import ValidationError
from protean.fields import Boolean, DateTime, Integer, String, Text

from orderflow.domain import orderflow
from orderflow.gateway.port import PaymentEventType, ProviderEvent
from orderflow.utils.clock import utcnow


class PaymentEventOutcome(Enum):
    RECEIVED = "Received"
    APPLIED = "Applied"
    IGNORED = "Ignored"
    FLAGGED = "Flagged"
    STOCK_UNAVAILABLE = "StockUnavailable"
    ERRORED = "Errored"


@orderflow.aggregate
class PaymentEvent:
    event_key = String(identifier=True, max_length=255)
    provider = String(required=True, max_length=50)
    provider_event_id = String(required=True, max_length=255)
    event_type = String(required=True, choices=PaymentEventType)
    provider_type = String(required=True, max_length=100)
    order_id = String(max_length=255)
    payment_reference = String(max_length=255)
    amount = Integer()
    currency = String(max_length=3)
    failure_reason = String(max_length=1000, sanitize=False)
    payload = Text(sanitize=False)
    outcome = String(choices=PaymentEventOutcome, default=PaymentEventOutcome.RECEIVED.value)
    outcome_detail = String(max_length=1000, sanitize=False)
    processed = Boolean(default=False)
    received_at = DateTime()
    processed_at = DateTime()
    retry_count = Integer(default=0, min_value=0)
    last_error = String(max_length=1000, sanitize=False)

    @classmethod
    def record(cls, event: ProviderEvent, payload: str, now=None):
        return cls(
            event_key=event.key,
            provider=event.provider,
            provider_event_id=event.event_id,
            event_type=event.event_type.value,
            provider_type=event.provider_type,
            order_id=event.order_id,
            payment_reference=event.payment_reference,
            amount=event.amount,
            currency=event.currency,
            failure_reason=event.failure_reason,
            payload=payload,
            outcome=PaymentEventOutcome.RECEIVED.value,
            processed=False,
            received_at=now or utcnow(),
            retry_count=0,
        )

    def mark_processed(self, outcome: PaymentEventOutcome, detail=None, now=None):
        if self.processed:
            raise ValidationError({"processed": [f"Payment event {self.event_key} was already processed"]})
        self.outcome = outcome.value
        self.outcome_detail = detail[:1000] if detail else None
        self.processed = True
        self.processed_at = now or utcnow()
        self.last_error = None

    def mark_errored(self, error, now=None):
        """Processing hit an infrastructure fault; the event stays open for another attempt."""
        if self.processed:
            return
        self.outcome = PaymentEventOutcome.ERRORED.value
        self.last_error = str(error)[:1000]
        self.processed_at = now or utcnow()

    def can_retry(self, max_retries: int) -> bool:
        return not self.processed and (self.retry_count or 0) < max_retries

    def register_retry(self, max_retries: int):
        if self.processed:
            raise ValidationError({"processed": ["Processed events cannot be retried"]})
        if not self.can_retry(max_retries):
            raise ValidationError({"retry_count": [f"Retry limit of {max_retries} reached"]})
        self.retry_count = (self.retry_count or 0) + 1


@orderflow.repository(part_of=PaymentEvent)
class PaymentEventRepository:
    def find(self, event_key) -> PaymentEvent | None:
        return self._dao.query.filter(event_key=event_key).all().first

    def unprocessed(self) -> list[PaymentEvent]:
        return self._dao.query.filter(processed=False).all().items

    def for_order(self, order_id) -> list[PaymentEvent]:
        return self._dao.query.filter(order_id=str(order_id)).all().items

    def everything(self) -> list[PaymentEvent]:
        return self._dao.query.all().items
