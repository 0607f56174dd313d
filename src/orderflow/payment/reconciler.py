"""Payment event reconciliation: provider webhooks in, order transitions out.

``PaymentEventReconciler.handle_event()`` runs each delivery through:

1. signature verification by the provider adapter (``InvalidSignature``);
2. deduplication on ``<provider>:<event id>``: an event that was already
   processed returns its recorded outcome without touching anything;
3. ``RecordPaymentEvent``, committed on its own so an audit record exists
   even if processing crashes;
4. ``ReconcilePaymentEvent``, which maps the event to an order transition
   and records how it went.

Events that can never apply (unknown order, an order that moved on) are
recorded as Ignored and acknowledged. Disputes and refunds only flag the
order for manual review. Infrastructure faults leave the event open and
propagate, so the provider redelivers it.
"""

from dataclasses import dataclass

import structlog
from protean import handle
from protean.fields import Integer, String, Text
from protean.utils.globals import current_domain

from orderflow.domain import orderflow
from orderflow.errors import InsufficientStock, InvalidSignature, InvalidTransition, UnknownOrder
from orderflow.gateway import get_gateway
from orderflow.gateway.port import PaymentEventType, ProviderEvent
from orderflow.order.lifecycle import Actor, OrderLifecycleEngine, TransitionOutcome
from orderflow.order.order import OrderStatus
from orderflow.payment.payment_event import PaymentEvent, PaymentEventOutcome
from orderflow.policy import get_policy

logger = structlog.get_logger(__name__)

_TARGET_STATUS = {
    PaymentEventType.SUCCEEDED: OrderStatus.PAID,
    PaymentEventType.FAILED: OrderStatus.FAILED,
    PaymentEventType.CANCELED: OrderStatus.FAILED,
}

_REVIEW_TYPES = {PaymentEventType.DISPUTED, PaymentEventType.REFUNDED}

# A capture landing on one of these is money the customer gets back.
_CLOSED_UNPAID = {OrderStatus.CANCELLED.value, OrderStatus.FAILED.value}


@dataclass(frozen=True)
class ProcessingResult:
    event_key: str
    outcome: str
    duplicate: bool = False
    order_id: str | None = None
    order_status: str | None = None
    detail: str | None = None

    def to_dict(self) -> dict:
        return {
            "event_key": self.event_key,
            "outcome": self.outcome,
            "duplicate": self.duplicate,
            "order_id": self.order_id,
            "order_status": self.order_status,
            "detail": self.detail,
        }


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------
@orderflow.command(part_of="PaymentEvent")
class RecordPaymentEvent:
    event_key = String(required=True, max_length=255)
    provider = String(required=True, max_length=50)
    provider_event_id = String(required=True, max_length=255)
    event_type = String(required=True, choices=PaymentEventType)
    provider_type = String(required=True, max_length=100)
    order_id = String(max_length=255)
    payment_reference = String(max_length=255)
    amount = Integer()
    currency = String(max_length=3)
    failure_reason = String(max_length=1000, sanitize=False)
    raw_payload = Text(sanitize=False)


@orderflow.command(part_of="PaymentEvent")
class ReconcilePaymentEvent:
    event_key = String(required=True, max_length=255)


@orderflow.command(part_of="PaymentEvent")
class MarkPaymentEventErrored:
    event_key = String(required=True, max_length=255)
    error = String(max_length=1000, sanitize=False)


@orderflow.command(part_of="PaymentEvent")
class RetryPaymentEvent:
    event_key = String(required=True, max_length=255)


def _result(event: PaymentEvent, order_status=None, duplicate=False) -> ProcessingResult:
    return ProcessingResult(
        event_key=event.event_key,
        outcome=event.outcome,
        duplicate=duplicate,
        order_id=event.order_id,
        order_status=order_status,
        detail=event.outcome_detail,
    )


# ---------------------------------------------------------------------------
# Handler
# ---------------------------------------------------------------------------
@orderflow.command_handler(part_of=PaymentEvent)
class PaymentEventHandler:
    @handle(RecordPaymentEvent)
    def record(self, command):
        repo = current_domain.repository_for(PaymentEvent)
        if repo.find(command.event_key) is not None:
            return command.event_key

        event = ProviderEvent(
            provider=command.provider,
            event_id=command.provider_event_id,
            event_type=PaymentEventType(command.event_type),
            provider_type=command.provider_type,
            order_id=command.order_id,
            payment_reference=command.payment_reference,
            amount=command.amount,
            currency=command.currency,
            failure_reason=command.failure_reason,
        )
        repo.add(PaymentEvent.record(event, command.raw_payload))
        logger.info(
            "Payment event recorded",
            event_key=command.event_key,
            event_type=command.event_type,
            order_id=command.order_id,
        )
        return command.event_key

    @handle(ReconcilePaymentEvent)
    def reconcile(self, command):
        repo = current_domain.repository_for(PaymentEvent)
        event = repo.get(command.event_key)
        if event.processed:
            return _result(event, duplicate=True)

        engine = OrderLifecycleEngine()
        outcome, detail, order_status = self._apply(engine, event)
        event.mark_processed(outcome, detail)
        repo.add(event)

        logger.info(
            "Payment event processed",
            event_key=event.event_key,
            outcome=outcome.value,
            order_id=event.order_id,
            order_status=order_status,
        )
        return _result(event, order_status=order_status)

    @handle(MarkPaymentEventErrored)
    def mark_errored(self, command):
        repo = current_domain.repository_for(PaymentEvent)
        event = repo.get(command.event_key)
        event.mark_errored(command.error)
        repo.add(event)

    @handle(RetryPaymentEvent)
    def register_retry(self, command):
        repo = current_domain.repository_for(PaymentEvent)
        event = repo.get(command.event_key)
        event.register_retry(get_policy().max_webhook_retries)
        repo.add(event)
        return event.retry_count

    # -------------------------------------------------------------------
    # Mapping an event onto its order
    # -------------------------------------------------------------------
    def _apply(self, engine: OrderLifecycleEngine, event: PaymentEvent):
        event_type = PaymentEventType(event.event_type)

        if not event.order_id:
            return PaymentEventOutcome.IGNORED, "Event does not reference an order", None

        try:
            order = engine.load(event.order_id)
        except UnknownOrder as exc:
            logger.info("Payment event for unknown order", event_key=event.event_key, order_id=event.order_id)
            return PaymentEventOutcome.IGNORED, exc.reason, None

        if event_type in _REVIEW_TYPES:
            reason = f"Payment {event_type.value} reported by {event.provider} ({event.provider_type})"
            engine.flag_for_attention(order.id, reason, source=event.event_key)
            return PaymentEventOutcome.FLAGGED, reason, order.status

        target = _TARGET_STATUS.get(event_type)
        if target is None:
            return PaymentEventOutcome.IGNORED, f"{event.provider_type} does not change order status", order.status

        actor = Actor.system(f"{event.provider}-webhook")
        reason = f"{event.provider_type} ({event.provider_event_id})"
        if event.failure_reason:
            reason = f"{reason}: {event.failure_reason}"

        try:
            result = engine.request_transition(
                order.id,
                target,
                actor,
                reason,
                payment_confirmed=target == OrderStatus.PAID,
                payment_failed=target == OrderStatus.FAILED,
                payment_reference=event.payment_reference,
                payment_provider=event.provider,
            )
        except InsufficientStock as exc:
            return self._fail_for_stock(engine, order, event, actor, exc)
        except InvalidTransition as exc:
            logger.info(
                "Payment event does not apply to order",
                event_key=event.event_key,
                order_id=str(order.id),
                reason=exc.reason,
            )
            if target == OrderStatus.PAID and exc.from_status in _CLOSED_UNPAID and event.payment_reference:
                return self._refund_late_capture(engine, order, event, exc)
            return PaymentEventOutcome.IGNORED, exc.reason, exc.from_status

        if result.outcome == TransitionOutcome.UNCHANGED:
            return PaymentEventOutcome.IGNORED, f"Order already {result.to_status}", result.to_status
        return PaymentEventOutcome.APPLIED, f"{result.from_status} -> {result.to_status}", result.to_status

    def _fail_for_stock(self, engine, order, event, actor, exc: InsufficientStock):
        """Payment captured but the goods are gone: fail the order and refund."""
        note = f"{exc.reason}; payment captured by {event.provider} will be refunded"
        engine.request_transition(order.id, OrderStatus.FAILED, actor, note, payment_failed=True)
        engine.schedule_refund(
            order,
            reason=exc.reason,
            payment_reference=event.payment_reference,
            provider=event.provider,
        )
        logger.warning(
            "Paid order failed for lack of stock",
            order_id=str(order.id),
            product_id=exc.product_id,
            requested=exc.requested,
            available=exc.available,
        )
        return PaymentEventOutcome.STOCK_UNAVAILABLE, note, OrderStatus.FAILED.value

    def _refund_late_capture(self, engine, order, event, exc: InvalidTransition):
        """Payment captured after the order was closed: hand the money back."""
        note = f"{exc.reason}; payment captured by {event.provider} will be refunded"
        engine.schedule_refund(
            order,
            reason=f"Payment captured for {exc.from_status.lower()} order",
            payment_reference=event.payment_reference,
            provider=event.provider,
        )
        logger.warning(
            "Refunding payment captured for closed order",
            order_id=str(order.id),
            order_status=exc.from_status,
            payment_reference=event.payment_reference,
        )
        return PaymentEventOutcome.IGNORED, note, exc.from_status


# ---------------------------------------------------------------------------
# Entry point used by the webhook endpoint
# ---------------------------------------------------------------------------
class PaymentEventReconciler:
    def handle_event(self, provider: str, raw_payload: str, signature: str) -> ProcessingResult:
        gateway = get_gateway(provider)
        if not gateway.verify_webhook_signature(raw_payload, signature):
            logger.warning("Webhook signature rejected", provider=provider)
            raise InvalidSignature(provider)

        event = gateway.parse_event(raw_payload)
        existing = current_domain.repository_for(PaymentEvent).find(event.key)
        if existing is not None and existing.processed:
            logger.info("Duplicate payment event acknowledged", event_key=event.key)
            return _result(existing, duplicate=True)

        if existing is None:
            current_domain.process(
                RecordPaymentEvent(
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
                    raw_payload=raw_payload,
                ),
                asynchronous=False,
            )

        return self.process(event.key)

    def process(self, event_key: str) -> ProcessingResult:
        """Reconcile a recorded event, recording the error if processing blows up."""
        try:
            return current_domain.process(ReconcilePaymentEvent(event_key=event_key), asynchronous=False)
        except Exception as exc:
            logger.exception("Payment event processing failed", event_key=event_key)
            current_domain.process(MarkPaymentEventErrored(event_key=event_key, error=str(exc)), asynchronous=False)
            raise

    def retry(self, event_key: str) -> ProcessingResult:
        """Manually re-run an event that failed to process, within the retry budget."""
        current_domain.process(RetryPaymentEvent(event_key=event_key), asynchronous=False)
        logger.info("Retrying payment event", event_key=event_key)
        return self.process(event_key)
