"""Stripe payment provider adapter.

Webhook handling is complete: signatures follow Stripe's ``t=<ts>,v1=<hmac>``
header scheme and event envelopes are mapped to ``ProviderEvent``. API calls
(payment intents, refunds) are placeholders for the stripe-python SDK.
"""

import json
import time

from protean.exceptions import ValidationError

from orderflow.gateway.port import PaymentEventType, PaymentGateway, PaymentRequest, ProviderEvent, RefundResult
from orderflow.gateway.signing import hmac_sha256, signatures_match

_EVENT_TYPES = {
    "payment_intent.created": PaymentEventType.CREATED,
    "payment_intent.processing": PaymentEventType.PROCESSING,
    "payment_intent.succeeded": PaymentEventType.SUCCEEDED,
    "payment_intent.payment_failed": PaymentEventType.FAILED,
    "payment_intent.canceled": PaymentEventType.CANCELED,
    "charge.dispute.created": PaymentEventType.DISPUTED,
    "charge.refunded": PaymentEventType.REFUNDED,
    "invoice.payment_succeeded": PaymentEventType.SUCCEEDED,
    "invoice.payment_failed": PaymentEventType.FAILED,
}


def _load(payload: str) -> dict:
    try:
        envelope = json.loads(payload)
    except (TypeError, ValueError) as exc:
        raise ValidationError({"payload": ["Webhook payload is not valid JSON"]}) from exc
    if not isinstance(envelope, dict):
        raise ValidationError({"payload": ["Webhook payload must be a JSON object"]})
    return envelope


class StripeGateway(PaymentGateway):
    name = "stripe"

    def __init__(self, api_key: str | None = None, webhook_secret: str | None = None, tolerance: int = 300) -> None:
        self.api_key = api_key
        self.webhook_secret = webhook_secret
        self.tolerance = tolerance

    def create_payment(self, order_id: str, amount: int, currency: str, idempotency_key: str) -> PaymentRequest:
        raise NotImplementedError(
            "StripeGateway.create_payment() is not yet implemented. Integrate stripe-python SDK here."
        )

    def create_refund(self, payment_reference: str, amount: int, reason: str) -> RefundResult:
        raise NotImplementedError(
            "StripeGateway.create_refund() is not yet implemented. Integrate stripe-python SDK here."
        )

    def verify_webhook_signature(self, payload: str, signature: str) -> bool:
        if not self.webhook_secret or not signature:
            return False

        parts = dict(part.split("=", 1) for part in signature.split(",") if "=" in part)
        timestamp = parts.get("t")
        if not timestamp or not timestamp.isdigit():
            return False
        if abs(time.time() - int(timestamp)) > self.tolerance:
            return False

        expected = hmac_sha256(self.webhook_secret, f"{timestamp}.{payload}")
        return signatures_match(expected, parts.get("v1", ""))

    def parse_event(self, payload: str) -> ProviderEvent:
        envelope = _load(payload)
        event_id = envelope.get("id")
        provider_type = envelope.get("type")
        if not event_id or not provider_type:
            raise ValidationError({"payload": ["Stripe event must carry an id and a type"]})

        obj = (envelope.get("data") or {}).get("object") or {}
        metadata = obj.get("metadata") or {}

        if provider_type.startswith("payment_intent."):
            reference = obj.get("id")
        else:
            reference = obj.get("payment_intent")

        amount = obj.get("amount_received") or obj.get("amount")
        currency = obj.get("currency")
        failure = (obj.get("last_payment_error") or {}).get("message") or obj.get("cancellation_reason")

        return ProviderEvent(
            provider=self.name,
            event_id=str(event_id),
            event_type=_EVENT_TYPES.get(provider_type, PaymentEventType.UNKNOWN),
            provider_type=provider_type,
            order_id=metadata.get("order_id") or metadata.get("orderId"),
            payment_reference=reference,
            amount=int(amount) if amount is not None else None,
            currency=currency.upper() if currency else None,
            failure_reason=failure,
        )
