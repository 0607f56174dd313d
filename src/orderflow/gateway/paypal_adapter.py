"""PayPal payment provider adapter.

Maps PayPal webhook envelopes (``event_type`` + ``resource``) to
``ProviderEvent``. The order id travels in ``resource.invoice_number`` (or
``custom_id``). Signatures are checked as an HMAC of the raw body with the
webhook's shared secret; API calls are placeholders for the PayPal SDK.
"""

import json
from decimal import Decimal, InvalidOperation

from protean.exceptions import ValidationError

from orderflow.gateway.port import PaymentEventType, PaymentGateway, PaymentRequest, ProviderEvent, RefundResult
from orderflow.gateway.signing import hmac_sha256, signatures_match

_EVENT_TYPES = {
    "CHECKOUT.ORDER.APPROVED": PaymentEventType.PROCESSING,
    "CHECKOUT.ORDER.COMPLETED": PaymentEventType.SUCCEEDED,
    "PAYMENT.CAPTURE.PENDING": PaymentEventType.PROCESSING,
    "PAYMENT.CAPTURE.COMPLETED": PaymentEventType.SUCCEEDED,
    "PAYMENT.CAPTURE.DENIED": PaymentEventType.FAILED,
    "PAYMENT.CAPTURE.REFUNDED": PaymentEventType.REFUNDED,
    "CUSTOMER.DISPUTE.CREATED": PaymentEventType.DISPUTED,
}


def _minor_units(value) -> int | None:
    if value is None:
        return None
    try:
        return int((Decimal(str(value)) * 100).to_integral_value())
    except InvalidOperation:
        return None


class PayPalGateway(PaymentGateway):
    name = "paypal"

    def __init__(self, client_id: str | None = None, webhook_secret: str | None = None) -> None:
        self.client_id = client_id
        self.webhook_secret = webhook_secret

    def create_payment(self, order_id: str, amount: int, currency: str, idempotency_key: str) -> PaymentRequest:
        raise NotImplementedError("PayPalGateway.create_payment() is not yet implemented. Integrate the PayPal SDK here.")

    def create_refund(self, payment_reference: str, amount: int, reason: str) -> RefundResult:
        raise NotImplementedError("PayPalGateway.create_refund() is not yet implemented. Integrate the PayPal SDK here.")

    def verify_webhook_signature(self, payload: str, signature: str) -> bool:
        if not self.webhook_secret or not signature:
            return False
        return signatures_match(hmac_sha256(self.webhook_secret, payload), signature)

    def parse_event(self, payload: str) -> ProviderEvent:
        try:
            envelope = json.loads(payload)
        except (TypeError, ValueError) as exc:
            raise ValidationError({"payload": ["Webhook payload is not valid JSON"]}) from exc

        event_id = envelope.get("id") if isinstance(envelope, dict) else None
        provider_type = envelope.get("event_type") if isinstance(envelope, dict) else None
        if not event_id or not provider_type:
            raise ValidationError({"payload": ["PayPal event must carry an id and an event_type"]})

        resource = envelope.get("resource") or {}
        amount = resource.get("amount") or {}

        return ProviderEvent(
            provider=self.name,
            event_id=str(event_id),
            event_type=_EVENT_TYPES.get(provider_type, PaymentEventType.UNKNOWN),
            provider_type=provider_type,
            order_id=resource.get("invoice_number") or resource.get("custom_id"),
            payment_reference=resource.get("id"),
            amount=_minor_units(amount.get("value")),
            currency=amount.get("currency_code"),
            failure_reason=(resource.get("status_details") or {}).get("reason"),
        )
