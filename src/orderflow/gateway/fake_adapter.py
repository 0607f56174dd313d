"""Configurable fake Stripe-style provider for development and testing.

Speaks Stripe's webhook envelope but skips cryptography: the signature
``test-signature`` is the only valid one. Payment requests and refunds
succeed or fail as configured and every call is recorded. It never reports a
payment as captured by itself; captures arrive as webhooks.
"""

from uuid import uuid4

from orderflow.gateway.port import PaymentRequest, RefundResult
from orderflow.gateway.stripe_adapter import StripeGateway

TEST_SIGNATURE = "test-signature"


class FakeGateway(StripeGateway):
    """Configurable fake payment provider."""

    def __init__(self, name: str = "stripe") -> None:
        super().__init__()
        self.name = name
        self.should_succeed: bool = True
        self.failure_reason: str = "Provider unavailable"
        self.calls: list[dict] = []

    def configure(self, should_succeed: bool, failure_reason: str = "Provider unavailable") -> None:
        """Configure provider behavior at runtime."""
        self.should_succeed = should_succeed
        self.failure_reason = failure_reason

    def create_payment(self, order_id: str, amount: int, currency: str, idempotency_key: str) -> PaymentRequest:
        self.calls.append(
            {
                "method": "create_payment",
                "order_id": order_id,
                "amount": amount,
                "currency": currency,
                "idempotency_key": idempotency_key,
            }
        )

        if self.should_succeed:
            reference = f"pi_fake_{uuid4().hex[:16]}"
            return PaymentRequest(success=True, payment_reference=reference, client_secret=f"{reference}_secret")
        return PaymentRequest(success=False, failure_reason=self.failure_reason)

    def create_refund(self, payment_reference: str, amount: int, reason: str) -> RefundResult:
        self.calls.append(
            {
                "method": "create_refund",
                "payment_reference": payment_reference,
                "amount": amount,
                "reason": reason,
            }
        )

        if self.should_succeed:
            return RefundResult(success=True, refund_id=f"re_fake_{uuid4().hex[:12]}", status="succeeded")
        return RefundResult(success=False, status="failed", failure_reason=self.failure_reason)

    def verify_webhook_signature(self, payload: str, signature: str) -> bool:  # noqa: ARG002
        return signature == TEST_SIGNATURE
