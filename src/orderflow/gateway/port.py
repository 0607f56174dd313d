"""Payment provider port (abstract interface).

Every provider adapter verifies webhook signatures, turns the provider's
event envelope into a ``ProviderEvent`` and talks to the provider's API for
payment requests and refunds. The reconciler and checkout only ever see this
interface.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum


class PaymentEventType(Enum):
    CREATED = "created"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELED = "canceled"
    DISPUTED = "disputed"
    REFUNDED = "refunded"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class ProviderEvent:
    """A provider notification in provider-neutral terms."""

    provider: str
    event_id: str
    event_type: PaymentEventType
    provider_type: str
    order_id: str | None = None
    payment_reference: str | None = None
    amount: int | None = None
    currency: str | None = None
    failure_reason: str | None = None

    @property
    def key(self) -> str:
        """Deduplication key: one record per provider event id."""
        return f"{self.provider}:{self.event_id}"


@dataclass(frozen=True)
class PaymentRequest:
    """Result of asking the provider to start collecting a payment."""

    success: bool
    payment_reference: str | None = None
    client_secret: str | None = None
    failure_reason: str | None = None


@dataclass(frozen=True)
class RefundResult:
    success: bool
    refund_id: str | None = None
    status: str | None = None
    failure_reason: str | None = None


class PaymentGateway(ABC):
    """Abstract payment provider interface."""

    name: str

    @abstractmethod
    def create_payment(self, order_id: str, amount: int, currency: str, idempotency_key: str) -> PaymentRequest:
        """Ask the provider for a payment request (e.g. a payment intent) for an order."""
        ...

    @abstractmethod
    def create_refund(self, payment_reference: str, amount: int, reason: str) -> RefundResult:
        """Refund a captured payment."""
        ...

    @abstractmethod
    def verify_webhook_signature(self, payload: str, signature: str) -> bool:
        """Verify that a webhook payload is authentically from the provider."""
        ...

    @abstractmethod
    def parse_event(self, payload: str) -> ProviderEvent:
        """Normalize a verified webhook payload. Raises ValidationError when malformed."""
        ...
