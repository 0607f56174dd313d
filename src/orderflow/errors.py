"""Error taxonomy for order lifecycle operations.

User-correctable failures subclass Protean's ``ValidationError`` so they are
reported as client errors with their messages intact. Lookups of missing
records subclass ``ObjectNotFoundError``. ``ConcurrentModification`` and
``InvalidSignature`` are neither: the first is transient and retried by the
caller, the second is a rejected delivery that must not change any state.

Needing approval is not an error. The engine reports it as a successful
outcome carrying the pending approval id.
"""

from protean.exceptions import ObjectNotFoundError, ProteanException, ValidationError


class InvalidTransition(ValidationError):
    """The transition guard denied a status change."""

    def __init__(self, from_status: str, to_status: str, reason: str) -> None:
        self.from_status = from_status
        self.to_status = to_status
        self.reason = reason
        super().__init__({"status": [reason]})


class InsufficientStock(ValidationError):
    """Not enough available stock to reserve the requested quantity."""

    def __init__(self, product_id: str, requested: int, available: int) -> None:
        self.product_id = product_id
        self.requested = requested
        self.available = available
        self.reason = f"Insufficient stock for {product_id}: {available} available, {requested} requested"
        super().__init__({"quantity": [self.reason]})


class ConcurrentModification(ProteanException):
    """A record changed between read and write more times than the retry budget allows."""

    def __init__(self, aggregate: str, identifier: str, attempts: int) -> None:
        self.aggregate = aggregate
        self.identifier = identifier
        self.attempts = attempts
        self.reason = f"{aggregate} {identifier} was modified concurrently ({attempts} attempts)"
        super().__init__(self.reason)


class InvalidSignature(ProteanException):
    """A webhook delivery failed signature verification."""

    def __init__(self, provider: str) -> None:
        self.provider = provider
        self.reason = f"Invalid webhook signature for provider {provider}"
        super().__init__(self.reason)


class UnknownOrder(ObjectNotFoundError):
    def __init__(self, order_id: str) -> None:
        self.order_id = order_id
        self.reason = f"Order {order_id} does not exist"
        super().__init__({"order_id": [self.reason]})


class UnknownProvider(ObjectNotFoundError):
    def __init__(self, provider: str) -> None:
        self.provider = provider
        self.reason = f"No payment provider adapter registered for {provider}"
        super().__init__({"provider": [self.reason]})


class UnknownProduct(ObjectNotFoundError):
    def __init__(self, product_id: str) -> None:
        self.product_id = product_id
        self.reason = f"No stock record for product {product_id}"
        super().__init__({"product_id": [self.reason]})
