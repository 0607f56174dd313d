"""Checkout: place Pending orders and request payment from the provider.

The order is committed first. Only then is the provider asked for a payment
request, outside any unit of work, and the returned reference attached in a
second, short unit of work. Checkout never marks an order Paid; that happens
when the provider's webhook confirms the capture.
"""

import json

import structlog
from protean import handle
from protean.exceptions import ValidationError
from protean.fields import Identifier, Integer, String, Text
from protean.utils.globals import current_domain

from orderflow.domain import orderflow
from orderflow.errors import UnknownOrder
from orderflow.gateway import get_gateway
from orderflow.order.lifecycle import OrderLifecycleEngine, TransitionOutcome
from orderflow.order.order import ActorRole, Order, OrderStatus
from orderflow.order.transitions import RequestTransition, RetryPayment

logger = structlog.get_logger(__name__)


@orderflow.command(part_of="Order")
class PlaceOrder:
    customer_id = Identifier(required=True)
    items = Text(required=True, sanitize=False)  # JSON: list of line item dicts
    shipping_address = Text(required=True, sanitize=False)  # JSON: address dict
    subtotal = Integer(required=True, min_value=0)
    shipping = Integer(default=0, min_value=0)
    tax = Integer(default=0, min_value=0)
    total = Integer(min_value=0)
    currency = String(max_length=3, default="USD")
    checkout_key = String(max_length=255)


@orderflow.command(part_of="Order")
class AttachPaymentReference:
    order_id = Identifier(required=True)
    provider = String(required=True, max_length=50)
    payment_reference = String(required=True, max_length=255)


@orderflow.command_handler(part_of=Order)
class CheckoutHandler:
    @handle(PlaceOrder)
    def place_order(self, command):
        repo = current_domain.repository_for(Order)
        if command.checkout_key:
            existing = repo.find_by_checkout_key(command.customer_id, command.checkout_key)
            if existing is not None:
                logger.info(
                    "Checkout replayed, returning existing order",
                    order_id=str(existing.id),
                    checkout_key=command.checkout_key,
                )
                return {"order_id": str(existing.id), "created": False}

        items_data = json.loads(command.items) if isinstance(command.items, str) else command.items
        shipping_address = (
            json.loads(command.shipping_address)
            if isinstance(command.shipping_address, str)
            else command.shipping_address
        )

        order = Order.create(
            customer_id=command.customer_id,
            items_data=items_data,
            shipping_address=shipping_address,
            pricing={
                "subtotal": command.subtotal,
                "shipping": command.shipping or 0,
                "tax": command.tax or 0,
                "total": command.total,
                "currency": command.currency or "USD",
            },
            checkout_key=command.checkout_key,
        )
        repo.add(order)
        logger.info(
            "Order placed",
            order_id=str(order.id),
            order_number=order.order_number,
            customer_id=str(command.customer_id),
            total=order.pricing.total,
        )
        return {"order_id": str(order.id), "created": True}

    @handle(AttachPaymentReference)
    def attach_payment_reference(self, command):
        return OrderLifecycleEngine().attach_payment_reference(
            command.order_id, command.provider, command.payment_reference
        )


class CheckoutOrchestrator:
    def __init__(self, provider: str = "stripe") -> None:
        self.provider = provider

    def _owned_order(self, order_id, user_id) -> Order:
        """Load an order the user owns. Other users' orders look like missing ones."""
        order = OrderLifecycleEngine().load(order_id)
        if str(order.customer_id) != str(user_id):
            logger.warning("Order access denied", order_id=str(order_id), user_id=str(user_id))
            raise UnknownOrder(str(order_id))
        return order

    def create_order(
        self,
        user_id,
        line_items: list[dict],
        shipping_address: dict,
        totals: dict,
        checkout_key: str | None = None,
        provider: str | None = None,
    ) -> dict:
        """Place a Pending order and request payment for it.

        ``totals`` holds subtotal, shipping, tax, optionally total, and currency,
        in minor units. Repeating a ``checkout_key`` returns the same order.
        """
        gateway = get_gateway(provider or self.provider)
        placed = current_domain.process(
            PlaceOrder(
                customer_id=user_id,
                items=json.dumps(line_items),
                shipping_address=json.dumps(shipping_address),
                subtotal=totals.get("subtotal", 0),
                shipping=totals.get("shipping", 0),
                tax=totals.get("tax", 0),
                total=totals.get("total"),
                currency=totals.get("currency", "USD"),
                checkout_key=checkout_key,
            ),
            asynchronous=False,
        )

        order = OrderLifecycleEngine().load(placed["order_id"])
        client_secret = None
        if order.payment_reference is None:
            client_secret = self._request_payment(order, gateway)
            order = OrderLifecycleEngine().load(order.id)

        return {
            "order_id": str(order.id),
            "order_number": order.order_number,
            "status": order.status,
            "total": order.pricing.total,
            "currency": order.pricing.currency,
            "payment_provider": order.payment_provider,
            "payment_reference": order.payment_reference,
            "client_secret": client_secret,
            "created": placed["created"],
        }

    def _request_payment(self, order: Order, gateway) -> str | None:
        """Ask the provider for a payment request; failures leave the order Pending."""
        try:
            request = gateway.create_payment(
                order_id=str(order.id),
                amount=order.pricing.total,
                currency=order.pricing.currency,
                idempotency_key=f"{order.id}:{len(order.status_history)}",
            )
        except Exception:
            logger.exception("Payment request failed", order_id=str(order.id), provider=gateway.name)
            return None

        if not request.success:
            logger.warning(
                "Payment request rejected",
                order_id=str(order.id),
                provider=gateway.name,
                reason=request.failure_reason,
            )
            return None

        try:
            current_domain.process(
                AttachPaymentReference(
                    order_id=str(order.id),
                    provider=gateway.name,
                    payment_reference=request.payment_reference,
                ),
                asynchronous=False,
            )
        except ValidationError as exc:
            # The provider's webhook got there first and moved the order on
            logger.warning(
                "Payment reference not attached",
                order_id=str(order.id),
                payment_reference=request.payment_reference,
                reason=str(exc.messages),
            )
        return request.client_secret

    def cancel_by_user(self, order_id, user_id, reason: str | None = None) -> dict:
        """Customer cancellation: only the owner, only while the order is Pending and recent."""
        self._owned_order(order_id, user_id)
        return current_domain.process(
            RequestTransition(
                order_id=str(order_id),
                target_status=OrderStatus.CANCELLED.value,
                actor_id=str(user_id),
                actor_role=ActorRole.CUSTOMER.value,
                reason=reason or "Cancelled by customer",
            ),
            asynchronous=False,
        )

    def retry_payment(self, order_id, user_id, provider: str | None = None) -> dict:
        """Reopen a Failed order and request a fresh payment for it."""
        self._owned_order(order_id, user_id)
        result = current_domain.process(
            RetryPayment(
                order_id=str(order_id),
                actor_id=str(user_id),
                actor_role=ActorRole.CUSTOMER.value,
            ),
            asynchronous=False,
        )

        order = OrderLifecycleEngine().load(order_id)
        client_secret = None
        if result["outcome"] == TransitionOutcome.APPLIED.value or order.payment_reference is None:
            gateway = get_gateway(provider or order.payment_provider or self.provider)
            client_secret = self._request_payment(order, gateway)
            order = OrderLifecycleEngine().load(order_id)
        return {
            **result,
            "payment_reference": order.payment_reference,
            "client_secret": client_secret,
        }
