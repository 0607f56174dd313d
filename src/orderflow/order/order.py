"""Order aggregate: line items, status, append-only status history and totals.

Orders are created Pending by checkout and change status only through the
lifecycle engine (``orderflow.order.lifecycle``), which asks the transition
guard first. The aggregate itself enforces the bookkeeping rules:

- the last status history entry always equals the current status and history
  timestamps never go backwards;
- ``total == subtotal + shipping + tax`` in integer minor units, and the
  subtotal matches the line items;
- line items are captured at checkout and never change afterwards.

Concurrent writers are serialized by the aggregate version: saving a stale
copy fails with ``ExpectedVersionError``.
"""

import secrets
from datetime import datetime
from enum import Enum

from protean import atomic_change, invariant
from protean.exceptions import ValidationError
from protean.fields import (
    Boolean,
    DateTime,
    HasMany,
    Identifier,
    Integer,
    String,
    ValueObject,
)

from orderflow.domain import orderflow
from orderflow.order.events import (
    OrderFlaggedForReview,
    OrderPlaced,
    OrderStatusChanged,
    PaymentReferenceAttached,
    TrackingAttached,
)
from orderflow.utils.clock import as_utc, utcnow


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class OrderStatus(Enum):
    PENDING = "Pending"
    PAID = "Paid"
    PROCESSING = "Processing"
    SHIPPED = "Shipped"
    DELIVERED = "Delivered"
    CANCELLED = "Cancelled"
    FAILED = "Failed"


TERMINAL_STATUSES = frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED})


class ActorRole(Enum):
    CUSTOMER = "customer"
    MANAGER = "manager"
    ADMIN = "admin"
    SYSTEM = "system"


ELEVATED_ROLES = frozenset({ActorRole.ADMIN.value, ActorRole.MANAGER.value})


def generate_order_number(at: datetime | None = None) -> str:
    """Human readable order number, e.g. ``ORD-20260118-3F9A0C1B``."""
    at = at or utcnow()
    return f"ORD-{at:%Y%m%d}-{secrets.token_hex(4).upper()}"


# ---------------------------------------------------------------------------
# Value Objects
# ---------------------------------------------------------------------------
@orderflow.value_object(part_of="Order")
class ShippingAddress:
    """Delivery address snapshot taken at checkout."""

    recipient = String(max_length=255)
    street = String(required=True, max_length=255)
    city = String(required=True, max_length=100)
    state = String(max_length=100)
    postal_code = String(required=True, max_length=20)
    country = String(required=True, max_length=100)


@orderflow.value_object(part_of="Order")
class OrderPricing:
    """Monetary breakdown in integer minor currency units (cents)."""

    subtotal = Integer(required=True, min_value=0)
    shipping = Integer(default=0, min_value=0)
    tax = Integer(default=0, min_value=0)
    total = Integer(required=True, min_value=0)
    currency = String(max_length=3, default="USD")

    @invariant.post
    def total_is_sum_of_parts(self):
        if self.total != self.subtotal + (self.shipping or 0) + (self.tax or 0):
            raise ValidationError({"total": ["Total must equal subtotal + shipping + tax"]})


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------
@orderflow.entity(part_of="Order")
class OrderItem:
    """A line item; name and unit price are captured at order time."""

    product_id = Identifier(required=True)
    name = String(required=True, max_length=255)
    quantity = Integer(required=True, min_value=1)
    unit_price = Integer(required=True, min_value=0)

    @property
    def line_total(self) -> int:
        return self.quantity * self.unit_price


@orderflow.entity(part_of="Order")
class StatusChange:
    """One entry of the order's status history."""

    sequence = Integer(required=True, min_value=1)
    status = String(required=True, choices=OrderStatus)
    changed_at = DateTime(required=True)
    reason = String(max_length=1000, sanitize=False)
    actor_id = String(max_length=255)
    actor_role = String(max_length=50)


# ---------------------------------------------------------------------------
# Aggregate Root
# ---------------------------------------------------------------------------
@orderflow.aggregate
class Order:
    order_number = String(required=True, max_length=40, unique=True)
    customer_id = Identifier(required=True)
    checkout_key = String(max_length=255)
    items = HasMany(OrderItem)
    status = String(choices=OrderStatus, default=OrderStatus.PENDING.value)
    status_history = HasMany(StatusChange)
    pricing = ValueObject(OrderPricing)
    shipping_address = ValueObject(ShippingAddress)
    payment_provider = String(max_length=50)
    payment_reference = String(max_length=255)
    tracking_number = String(max_length=100)
    carrier = String(max_length=100)
    needs_attention = Boolean(default=False)
    attention_reason = String(max_length=1000, sanitize=False)
    created_at = DateTime()
    updated_at = DateTime()

    @invariant.post
    def history_ends_with_current_status(self):
        history = self.history()
        if not history:
            raise ValidationError({"status_history": ["Order must have a status history"]})
        if history[-1].status != self.status:
            raise ValidationError({"status_history": ["Last history entry must match the current status"]})

    @invariant.post
    def history_timestamps_never_go_backwards(self):
        timestamps = [as_utc(entry.changed_at) for entry in self.history()]
        if any(later < earlier for earlier, later in zip(timestamps, timestamps[1:], strict=False)):
            raise ValidationError({"status_history": ["Status history must be ordered by time"]})

    @invariant.post
    def subtotal_matches_line_items(self):
        if self.pricing and self.items:
            if self.pricing.subtotal != sum(item.quantity * item.unit_price for item in self.items):
                raise ValidationError({"subtotal": ["Subtotal must equal the sum of line items"]})

    # -------------------------------------------------------------------
    # Factory
    # -------------------------------------------------------------------
    @classmethod
    def create(
        cls,
        customer_id,
        items_data,
        shipping_address,
        pricing,
        checkout_key=None,
        placed_by=None,
        now=None,
    ):
        """Create a Pending order from validated checkout data.

        Args:
            items_data: list of dicts with product_id, name, quantity, unit_price.
            shipping_address: dict of ShippingAddress fields.
            pricing: dict with subtotal, shipping, tax, total and currency.
                ``total`` may be omitted and is then computed.
        """
        if not items_data:
            raise ValidationError({"items": ["Order must contain at least one item"]})

        now = now or utcnow()
        subtotal = int(pricing.get("subtotal", 0))
        shipping = int(pricing.get("shipping") or 0)
        tax = int(pricing.get("tax") or 0)
        total = pricing.get("total")
        total = subtotal + shipping + tax if total is None else int(total)

        order = cls(
            order_number=generate_order_number(now),
            customer_id=customer_id,
            checkout_key=checkout_key,
            items=[
                OrderItem(
                    product_id=item["product_id"],
                    name=item["name"],
                    quantity=int(item["quantity"]),
                    unit_price=int(item["unit_price"]),
                )
                for item in items_data
            ],
            status=OrderStatus.PENDING.value,
            status_history=[
                StatusChange(
                    sequence=1,
                    status=OrderStatus.PENDING.value,
                    changed_at=now,
                    reason="Order placed",
                    actor_id=placed_by or str(customer_id),
                    actor_role=ActorRole.CUSTOMER.value,
                )
            ],
            pricing=OrderPricing(
                subtotal=subtotal,
                shipping=shipping,
                tax=tax,
                total=total,
                currency=pricing.get("currency") or "USD",
            ),
            shipping_address=ShippingAddress(**shipping_address),
            created_at=now,
            updated_at=now,
        )

        order.raise_(
            OrderPlaced(
                order_id=str(order.id),
                order_number=order.order_number,
                customer_id=str(customer_id),
                total=total,
                currency=order.pricing.currency,
                item_count=sum(item.quantity for item in order.items),
                placed_at=now,
            )
        )
        return order

    # -------------------------------------------------------------------
    # Read helpers
    # -------------------------------------------------------------------
    def history(self) -> list[StatusChange]:
        """Status history in the order it was written."""
        return sorted(self.status_history or [], key=lambda entry: entry.sequence)

    def entered_status_at(self, status: OrderStatus) -> datetime | None:
        """When the order last entered ``status``, or None if it never did."""
        for entry in reversed(self.history()):
            if entry.status == status.value:
                return as_utc(entry.changed_at)
        return None

    def line_key(self, item: OrderItem) -> str:
        """Idempotency key for stock movements of one line item."""
        return f"{self.id}:{item.id}"

    @property
    def is_terminal(self) -> bool:
        return OrderStatus(self.status) in TERMINAL_STATUSES

    # -------------------------------------------------------------------
    # Status changes (called by the lifecycle engine)
    # -------------------------------------------------------------------
    def apply_transition(self, target, reason=None, actor_id=None, actor_role=None, at=None):
        """Move to ``target`` and append the matching history entry.

        The transition guard has already approved the change; this only keeps
        status and history consistent.
        """
        target = OrderStatus(target)
        previous = self.status
        history = self.history()
        at = as_utc(at or utcnow())
        last_at = as_utc(history[-1].changed_at) if history else None
        if last_at and at < last_at:
            at = last_at

        with atomic_change(self):
            self.add_status_history(
                StatusChange(
                    sequence=(history[-1].sequence + 1) if history else 1,
                    status=target.value,
                    changed_at=at,
                    reason=reason,
                    actor_id=actor_id,
                    actor_role=actor_role,
                )
            )
            self.status = target.value
            self.updated_at = at

        self.raise_(
            OrderStatusChanged(
                order_id=str(self.id),
                order_number=self.order_number,
                customer_id=str(self.customer_id),
                from_status=previous,
                to_status=target.value,
                reason=reason,
                actor_id=actor_id,
                actor_role=actor_role,
                changed_at=at,
            )
        )

    def attach_payment_reference(self, provider, reference, at=None):
        """Record the provider's payment reference. Returns False when unchanged."""
        if OrderStatus(self.status) != OrderStatus.PENDING:
            raise ValidationError({"payment_reference": ["Payment reference can only be attached to a pending order"]})
        if not reference:
            raise ValidationError({"payment_reference": ["Payment reference is required"]})
        if self.payment_provider == provider and self.payment_reference == reference:
            return False

        at = at or utcnow()
        self.payment_provider = provider
        self.payment_reference = reference
        self.updated_at = at

        self.raise_(
            PaymentReferenceAttached(
                order_id=str(self.id),
                provider=provider,
                payment_reference=reference,
                attached_at=at,
            )
        )
        return True

    def attach_tracking(self, tracking_number, carrier=None, at=None):
        if OrderStatus(self.status) not in (OrderStatus.PAID, OrderStatus.PROCESSING):
            raise ValidationError({"tracking_number": ["Tracking can only be attached before the order ships"]})
        if not tracking_number or not tracking_number.strip():
            raise ValidationError({"tracking_number": ["Tracking number is required"]})

        at = at or utcnow()
        self.tracking_number = tracking_number.strip()
        self.carrier = carrier
        self.updated_at = at

        self.raise_(
            TrackingAttached(
                order_id=str(self.id),
                tracking_number=self.tracking_number,
                carrier=carrier,
                attached_at=at,
            )
        )

    def flag_for_attention(self, reason, source=None, at=None):
        at = at or utcnow()
        self.needs_attention = True
        self.attention_reason = reason
        self.updated_at = at

        self.raise_(
            OrderFlaggedForReview(
                order_id=str(self.id),
                reason=reason,
                source=source,
                flagged_at=at,
            )
        )

    def clear_attention(self):
        self.needs_attention = False
        self.attention_reason = None
        self.updated_at = utcnow()
