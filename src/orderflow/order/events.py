"""Domain events for the Order aggregate.

Events are dispatched after the unit of work that raised them commits. The
post-commit collaborators (cart clearing, notifications) and the order
timeline projection react to them.
"""

from protean.fields import DateTime, Identifier, Integer, String

from orderflow.domain import orderflow


@orderflow.event(part_of="Order")
class OrderPlaced:
    """A new order was created in Pending status."""

    __version__ = 1

    order_id = Identifier(required=True)
    order_number = String(required=True)
    customer_id = Identifier(required=True)
    total = Integer(required=True)
    currency = String(required=True)
    item_count = Integer(required=True)
    placed_at = DateTime(required=True)


@orderflow.event(part_of="Order")
class OrderStatusChanged:
    """The order moved from one status to another."""

    __version__ = 1

    order_id = Identifier(required=True)
    order_number = String(required=True)
    customer_id = Identifier(required=True)
    from_status = String(required=True)
    to_status = String(required=True)
    reason = String(sanitize=False)
    actor_id = String()
    actor_role = String()
    changed_at = DateTime(required=True)


@orderflow.event(part_of="Order")
class PaymentReferenceAttached:
    """The payment provider issued a reference for the order's payment."""

    __version__ = 1

    order_id = Identifier(required=True)
    provider = String(required=True)
    payment_reference = String(required=True)
    attached_at = DateTime(required=True)


@orderflow.event(part_of="Order")
class TrackingAttached:
    __version__ = 1

    order_id = Identifier(required=True)
    tracking_number = String(required=True)
    carrier = String()
    attached_at = DateTime(required=True)


@orderflow.event(part_of="Order")
class OrderFlaggedForReview:
    """A dispute, refund or failed refund needs a human to look at the order."""

    __version__ = 1

    order_id = Identifier(required=True)
    reason = String(required=True, sanitize=False)
    source = String()
    flagged_at = DateTime(required=True)
