"""Order timeline: append-only audit trail of order events for tracking and disputes."""

import json
import uuid

from protean.core.projector import on
from protean.fields import DateTime, Identifier, String, Text
from protean.utils.globals import current_domain

from orderflow.domain import orderflow
from orderflow.order.events import (
    OrderFlaggedForReview,
    OrderPlaced,
    OrderStatusChanged,
    PaymentReferenceAttached,
    TrackingAttached,
)
from orderflow.order.order import Order


@orderflow.projection
class OrderTimeline:
    entry_id = Identifier(identifier=True, required=True)
    order_id = Identifier(required=True)
    event_type = String(required=True)
    description = String(required=True, sanitize=False)
    occurred_at = DateTime(required=True)
    event_metadata = Text(sanitize=False)  # JSON: extra event data


def _add_entry(order_id, event_type, description, occurred_at, event_metadata=None):
    current_domain.repository_for(OrderTimeline).add(
        OrderTimeline(
            entry_id=str(uuid.uuid4()),
            order_id=order_id,
            event_type=event_type,
            description=description,
            occurred_at=occurred_at,
            event_metadata=json.dumps(event_metadata) if event_metadata else None,
        )
    )


def timeline_for(order_id) -> list[OrderTimeline]:
    entries = current_domain.repository_for(OrderTimeline)._dao.query.filter(order_id=str(order_id)).all().items
    return sorted(entries, key=lambda entry: entry.occurred_at)


@orderflow.projector(projector_for=OrderTimeline, aggregates=[Order])
class OrderTimelineProjector:
    @on(OrderPlaced)
    def on_order_placed(self, event):
        _add_entry(
            event.order_id,
            "OrderPlaced",
            f"Order {event.order_number} placed ({event.item_count} items)",
            event.placed_at,
            {"total": event.total, "currency": event.currency},
        )

    @on(OrderStatusChanged)
    def on_status_changed(self, event):
        description = f"{event.from_status} -> {event.to_status}"
        if event.reason:
            description = f"{description}: {event.reason}"
        _add_entry(
            event.order_id,
            "OrderStatusChanged",
            description,
            event.changed_at,
            {"actor_id": event.actor_id, "actor_role": event.actor_role},
        )

    @on(PaymentReferenceAttached)
    def on_payment_reference_attached(self, event):
        _add_entry(
            event.order_id,
            "PaymentReferenceAttached",
            f"Payment requested from {event.provider} ({event.payment_reference})",
            event.attached_at,
        )

    @on(TrackingAttached)
    def on_tracking_attached(self, event):
        carrier = f" via {event.carrier}" if event.carrier else ""
        _add_entry(
            event.order_id,
            "TrackingAttached",
            f"Tracking {event.tracking_number}{carrier}",
            event.attached_at,
        )

    @on(OrderFlaggedForReview)
    def on_flagged(self, event):
        _add_entry(event.order_id, "OrderFlaggedForReview", f"Flagged for review: {event.reason}", event.flagged_at)
