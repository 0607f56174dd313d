"""Staff-facing order commands: explicit transitions, tracking and delivery confirmation."""

from protean import handle
from protean.fields import DateTime, Identifier, String

from orderflow.domain import orderflow
from orderflow.order.lifecycle import Actor, OrderLifecycleEngine
from orderflow.order.order import ActorRole, Order, OrderStatus


@orderflow.command(part_of="Order")
class RequestTransition:
    order_id = Identifier(required=True)
    target_status = String(required=True, choices=OrderStatus)
    actor_id = String(required=True, max_length=255)
    actor_role = String(required=True, choices=ActorRole)
    reason = String(max_length=1000, sanitize=False)
    approval_id = Identifier()
    as_of = DateTime()


@orderflow.command(part_of="Order")
class AttachTracking:
    order_id = Identifier(required=True)
    tracking_number = String(required=True, max_length=100)
    carrier = String(max_length=100)


@orderflow.command(part_of="Order")
class ConfirmDelivery:
    """Explicit delivery confirmation, e.g. from the customer or the carrier."""

    order_id = Identifier(required=True)
    actor_id = String(required=True, max_length=255)
    actor_role = String(required=True, choices=ActorRole)
    as_of = DateTime()


@orderflow.command(part_of="Order")
class RetryPayment:
    """Put a Failed order back to Pending so a new payment can be requested."""

    order_id = Identifier(required=True)
    actor_id = String(required=True, max_length=255)
    actor_role = String(required=True, choices=ActorRole)
    as_of = DateTime()


@orderflow.command(part_of="Order")
class ClearAttention:
    order_id = Identifier(required=True)


@orderflow.command_handler(part_of=Order)
class OrderTransitionHandler:
    @handle(RequestTransition)
    def request_transition(self, command):
        result = OrderLifecycleEngine().request_transition(
            command.order_id,
            command.target_status,
            Actor(actor_id=command.actor_id, role=command.actor_role),
            reason=command.reason,
            approval_id=command.approval_id,
            now=command.as_of,
        )
        return result.to_dict()

    @handle(AttachTracking)
    def attach_tracking(self, command):
        OrderLifecycleEngine().attach_tracking(command.order_id, command.tracking_number, carrier=command.carrier)

    @handle(ConfirmDelivery)
    def confirm_delivery(self, command):
        result = OrderLifecycleEngine().request_transition(
            command.order_id,
            OrderStatus.DELIVERED,
            Actor(actor_id=command.actor_id, role=command.actor_role),
            reason="Delivery confirmed",
            delivery_confirmed=True,
            now=command.as_of,
        )
        return result.to_dict()

    @handle(RetryPayment)
    def retry_payment(self, command):
        result = OrderLifecycleEngine().request_transition(
            command.order_id,
            OrderStatus.PENDING,
            Actor(actor_id=command.actor_id, role=command.actor_role),
            reason="Payment retry requested",
            retry_authorized=True,
            now=command.as_of,
        )
        return result.to_dict()

    @handle(ClearAttention)
    def clear_attention(self, command):
        OrderLifecycleEngine().clear_attention(command.order_id)
