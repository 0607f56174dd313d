"""Post-commit reactions to order status changes.

Runs after the unit of work that changed the order has committed. Clears the
customer's cart when payment is confirmed and notifies the customer of the
changes they care about. A collaborator failure is logged and never undoes
or blocks the status change.
"""

import structlog
from protean.utils.mixins import handle

from orderflow.collaborators import get_cart_service, get_notifier
from orderflow.domain import orderflow
from orderflow.order.events import OrderStatusChanged
from orderflow.order.order import Order, OrderStatus

logger = structlog.get_logger(__name__)

NOTIFICATION_TEMPLATES = {
    OrderStatus.PAID.value: "payment_received",
    OrderStatus.SHIPPED.value: "order_shipped",
    OrderStatus.DELIVERED.value: "order_delivered",
    OrderStatus.CANCELLED.value: "order_cancelled",
    OrderStatus.FAILED.value: "payment_failed",
}


@orderflow.event_handler(part_of=Order)
class OrderStatusReactions:
    @handle(OrderStatusChanged)
    def on_status_changed(self, event: OrderStatusChanged) -> None:
        if event.to_status == OrderStatus.PAID.value:
            self._clear_cart(event)

        template = NOTIFICATION_TEMPLATES.get(event.to_status)
        if template:
            self._notify(event, template)

    def _clear_cart(self, event: OrderStatusChanged) -> None:
        try:
            get_cart_service().clear(str(event.customer_id), str(event.order_id))
        except Exception:
            logger.exception("Cart clearing failed", order_id=str(event.order_id), customer_id=str(event.customer_id))
            return
        logger.info("Cart cleared", order_id=str(event.order_id), customer_id=str(event.customer_id))

    def _notify(self, event: OrderStatusChanged, template: str) -> None:
        context = {
            "order_id": str(event.order_id),
            "order_number": event.order_number,
            "status": event.to_status,
            "reason": event.reason,
        }
        try:
            result = get_notifier().send(str(event.customer_id), template, context)
        except Exception:
            logger.exception("Customer notification failed", order_id=str(event.order_id), template=template)
            return

        if result.get("status") != "sent":
            logger.warning(
                "Customer notification not delivered",
                order_id=str(event.order_id),
                template=template,
                error=result.get("error"),
            )
