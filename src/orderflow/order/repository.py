"""Repository for the Order aggregate."""

from datetime import timedelta

from orderflow.domain import orderflow
from orderflow.order.order import Order, OrderStatus
from orderflow.utils.clock import as_utc, utcnow

# How long an order may sit in a status before someone should look at it
_STALE_AFTER = {
    OrderStatus.PAID: timedelta(days=1),
    OrderStatus.PROCESSING: timedelta(days=1),
    OrderStatus.SHIPPED: timedelta(days=7),
}


@orderflow.repository(part_of=Order)
class OrderRepository:
    def find_by_number(self, order_number: str) -> Order | None:
        return self._dao.query.filter(order_number=order_number).all().first

    def find_by_checkout_key(self, customer_id: str, checkout_key: str) -> Order | None:
        return self._dao.query.filter(customer_id=str(customer_id), checkout_key=checkout_key).all().first

    def for_customer(self, customer_id: str) -> list[Order]:
        return self._dao.query.filter(customer_id=str(customer_id)).all().items

    def with_status(self, status: OrderStatus) -> list[Order]:
        return self._dao.query.filter(status=status.value).all().items

    def requiring_attention(self, now=None) -> list[Order]:
        """Orders flagged for review, plus orders stuck in a status for too long."""
        now = as_utc(now or utcnow())
        flagged = {str(order.id): order for order in self._dao.query.filter(needs_attention=True).all().items}
        for status, limit in _STALE_AFTER.items():
            for order in self.with_status(status):
                if now - as_utc(order.updated_at) > limit:
                    flagged.setdefault(str(order.id), order)
        return sorted(flagged.values(), key=lambda order: as_utc(order.created_at))
