"""Inventory ledger: idempotent reserve / release / commit against StockItem records.

Each operation loads the stock record, applies the movement and saves it with
the aggregate's version check, so a write based on a stale read is rejected
instead of overwriting a concurrent reservation. A rejected write is retried
on a fresh copy; two callers racing for the last unit therefore end with one
reservation and one ``InsufficientStock``.
"""

from collections.abc import Callable

import structlog
from protean.exceptions import ExpectedVersionError
from protean.utils.globals import current_domain

from orderflow.errors import ConcurrentModification, InsufficientStock
from orderflow.inventory.stock import StockItem
from orderflow.policy import get_policy

logger = structlog.get_logger(__name__)


class InventoryLedger:
    def __init__(self, max_attempts: int | None = None) -> None:
        self.max_attempts = max_attempts or get_policy().max_save_attempts

    @property
    def repository(self):
        return current_domain.repository_for(StockItem)

    def _apply(self, product_id: str, movement: Callable[[StockItem], object], missing=None):
        """Load, mutate and save one stock record, retrying on version conflicts.

        ``movement`` returns a falsy value when it changed nothing, in which
        case no write happens.
        """
        for attempt in range(1, self.max_attempts + 1):
            item = self.repository.for_product(product_id)
            if item is None:
                return missing(product_id) if missing else None

            result = movement(item)
            if not result:
                return result

            try:
                self.repository.add(item)
                return result
            except ExpectedVersionError:
                logger.warning(
                    "Stock record changed concurrently, retrying",
                    product_id=str(product_id),
                    attempt=attempt,
                )

        raise ConcurrentModification("StockItem", str(product_id), self.max_attempts)

    # -------------------------------------------------------------------
    # Movements
    # -------------------------------------------------------------------
    def reserve(self, product_id, quantity, key, order_id, at=None) -> bool:
        """Hold stock for an order line. Raises ``InsufficientStock`` when short."""

        def _untracked(pid):
            raise InsufficientStock(str(pid), quantity, 0)

        reserved = self._apply(
            product_id,
            lambda item: item.reserve(key=key, order_id=order_id, quantity=quantity, at=at),
            missing=_untracked,
        )
        if reserved:
            logger.info("Stock reserved", product_id=str(product_id), key=key, quantity=quantity)
        return bool(reserved)

    def release(self, product_id, quantity, key, at=None) -> int:
        """Return held stock to available. Unknown or already released keys are a no-op."""
        released = self._apply(product_id, lambda item: item.release(key=key, quantity=quantity, at=at)) or 0
        if released:
            logger.info("Stock released", product_id=str(product_id), key=key, quantity=released)
        return released

    def commit(self, product_id, key, at=None) -> bool:
        """Make a hold permanent when the goods leave. No-op when nothing is held."""
        committed = self._apply(product_id, lambda item: item.commit(key=key, at=at))
        if committed:
            logger.info("Stock committed", product_id=str(product_id), key=key)
        return bool(committed)

    # -------------------------------------------------------------------
    # Stock records
    # -------------------------------------------------------------------
    def register(self, product_id, name=None, quantity=0) -> StockItem:
        """Create the stock record for a product, or top it up if it exists."""
        item = self.repository.for_product(product_id)
        if item is None:
            item = StockItem.register(product_id=product_id, name=name, quantity=quantity)
            self.repository.add(item)
            logger.info("Stock record registered", product_id=str(product_id), quantity=quantity)
            return item

        if quantity > 0:
            self.receive(product_id, quantity)
        return self.repository.for_product(product_id)

    def receive(self, product_id, quantity, reference=None) -> StockItem | None:
        def _receive(item):
            item.receive(quantity, reference=reference)
            return item

        return self._apply(product_id, _receive)

    def snapshot(self, product_id) -> StockItem | None:
        return self.repository.for_product(product_id)

    def held_for(self, product_id, key) -> int:
        item = self.snapshot(product_id)
        return item.held_for(key) if item else 0

    def adjust(self, product_id, quantity_change, reason, adjustment_type=None, adjusted_by=None) -> StockItem | None:
        """Apply a counted correction or write-off; available stock never goes below zero."""

        def _adjust(item):
            item.adjust(quantity_change, reason, adjustment_type=adjustment_type, adjusted_by=adjusted_by)
            return item

        item = self._apply(product_id, _adjust)
        if item is not None:
            logger.info(
                "Stock adjusted",
                product_id=str(product_id),
                quantity_change=quantity_change,
                available=item.available,
                reason=reason,
            )
        return item

    def out_of_stock(self) -> list[StockItem]:
        return self.repository.out_of_stock()
