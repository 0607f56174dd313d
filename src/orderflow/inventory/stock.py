"""StockItem aggregate: available and reserved stock for one product.

Stock Level Model:
    available: can be promised to a new order
    reserved:  held for paid orders that have not shipped yet
    shipped:   permanently deducted when an order ships
    on_hand:   available + reserved, the quantity physically owned

Every movement is recorded as a ``Reservation`` under an idempotency key
(``<order id>:<line item id>``), which makes replays of the same request
harmless: reserving a key that already holds enough stock, or releasing a key
that holds nothing, changes nothing.
"""

from enum import Enum

from protean import atomic_change, invariant
from protean.exceptions import ValidationError
from protean.fields import DateTime, HasMany, Identifier, Integer, String

from orderflow.domain import orderflow
from orderflow.errors import InsufficientStock
from orderflow.inventory.events import StockAdjusted, StockCommitted, StockReceived, StockReleased, StockReserved
from orderflow.utils.clock import utcnow


class ReservationStatus(Enum):
    ACTIVE = "Active"
    RELEASED = "Released"
    COMMITTED = "Committed"


class AdjustmentType(Enum):
    COUNT = "Count"
    SHRINKAGE = "Shrinkage"
    DAMAGE = "Damage"
    CORRECTION = "Correction"
    RECEIVING_ERROR = "Receiving_Error"


@orderflow.entity(part_of="StockItem")
class Reservation:
    """Stock held for one order line, identified by its idempotency key."""

    key = String(required=True, max_length=255)
    order_id = Identifier(required=True)
    quantity = Integer(required=True, min_value=1)
    status = String(choices=ReservationStatus, default=ReservationStatus.ACTIVE.value)
    reserved_at = DateTime(required=True)
    updated_at = DateTime()


@orderflow.aggregate
class StockItem:
    product_id = Identifier(required=True, unique=True)
    name = String(max_length=255)
    available = Integer(default=0, min_value=0)
    reserved = Integer(default=0, min_value=0)
    shipped = Integer(default=0, min_value=0)
    reservations = HasMany(Reservation)
    created_at = DateTime()
    updated_at = DateTime()

    @invariant.post
    def reserved_matches_active_reservations(self):
        held = sum(r.quantity for r in (self.reservations or []) if r.status == ReservationStatus.ACTIVE.value)
        if held != self.reserved:
            raise ValidationError({"reserved": ["Reserved stock must equal the active reservations"]})

    @classmethod
    def register(cls, product_id, name=None, quantity=0):
        if quantity < 0:
            raise ValidationError({"quantity": ["Quantity cannot be negative"]})
        now = utcnow()
        return cls(
            product_id=product_id,
            name=name,
            available=quantity,
            reserved=0,
            shipped=0,
            created_at=now,
            updated_at=now,
        )

    @property
    def on_hand(self) -> int:
        return self.available + self.reserved

    def reservation(self, key) -> Reservation | None:
        return next((r for r in (self.reservations or []) if r.key == key), None)

    def held_for(self, key) -> int:
        """Quantity currently reserved under ``key``."""
        existing = self.reservation(key)
        if existing is None or existing.status != ReservationStatus.ACTIVE.value:
            return 0
        return existing.quantity

    # -------------------------------------------------------------------
    # Stock movements
    # -------------------------------------------------------------------
    def receive(self, quantity, reference=None):
        if quantity <= 0:
            raise ValidationError({"quantity": ["Quantity must be positive"]})

        now = utcnow()
        self.available += quantity
        self.updated_at = now

        self.raise_(
            StockReceived(
                product_id=str(self.product_id),
                quantity=quantity,
                available=self.available,
                reference=reference,
                received_at=now,
            )
        )

    def adjust(self, quantity_change, reason, adjustment_type=None, adjusted_by=None, at=None):
        """Correct available stock by a signed amount. Reserved stock is never touched."""
        if not reason:
            raise ValidationError({"reason": ["Reason is required for stock adjustments"]})
        if quantity_change == 0:
            raise ValidationError({"quantity_change": ["Adjustment must change the stock level"]})
        try:
            kind = AdjustmentType(adjustment_type or AdjustmentType.CORRECTION)
        except ValueError as exc:
            raise ValidationError({"adjustment_type": [f"Unknown adjustment type: {adjustment_type}"]}) from exc

        new_available = self.available + quantity_change
        if new_available < 0:
            raise ValidationError(
                {"quantity_change": [f"Adjustment would result in negative available stock: {new_available}"]}
            )

        previous = self.available
        at = at or utcnow()
        self.available = new_available
        self.updated_at = at

        self.raise_(
            StockAdjusted(
                product_id=str(self.product_id),
                adjustment_type=kind.value,
                quantity_change=quantity_change,
                reason=reason,
                adjusted_by=adjusted_by,
                previous_available=previous,
                available=new_available,
                adjusted_at=at,
            )
        )

    def reserve(self, key, order_id, quantity, at=None) -> bool:
        """Hold ``quantity`` units under ``key``. Returns False when nothing had to move.

        A key that already holds at least ``quantity`` (or whose stock already
        shipped) is left alone. A smaller active hold is topped up, and a
        released key is reserved again.
        """
        if quantity <= 0:
            raise ValidationError({"quantity": ["Quantity must be positive"]})

        existing = self.reservation(key)
        if existing is not None:
            if existing.status == ReservationStatus.COMMITTED.value:
                return False
            if existing.status == ReservationStatus.ACTIVE.value and existing.quantity >= quantity:
                return False

        already_held = self.held_for(key)
        needed = quantity - already_held
        if self.available < needed:
            raise InsufficientStock(str(self.product_id), quantity, self.available + already_held)

        at = at or utcnow()
        with atomic_change(self):
            self.available -= needed
            self.reserved += needed
            if existing is None:
                self.add_reservations(
                    Reservation(
                        key=key,
                        order_id=order_id,
                        quantity=quantity,
                        reserved_at=at,
                        updated_at=at,
                    )
                )
            else:
                existing.quantity = quantity
                existing.status = ReservationStatus.ACTIVE.value
                existing.updated_at = at
            self.updated_at = at

        self.raise_(
            StockReserved(
                product_id=str(self.product_id),
                order_id=str(order_id),
                key=key,
                quantity=needed,
                available=self.available,
                reserved=self.reserved,
                reserved_at=at,
            )
        )
        return True

    def release(self, key, quantity=None, at=None) -> int:
        """Return up to ``quantity`` (default: all) of the key's hold to available.

        Unknown, released or shipped keys release nothing. Returns the
        quantity released.
        """
        held = self.held_for(key)
        if held == 0:
            return 0

        amount = held if quantity is None else min(quantity, held)
        if amount <= 0:
            return 0

        existing = self.reservation(key)
        at = at or utcnow()
        with atomic_change(self):
            self.available += amount
            self.reserved -= amount
            if amount == held:
                existing.status = ReservationStatus.RELEASED.value
            else:
                existing.quantity = held - amount
            existing.updated_at = at
            self.updated_at = at

        self.raise_(
            StockReleased(
                product_id=str(self.product_id),
                order_id=str(existing.order_id),
                key=key,
                quantity=amount,
                available=self.available,
                reserved=self.reserved,
                released_at=at,
            )
        )
        return amount

    def commit(self, key, at=None) -> bool:
        """Turn the key's hold into a permanent deduction. Returns False when nothing was held."""
        held = self.held_for(key)
        if held == 0:
            return False

        existing = self.reservation(key)
        at = at or utcnow()
        with atomic_change(self):
            self.reserved -= held
            self.shipped += held
            existing.status = ReservationStatus.COMMITTED.value
            existing.updated_at = at
            self.updated_at = at

        self.raise_(
            StockCommitted(
                product_id=str(self.product_id),
                order_id=str(existing.order_id),
                key=key,
                quantity=held,
                reserved=self.reserved,
                committed_at=at,
            )
        )
        return True


@orderflow.repository(part_of=StockItem)
class StockItemRepository:
    def for_product(self, product_id) -> StockItem | None:
        return self._dao.query.filter(product_id=str(product_id)).all().first

    def out_of_stock(self) -> list[StockItem]:
        return self._dao.query.filter(available=0).order_by("product_id").all().items
