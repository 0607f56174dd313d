"""Domain events for the StockItem aggregate."""

from protean.fields import DateTime, Identifier, Integer, String

from orderflow.domain import orderflow


@orderflow.event(part_of="StockItem")
class StockReceived:
    __version__ = 1

    product_id = Identifier(required=True)
    quantity = Integer(required=True)
    available = Integer(required=True)
    reference = String()
    received_at = DateTime(required=True)


@orderflow.event(part_of="StockItem")
class StockReserved:
    """Stock moved from available to reserved for an order line."""

    __version__ = 1

    product_id = Identifier(required=True)
    order_id = Identifier(required=True)
    key = String(required=True)
    quantity = Integer(required=True)
    available = Integer(required=True)
    reserved = Integer(required=True)
    reserved_at = DateTime(required=True)


@orderflow.event(part_of="StockItem")
class StockReleased:
    """Reserved stock returned to available."""

    __version__ = 1

    product_id = Identifier(required=True)
    order_id = Identifier(required=True)
    key = String(required=True)
    quantity = Integer(required=True)
    available = Integer(required=True)
    reserved = Integer(required=True)
    released_at = DateTime(required=True)


@orderflow.event(part_of="StockItem")
class StockCommitted:
    """Reserved stock left the warehouse with a shipment."""

    __version__ = 1

    product_id = Identifier(required=True)
    order_id = Identifier(required=True)
    key = String(required=True)
    quantity = Integer(required=True)
    reserved = Integer(required=True)
    committed_at = DateTime(required=True)


@orderflow.event(part_of="StockItem")
class StockAdjusted:
    """Manual correction of available stock (count, shrinkage, damage)."""

    __version__ = 1

    product_id = Identifier(required=True)
    adjustment_type = String(required=True)
    quantity_change = Integer(required=True)
    reason = String(required=True, sanitize=False)
    adjusted_by = String()
    previous_available = Integer(required=True)
    available = Integer(required=True)
    adjusted_at = DateTime(required=True)
