"""Stock records: registration, receiving and adjustment commands."""

from protean import handle
from protean.fields import Identifier, Integer, String

from orderflow.domain import orderflow
from orderflow.errors import UnknownProduct
from orderflow.inventory.ledger import InventoryLedger
from orderflow.inventory.stock import AdjustmentType, StockItem


@orderflow.command(part_of="StockItem")
class RegisterStock:
    """Create the stock record for a product, or top it up if one exists."""

    product_id = Identifier(required=True)
    name = String(max_length=255)
    quantity = Integer(default=0, min_value=0)


@orderflow.command(part_of="StockItem")
class ReceiveStock:
    """Record incoming stock for a product."""

    product_id = Identifier(required=True)
    quantity = Integer(required=True, min_value=1)
    reference = String(max_length=255)  # Receiving document number


@orderflow.command(part_of="StockItem")
class AdjustStock:
    """Correct available stock after a count, shrinkage or damage."""

    product_id = Identifier(required=True)
    quantity_change = Integer(required=True)  # Can be negative
    adjustment_type = String(choices=AdjustmentType, default=AdjustmentType.CORRECTION.value)
    reason = String(required=True, max_length=1000, sanitize=False)
    adjusted_by = String(max_length=255)


@orderflow.command_handler(part_of=StockItem)
class StockHandler:
    @handle(RegisterStock)
    def register_stock(self, command):
        item = InventoryLedger().register(command.product_id, name=command.name, quantity=command.quantity or 0)
        return str(item.product_id)

    @handle(ReceiveStock)
    def receive_stock(self, command):
        item = InventoryLedger().receive(command.product_id, command.quantity, reference=command.reference)
        if item is None:
            raise UnknownProduct(str(command.product_id))
        return item.available

    @handle(AdjustStock)
    def adjust_stock(self, command):
        item = InventoryLedger().adjust(
            command.product_id,
            command.quantity_change,
            command.reason,
            adjustment_type=command.adjustment_type,
            adjusted_by=command.adjusted_by,
        )
        if item is None:
            raise UnknownProduct(str(command.product_id))
        return item.available
