"""Application tests for the inventory ledger: persistence, idempotency and racing writers."""

import pytest
from orderflow.errors import ConcurrentModification, InsufficientStock, UnknownProduct
from orderflow.inventory.ledger import InventoryLedger
from orderflow.inventory.management import AdjustStock
from protean import current_domain
from protean.exceptions import ExpectedVersionError, ValidationError


class TestRegistration:
    def test_register_creates_record(self, stock, available):
        stock("item-X", 5)
        assert available("item-X") == 5

    def test_register_again_tops_up(self, stock, available):
        stock("item-X", 5)
        stock("item-X", 3)
        assert available("item-X") == 8

    def test_receive_unknown_product(self):
        assert InventoryLedger().receive("ghost", 5) is None


class TestMovements:
    def test_reserve_and_release(self, stock, available):
        stock("item-X", 5)
        ledger = InventoryLedger()

        assert ledger.reserve("item-X", 2, "o-1:l-1", order_id="o-1") is True
        assert available("item-X") == 3
        assert ledger.held_for("item-X", "o-1:l-1") == 2

        assert ledger.release("item-X", 2, "o-1:l-1") == 2
        assert available("item-X") == 5

    def test_replayed_reserve_holds_once(self, stock, available):
        stock("item-X", 5)
        ledger = InventoryLedger()
        ledger.reserve("item-X", 2, "o-1:l-1", order_id="o-1")

        assert ledger.reserve("item-X", 2, "o-1:l-1", order_id="o-1") is False
        assert available("item-X") == 3

    def test_untracked_product_has_no_stock(self):
        with pytest.raises(InsufficientStock) as exc:
            InventoryLedger().reserve("ghost", 1, "o-1:l-1", order_id="o-1")
        assert exc.value.available == 0

    def test_release_of_untracked_product(self):
        assert InventoryLedger().release("ghost", 1, "o-1:l-1") == 0

    def test_commit(self, stock):
        stock("item-X", 5)
        ledger = InventoryLedger()
        ledger.reserve("item-X", 2, "o-1:l-1", order_id="o-1")

        assert ledger.commit("item-X", "o-1:l-1") is True
        record = ledger.snapshot("item-X")
        assert record.shipped == 2
        assert record.reserved == 0


class TestConcurrentReservations:
    """A competitor writes between our read and our write."""

    def _race(self, ledger):
        raced = []

        def movement(item):
            if not raced:
                raced.append(True)
                InventoryLedger().reserve("item-X", 1, "o-2:l-1", order_id="o-2")
            return item.reserve(key="o-1:l-1", order_id="o-1", quantity=1)

        return ledger._apply("item-X", movement)

    def test_both_succeed_when_stock_suffices(self, stock, available):
        stock("item-X", 2)
        ledger = InventoryLedger()

        assert self._race(ledger) is True
        assert available("item-X") == 0
        assert ledger.held_for("item-X", "o-1:l-1") == 1
        assert ledger.held_for("item-X", "o-2:l-1") == 1

    def test_last_unit_goes_to_one_order(self, stock, available):
        stock("item-X", 1)
        ledger = InventoryLedger()

        with pytest.raises(InsufficientStock):
            self._race(ledger)

        assert available("item-X") == 0
        assert ledger.held_for("item-X", "o-2:l-1") == 1
        assert ledger.held_for("item-X", "o-1:l-1") == 0

    def test_gives_up_after_retry_budget(self, stock, monkeypatch):
        stock("item-X", 5)
        ledger = InventoryLedger(max_attempts=2)

        def conflict(item):
            raise ExpectedVersionError("stale")

        monkeypatch.setattr(ledger.repository.__class__, "add", lambda self, item: conflict(item))

        with pytest.raises(ConcurrentModification) as exc:
            ledger.reserve("item-X", 1, "o-1:l-1", order_id="o-1")
        assert exc.value.attempts == 2


class TestAdjustments:
    def test_adjust_through_command(self, stock, available):
        stock("item-X", 5)

        remaining = current_domain.process(
            AdjustStock(product_id="item-X", quantity_change=-2, reason="Damaged in transit", adjustment_type="Damage"),
            asynchronous=False,
        )

        assert remaining == 3
        assert available("item-X") == 3

    def test_adjust_keeps_reservations(self, stock, available):
        stock("item-X", 5)
        ledger = InventoryLedger()
        ledger.reserve("item-X", 3, "o-1:l-1", order_id="o-1")

        ledger.adjust("item-X", -2, "Shrinkage")

        assert available("item-X") == 0
        assert ledger.held_for("item-X", "o-1:l-1") == 3
        with pytest.raises(ValidationError):
            ledger.adjust("item-X", -1, "Shrinkage")

    def test_adjust_unknown_product(self):
        with pytest.raises(UnknownProduct):
            current_domain.process(
                AdjustStock(product_id="ghost", quantity_change=-1, reason="Lost"), asynchronous=False
            )

    def test_out_of_stock(self, stock):
        stock("item-A", 2)
        stock("item-B", 4)
        stock("item-C", 1)
        ledger = InventoryLedger()
        ledger.adjust("item-A", -2, "Cycle count", adjustment_type="Count")
        ledger.reserve("item-C", 1, "o-1:l-1", order_id="o-1")

        assert [str(item.product_id) for item in ledger.out_of_stock()] == ["item-A", "item-C"]
