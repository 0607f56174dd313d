"""Application tests for the lifecycle engine: transitions with their side effects."""

from datetime import timedelta

import pytest
from orderflow.approval.approval import PendingApproval
from orderflow.errors import ConcurrentModification, InsufficientStock, InvalidTransition, UnknownOrder
from orderflow.order.lifecycle import Actor, OrderLifecycleEngine, TransitionOutcome
from orderflow.order.order import Order, OrderStatus
from orderflow.scheduling.job import JobKind, ScheduledJob, auto_delivery_key
from orderflow.utils.clock import utcnow
from protean import current_domain
from protean.exceptions import ExpectedVersionError

WEBHOOK = Actor.system("stripe-webhook")
ADMIN = Actor("admin-1", "admin")


def _order(order_id) -> Order:
    return current_domain.repository_for(Order).get(order_id)


def _pay(engine, order_id, reference="pi_1"):
    return engine.request_transition(
        order_id, OrderStatus.PAID, WEBHOOK, "payment_intent.succeeded", payment_confirmed=True, payment_reference=reference
    )


def _ship(engine, order_id):
    engine.request_transition(order_id, OrderStatus.PROCESSING, ADMIN)
    engine.attach_tracking(order_id, "1Z999", carrier="UPS")
    return engine.request_transition(order_id, OrderStatus.SHIPPED, ADMIN)


class TestPayment:
    def test_payment_reserves_stock(self, stock, available, make_order):
        stock("item-X", 5)
        order_id = make_order(payment_reference="pi_1")

        result = _pay(OrderLifecycleEngine(), order_id)

        assert result.outcome == TransitionOutcome.APPLIED
        assert result.side_effects == ("ReserveStock",)
        assert available("item-X") == 3

        order = _order(order_id)
        assert order.status == "Paid"
        assert [entry.status for entry in order.history()] == ["Pending", "Paid"]
        assert order.history()[-1].actor_id == "stripe-webhook"

    def test_repeated_payment_is_unchanged(self, stock, available, make_order):
        stock("item-X", 5)
        order_id = make_order(payment_reference="pi_1")
        engine = OrderLifecycleEngine()
        _pay(engine, order_id)

        result = _pay(engine, order_id)

        assert result.outcome == TransitionOutcome.UNCHANGED
        assert available("item-X") == 3
        assert len(_order(order_id).history()) == 2

    def test_reference_is_attached_when_missing(self, stock, make_order):
        stock("item-X", 5)
        order_id = make_order()

        _pay(OrderLifecycleEngine(), order_id, reference="pi_9")

        order = _order(order_id)
        assert order.payment_reference == "pi_9"
        assert order.payment_provider == "unknown"

    def test_mismatched_reference_is_rejected(self, stock, available, make_order):
        stock("item-X", 5)
        order_id = make_order(payment_reference="pi_1")

        with pytest.raises(InvalidTransition) as exc:
            _pay(OrderLifecycleEngine(), order_id, reference="pi_2")

        assert exc.value.reason == "Payment reference does not match this order"
        assert available("item-X") == 5

    def test_shortfall_leaves_order_pending(self, stock, available, make_order):
        stock("item-X", 5)
        stock("item-Y", 0)
        order_id = make_order(
            items=[
                {"product_id": "item-X", "name": "Item X", "quantity": 2, "unit_price": 1500},
                {"product_id": "item-Y", "name": "Item Y", "quantity": 1, "unit_price": 500},
            ]
        )

        with pytest.raises(InsufficientStock) as exc:
            _pay(OrderLifecycleEngine(), order_id)

        assert exc.value.product_id == "item-Y"
        assert available("item-X") == 5
        assert _order(order_id).status == "Pending"


class TestFulfilment:
    def test_ship_commits_stock_and_schedules_delivery(self, stock, make_order):
        stock("item-X", 5)
        order_id = make_order(payment_reference="pi_1")
        engine = OrderLifecycleEngine()
        _pay(engine, order_id)

        result = _ship(engine, order_id)

        assert result.side_effects == ("CommitStock", "ScheduleAutoDelivery")
        record = engine.ledger.snapshot("item-X")
        assert record.shipped == 2
        assert record.reserved == 0

        job = current_domain.repository_for(ScheduledJob).get(auto_delivery_key(order_id))
        assert job.kind == JobKind.AUTO_DELIVER.value
        assert job.target_status == "Delivered"

    def test_ship_without_tracking(self, stock, make_order):
        stock("item-X", 5)
        order_id = make_order(payment_reference="pi_1")
        engine = OrderLifecycleEngine()
        _pay(engine, order_id)
        engine.request_transition(order_id, OrderStatus.PROCESSING, ADMIN)

        with pytest.raises(InvalidTransition) as exc:
            engine.request_transition(order_id, OrderStatus.SHIPPED, ADMIN)
        assert exc.value.reason == "Tracking number is required to mark order as shipped"

    def test_processing_needs_held_stock(self, stock, make_order):
        stock("item-X", 5)
        order_id = make_order(payment_reference="pi_1")
        engine = OrderLifecycleEngine()
        _pay(engine, order_id)
        order = _order(order_id)
        engine.ledger.release("item-X", 2, order.line_key(order.items[0]))

        with pytest.raises(InvalidTransition) as exc:
            engine.request_transition(order_id, OrderStatus.PROCESSING, ADMIN)
        assert exc.value.reason == "Stock is no longer available for one or more items: item-X"

    def test_delivery_waits_for_minimum_delay(self, stock, make_order):
        stock("item-X", 5)
        order_id = make_order(payment_reference="pi_1")
        engine = OrderLifecycleEngine()
        _pay(engine, order_id)
        _ship(engine, order_id)

        with pytest.raises(InvalidTransition) as exc:
            engine.request_transition(order_id, OrderStatus.DELIVERED, Actor("cust-001"))
        assert exc.value.reason == "Order can only be marked as delivered at least 1 day after shipping"

        result = engine.request_transition(
            order_id, OrderStatus.DELIVERED, Actor("cust-001"), now=utcnow() + timedelta(days=2)
        )
        assert result.applied
        assert _order(order_id).is_terminal


class TestGuardedRequests:
    def test_unknown_order(self):
        with pytest.raises(UnknownOrder):
            OrderLifecycleEngine().request_transition("missing", OrderStatus.PAID, WEBHOOK)

    def test_skipping_statuses_is_invalid(self, make_order):
        order_id = make_order()
        with pytest.raises(InvalidTransition) as exc:
            OrderLifecycleEngine().request_transition(order_id, OrderStatus.SHIPPED, ADMIN)
        assert exc.value.reason == "Invalid status transition from Pending to Shipped"
        assert exc.value.from_status == "Pending"
        assert exc.value.to_status == "Shipped"

    def test_customer_cancel_within_window(self, make_order):
        order_id = make_order()
        result = OrderLifecycleEngine().request_transition(order_id, OrderStatus.CANCELLED, Actor("cust-001"))
        assert result.applied
        assert _order(order_id).status == "Cancelled"

    def test_customer_cancel_after_window(self, make_order):
        order_id = make_order(now=utcnow() - timedelta(hours=25))
        with pytest.raises(InvalidTransition) as exc:
            OrderLifecycleEngine().request_transition(order_id, OrderStatus.CANCELLED, Actor("cust-001"))
        assert exc.value.reason == "Order can only be cancelled within 24 hours of creation"

    def test_elevated_cancel_is_parked(self, stock, available, make_order):
        stock("item-X", 5)
        order_id = make_order(payment_reference="pi_1")
        engine = OrderLifecycleEngine()
        _pay(engine, order_id)

        result = engine.request_transition(order_id, OrderStatus.CANCELLED, Actor("mgr-1", "manager"), "Customer call")

        assert result.outcome == TransitionOutcome.APPROVAL_REQUIRED
        assert _order(order_id).status == "Paid"
        assert available("item-X") == 3

        approval = current_domain.repository_for(PendingApproval).get(result.approval_id)
        assert approval.roles == ["admin", "manager"]
        assert approval.reason == "Customer call"

    def test_parked_request_is_reused(self, stock, make_order):
        stock("item-X", 5)
        order_id = make_order(payment_reference="pi_1")
        engine = OrderLifecycleEngine()
        _pay(engine, order_id)

        first = engine.request_transition(order_id, OrderStatus.CANCELLED, ADMIN)
        second = engine.request_transition(order_id, OrderStatus.CANCELLED, ADMIN)

        assert first.approval_id == second.approval_id
        assert len(current_domain.repository_for(PendingApproval).pending()) == 1

    def test_unapproved_approval_id_is_rejected(self, stock, make_order):
        stock("item-X", 5)
        order_id = make_order(payment_reference="pi_1")
        engine = OrderLifecycleEngine()
        _pay(engine, order_id)
        parked = engine.request_transition(order_id, OrderStatus.CANCELLED, ADMIN)

        with pytest.raises(InvalidTransition) as exc:
            engine.request_transition(order_id, OrderStatus.CANCELLED, ADMIN, approval_id=parked.approval_id)
        assert exc.value.reason == f"Approval {parked.approval_id} does not authorize this transition"

    def test_failure_and_retry(self, make_order):
        order_id = make_order(payment_reference="pi_1")
        engine = OrderLifecycleEngine()

        engine.request_transition(order_id, OrderStatus.FAILED, WEBHOOK, "Card declined", payment_failed=True)
        with pytest.raises(InvalidTransition):
            engine.request_transition(order_id, OrderStatus.PENDING, Actor("cust-001"))

        result = engine.request_transition(order_id, OrderStatus.PENDING, Actor("cust-001"), retry_authorized=True)
        assert result.applied
        assert [entry.status for entry in _order(order_id).history()] == ["Pending", "Failed", "Pending"]


class TestConcurrentWrites:
    def test_retries_after_version_conflict(self, make_order, monkeypatch):
        order_id = make_order()
        engine = OrderLifecycleEngine()
        original = OrderLifecycleEngine._transition_once
        calls = []

        def flaky(self, *args):
            calls.append(True)
            if len(calls) == 1:
                raise ExpectedVersionError("stale")
            return original(self, *args)

        monkeypatch.setattr(OrderLifecycleEngine, "_transition_once", flaky)

        result = engine.request_transition(order_id, OrderStatus.CANCELLED, Actor("cust-001"))
        assert result.applied
        assert len(calls) == 2

    def test_gives_up_after_budget(self, make_order, monkeypatch):
        order_id = make_order()

        def always_stale(self, *args):
            raise ExpectedVersionError("stale")

        monkeypatch.setattr(OrderLifecycleEngine, "_transition_once", always_stale)

        with pytest.raises(ConcurrentModification) as exc:
            OrderLifecycleEngine().request_transition(order_id, OrderStatus.CANCELLED, Actor("cust-001"))
        assert exc.value.attempts == 3


class TestAttention:
    def test_flag_and_list(self, make_order):
        order_id = make_order()
        engine = OrderLifecycleEngine()

        engine.flag_for_attention(order_id, "Dispute opened", source="stripe:evt_9")

        flagged = current_domain.repository_for(Order).requiring_attention()
        assert [str(order.id) for order in flagged] == [order_id]

        engine.clear_attention(order_id)
        assert current_domain.repository_for(Order).requiring_attention() == []

    def test_stale_paid_order_needs_attention(self, stock, make_order):
        stock("item-X", 5)
        order_id = make_order(payment_reference="pi_1")
        _pay(OrderLifecycleEngine(), order_id)

        later = utcnow() + timedelta(days=2)
        flagged = current_domain.repository_for(Order).requiring_attention(now=later)
        assert [str(order.id) for order in flagged] == [order_id]
