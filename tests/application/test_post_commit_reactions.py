"""Application tests for post-commit reactions and the order timeline projection."""

from orderflow.order.lifecycle import Actor, OrderLifecycleEngine
from orderflow.order.order import Order, OrderStatus
from orderflow.projections.order_timeline import timeline_for
from protean import current_domain

WEBHOOK = Actor.system("stripe-webhook")


def _pay(order_id):
    return OrderLifecycleEngine().request_transition(
        order_id, OrderStatus.PAID, WEBHOOK, "payment_intent.succeeded", payment_confirmed=True
    )


class TestCartClearing:
    def test_cart_cleared_when_paid(self, cart_service, notifier, stock, make_order):
        stock("item-X", 5)
        order_id = make_order(payment_reference="pi_1")

        _pay(order_id)

        assert cart_service.cleared == [{"customer_id": "cust-001", "order_id": order_id}]

    def test_cart_failure_does_not_undo_payment(self, cart_service, notifier, stock, make_order):
        stock("item-X", 5)
        cart_service.configure(should_succeed=False)
        order_id = make_order(payment_reference="pi_1")

        _pay(order_id)

        assert current_domain.repository_for(Order).get(order_id).status == "Paid"
        assert cart_service.cleared == []
        assert [message["template"] for message in notifier.sent] == ["payment_received"]

    def test_cart_untouched_on_cancel(self, cart_service, notifier, make_order):
        order_id = make_order()
        OrderLifecycleEngine().request_transition(order_id, OrderStatus.CANCELLED, Actor("cust-001"))
        assert cart_service.cleared == []


class TestNotifications:
    def test_customer_notified_of_payment(self, cart_service, notifier, stock, make_order):
        stock("item-X", 5)
        order_id = make_order(payment_reference="pi_1")

        _pay(order_id)

        message = notifier.sent[-1]
        assert message["customer_id"] == "cust-001"
        assert message["template"] == "payment_received"
        assert message["context"]["order_id"] == order_id
        assert message["context"]["status"] == "Paid"

    def test_failed_payment_notification(self, cart_service, notifier, make_order):
        order_id = make_order(payment_reference="pi_1")
        OrderLifecycleEngine().request_transition(
            order_id, OrderStatus.FAILED, WEBHOOK, "Card declined", payment_failed=True
        )
        assert notifier.sent[-1]["template"] == "payment_failed"
        assert notifier.sent[-1]["context"]["reason"] == "Card declined"

    def test_processing_is_not_announced(self, cart_service, notifier, stock, make_order):
        stock("item-X", 5)
        order_id = make_order(payment_reference="pi_1")
        _pay(order_id)
        OrderLifecycleEngine().request_transition(order_id, OrderStatus.PROCESSING, Actor("admin-1", "admin"))

        assert [message["template"] for message in notifier.sent] == ["payment_received"]

    def test_notifier_failure_is_tolerated(self, cart_service, notifier, make_order):
        notifier.configure(should_succeed=False)
        order_id = make_order()

        result = OrderLifecycleEngine().request_transition(order_id, OrderStatus.CANCELLED, Actor("cust-001"))

        assert result.applied
        assert notifier.sent == []


class TestTimeline:
    def test_timeline_records_lifecycle(self, stock, make_order):
        stock("item-X", 5)
        order_id = make_order(payment_reference="pi_1")
        engine = OrderLifecycleEngine()
        _pay(order_id)
        engine.flag_for_attention(order_id, "Dispute opened")

        entries = timeline_for(order_id)

        assert [entry.event_type for entry in entries] == [
            "OrderPlaced",
            "PaymentReferenceAttached",
            "OrderStatusChanged",
            "OrderFlaggedForReview",
        ]
        assert entries[2].description == "Pending -> Paid: payment_intent.succeeded"
