"""Shared BDD fixtures and step definitions for the order lifecycle."""

from datetime import timedelta

import pytest
from orderflow.approval.approval import PendingApproval
from orderflow.approval.decisions import decide_approval
from orderflow.checkout.checkout import CheckoutOrchestrator
from orderflow.errors import InvalidTransition
from orderflow.gateway.fake_adapter import TEST_SIGNATURE
from orderflow.order.lifecycle import Actor, OrderLifecycleEngine
from orderflow.order.order import Order, OrderStatus
from orderflow.payment.reconciler import PaymentEventReconciler
from orderflow.scheduling.job import JobKind, ScheduledJob
from orderflow.utils.clock import utcnow
from protean import current_domain
from pytest_bdd import given, parsers, then, when


@pytest.fixture()
def context():
    """Container for results and errors captured by When steps."""
    return {"result": None, "error": None, "approval_id": None}


def _order(order_id) -> Order:
    return current_domain.repository_for(Order).get(order_id)


def _line(product_id, quantity):
    return [{"product_id": product_id, "name": f"Product {product_id}", "quantity": quantity, "unit_price": 1500}]


# ---------------------------------------------------------------------------
# Given steps
# ---------------------------------------------------------------------------
@given(parsers.cfparse('the stock of "{product_id}" is {quantity:d}'))
def _(stock, product_id, quantity):
    stock(product_id, quantity)


@given(
    parsers.cfparse('a pending order for {quantity:d} of "{product_id}" with payment reference "{reference}"'),
    target_fixture="order_id",
)
def _(make_order, quantity, product_id, reference):
    return make_order(items=_line(product_id, quantity), payment_reference=reference)


@given(parsers.cfparse("a pending order placed {hours:d} hours ago"), target_fixture="order_id")
def _(make_order, hours):
    return make_order(now=utcnow() - timedelta(hours=hours))


@given(parsers.cfparse('a paid order for {quantity:d} of "{product_id}"'), target_fixture="order_id")
def _(make_order, quantity, product_id):
    order_id = make_order(items=_line(product_id, quantity), payment_reference="pi_1")
    OrderLifecycleEngine().request_transition(
        order_id, OrderStatus.PAID, Actor.system("stripe-webhook"), payment_confirmed=True
    )
    return order_id


# ---------------------------------------------------------------------------
# When steps
# ---------------------------------------------------------------------------
@when(parsers.cfparse('the provider reports "{event_type}" as event "{event_id}"'))
def _(context, gateway, stripe_event, order_id, event_type, event_id):
    reference = _order(order_id).payment_reference
    payload = stripe_event(event_id, event_type, order_id=order_id, reference=reference)
    context["result"] = PaymentEventReconciler().handle_event("stripe", payload, TEST_SIGNATURE)


@when("the customer cancels the order")
def _(context, order_id):
    try:
        context["result"] = CheckoutOrchestrator().cancel_by_user(order_id, "cust-001")
    except InvalidTransition as exc:
        context["error"] = exc


@when("the customer retries the payment")
def _(context, gateway, order_id):
    context["result"] = CheckoutOrchestrator().retry_payment(order_id, "cust-001")


@when(parsers.cfparse('the "{role}" requests cancellation'))
def _(context, order_id, role):
    result = OrderLifecycleEngine().request_transition(
        order_id, OrderStatus.CANCELLED, Actor(f"{role}-1", role), "Customer asked to cancel"
    )
    context["approval_id"] = result.approval_id


@when(parsers.cfparse('the "{role}" approves the request'))
def _(context, role):
    context["result"] = decide_approval(context["approval_id"], f"{role}-1", role, approved=True)


@when(parsers.cfparse('the "{role}" rejects the request'))
def _(context, role):
    context["result"] = decide_approval(context["approval_id"], f"{role}-1", role, approved=False)


# ---------------------------------------------------------------------------
# Then steps
# ---------------------------------------------------------------------------
@then(parsers.cfparse('the order status is "{status}"'))
def _(order_id, status):
    assert _order(order_id).status == status


@then(parsers.cfparse('"{product_id}" has {quantity:d} available'))
def _(available, product_id, quantity):
    assert available(product_id) == quantity


@then(parsers.cfparse('the event outcome is "{outcome}"'))
def _(context, outcome):
    assert context["result"].outcome == outcome


@then("the delivery is acknowledged as a duplicate")
def _(context):
    assert context["result"].duplicate is True


@then(parsers.cfparse('the request is rejected with "{reason}"'))
def _(context, reason):
    assert context["error"] is not None
    assert context["error"].reason == reason


@then("the order has a new payment reference")
def _(order_id):
    reference = _order(order_id).payment_reference
    assert reference != "pi_1"
    assert reference.startswith("pi_fake_")


@then("the order needs attention")
def _(order_id):
    assert _order(order_id).needs_attention is True


@then(parsers.cfparse('an approval is pending for roles "{roles}"'))
def _(context, roles):
    approval = current_domain.repository_for(PendingApproval).get(context["approval_id"])
    assert approval.is_pending
    assert approval.roles == [role.strip() for role in roles.split(",")]


@then(parsers.cfparse('a refund is scheduled for "{reference}"'))
def _(order_id, reference):
    jobs = current_domain.repository_for(ScheduledJob).for_order(order_id)
    refunds = [job for job in jobs if job.kind == JobKind.REFUND.value]
    assert [job.payment_reference for job in refunds] == [reference]
