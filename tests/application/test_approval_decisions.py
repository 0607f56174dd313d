"""Application tests for approval decisions: approve, reject, expiry and role checks."""

from datetime import timedelta

import pytest
from orderflow.approval.approval import ApprovalStatus, PendingApproval
from orderflow.approval.decisions import decide_approval, expire_approvals
from orderflow.order.lifecycle import Actor, OrderLifecycleEngine
from orderflow.order.order import Order, OrderStatus
from orderflow.scheduling.job import JobKind, ScheduledJob
from orderflow.utils.clock import utcnow
from protean import current_domain
from protean.exceptions import ValidationError


def _paid_order(make_order, stock):
    stock("item-X", 5)
    order_id = make_order(payment_reference="pi_1")
    OrderLifecycleEngine().request_transition(
        order_id, OrderStatus.PAID, Actor.system("stripe-webhook"), payment_confirmed=True, payment_reference="pi_1"
    )
    return order_id


def _park_cancel(order_id, actor=None):
    result = OrderLifecycleEngine().request_transition(
        order_id, OrderStatus.CANCELLED, actor or Actor("mgr-1", "manager"), "Customer changed their mind"
    )
    return result.approval_id


def _order(order_id) -> Order:
    return current_domain.repository_for(Order).get(order_id)


def _approval(approval_id) -> PendingApproval:
    return current_domain.repository_for(PendingApproval).get(approval_id)


class TestApprove:
    def test_approval_cancels_and_refunds(self, make_order, stock, available):
        order_id = _paid_order(make_order, stock)
        approval_id = _park_cancel(order_id)

        outcome = decide_approval(approval_id, "admin-1", "admin", approved=True, comments="Refund it")

        assert outcome["status"] == ApprovalStatus.APPROVED.value
        assert outcome["transition"]["outcome"] == "Applied"
        assert outcome["transition"]["side_effects"] == ["ReleaseStock", "ScheduleRefund"]

        order = _order(order_id)
        assert order.status == "Cancelled"
        assert order.history()[-1].actor_id == "admin-1"
        assert order.history()[-1].reason == "Customer changed their mind"
        assert available("item-X") == 5

        jobs = current_domain.repository_for(ScheduledJob).for_order(order_id)
        assert [job.kind for job in jobs] == [JobKind.REFUND.value]

    def test_processing_cancel_needs_admin(self, make_order, stock):
        order_id = _paid_order(make_order, stock)
        OrderLifecycleEngine().request_transition(order_id, OrderStatus.PROCESSING, Actor("admin-1", "admin"))
        approval_id = _park_cancel(order_id)

        with pytest.raises(ValidationError) as exc:
            decide_approval(approval_id, "mgr-2", "manager", approved=True)
        assert "actor_role" in exc.value.messages
        assert _approval(approval_id).is_pending

        outcome = decide_approval(approval_id, "admin-1", "admin", approved=True)
        assert outcome["transition"]["to_status"] == "Cancelled"

    def test_approval_for_order_that_moved_on(self, make_order, stock):
        order_id = _paid_order(make_order, stock)
        approval_id = _park_cancel(order_id)
        OrderLifecycleEngine().request_transition(order_id, OrderStatus.PROCESSING, Actor("admin-1", "admin"))

        with pytest.raises(ValidationError):
            decide_approval(approval_id, "admin-1", "admin", approved=True)

        assert _approval(approval_id).status == ApprovalStatus.APPROVED.value
        assert _order(order_id).status == "Processing"


class TestRejectAndExpire:
    def test_rejection_leaves_order_alone(self, make_order, stock):
        order_id = _paid_order(make_order, stock)
        approval_id = _park_cancel(order_id)

        outcome = decide_approval(approval_id, "admin-1", "admin", approved=False, comments="Already packed")

        assert outcome == {"approval_id": approval_id, "status": "Rejected", "transition": None}
        assert _order(order_id).status == "Paid"

    def test_decision_after_expiry(self, make_order, stock):
        order_id = _paid_order(make_order, stock)
        approval_id = _park_cancel(order_id)

        outcome = decide_approval(
            approval_id, "admin-1", "admin", approved=True, now=utcnow() + timedelta(hours=25)
        )

        assert outcome["status"] == ApprovalStatus.EXPIRED.value
        assert outcome["transition"] is None
        assert _order(order_id).status == "Paid"

    def test_sweep_expires_stale_requests(self, make_order, stock):
        order_id = _paid_order(make_order, stock)
        approval_id = _park_cancel(order_id)

        assert expire_approvals(now=utcnow() + timedelta(hours=1)) == 0
        assert expire_approvals(now=utcnow() + timedelta(hours=25)) == 1
        assert _approval(approval_id).status == ApprovalStatus.EXPIRED.value

    def test_new_request_after_expiry(self, make_order, stock):
        order_id = _paid_order(make_order, stock)
        first = _park_cancel(order_id)
        expire_approvals(now=utcnow() + timedelta(hours=25))

        second = _park_cancel(order_id)

        assert second != first
        assert _approval(second).is_pending

    def test_pending_for_role(self, make_order, stock):
        order_id = _paid_order(make_order, stock)
        _park_cancel(order_id)

        repo = current_domain.repository_for(PendingApproval)
        assert len(repo.pending_for_role("manager")) == 1
        assert repo.pending_for_role("customer") == []
