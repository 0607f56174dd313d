"""Approval decisions: commands, handler and the decide/expire entry points.

A decision is committed on its own first. An approval then drives the
lifecycle engine with the approval id in a second unit of work, so a
transition that no longer applies (the order moved on meanwhile) leaves the
recorded decision intact.
"""

import structlog
from protean import handle
from protean.fields import Boolean, DateTime, Identifier, String
from protean.utils.globals import current_domain

from orderflow.approval.approval import ApprovalStatus, PendingApproval
from orderflow.domain import orderflow
from orderflow.order.transitions import RequestTransition
from orderflow.utils.clock import utcnow

logger = structlog.get_logger(__name__)


@orderflow.command(part_of="PendingApproval")
class DecideApproval:
    approval_id = Identifier(required=True)
    actor_id = String(required=True, max_length=255)
    actor_role = String(required=True, max_length=50)
    approved = Boolean(required=True)
    comments = String(max_length=1000, sanitize=False)
    as_of = DateTime()


@orderflow.command(part_of="PendingApproval")
class ExpireApprovals:
    as_of = DateTime()


@orderflow.command_handler(part_of=PendingApproval)
class ApprovalHandler:
    @handle(DecideApproval)
    def decide(self, command):
        repo = current_domain.repository_for(PendingApproval)
        approval = repo.get(command.approval_id)
        now = command.as_of or utcnow()

        if approval.is_pending and approval.is_expired(now):
            approval.expire(now)
            repo.add(approval)
            logger.info("Approval request expired before a decision", approval_id=str(approval.id))
            return approval.status

        approval.decide(
            actor_id=command.actor_id,
            actor_role=command.actor_role,
            approved=command.approved,
            comments=command.comments,
            now=now,
        )
        repo.add(approval)
        logger.info(
            "Approval decided",
            approval_id=str(approval.id),
            order_id=str(approval.order_id),
            status=approval.status,
            actor_id=command.actor_id,
            actor_role=command.actor_role,
        )
        return approval.status

    @handle(ExpireApprovals)
    def expire(self, command):
        repo = current_domain.repository_for(PendingApproval)
        now = command.as_of or utcnow()
        expired = 0
        for approval in repo.pending():
            if approval.is_expired(now) and approval.expire(now):
                repo.add(approval)
                expired += 1
        if expired:
            logger.info("Stale approval requests expired", count=expired)
        return expired


def decide_approval(approval_id, actor_id, actor_role, approved, comments=None, now=None) -> dict:
    """Record a decision and, when approved, carry out the parked transition."""
    status = current_domain.process(
        DecideApproval(
            approval_id=approval_id,
            actor_id=actor_id,
            actor_role=actor_role,
            approved=approved,
            comments=comments,
            as_of=now,
        ),
        asynchronous=False,
    )

    outcome = {"approval_id": str(approval_id), "status": status, "transition": None}
    if status != ApprovalStatus.APPROVED.value:
        return outcome

    approval = current_domain.repository_for(PendingApproval).get(approval_id)
    outcome["transition"] = current_domain.process(
        RequestTransition(
            order_id=str(approval.order_id),
            target_status=approval.to_status,
            actor_id=actor_id,
            actor_role=actor_role,
            reason=approval.reason or f"Approved by {actor_role} {actor_id}",
            approval_id=str(approval.id),
            as_of=now,
        ),
        asynchronous=False,
    )
    return outcome


def expire_approvals(now=None) -> int:
    return current_domain.process(ExpireApprovals(as_of=now), asynchronous=False)
