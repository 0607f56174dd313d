"""PendingApproval aggregate: a status change waiting for a human sign-off.

Cancelling a paid or processing order needs an approval from one of the
required roles. The request is persisted so it survives restarts and is
visible to every service instance. It resolves exactly once: approved by an
authorized actor, rejected, or expired when nobody acts before ``expires_at``.
"""

import json
from enum import Enum

from protean.exceptions import ValidationError
from protean.fields import Boolean, DateTime, HasMany, Identifier, String, Text

from orderflow.domain import orderflow
from orderflow.utils.clock import as_utc, utcnow


class ApprovalStatus(Enum):
    PENDING = "Pending"
    APPROVED = "Approved"
    REJECTED = "Rejected"
    EXPIRED = "Expired"


@orderflow.entity(part_of="PendingApproval")
class ApprovalDecision:
    actor_id = String(required=True, max_length=255)
    actor_role = String(required=True, max_length=50)
    approved = Boolean(required=True)
    comments = String(max_length=1000, sanitize=False)
    decided_at = DateTime(required=True)


@orderflow.aggregate
class PendingApproval:
    order_id = Identifier(required=True)
    from_status = String(required=True, max_length=20)
    to_status = String(required=True, max_length=20)
    requested_by = String(max_length=255)
    requested_role = String(max_length=50)
    reason = String(max_length=1000, sanitize=False)
    required_roles = Text(sanitize=False)  # JSON array of role names
    decisions = HasMany(ApprovalDecision)
    status = String(choices=ApprovalStatus, default=ApprovalStatus.PENDING.value)
    requested_at = DateTime()
    expires_at = DateTime()
    resolved_at = DateTime()

    @classmethod
    def request(cls, order_id, from_status, to_status, required_roles, requested_by, requested_role, reason, ttl, now=None):
        now = now or utcnow()
        return cls(
            order_id=order_id,
            from_status=from_status,
            to_status=to_status,
            requested_by=requested_by,
            requested_role=requested_role,
            reason=reason,
            required_roles=json.dumps(list(required_roles)),
            status=ApprovalStatus.PENDING.value,
            requested_at=now,
            expires_at=now + ttl,
        )

    @property
    def roles(self) -> list[str]:
        return json.loads(self.required_roles) if self.required_roles else []

    @property
    def is_pending(self) -> bool:
        return self.status == ApprovalStatus.PENDING.value

    def is_expired(self, now=None) -> bool:
        now = as_utc(now or utcnow())
        return as_utc(self.expires_at) < now

    def covers(self, order_id, from_status, to_status) -> bool:
        return (
            str(self.order_id) == str(order_id)
            and self.from_status == from_status
            and self.to_status == to_status
        )

    def decide(self, actor_id, actor_role, approved, comments=None, now=None):
        """Record a decision. One decision from a required role resolves the request."""
        if not self.is_pending:
            raise ValidationError({"status": [f"Approval request is already {self.status.lower()}"]})
        if self.is_expired(now):
            raise ValidationError({"status": ["Approval request has expired"]})
        if actor_role not in self.roles:
            raise ValidationError({"actor_role": [f"Role {actor_role} is not authorized to decide this request"]})

        now = now or utcnow()
        self.add_decisions(
            ApprovalDecision(
                actor_id=actor_id,
                actor_role=actor_role,
                approved=approved,
                comments=comments,
                decided_at=now,
            )
        )
        self.status = ApprovalStatus.APPROVED.value if approved else ApprovalStatus.REJECTED.value
        self.resolved_at = now

    def expire(self, now=None):
        if not self.is_pending:
            return False
        self.status = ApprovalStatus.EXPIRED.value
        self.resolved_at = now or utcnow()
        return True


@orderflow.repository(part_of=PendingApproval)
class PendingApprovalRepository:
    def open_for(self, order_id, from_status, to_status) -> PendingApproval | None:
        """The live request for this transition, if one exists."""
        candidates = self._dao.query.filter(order_id=str(order_id), status=ApprovalStatus.PENDING.value).all().items
        return next((a for a in candidates if a.covers(order_id, from_status, to_status)), None)

    def pending(self) -> list[PendingApproval]:
        return self._dao.query.filter(status=ApprovalStatus.PENDING.value).all().items

    def pending_for_role(self, role) -> list[PendingApproval]:
        return [approval for approval in self.pending() if role in approval.roles]
