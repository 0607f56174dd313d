"""Order lifecycle engine: the only writer of order status.

``request_transition()`` loads the order, gathers the facts the guard needs,
asks ``guard.evaluate()`` and then either

- returns ``Unchanged`` when the order is already in the target status, so
  replays and scheduled re-runs are harmless;
- raises ``InvalidTransition`` with the guard's reason;
- parks the request as a ``PendingApproval`` and returns ``ApprovalRequired``;
- or applies the side effects, appends history and saves the order.

Stock movements happen before the order is saved and are compensated if
anything later in the same call fails. Stock commits and scheduled jobs are
written after the order, inside the same unit of work. A version conflict on
the order reloads it and starts over, up to the policy's attempt budget.
"""

from contextlib import nullcontext
from dataclasses import dataclass, field
from enum import Enum

import structlog
from protean import UnitOfWork
from protean.exceptions import ExpectedVersionError, ObjectNotFoundError
from protean.utils.globals import current_domain, current_uow

from orderflow.approval.approval import ApprovalStatus, PendingApproval
from orderflow.errors import ConcurrentModification, InvalidTransition, UnknownOrder
from orderflow.inventory.ledger import InventoryLedger
from orderflow.order.guard import SideEffect, TransitionContext, TransitionDecision, evaluate
from orderflow.order.order import ActorRole, Order, OrderStatus
from orderflow.policy import LifecyclePolicy, get_policy
from orderflow.scheduling.job import JobKind, ScheduledJob, auto_delivery_key, refund_key, schedule_job
from orderflow.utils.clock import as_utc, utcnow

logger = structlog.get_logger(__name__)


class TransitionOutcome(Enum):
    APPLIED = "Applied"
    APPROVAL_REQUIRED = "ApprovalRequired"
    UNCHANGED = "Unchanged"


@dataclass(frozen=True)
class Actor:
    """Who asked for a change and in which role."""

    actor_id: str
    role: str = ActorRole.CUSTOMER.value

    @classmethod
    def system(cls, name: str = "system") -> "Actor":
        return cls(actor_id=name, role=ActorRole.SYSTEM.value)


@dataclass(frozen=True)
class TransitionResult:
    order_id: str
    outcome: TransitionOutcome
    from_status: str
    to_status: str
    approval_id: str | None = None
    side_effects: tuple[str, ...] = field(default_factory=tuple)

    @property
    def applied(self) -> bool:
        return self.outcome == TransitionOutcome.APPLIED

    def to_dict(self) -> dict:
        return {
            "order_id": self.order_id,
            "outcome": self.outcome.value,
            "from_status": self.from_status,
            "to_status": self.to_status,
            "approval_id": self.approval_id,
            "side_effects": list(self.side_effects),
        }


def _unit_of_work():
    """A new unit of work, unless the caller already runs inside one."""
    if current_uow and current_uow.in_progress:
        return nullcontext()
    return UnitOfWork()


class OrderLifecycleEngine:
    def __init__(self, ledger: InventoryLedger | None = None, policy: LifecyclePolicy | None = None) -> None:
        self.policy = policy or get_policy()
        self.ledger = ledger or InventoryLedger(max_attempts=self.policy.max_save_attempts)

    @property
    def orders(self):
        return current_domain.repository_for(Order)

    def load(self, order_id) -> Order:
        try:
            return self.orders.get(str(order_id))
        except ObjectNotFoundError as exc:
            raise UnknownOrder(str(order_id)) from exc

    # -------------------------------------------------------------------
    # Status transitions
    # -------------------------------------------------------------------
    def request_transition(
        self,
        order_id,
        target,
        actor: Actor,
        reason: str | None = None,
        *,
        payment_confirmed: bool = False,
        payment_reference: str | None = None,
        payment_provider: str | None = None,
        payment_failed: bool = False,
        delivery_confirmed: bool = False,
        retry_authorized: bool = False,
        approval_id: str | None = None,
        now=None,
    ) -> TransitionResult:
        target = OrderStatus(target)
        now = as_utc(now or utcnow())
        facts = {
            "payment_confirmed": payment_confirmed,
            "payment_reference": payment_reference,
            "payment_provider": payment_provider,
            "payment_failed": payment_failed,
            "delivery_confirmed": delivery_confirmed,
            "retry_authorized": retry_authorized,
        }

        for attempt in range(1, self.policy.max_save_attempts + 1):
            try:
                with _unit_of_work():
                    return self._transition_once(order_id, target, actor, reason, facts, approval_id, now)
            except ExpectedVersionError:
                logger.warning(
                    "Order changed concurrently, reloading",
                    order_id=str(order_id),
                    target=target.value,
                    attempt=attempt,
                )

        raise ConcurrentModification("Order", str(order_id), self.policy.max_save_attempts)

    def _transition_once(self, order_id, target, actor, reason, facts, approval_id, now) -> TransitionResult:
        order = self.load(order_id)
        current = OrderStatus(order.status)

        if current == target:
            logger.info("Order already in requested status", order_id=str(order.id), status=current.value)
            return TransitionResult(str(order.id), TransitionOutcome.UNCHANGED, current.value, target.value)

        approval_granted = False
        if approval_id:
            self._check_approval(approval_id, order, current, target)
            approval_granted = True

        context = self._context(order, current, target, actor, now, facts, approval_granted)
        decision = evaluate(current, target, context)

        if not decision.allowed:
            logger.info(
                "Transition denied",
                order_id=str(order.id),
                from_status=current.value,
                to_status=target.value,
                reason=decision.deny_reason,
            )
            raise InvalidTransition(current.value, target.value, decision.deny_reason)

        if decision.needs_approval:
            return self._park_for_approval(order, current, target, actor, reason, decision, now)

        return self._apply(order, current, target, actor, reason, decision, facts, now)

    def _context(self, order, current, target, actor, now, facts, approval_granted) -> TransitionContext:
        shipped_at = order.entered_status_at(OrderStatus.SHIPPED)
        reference = facts["payment_reference"]

        shortfalls = ()
        if current == OrderStatus.PAID and target == OrderStatus.PROCESSING:
            shortfalls = tuple(
                str(item.product_id)
                for item in order.items
                if self.ledger.held_for(item.product_id, order.line_key(item)) < item.quantity
            )

        return TransitionContext(
            actor_role=actor.role,
            since_created=now - as_utc(order.created_at),
            since_shipped=(now - shipped_at) if shipped_at else None,
            payment_confirmed=facts["payment_confirmed"],
            payment_reference_matches=(
                not reference or not order.payment_reference or reference == order.payment_reference
            ),
            payment_failed=facts["payment_failed"],
            stock_shortfalls=shortfalls,
            tracking_number=order.tracking_number,
            delivery_confirmed=facts["delivery_confirmed"],
            retry_authorized=facts["retry_authorized"],
            approval_granted=approval_granted,
            policy=self.policy,
        )

    def _check_approval(self, approval_id, order, current, target) -> None:
        try:
            approval = current_domain.repository_for(PendingApproval).get(approval_id)
        except ObjectNotFoundError as exc:
            raise InvalidTransition(current.value, target.value, f"Approval {approval_id} does not exist") from exc

        if approval.status != ApprovalStatus.APPROVED.value or not approval.covers(
            order.id, current.value, target.value
        ):
            raise InvalidTransition(
                current.value,
                target.value,
                f"Approval {approval_id} does not authorize this transition",
            )

    def _park_for_approval(self, order, current, target, actor, reason, decision, now) -> TransitionResult:
        repo = current_domain.repository_for(PendingApproval)
        approval = repo.open_for(order.id, current.value, target.value)

        if approval is not None and approval.is_expired(now):
            approval.expire(now)
            repo.add(approval)
            approval = None

        if approval is None:
            approval = PendingApproval.request(
                order_id=str(order.id),
                from_status=current.value,
                to_status=target.value,
                required_roles=decision.approval_roles,
                requested_by=actor.actor_id,
                requested_role=actor.role,
                reason=reason,
                ttl=self.policy.approval_ttl,
                now=now,
            )
            repo.add(approval)
            logger.info(
                "Transition awaiting approval",
                order_id=str(order.id),
                from_status=current.value,
                to_status=target.value,
                approval_id=str(approval.id),
                required_roles=list(decision.approval_roles),
            )

        return TransitionResult(
            str(order.id),
            TransitionOutcome.APPROVAL_REQUIRED,
            current.value,
            target.value,
            approval_id=str(approval.id),
        )

    def _apply(self, order, current, target, actor, reason, decision: TransitionDecision, facts, now):
        effects = decision.side_effects
        compensations = []

        try:
            if SideEffect.RESERVE_STOCK in effects:
                self._reserve_all(order, now, compensations)
            if SideEffect.RELEASE_STOCK in effects:
                self._release_all(order, now, compensations)

            if target == OrderStatus.PAID and facts["payment_reference"] and not order.payment_reference:
                order.attach_payment_reference(
                    facts["payment_provider"] or order.payment_provider or "unknown",
                    facts["payment_reference"],
                    at=now,
                )

            order.apply_transition(target, reason=reason, actor_id=actor.actor_id, actor_role=actor.role, at=now)
            self.orders.add(order)

            if SideEffect.COMMIT_STOCK in effects:
                for item in order.items:
                    self.ledger.commit(item.product_id, order.line_key(item), at=now)
            if SideEffect.SCHEDULE_REFUND in effects:
                self.schedule_refund(order, reason=f"Refund for {target.value.lower()} order", now=now)
            if SideEffect.SCHEDULE_AUTO_DELIVERY in effects:
                schedule_job(
                    auto_delivery_key(order.id),
                    JobKind.AUTO_DELIVER,
                    order.id,
                    now + self.policy.auto_delivery_after,
                    target_status=OrderStatus.DELIVERED.value,
                    reason="Automatic delivery confirmation",
                )
        except Exception:
            self._compensate(order, compensations)
            raise

        logger.info(
            "Order status changed",
            order_id=str(order.id),
            order_number=order.order_number,
            from_status=current.value,
            to_status=target.value,
            actor_id=actor.actor_id,
            actor_role=actor.role,
        )
        return TransitionResult(
            str(order.id),
            TransitionOutcome.APPLIED,
            current.value,
            target.value,
            side_effects=tuple(effect.value for effect in effects),
        )

    # -------------------------------------------------------------------
    # Side effects
    # -------------------------------------------------------------------
    def _reserve_all(self, order, now, compensations) -> None:
        for item in order.items:
            key = order.line_key(item)
            if self.ledger.reserve(item.product_id, item.quantity, key, order_id=str(order.id), at=now):
                compensations.append(
                    lambda product_id=item.product_id, quantity=item.quantity, key=key: self.ledger.release(
                        product_id, quantity, key
                    )
                )

    def _release_all(self, order, now, compensations) -> None:
        for item in order.items:
            key = order.line_key(item)
            released = self.ledger.release(item.product_id, item.quantity, key, at=now)
            if released:
                compensations.append(
                    lambda product_id=item.product_id, quantity=released, key=key: self.ledger.reserve(
                        product_id, quantity, key, order_id=str(order.id)
                    )
                )

    def _compensate(self, order, compensations) -> None:
        for undo in reversed(compensations):
            try:
                undo()
            except Exception:
                logger.exception("Compensation failed", order_id=str(order.id))

    def schedule_refund(self, order, reason, payment_reference=None, provider=None, now=None) -> ScheduledJob:
        """Queue a refund of the order's captured payment for the job worker."""
        reference = payment_reference or order.payment_reference
        return schedule_job(
            refund_key(order.id, reference),
            JobKind.REFUND,
            order.id,
            now or utcnow(),
            provider=provider or order.payment_provider,
            payment_reference=reference,
            reason=reason,
        )

    # -------------------------------------------------------------------
    # Non-status changes
    # -------------------------------------------------------------------
    def _mutate(self, order_id, change):
        for attempt in range(1, self.policy.max_save_attempts + 1):
            order = self.load(order_id)
            result = change(order)
            try:
                self.orders.add(order)
                return result
            except ExpectedVersionError:
                logger.warning("Order changed concurrently, reloading", order_id=str(order_id), attempt=attempt)
        raise ConcurrentModification("Order", str(order_id), self.policy.max_save_attempts)

    def attach_payment_reference(self, order_id, provider, reference, now=None) -> bool:
        attached = self._mutate(order_id, lambda order: order.attach_payment_reference(provider, reference, at=now))
        if attached:
            logger.info("Payment reference attached", order_id=str(order_id), provider=provider)
        return attached

    def attach_tracking(self, order_id, tracking_number, carrier=None, now=None) -> None:
        self._mutate(order_id, lambda order: order.attach_tracking(tracking_number, carrier=carrier, at=now))
        logger.info("Tracking attached", order_id=str(order_id), tracking_number=tracking_number)

    def flag_for_attention(self, order_id, reason, source=None, now=None) -> None:
        self._mutate(order_id, lambda order: order.flag_for_attention(reason, source=source, at=now))
        logger.warning("Order flagged for manual review", order_id=str(order_id), reason=reason, source=source)

    def clear_attention(self, order_id) -> None:
        self._mutate(order_id, lambda order: order.clear_attention())
        logger.info("Order review flag cleared", order_id=str(order_id))
