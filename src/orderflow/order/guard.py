"""Status transition guard: decides whether an order may move between two statuses.

``evaluate()`` is a pure function. Callers hand it everything it needs in a
``TransitionContext`` (actor role, elapsed times, payment flags, stock
shortfalls) so it never touches storage or the clock.

State machine::

    Pending ──► Paid ──► Processing ──► Shipped ──► Delivered
     │  ▲        │            │
     │  │        ▼            ▼
     │  │    Cancelled    Cancelled     (elevated role + approval)
     │  │
     │  └──── Failed ◄──── Pending      (retry / payment failure)
     ▼
    Cancelled                           (within the grace window)

Delivered and Cancelled are terminal. Any pair not listed in ``_RULES`` is
denied with ``Invalid status transition from X to Y``.
"""

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum

from orderflow.order.order import ELEVATED_ROLES, TERMINAL_STATUSES, ActorRole, OrderStatus
from orderflow.policy import LifecyclePolicy, describe_duration


class SideEffect(Enum):
    RESERVE_STOCK = "ReserveStock"
    RELEASE_STOCK = "ReleaseStock"
    COMMIT_STOCK = "CommitStock"
    SCHEDULE_REFUND = "ScheduleRefund"
    SCHEDULE_AUTO_DELIVERY = "ScheduleAutoDelivery"


@dataclass(frozen=True)
class TransitionContext:
    """Facts about the order and the request, gathered before evaluation."""

    actor_role: str = ActorRole.CUSTOMER.value
    since_created: timedelta = timedelta(0)
    since_shipped: timedelta | None = None
    payment_confirmed: bool = False
    payment_reference_matches: bool = True
    payment_failed: bool = False
    stock_shortfalls: tuple[str, ...] = ()
    tracking_number: str | None = None
    delivery_confirmed: bool = False
    retry_authorized: bool = False
    approval_granted: bool = False
    policy: LifecyclePolicy = field(default_factory=LifecyclePolicy)


@dataclass(frozen=True)
class TransitionDecision:
    allowed: bool
    needs_approval: bool = False
    side_effects: tuple[SideEffect, ...] = ()
    deny_reason: str | None = None
    approval_roles: tuple[str, ...] = ()


@dataclass(frozen=True)
class _Rule:
    description: str
    check: Callable[[TransitionContext], str | None]
    side_effects: tuple[SideEffect, ...] = ()
    approval_roles: tuple[str, ...] = ()

    @property
    def requires_approval(self) -> bool:
        return bool(self.approval_roles)


# ---------------------------------------------------------------------------
# Conditions: each returns a deny reason, or None when satisfied
# ---------------------------------------------------------------------------
def _payment_confirmed(ctx: TransitionContext) -> str | None:
    if not ctx.payment_confirmed:
        return "Payment has not been confirmed"
    if not ctx.payment_reference_matches:
        return "Payment reference does not match this order"
    return None


def _within_cancel_window(ctx: TransitionContext) -> str | None:
    window = ctx.policy.cancel_grace_period
    if ctx.since_created > window:
        return f"Order can only be cancelled within {describe_duration(window)} of creation"
    return None


def _payment_failed(ctx: TransitionContext) -> str | None:
    if not ctx.payment_failed:
        return "No payment failure recorded"
    return None


def _stock_still_held(ctx: TransitionContext) -> str | None:
    if ctx.stock_shortfalls:
        products = ", ".join(ctx.stock_shortfalls)
        return f"Stock is no longer available for one or more items: {products}"
    return None


def _elevated(message: str) -> Callable[[TransitionContext], str | None]:
    def check(ctx: TransitionContext) -> str | None:
        if ctx.actor_role not in ELEVATED_ROLES:
            return message
        return None

    return check


def _has_tracking(ctx: TransitionContext) -> str | None:
    if not ctx.tracking_number or not ctx.tracking_number.strip():
        return "Tracking number is required to mark order as shipped"
    return None


def _delivery_due(ctx: TransitionContext) -> str | None:
    if ctx.delivery_confirmed:
        return None
    minimum = ctx.policy.min_delivery_delay
    if ctx.since_shipped is None or ctx.since_shipped < minimum:
        return f"Order can only be marked as delivered at least {describe_duration(minimum, 'day')} after shipping"
    return None


def _retry_authorized(ctx: TransitionContext) -> str | None:
    if not ctx.retry_authorized:
        return "Payment retry is required"
    return None


_ADMIN = ActorRole.ADMIN.value
_MANAGER = ActorRole.MANAGER.value

_RULES: dict[tuple[OrderStatus, OrderStatus], _Rule] = {
    (OrderStatus.PENDING, OrderStatus.PAID): _Rule(
        "Payment confirmed by the provider",
        _payment_confirmed,
        side_effects=(SideEffect.RESERVE_STOCK,),
    ),
    (OrderStatus.PENDING, OrderStatus.CANCELLED): _Rule(
        "Cancel an unpaid order within the grace window",
        _within_cancel_window,
    ),
    (OrderStatus.PENDING, OrderStatus.FAILED): _Rule(
        "Payment failure reported by the provider",
        _payment_failed,
    ),
    (OrderStatus.PAID, OrderStatus.PROCESSING): _Rule(
        "Start fulfilment while stock is held",
        _stock_still_held,
    ),
    (OrderStatus.PAID, OrderStatus.CANCELLED): _Rule(
        "Cancel a paid order",
        _elevated("Only administrators or managers can cancel paid orders"),
        side_effects=(SideEffect.RELEASE_STOCK, SideEffect.SCHEDULE_REFUND),
        approval_roles=(_ADMIN, _MANAGER),
    ),
    (OrderStatus.PROCESSING, OrderStatus.SHIPPED): _Rule(
        "Hand over to the carrier",
        _has_tracking,
        side_effects=(SideEffect.COMMIT_STOCK, SideEffect.SCHEDULE_AUTO_DELIVERY),
    ),
    (OrderStatus.PROCESSING, OrderStatus.CANCELLED): _Rule(
        "Cancel an order in fulfilment",
        _elevated("Only administrators or managers can cancel processing orders"),
        side_effects=(SideEffect.RELEASE_STOCK, SideEffect.SCHEDULE_REFUND),
        approval_roles=(_ADMIN,),
    ),
    (OrderStatus.SHIPPED, OrderStatus.DELIVERED): _Rule(
        "Confirm delivery",
        _delivery_due,
    ),
    (OrderStatus.FAILED, OrderStatus.PENDING): _Rule(
        "Retry payment",
        _retry_authorized,
    ),
}

_VALID_TRANSITIONS: dict[OrderStatus, set[OrderStatus]] = {status: set() for status in OrderStatus}
for _from, _to in _RULES:
    _VALID_TRANSITIONS[_from].add(_to)


def _denied(reason: str) -> TransitionDecision:
    return TransitionDecision(allowed=False, deny_reason=reason)


def evaluate(current, target, context: TransitionContext | None = None) -> TransitionDecision:
    """Decide whether ``current -> target`` may happen in ``context``.

    Returns an allowed decision with the side effects the caller must carry
    out, a decision flagged ``needs_approval`` when the conditions hold but a
    sign-off is still missing, or a denial with a stable reason string.
    """
    current = OrderStatus(current)
    target = OrderStatus(target)
    context = context or TransitionContext()

    rule = _RULES.get((current, target))
    if rule is None:
        reason = f"Invalid status transition from {current.value} to {target.value}"
        if current in TERMINAL_STATUSES:
            reason = f"{reason}: {current.value} is a terminal status"
        return _denied(reason)

    failure = rule.check(context)
    if failure is not None:
        return _denied(failure)

    return TransitionDecision(
        allowed=True,
        needs_approval=rule.requires_approval and not context.approval_granted,
        side_effects=rule.side_effects,
        approval_roles=rule.approval_roles,
    )


def valid_targets(current) -> list[OrderStatus]:
    """Statuses reachable from ``current`` in one step, in declaration order."""
    reachable = _VALID_TRANSITIONS[OrderStatus(current)]
    return [status for status in OrderStatus if status in reachable]


def requirements(current, target) -> dict | None:
    """Describe what a transition needs, or None when the pair is not allowed."""
    rule = _RULES.get((OrderStatus(current), OrderStatus(target)))
    if rule is None:
        return None
    return {
        "description": rule.description,
        "requires_approval": rule.requires_approval,
        "approval_roles": list(rule.approval_roles),
        "side_effects": [effect.value for effect in rule.side_effects],
    }
