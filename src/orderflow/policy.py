"""Lifecycle policy: time windows and retry budgets.

Values are read from ``ORDERFLOW_*`` environment variables, falling back to
the defaults below. Tests swap the active policy with ``set_policy()``.
"""

import os
from dataclasses import dataclass
from datetime import timedelta


def _hours(name: str, default: float) -> timedelta:
    return timedelta(hours=float(os.getenv(name, default)))


def _int(name: str, default: int) -> int:
    return int(os.getenv(name, default))


@dataclass(frozen=True)
class LifecyclePolicy:
    cancel_grace_period: timedelta = timedelta(hours=24)
    min_delivery_delay: timedelta = timedelta(days=1)
    auto_delivery_after: timedelta = timedelta(days=7)
    approval_ttl: timedelta = timedelta(hours=24)
    max_save_attempts: int = 3
    max_job_attempts: int = 5
    max_webhook_retries: int = 5

    @classmethod
    def from_env(cls) -> "LifecyclePolicy":
        return cls(
            cancel_grace_period=_hours("ORDERFLOW_CANCEL_GRACE_HOURS", 24),
            min_delivery_delay=_hours("ORDERFLOW_MIN_DELIVERY_DELAY_HOURS", 24),
            auto_delivery_after=_hours("ORDERFLOW_AUTO_DELIVERY_HOURS", 24 * 7),
            approval_ttl=_hours("ORDERFLOW_APPROVAL_TTL_HOURS", 24),
            max_save_attempts=_int("ORDERFLOW_MAX_SAVE_ATTEMPTS", 3),
            max_job_attempts=_int("ORDERFLOW_MAX_JOB_ATTEMPTS", 5),
            max_webhook_retries=_int("ORDERFLOW_MAX_WEBHOOK_RETRIES", 5),
        )


_current_policy: LifecyclePolicy | None = None


def get_policy() -> LifecyclePolicy:
    """Return the active policy, loading it from the environment on first use."""
    global _current_policy
    if _current_policy is None:
        _current_policy = LifecyclePolicy.from_env()
    return _current_policy


def set_policy(policy: LifecyclePolicy) -> None:
    global _current_policy
    _current_policy = policy


def reset_policy() -> None:
    global _current_policy
    _current_policy = None


_UNITS = {"day": 86400, "hour": 3600, "minute": 60}


def describe_duration(delta: timedelta, unit: str = "hour") -> str:
    """Render a window like ``24 hours`` or ``1 day`` for user-facing messages.

    Uses ``unit`` when the window is a whole number of it, otherwise the next
    smaller unit that divides it evenly, down to minutes.
    """
    seconds = int(delta.total_seconds())
    names = list(_UNITS)
    for name in names[names.index(unit) :]:
        size = _UNITS[name]
        if seconds % size == 0 or name == "minute":
            count = max(seconds // size, 1)
            return f"1 {name}" if count == 1 else f"{count} {name}s"
    return f"{seconds} seconds"
