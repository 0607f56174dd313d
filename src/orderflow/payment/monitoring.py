"""Webhook monitoring: failed events, summary counts and a health verdict."""

from collections import Counter
from datetime import timedelta

from protean.utils.globals import current_domain

from orderflow.payment.payment_event import PaymentEvent, PaymentEventOutcome
from orderflow.policy import get_policy
from orderflow.utils.clock import as_utc, utcnow

HEALTHY_RATE = 95.0
DEGRADED_RATE = 85.0


def _events() -> list[PaymentEvent]:
    return current_domain.repository_for(PaymentEvent).everything()


def failed_events() -> list[dict]:
    """Events that errored and are still waiting to be processed."""
    max_retries = get_policy().max_webhook_retries
    failed = [
        event
        for event in current_domain.repository_for(PaymentEvent).unprocessed()
        if event.outcome == PaymentEventOutcome.ERRORED.value
    ]
    failed.sort(key=lambda event: as_utc(event.received_at))
    return [
        {
            "event_key": event.event_key,
            "provider": event.provider,
            "event_type": event.event_type,
            "order_id": event.order_id,
            "last_error": event.last_error,
            "retry_count": event.retry_count or 0,
            "can_retry": event.can_retry(max_retries),
            "received_at": event.received_at.isoformat() if event.received_at else None,
        }
        for event in failed
    ]


def event_summary() -> dict:
    events = _events()
    return {
        "total": len(events),
        "processed": sum(1 for event in events if event.processed),
        "unprocessed": sum(1 for event in events if not event.processed),
        "by_type": dict(Counter(event.event_type for event in events)),
        "by_provider": dict(Counter(event.provider for event in events)),
        "by_outcome": dict(Counter(event.outcome for event in events)),
    }


def webhook_health(now=None, window: timedelta = timedelta(hours=1)) -> dict:
    """Share of events received within ``window`` that were processed.

    95% or better is healthy, 85% or better degraded, anything lower
    unhealthy. An empty window counts as healthy.
    """
    now = as_utc(now or utcnow())
    since = now - window
    recent = [event for event in _events() if event.received_at and as_utc(event.received_at) >= since]
    processed = sum(1 for event in recent if event.processed)
    rate = round(processed / len(recent) * 100, 2) if recent else 100.0

    if rate >= HEALTHY_RATE:
        status = "healthy"
    elif rate >= DEGRADED_RATE:
        status = "degraded"
    else:
        status = "unhealthy"

    return {
        "status": status,
        "success_rate": rate,
        "received": len(recent),
        "processed": processed,
        "failed": len(recent) - processed,
        "window_minutes": int(window.total_seconds() // 60),
    }
