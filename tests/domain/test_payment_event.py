"""Tests for the PaymentEvent record: processing outcome, errors and retry budget."""

import pytest
from orderflow.gateway.port import PaymentEventType, ProviderEvent
from orderflow.payment.payment_event import PaymentEvent, PaymentEventOutcome
from protean.exceptions import ValidationError


def _event():
    provider_event = ProviderEvent(
        provider="stripe",
        event_id="evt_1",
        event_type=PaymentEventType.SUCCEEDED,
        provider_type="payment_intent.succeeded",
        order_id="ord-001",
        payment_reference="pi_1",
        amount=3500,
        currency="USD",
    )
    return PaymentEvent.record(provider_event, payload="{}")


class TestRecord:
    def test_key_combines_provider_and_event_id(self):
        event = _event()
        assert event.event_key == "stripe:evt_1"
        assert event.event_type == "succeeded"
        assert event.processed is False
        assert event.outcome == PaymentEventOutcome.RECEIVED.value


class TestProcessing:
    def test_mark_processed(self):
        event = _event()
        event.mark_processed(PaymentEventOutcome.APPLIED, "Pending -> Paid")
        assert event.processed is True
        assert event.outcome == "Applied"
        assert event.outcome_detail == "Pending -> Paid"

    def test_processed_only_once(self):
        event = _event()
        event.mark_processed(PaymentEventOutcome.APPLIED)
        with pytest.raises(ValidationError):
            event.mark_processed(PaymentEventOutcome.IGNORED)

    def test_mark_errored_keeps_event_open(self):
        event = _event()
        event.mark_errored(RuntimeError("database unavailable"))
        assert event.processed is False
        assert event.outcome == "Errored"
        assert event.last_error == "database unavailable"

    def test_processing_clears_last_error(self):
        event = _event()
        event.mark_errored("boom")
        event.mark_processed(PaymentEventOutcome.APPLIED)
        assert event.last_error is None


class TestRetryBudget:
    def test_retry_counts(self):
        event = _event()
        event.register_retry(max_retries=2)
        assert event.retry_count == 1

    def test_retry_limit(self):
        event = _event()
        event.register_retry(max_retries=1)
        assert event.can_retry(1) is False
        with pytest.raises(ValidationError) as exc:
            event.register_retry(max_retries=1)
        assert exc.value.messages["retry_count"] == ["Retry limit of 1 reached"]

    def test_processed_event_cannot_be_retried(self):
        event = _event()
        event.mark_processed(PaymentEventOutcome.APPLIED)
        with pytest.raises(ValidationError):
            event.register_retry(max_retries=5)
