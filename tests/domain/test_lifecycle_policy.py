"""Tests for lifecycle policy loading and duration wording."""

from datetime import timedelta

import pytest
from orderflow.policy import LifecyclePolicy, describe_duration, get_policy, reset_policy, set_policy


class TestDefaults:
    def test_defaults(self):
        policy = LifecyclePolicy()
        assert policy.cancel_grace_period == timedelta(hours=24)
        assert policy.min_delivery_delay == timedelta(days=1)
        assert policy.auto_delivery_after == timedelta(days=7)
        assert policy.max_save_attempts == 3

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("ORDERFLOW_CANCEL_GRACE_HOURS", "2")
        monkeypatch.setenv("ORDERFLOW_MAX_JOB_ATTEMPTS", "9")
        policy = LifecyclePolicy.from_env()
        assert policy.cancel_grace_period == timedelta(hours=2)
        assert policy.max_job_attempts == 9

    def test_set_and_reset(self):
        custom = LifecyclePolicy(max_save_attempts=1)
        set_policy(custom)
        assert get_policy() is custom
        reset_policy()
        assert get_policy() is not custom


class TestDescribeDuration:
    @pytest.mark.parametrize(
        "delta,unit,expected",
        [
            (timedelta(hours=24), "hour", "24 hours"),
            (timedelta(hours=1), "hour", "1 hour"),
            (timedelta(days=1), "day", "1 day"),
            (timedelta(days=3), "day", "3 days"),
            (timedelta(hours=36), "day", "36 hours"),
            (timedelta(minutes=90), "hour", "90 minutes"),
        ],
    )
    def test_wording(self, delta, unit, expected):
        assert describe_duration(delta, unit) == expected
