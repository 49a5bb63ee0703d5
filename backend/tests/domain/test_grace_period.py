"""Tests for the write-once first-failure marker and grace window boundary."""

from datetime import UTC, datetime, timedelta

import pytest

from billing_sync.domain.grace_period import (
    FIRST_FAILURE_KEY,
    evaluate_grace_period,
    get_first_failure,
    stamp_first_failure,
)

pytestmark = pytest.mark.unit

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


def test_stamp_writes_marker_when_absent():
    metadata, stamped = stamp_first_failure({"other": "x"}, now=T0)

    assert stamped == T0
    assert metadata[FIRST_FAILURE_KEY] == T0.isoformat()
    assert metadata["other"] == "x"


def test_stamp_never_overwrites_existing_marker():
    metadata, _ = stamp_first_failure({}, now=T0)
    later = T0 + timedelta(days=3)

    metadata2, stamped = stamp_first_failure(metadata, now=later)

    assert stamped == T0
    assert metadata2[FIRST_FAILURE_KEY] == T0.isoformat()


def test_stamp_returns_new_dict():
    original = {}
    metadata, _ = stamp_first_failure(original, now=T0)
    assert metadata is not original
    assert original == {}


def test_get_first_failure_handles_missing_and_naive():
    assert get_first_failure(None) is None
    assert get_first_failure({}) is None
    parsed = get_first_failure({FIRST_FAILURE_KEY: "2026-03-01T12:00:00"})
    assert parsed == T0


def test_six_days_is_in_grace():
    decision = evaluate_grace_period(T0, 7, now=T0 + timedelta(days=6))
    assert decision.in_grace_period is True
    assert decision.escalate is False


def test_exactly_seven_days_is_still_in_grace():
    decision = evaluate_grace_period(T0, 7, now=T0 + timedelta(days=7))
    assert decision.days_since_first_failure == 7.0
    assert decision.in_grace_period is True


def test_just_past_seven_days_escalates():
    decision = evaluate_grace_period(T0, 7, now=T0 + timedelta(days=7, seconds=1))
    assert decision.escalate is True


def test_eight_days_escalates():
    decision = evaluate_grace_period(T0, 7, now=T0 + timedelta(days=8))
    assert decision.in_grace_period is False
    assert decision.escalate is True
