"""Tests for status mapping and subscription transition rules."""

from datetime import UTC, datetime, timedelta

import pytest

from billing_sync.domain.billing_status import (
    BillingInterval,
    InvoiceStatus,
    SubscriptionStatus,
    can_transition,
    compute_period_end,
    map_invoice_status,
    map_subscription_status,
)

pytestmark = pytest.mark.unit


@pytest.mark.parametrize(
    "remote,expected",
    [
        ("incomplete", SubscriptionStatus.INCOMPLETE),
        ("incomplete_expired", SubscriptionStatus.INCOMPLETE_EXPIRED),
        ("trialing", SubscriptionStatus.TRIALING),
        ("active", SubscriptionStatus.ACTIVE),
        ("past_due", SubscriptionStatus.PAST_DUE),
        ("canceled", SubscriptionStatus.CANCELED),
        ("unpaid", SubscriptionStatus.UNPAID),
        ("paused", SubscriptionStatus.PAUSED),
        ("ACTIVE", SubscriptionStatus.ACTIVE),
    ],
)
def test_map_subscription_status_known_values(remote, expected):
    assert map_subscription_status(remote) == expected


@pytest.mark.parametrize("remote", ["something_new", "", None])
def test_map_subscription_status_unknown_falls_back_to_incomplete(remote):
    assert map_subscription_status(remote) == SubscriptionStatus.INCOMPLETE


def test_map_invoice_status():
    assert map_invoice_status("paid") == InvoiceStatus.PAID
    assert map_invoice_status("uncollectible") == InvoiceStatus.UNCOLLECTIBLE
    assert map_invoice_status("bogus") == InvoiceStatus.DRAFT
    assert map_invoice_status(None) == InvoiceStatus.DRAFT


def test_canceled_is_terminal():
    for target in SubscriptionStatus:
        if target == SubscriptionStatus.CANCELED:
            continue
        assert can_transition(SubscriptionStatus.CANCELED, target) is False
        assert can_transition(SubscriptionStatus.CANCELED, target, recovery=True) is False


def test_incomplete_expired_is_terminal():
    assert can_transition(SubscriptionStatus.INCOMPLETE_EXPIRED, SubscriptionStatus.ACTIVE) is False


def test_same_status_is_always_allowed():
    for status in SubscriptionStatus:
        assert can_transition(status, status) is True


def test_past_due_to_active_requires_recovery():
    assert can_transition(SubscriptionStatus.PAST_DUE, SubscriptionStatus.ACTIVE) is False
    assert can_transition(SubscriptionStatus.PAST_DUE, SubscriptionStatus.ACTIVE, recovery=True) is True


def test_forward_transitions_allowed():
    assert can_transition(SubscriptionStatus.INCOMPLETE, SubscriptionStatus.TRIALING)
    assert can_transition(SubscriptionStatus.INCOMPLETE, SubscriptionStatus.ACTIVE)
    assert can_transition(SubscriptionStatus.ACTIVE, SubscriptionStatus.PAST_DUE)
    assert can_transition(SubscriptionStatus.PAST_DUE, SubscriptionStatus.CANCELED)
    assert can_transition(SubscriptionStatus.TRIALING, SubscriptionStatus.CANCELED)


def test_nothing_moves_back_into_incomplete():
    for current in SubscriptionStatus:
        if current == SubscriptionStatus.INCOMPLETE:
            continue
        assert can_transition(current, SubscriptionStatus.INCOMPLETE) is False
        assert can_transition(current, SubscriptionStatus.INCOMPLETE, recovery=True) is False


def test_transition_accepts_plain_strings():
    assert can_transition("past_due", "active") is False
    assert can_transition("active", "canceled") is True


def test_compute_period_end_month_and_year():
    start = datetime(2026, 1, 1, tzinfo=UTC)
    assert compute_period_end(start, BillingInterval.MONTH) == start + timedelta(days=30)
    assert compute_period_end(start, "year") == start + timedelta(days=365)
    assert compute_period_end(start, "month", interval_count=3) == start + timedelta(days=90)
