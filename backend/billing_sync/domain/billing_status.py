"""Billing status enums, processor status mapping and subscription transitions.

Pure domain logic with no external dependencies.
"""

from datetime import datetime, timedelta
from enum import Enum


class SubscriptionStatus(str, Enum):
    """Local subscription lifecycle states."""

    INCOMPLETE = "incomplete"
    INCOMPLETE_EXPIRED = "incomplete_expired"
    TRIALING = "trialing"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    UNPAID = "unpaid"
    PAUSED = "paused"


class InvoiceStatus(str, Enum):
    """Local invoice lifecycle states."""

    DRAFT = "draft"
    OPEN = "open"
    PAID = "paid"
    UNCOLLECTIBLE = "uncollectible"
    VOID = "void"


class WebhookEventStatus(str, Enum):
    """Ledger states for a received webhook event."""

    QUEUED = "queued"
    PROCESSING = "processing"
    PROCESSED = "processed"
    FAILED = "failed"
    RETRYING = "retrying"


class BillingInterval(str, Enum):
    MONTH = "month"
    YEAR = "year"


# Billing period length per interval unit
INTERVAL_DAYS = {
    BillingInterval.MONTH: 30,
    BillingInterval.YEAR: 365,
}

# Subscriptions in these states block customer deletion
LIVE_SUBSCRIPTION_STATUSES = (SubscriptionStatus.ACTIVE, SubscriptionStatus.TRIALING)

TERMINAL_SUBSCRIPTION_STATUSES = frozenset(
    {SubscriptionStatus.CANCELED, SubscriptionStatus.INCOMPLETE_EXPIRED}
)


def map_subscription_status(remote: str | None) -> SubscriptionStatus:
    """Map a processor subscription status to the local enum.

    Unknown or missing values map to INCOMPLETE.
    """
    try:
        return SubscriptionStatus((remote or "").lower())
    except ValueError:
        return SubscriptionStatus.INCOMPLETE


def map_invoice_status(remote: str | None) -> InvoiceStatus:
    """Map a processor invoice status to the local enum. Unknown values map to DRAFT."""
    try:
        return InvoiceStatus((remote or "").lower())
    except ValueError:
        return InvoiceStatus.DRAFT


def can_transition(
    current: SubscriptionStatus,
    target: SubscriptionStatus,
    recovery: bool = False,
) -> bool:
    """Return True if a subscription may move from ``current`` to ``target``.

    Rules:
        - Same status is always allowed (idempotent re-application)
        - CANCELED and INCOMPLETE_EXPIRED are terminal
        - INCOMPLETE is an entry state only; nothing moves back into it
        - PAST_DUE -> ACTIVE only on a recovery signal (invoice paid)
        - Everything else mirrors the processor
    """
    current = SubscriptionStatus(current)
    target = SubscriptionStatus(target)

    if current == target:
        return True
    if current in TERMINAL_SUBSCRIPTION_STATUSES:
        return False
    if target == SubscriptionStatus.INCOMPLETE:
        return False
    if current == SubscriptionStatus.PAST_DUE and target == SubscriptionStatus.ACTIVE:
        return recovery
    return True


def compute_period_end(
    start: datetime,
    interval: BillingInterval | str,
    interval_count: int = 1,
) -> datetime:
    """End of a billing period starting at ``start`` for the given plan interval."""
    days = INTERVAL_DAYS[BillingInterval(interval)]
    return start + timedelta(days=days * max(interval_count, 1))
