"""Payment-failure grace period tracking.

The first failure timestamp lives in the invoice's metadata under
``first_failure_date``. It is written once and only read afterwards, so repeated
failures inside the window are always measured from the original failure.
"""

from dataclasses import dataclass
from datetime import datetime

from billing_sync.core.clock import ensure_utc, utcnow

FIRST_FAILURE_KEY = "first_failure_date"

SECONDS_PER_DAY = 86_400


@dataclass(frozen=True)
class GraceDecision:
    """Outcome of evaluating a payment failure against the grace window."""

    first_failure_at: datetime
    days_since_first_failure: float
    grace_period_days: int

    @property
    def in_grace_period(self) -> bool:
        # Boundary: exactly grace_period_days is still inside the window
        return self.days_since_first_failure <= self.grace_period_days

    @property
    def escalate(self) -> bool:
        return not self.in_grace_period


def get_first_failure(metadata: dict | None) -> datetime | None:
    """Read the first-failure marker, or None if it has never been stamped."""
    raw = (metadata or {}).get(FIRST_FAILURE_KEY)
    if not raw:
        return None
    return ensure_utc(datetime.fromisoformat(raw))


def stamp_first_failure(metadata: dict | None, now: datetime | None = None) -> tuple[dict, datetime]:
    """Return metadata carrying the first-failure marker and the marker value.

    An existing marker is never overwritten. A new dict is returned so that
    SQLAlchemy sees the JSON column as changed.
    """
    updated = dict(metadata or {})
    existing = get_first_failure(updated)
    if existing is not None:
        return updated, existing

    stamped = ensure_utc(now) if now is not None else utcnow()
    updated[FIRST_FAILURE_KEY] = stamped.isoformat()
    return updated, stamped


def evaluate_grace_period(
    first_failure_at: datetime,
    grace_period_days: int,
    now: datetime | None = None,
) -> GraceDecision:
    """Compare elapsed time since the first failure with the grace window."""
    now = ensure_utc(now) if now is not None else utcnow()
    elapsed = (now - ensure_utc(first_failure_at)).total_seconds() / SECONDS_PER_DAY
    return GraceDecision(
        first_failure_at=ensure_utc(first_failure_at),
        days_since_first_failure=elapsed,
        grace_period_days=grace_period_days,
    )
