"""UTC time helpers shared by handlers, the ledger and the worker."""

from datetime import UTC, datetime


def utcnow() -> datetime:
    return datetime.now(UTC)


def ensure_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes (SQLite drops tzinfo on round-trip)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def from_unix(timestamp: int | float | None) -> datetime | None:
    """Convert a processor epoch-seconds field to an aware datetime."""
    if timestamp is None:
        return None
    return datetime.fromtimestamp(timestamp, UTC)
