"""WebhookEvent model: idempotency ledger for inbound processor events."""

import uuid
from datetime import UTC, datetime

from sqlalchemy import JSON, Column, DateTime, Integer, String, Text, Uuid

from billing_sync.db.base import Base
from billing_sync.domain.billing_status import WebhookEventStatus


class WebhookEvent(Base):
    """One row per external event id. Never deleted; kept for audit and replay.

    The unique constraint on ``event_id`` is what guarantees a single enqueue
    per external event, even when two deliveries race.
    """

    __tablename__ = "webhook_events"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    event_id = Column(String(255), unique=True, nullable=False, index=True)
    event_type = Column(String(255), nullable=False, index=True)

    # WebhookEventStatus value
    status = Column(String(20), nullable=False, default=WebhookEventStatus.QUEUED.value, index=True)

    # Full signed envelope as received, for reprocessing
    raw_payload = Column(JSON, nullable=False)

    error_message = Column(Text, nullable=True)
    retry_count = Column(Integer, nullable=False, default=0)
    processed_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC))
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )
