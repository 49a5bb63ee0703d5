"""Idempotency ledger backed by the webhook_events table."""

from datetime import datetime, timedelta

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from billing_sync.core.clock import utcnow
from billing_sync.db.models import WebhookEvent
from billing_sync.domain.billing_status import WebhookEventStatus

logger = structlog.get_logger(__name__)

# Rows in these states still owe a queue entry
PENDING_STATUSES = (
    WebhookEventStatus.QUEUED,
    WebhookEventStatus.PROCESSING,
    WebhookEventStatus.RETRYING,
)


class IdempotencyLedger:
    """Durable event-id -> processing status map.

    Each operation runs in its own short session so ledger writes never share
    a transaction with handler mutations.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def get(self, event_id: str) -> WebhookEvent | None:
        async with self._session_factory() as session:
            result = await session.execute(select(WebhookEvent).where(WebhookEvent.event_id == event_id))
            return result.scalar_one_or_none()

    async def has_processed(self, event_id: str) -> bool:
        """True if the event has been recorded at all (any status)."""
        return await self.get(event_id) is not None

    async def get_queued_by_id(self, event_id: str) -> WebhookEvent | None:
        """Ledger row for a job about to run, or None.

        Rows in every status are returned; the job runner decides what to do
        with terminal ones.
        """
        return await self.get(event_id)

    async def mark_queued(self, event_id: str, event_type: str, raw_payload: dict) -> bool:
        """Insert a QUEUED row. Returns False if the event id already exists.

        The unique constraint on event_id is the only synchronization point
        between concurrent deliveries of the same event.
        """
        async with self._session_factory() as session:
            try:
                session.add(
                    WebhookEvent(
                        event_id=event_id,
                        event_type=event_type,
                        status=WebhookEventStatus.QUEUED.value,
                        raw_payload=raw_payload,
                    )
                )
                await session.commit()
                return True
            except IntegrityError:
                await session.rollback()
                logger.info("webhook_event_already_recorded", event_id=event_id)
                return False

    async def update_status(
        self,
        event_id: str,
        event_type: str,
        status: WebhookEventStatus,
        error: str | None = None,
    ) -> WebhookEvent | None:
        """Move an event to ``status``.

        FAILED increments retry_count. PROCESSED stamps processed_at and clears
        the error message.
        """
        status = WebhookEventStatus(status)
        async with self._session_factory() as session:
            result = await session.execute(select(WebhookEvent).where(WebhookEvent.event_id == event_id))
            record = result.scalar_one_or_none()
            if record is None:
                logger.warning("webhook_event_status_update_missing", event_id=event_id, status=status.value)
                return None

            previous = record.status
            record.status = status.value
            record.event_type = event_type or record.event_type
            if status == WebhookEventStatus.FAILED:
                record.retry_count = (record.retry_count or 0) + 1
                record.error_message = error
            elif status == WebhookEventStatus.PROCESSED:
                record.processed_at = utcnow()
                record.error_message = None
            elif error is not None:
                record.error_message = error

            await session.commit()

        logger.debug(
            "webhook_event_status_updated",
            event_id=event_id,
            from_status=previous,
            to_status=status.value,
        )
        return record

    async def list_failed(self, limit: int = 100, event_ids: list[str] | None = None) -> list[WebhookEvent]:
        """FAILED rows, oldest first, for operator replay.

        With ``event_ids`` only those rows are returned and ``limit`` is ignored.
        """
        stmt = (
            select(WebhookEvent)
            .where(WebhookEvent.status == WebhookEventStatus.FAILED.value)
            .order_by(WebhookEvent.created_at)
        )
        if event_ids is not None:
            stmt = stmt.where(WebhookEvent.event_id.in_(event_ids))
        else:
            stmt = stmt.limit(limit)

        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def list_stale(self, older_than_seconds: int, now: datetime | None = None) -> list[WebhookEvent]:
        """Pending rows whose last update is older than the threshold."""
        now = now or utcnow()
        cutoff = now - timedelta(seconds=older_than_seconds)
        async with self._session_factory() as session:
            result = await session.execute(
                select(WebhookEvent)
                .where(
                    WebhookEvent.status.in_([s.value for s in PENDING_STATUSES]),
                    WebhookEvent.updated_at < cutoff,
                )
                .order_by(WebhookEvent.updated_at)
            )
            return list(result.scalars().all())
