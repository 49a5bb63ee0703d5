"""Base class for reconciliation handlers.

Each handler runs inside one database session. The session is committed only
when the handler reports success; any other outcome, or an exception, rolls
back. Notifications collected during the handler are scheduled after the
commit so a rolled-back handler never emails anyone.
"""

import asyncio
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from billing_sync.core.clock import ensure_utc
from billing_sync.core.config import Settings
from billing_sync.core.exceptions import ProcessorTransientError
from billing_sync.services.notifications import NotificationDispatcher
from billing_sync.services.processor_client import ProcessorClient
from billing_sync.webhooks.envelope import HandlerResult, WebhookEnvelope

logger = structlog.get_logger(__name__)

# Exceptions worth another attempt of the whole event
TRANSIENT_EXCEPTIONS = (
    SQLAlchemyError,
    TimeoutError,
    ConnectionError,
    ProcessorTransientError,
)


def assign(obj, attr: str, value, changes: list[str]) -> bool:
    """Set ``obj.attr`` to ``value`` and record the field name if it differs."""
    current = getattr(obj, attr)
    if isinstance(current, datetime) or isinstance(value, datetime):
        same = ensure_utc(current) == ensure_utc(value)
    else:
        same = current == value
    if same:
        return False
    setattr(obj, attr, value)
    changes.append(attr)
    return True


@dataclass
class HandlerContext:
    """Per-invocation state handed to ``handle_core``."""

    session: AsyncSession
    log: structlog.stdlib.BoundLogger
    pending_notifications: list[tuple[str, Callable[[], Awaitable[None]]]] = field(default_factory=list)

    def notify(self, kind: str, send: Callable[[], Awaitable[None]]) -> None:
        """Queue a notification to be sent once the transaction commits."""
        self.pending_notifications.append((kind, send))


class WebhookHandler(ABC):
    """One handler per processor event type."""

    event_type: str = ""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        notifications: NotificationDispatcher,
        settings: Settings,
        client: ProcessorClient | None = None,
    ):
        self.session_factory = session_factory
        self.notifications = notifications
        self.settings = settings
        self.client = client

    async def handle(self, envelope: WebhookEnvelope) -> HandlerResult:
        log = logger.bind(event_id=envelope.id, event_type=envelope.type, handler=type(self).__name__)
        ctx: HandlerContext | None = None

        try:
            async with self.session_factory() as session:
                ctx = HandlerContext(session=session, log=log)
                result = await self.handle_core(envelope, ctx)
                if result.success:
                    await session.commit()
                else:
                    await session.rollback()
        except asyncio.CancelledError:
            log.warning("webhook_handler_cancelled")
            raise
        except TRANSIENT_EXCEPTIONS as exc:
            log.warning("webhook_handler_transient_error", error=str(exc), error_type=type(exc).__name__)
            return HandlerResult.retry(f"{type(exc).__name__}: {exc}")
        except Exception as exc:
            log.error(
                "webhook_handler_error",
                error=str(exc),
                error_type=type(exc).__name__,
                exc_info=True,
            )
            return HandlerResult.fail(f"{type(exc).__name__}: {exc}")

        if result.success and ctx is not None:
            for kind, send in ctx.pending_notifications:
                self.notifications.schedule(send, kind)

        log.info(
            "webhook_handler_finished",
            outcome=result.outcome.value,
            message=result.message,
        )
        return result

    @abstractmethod
    async def handle_core(self, envelope: WebhookEnvelope, ctx: HandlerContext) -> HandlerResult:
        """Apply the event to local state. Must be safe to run more than once."""
