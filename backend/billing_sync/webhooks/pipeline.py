"""Wires ledger, queue, receiver, dispatcher, job runner and worker together."""

from dataclasses import dataclass

from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from billing_sync.core.config import Settings
from billing_sync.queue.manager import WebhookQueue
from billing_sync.queue.schemas import RetryPolicy
from billing_sync.queue.worker import WebhookWorker
from billing_sync.services.notifications import (
    LoggingNotificationSender,
    NotificationDispatcher,
    NotificationSender,
)
from billing_sync.services.processor_client import ProcessorClient
from billing_sync.webhooks.dispatcher import EventDispatcher
from billing_sync.webhooks.handlers import build_handler_registry
from billing_sync.webhooks.job import WebhookJobRunner
from billing_sync.webhooks.ledger import IdempotencyLedger
from billing_sync.webhooks.receiver import WebhookReceiver


@dataclass
class WebhookPipeline:
    ledger: IdempotencyLedger
    queue: WebhookQueue
    receiver: WebhookReceiver
    dispatcher: EventDispatcher
    runner: WebhookJobRunner
    worker: WebhookWorker
    notifications: NotificationDispatcher


def build_pipeline(
    session_factory: async_sessionmaker[AsyncSession],
    redis: Redis,
    settings: Settings,
    sender: NotificationSender | None = None,
    client: ProcessorClient | None = None,
) -> WebhookPipeline:
    if client is None and settings.stripe_secret_key:
        client = ProcessorClient(settings.stripe_secret_key, max_attempts=settings.processor_max_attempts)

    notifications = NotificationDispatcher(sender or LoggingNotificationSender())
    ledger = IdempotencyLedger(session_factory)
    queue = WebhookQueue(redis, settings.webhook_queue_name)
    dispatcher = EventDispatcher(build_handler_registry(session_factory, notifications, settings, client))
    runner = WebhookJobRunner(ledger, dispatcher)
    worker = WebhookWorker(
        queue,
        runner,
        ledger,
        RetryPolicy.from_settings(settings),
        poll_interval=settings.webhook_worker_poll_interval_seconds,
        stale_after_seconds=settings.webhook_stale_after_seconds,
    )
    receiver = WebhookReceiver(
        ledger,
        queue,
        secret=settings.stripe_webhook_secret,
        tolerance=settings.stripe_signature_tolerance_seconds,
    )
    return WebhookPipeline(
        ledger=ledger,
        queue=queue,
        receiver=receiver,
        dispatcher=dispatcher,
        runner=runner,
        worker=worker,
        notifications=notifications,
    )
