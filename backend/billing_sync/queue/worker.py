"""WebhookWorker: pulls due webhook jobs and applies the retry policy."""

import asyncio
import time

import structlog

from billing_sync.core.exceptions import LedgerRecordMissingError, WebhookJobError
from billing_sync.domain.billing_status import WebhookEventStatus
from billing_sync.queue.manager import WebhookQueue
from billing_sync.queue.schemas import QueuedJob, RetryPolicy
from billing_sync.webhooks.job import WebhookJobRunner
from billing_sync.webhooks.ledger import IdempotencyLedger

logger = structlog.get_logger(__name__)

# How often the run loop looks for stranded ledger rows
RECOVERY_INTERVAL_SECONDS = 300


class WebhookWorker:
    """Consumes the webhook queue.

    On a retryable failure the job goes back on the queue with the next delay
    and the ledger row becomes RETRYING. Permanent failures and jobs out of
    attempts are dropped; their ledger row stays FAILED for an operator.
    """

    def __init__(
        self,
        queue: WebhookQueue,
        runner: WebhookJobRunner,
        ledger: IdempotencyLedger,
        policy: RetryPolicy,
        poll_interval: float = 1.0,
        stale_after_seconds: int = 900,
    ):
        self.queue = queue
        self.runner = runner
        self.ledger = ledger
        self.policy = policy
        self.poll_interval = poll_interval
        self.stale_after_seconds = stale_after_seconds

    async def run_once(self, now: float | None = None) -> bool:
        """Process at most one due job. Returns True if a job was claimed."""
        job = await self.queue.dequeue(now=now)
        if job is None:
            return False

        await self._process(job, now=now)
        return True

    async def _process(self, job: QueuedJob, now: float | None = None) -> None:
        log = logger.bind(event_id=job.event_id, event_type=job.event_type, attempt=job.attempts)

        try:
            await self.runner.run(job.event_id, job.event_type)
        except LedgerRecordMissingError:
            log.error("webhook_job_dropped_missing_record")
            await self.queue.complete(job.event_id)
            return
        except WebhookJobError as exc:
            await self._handle_failure(job, exc, log, now=now)
            return
        except Exception as exc:
            # Store or ledger outage inside the runner: the row may still say PROCESSING
            log.error("webhook_job_crashed", error=str(exc), error_type=type(exc).__name__, exc_info=True)
            failure = WebhookJobError(job.event_id, f"{type(exc).__name__}: {exc}", retryable=True)
            await self._handle_failure(job, failure, log, now=now, record_failure=True)
            return

        await self.queue.complete(job.event_id)

    async def _handle_failure(
        self,
        job: QueuedJob,
        exc: WebhookJobError,
        log,
        now: float | None = None,
        record_failure: bool = False,
    ) -> None:
        if exc.retryable and self.policy.should_retry(job.attempts):
            delay = self.policy.delay_for(job.attempts)
            await self.queue.reschedule(job, delay, now=now)
            await self.ledger.update_status(job.event_id, job.event_type, WebhookEventStatus.RETRYING, str(exc))
            log.warning("webhook_job_retry_scheduled", delay_seconds=delay, error=str(exc))
            return

        await self.queue.complete(job.event_id)
        if record_failure:
            await self.ledger.update_status(job.event_id, job.event_type, WebhookEventStatus.FAILED, str(exc))
        log.error(
            "webhook_job_gave_up",
            retryable=exc.retryable,
            attempts=job.attempts,
            max_attempts=self.policy.max_attempts,
            error=str(exc),
        )

    async def recover_stranded_events(self) -> int:
        """Re-enqueue pending ledger rows that lost their queue entry.

        Enqueue is idempotent per event id, so rows that are still queued are
        left alone.
        """
        stale = await self.ledger.list_stale(self.stale_after_seconds)
        requeued = 0
        for record in stale:
            if await self.queue.enqueue(record.event_id, record.event_type):
                requeued += 1
                logger.warning(
                    "webhook_event_requeued",
                    event_id=record.event_id,
                    event_type=record.event_type,
                    status=record.status,
                )
        if requeued:
            logger.info("webhook_stranded_events_recovered", count=requeued)
        return requeued

    async def replay_failed(self, limit: int = 100, event_ids: list[str] | None = None) -> list[str]:
        """Put FAILED events back on the queue with a fresh retry budget."""
        failed = await self.ledger.list_failed(limit=limit, event_ids=event_ids)

        replayed = []
        for record in failed:
            await self.ledger.update_status(record.event_id, record.event_type, WebhookEventStatus.QUEUED)
            await self.queue.reset_attempts(record.event_id)
            await self.queue.enqueue(record.event_id, record.event_type)
            replayed.append(record.event_id)
            logger.info("webhook_event_replayed", event_id=record.event_id, event_type=record.event_type)
        return replayed

    async def run(self, stop_event: asyncio.Event) -> None:
        """Loop until ``stop_event`` is set. The job in flight is always finished."""
        logger.info("webhook_worker_started", queue=self.queue.name)
        last_recovery = 0.0

        while not stop_event.is_set():
            try:
                if time.monotonic() - last_recovery >= RECOVERY_INTERVAL_SECONDS:
                    await self.recover_stranded_events()
                    last_recovery = time.monotonic()

                if await self.run_once():
                    continue
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.error("webhook_worker_loop_error", error=str(exc), error_type=type(exc).__name__, exc_info=True)

            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self.poll_interval)
            except TimeoutError:
                pass

        logger.info("webhook_worker_stopped", queue=self.queue.name)
