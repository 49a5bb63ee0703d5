"""Job runner: re-hydrates a queued event, dispatches it and records the outcome."""

import asyncio

import structlog
from pydantic import ValidationError

from billing_sync.core.exceptions import LedgerRecordMissingError, WebhookJobError
from billing_sync.domain.billing_status import WebhookEventStatus
from billing_sync.webhooks.dispatcher import EventDispatcher
from billing_sync.webhooks.envelope import HandlerResult, WebhookEnvelope
from billing_sync.webhooks.ledger import IdempotencyLedger

logger = structlog.get_logger(__name__)


class WebhookJobRunner:
    def __init__(self, ledger: IdempotencyLedger, dispatcher: EventDispatcher):
        self.ledger = ledger
        self.dispatcher = dispatcher

    async def run(self, event_id: str, event_type: str) -> HandlerResult:
        """Process one queued event.

        Raises:
            LedgerRecordMissingError: no ledger row; never retried
            WebhookJobError: handler did not succeed; ``retryable`` says
                whether the worker should schedule another attempt
        """
        log = logger.bind(event_id=event_id, event_type=event_type)

        record = await self.ledger.get_queued_by_id(event_id)
        if record is None:
            log.error("webhook_job_ledger_record_missing")
            raise LedgerRecordMissingError(event_id)

        if record.status == WebhookEventStatus.PROCESSED.value:
            log.info("webhook_job_already_processed")
            return HandlerResult.ok("Event already processed", duplicate=True)

        try:
            envelope = WebhookEnvelope.model_validate(record.raw_payload)
        except ValidationError as exc:
            await self._record(event_id, event_type, WebhookEventStatus.FAILED, f"Stored payload invalid: {exc}")
            raise WebhookJobError(event_id, "stored payload is not a valid envelope", retryable=False) from exc

        await self.ledger.update_status(event_id, event_type, WebhookEventStatus.PROCESSING)
        log.info("webhook_job_started", retry_count=record.retry_count)

        result = await self.dispatcher.dispatch(envelope)

        if result.success:
            await self._record(event_id, event_type, WebhookEventStatus.PROCESSED)
            log.info("webhook_job_processed", message=result.message)
            return result

        await self._record(event_id, event_type, WebhookEventStatus.FAILED, result.message)
        log.warning(
            "webhook_job_failed",
            outcome=result.outcome.value,
            message=result.message,
            retryable=result.requires_retry,
        )
        raise WebhookJobError(event_id, result.message, retryable=result.requires_retry)

    async def _record(
        self,
        event_id: str,
        event_type: str,
        status: WebhookEventStatus,
        error: str | None = None,
    ) -> None:
        # The handler transaction is already committed or rolled back here;
        # a shutdown must not drop the status write that describes it
        await asyncio.shield(self.ledger.update_status(event_id, event_type, status, error))
