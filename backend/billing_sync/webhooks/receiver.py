"""Signature-verifying webhook receiver."""

import json
from dataclasses import dataclass

import stripe
import structlog
from pydantic import ValidationError

from billing_sync.core.exceptions import (
    WebhookNotConfiguredError,
    WebhookPayloadError,
    WebhookSignatureError,
)
from billing_sync.domain.billing_status import WebhookEventStatus
from billing_sync.queue.manager import WebhookQueue
from billing_sync.webhooks.envelope import WebhookEnvelope
from billing_sync.webhooks.ledger import IdempotencyLedger

logger = structlog.get_logger(__name__)

# A ledger row in one of these states may have lost its queue entry
REQUEUEABLE_STATUSES = (WebhookEventStatus.QUEUED.value, WebhookEventStatus.RETRYING.value)


@dataclass
class ReceiveResult:
    event_id: str
    event_type: str
    queued: bool
    duplicate: bool

    def to_response(self) -> dict:
        return {
            "received": True,
            "eventId": self.event_id,
            "eventType": self.event_type,
            "queued": self.queued,
            "duplicate": self.duplicate,
        }


def verify_and_parse(
    payload: bytes,
    signature_header: str | None,
    secret: str,
    tolerance: int = 300,
) -> WebhookEnvelope:
    """Verify the processor signature, then parse the body into an envelope.

    Nothing is parsed or persisted before the signature check passes.
    """
    if not secret:
        raise WebhookNotConfiguredError("Webhook signing secret is not configured")
    if not signature_header:
        raise WebhookSignatureError("Missing signature header")

    try:
        body = payload.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise WebhookSignatureError("Payload is not valid UTF-8") from exc

    try:
        stripe.WebhookSignature.verify_header(body, signature_header, secret, tolerance)
    except stripe.SignatureVerificationError as exc:
        raise WebhookSignatureError(str(exc)) from exc

    try:
        return WebhookEnvelope.model_validate(json.loads(body))
    except (ValueError, ValidationError) as exc:
        raise WebhookPayloadError(f"Invalid event payload: {exc}") from exc


class WebhookReceiver:
    """Boundary component: verify, dedupe, persist and enqueue. No business logic."""

    def __init__(
        self,
        ledger: IdempotencyLedger,
        queue: WebhookQueue,
        secret: str,
        tolerance: int = 300,
    ):
        self.ledger = ledger
        self.queue = queue
        self.secret = secret
        self.tolerance = tolerance

    async def receive(self, payload: bytes, signature_header: str | None) -> ReceiveResult:
        envelope = verify_and_parse(payload, signature_header, self.secret, self.tolerance)
        log = logger.bind(event_id=envelope.id, event_type=envelope.type)

        existing = await self.ledger.get(envelope.id)
        if existing is not None:
            return await self._handle_existing(envelope, existing.status, log)

        raw_payload = envelope.model_dump(mode="json", by_alias=True)
        if not await self.ledger.mark_queued(envelope.id, envelope.type, raw_payload):
            # Lost the insert race to a concurrent delivery of the same event
            log.info("webhook_duplicate_concurrent_delivery")
            return ReceiveResult(envelope.id, envelope.type, queued=False, duplicate=True)

        await self.queue.enqueue(envelope.id, envelope.type)
        log.info("webhook_event_queued")
        return ReceiveResult(envelope.id, envelope.type, queued=True, duplicate=False)

    async def _handle_existing(self, envelope: WebhookEnvelope, status: str, log) -> ReceiveResult:
        if status in REQUEUEABLE_STATUSES:
            # Idempotent per event id: only re-adds a job that went missing
            requeued = await self.queue.enqueue(envelope.id, envelope.type)
            log.info("webhook_duplicate_pending", status=status, requeued=requeued)
            return ReceiveResult(envelope.id, envelope.type, queued=requeued, duplicate=True)

        log.info("webhook_duplicate_ignored", status=status)
        return ReceiveResult(envelope.id, envelope.type, queued=False, duplicate=True)
