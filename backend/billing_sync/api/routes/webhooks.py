"""Inbound processor webhooks."""

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request

from billing_sync.core.exceptions import (
    WebhookNotConfiguredError,
    WebhookPayloadError,
    WebhookSignatureError,
)
from billing_sync.webhooks.receiver import WebhookReceiver

logger = structlog.get_logger(__name__)

router = APIRouter()

SUPPORTED_PROCESSORS = {"stripe": "stripe-signature"}


def get_receiver(request: Request) -> WebhookReceiver:
    pipeline = getattr(request.app.state, "pipeline", None)
    if pipeline is None:
        raise HTTPException(status_code=503, detail="Webhook pipeline is not ready")
    return pipeline.receiver


@router.post("/webhooks/{processor}")
async def receive_webhook(
    processor: str,
    request: Request,
    receiver: WebhookReceiver = Depends(get_receiver),
):
    """Verify, record and enqueue a processor event.

    Always 200 once the signature checks out (duplicates and unknown event
    types included); the processor should only redeliver on a 400.
    """
    signature_header_name = SUPPORTED_PROCESSORS.get(processor)
    if signature_header_name is None:
        raise HTTPException(status_code=404, detail=f"Unknown processor: {processor}")

    body = await request.body()
    signature = request.headers.get(signature_header_name)

    try:
        result = await receiver.receive(body, signature)
    except WebhookNotConfiguredError:
        logger.error("webhook_secret_missing", processor=processor)
        raise HTTPException(status_code=503, detail="Webhook endpoint is not configured")
    except WebhookSignatureError as exc:
        logger.warning("webhook_signature_rejected", processor=processor, reason=str(exc))
        raise HTTPException(status_code=400, detail="Invalid signature")
    except WebhookPayloadError as exc:
        logger.warning("webhook_payload_rejected", processor=processor, reason=str(exc))
        raise HTTPException(status_code=400, detail="Invalid payload")

    return result.to_response()
