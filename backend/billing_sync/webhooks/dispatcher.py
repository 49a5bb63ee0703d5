"""Routes an envelope to the handler registered for its event type."""

from typing import Protocol

import structlog

from billing_sync.webhooks.envelope import HandlerResult, WebhookEnvelope

logger = structlog.get_logger(__name__)


class EventHandler(Protocol):
    async def handle(self, envelope: WebhookEnvelope) -> HandlerResult: ...


class EventDispatcher:
    """Stateless apart from the registry; never retries."""

    def __init__(self, handlers: dict[str, EventHandler]):
        self.handlers = dict(handlers)

    def supports(self, event_type: str) -> bool:
        return event_type in self.handlers

    async def dispatch(self, envelope: WebhookEnvelope) -> HandlerResult:
        handler = self.handlers.get(envelope.type)
        if handler is None:
            # Event types added by the processor later must not fail delivery
            logger.info("webhook_no_handler", event_id=envelope.id, event_type=envelope.type)
            return HandlerResult.ok(f"No handler for {envelope.type} (ignored)", ignored=True)

        return await handler.handle(envelope)
