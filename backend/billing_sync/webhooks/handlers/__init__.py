"""Handler registry: one handler per processor event type."""

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from billing_sync.core.config import Settings
from billing_sync.services.notifications import NotificationDispatcher
from billing_sync.services.processor_client import ProcessorClient
from billing_sync.webhooks.handlers.base import HandlerContext, WebhookHandler
from billing_sync.webhooks.handlers.checkout import CheckoutSessionCompletedHandler
from billing_sync.webhooks.handlers.customers import (
    CustomerCreatedHandler,
    CustomerDeletedHandler,
    CustomerUpdatedHandler,
)
from billing_sync.webhooks.handlers.invoices import (
    InvoiceCreatedHandler,
    InvoiceFinalizedHandler,
    InvoicePaidHandler,
    InvoicePaymentActionRequiredHandler,
    InvoicePaymentFailedHandler,
    InvoiceVoidedHandler,
)
from billing_sync.webhooks.handlers.subscriptions import (
    SubscriptionCreatedHandler,
    SubscriptionDeletedHandler,
    SubscriptionTrialWillEndHandler,
    SubscriptionUpdatedHandler,
)

HANDLER_CLASSES: tuple[type[WebhookHandler], ...] = (
    CheckoutSessionCompletedHandler,
    CustomerCreatedHandler,
    CustomerUpdatedHandler,
    CustomerDeletedHandler,
    SubscriptionCreatedHandler,
    SubscriptionUpdatedHandler,
    SubscriptionDeletedHandler,
    SubscriptionTrialWillEndHandler,
    InvoiceCreatedHandler,
    InvoiceFinalizedHandler,
    InvoicePaidHandler,
    InvoicePaymentFailedHandler,
    InvoicePaymentActionRequiredHandler,
    InvoiceVoidedHandler,
)


def build_handler_registry(
    session_factory: async_sessionmaker[AsyncSession],
    notifications: NotificationDispatcher,
    settings: Settings,
    client: ProcessorClient | None = None,
) -> dict[str, WebhookHandler]:
    """Instantiate every handler and key it by event type."""
    registry: dict[str, WebhookHandler] = {}
    for handler_cls in HANDLER_CLASSES:
        if handler_cls.event_type in registry:
            raise ValueError(f"Duplicate handler for event type '{handler_cls.event_type}'")
        registry[handler_cls.event_type] = handler_cls(session_factory, notifications, settings, client)
    return registry


__all__ = [
    "HANDLER_CLASSES",
    "HandlerContext",
    "WebhookHandler",
    "build_handler_registry",
]
