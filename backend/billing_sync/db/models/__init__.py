"""Re-export all models so Base.metadata sees them."""

from billing_sync.db.models.customer import Customer
from billing_sync.db.models.invoice import Invoice
from billing_sync.db.models.plan import Plan
from billing_sync.db.models.subscription import Subscription
from billing_sync.db.models.webhook_event import WebhookEvent

__all__ = [
    "Customer",
    "Invoice",
    "Plan",
    "Subscription",
    "WebhookEvent",
]
