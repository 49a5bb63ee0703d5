"""Typed webhook envelope, payload views and the handler result type."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from billing_sync.core.clock import from_unix


class EventData(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    object_: dict[str, Any] = Field(alias="object")


class WebhookEnvelope(BaseModel):
    """A processor event. Unknown top-level fields are kept for the ledger copy."""

    model_config = ConfigDict(extra="allow")

    id: str = Field(min_length=1)
    type: str = Field(min_length=1)
    created: int | None = None
    livemode: bool = False
    data: EventData

    @property
    def object(self) -> dict[str, Any]:
        return self.data.object_

    @property
    def occurred_at(self) -> datetime | None:
        """When the processor created the event, not when it reached us."""
        return from_unix(self.created)


# ── Payload views ───────────────────────────────────────────────────


class _Payload(BaseModel):
    model_config = ConfigDict(extra="ignore")


class PriceRef(_Payload):
    id: str | None = None


class SubscriptionItem(_Payload):
    quantity: int | None = None
    price: PriceRef | None = None
    current_period_start: int | None = None
    current_period_end: int | None = None


class ItemList(_Payload):
    data: list[SubscriptionItem] = []


class SubscriptionPayload(_Payload):
    id: str
    customer: str | None = None
    status: str | None = None
    start_date: int | None = None
    current_period_start: int | None = None
    current_period_end: int | None = None
    cancel_at: int | None = None
    canceled_at: int | None = None
    cancel_at_period_end: bool = False
    trial_start: int | None = None
    trial_end: int | None = None
    ended_at: int | None = None
    items: ItemList = ItemList()
    metadata: dict[str, str] = {}

    @property
    def first_item(self) -> SubscriptionItem | None:
        return self.items.data[0] if self.items.data else None

    @property
    def price_id(self) -> str | None:
        item = self.first_item
        return item.price.id if item and item.price else None

    @property
    def quantity(self) -> int:
        item = self.first_item
        return item.quantity if item and item.quantity else 1

    @property
    def period_start(self) -> int | None:
        # Newer API versions moved period bounds onto the subscription item
        item = self.first_item
        if self.current_period_start is not None:
            return self.current_period_start
        return item.current_period_start if item else None

    @property
    def period_end(self) -> int | None:
        item = self.first_item
        if self.current_period_end is not None:
            return self.current_period_end
        return item.current_period_end if item else None


class SubscriptionDetails(_Payload):
    subscription: str | None = None


class InvoiceParent(_Payload):
    subscription_details: SubscriptionDetails | None = None


class StatusTransitions(_Payload):
    paid_at: int | None = None


class InvoicePayload(_Payload):
    id: str
    customer: str | None = None
    subscription: str | None = None
    parent: InvoiceParent | None = None
    status: str | None = None
    number: str | None = None
    total: int = 0
    amount_due: int = 0
    amount_paid: int = 0
    amount_remaining: int = 0
    currency: str | None = None
    period_start: int | None = None
    period_end: int | None = None
    due_date: int | None = None
    attempt_count: int = 0
    next_payment_attempt: int | None = None
    hosted_invoice_url: str | None = None
    invoice_pdf: str | None = None
    status_transitions: StatusTransitions | None = None

    @property
    def subscription_id(self) -> str | None:
        if self.subscription:
            return self.subscription
        if self.parent and self.parent.subscription_details:
            return self.parent.subscription_details.subscription
        return None


class CustomerPayload(_Payload):
    id: str
    email: str | None = None
    name: str | None = None
    phone: str | None = None


class CheckoutSessionPayload(_Payload):
    id: str
    status: str | None = None
    mode: str | None = None
    customer: str | None = None
    subscription: str | None = None
    metadata: dict[str, str] = {}


# ── Handler result ──────────────────────────────────────────────────


class HandlerOutcome(str, Enum):
    SUCCESS = "success"
    TRANSIENT_FAILURE = "transient_failure"
    PERMANENT_FAILURE = "permanent_failure"


@dataclass
class HandlerResult:
    """Tagged result returned by every handler and by the dispatcher."""

    outcome: HandlerOutcome
    message: str
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return self.outcome == HandlerOutcome.SUCCESS

    @property
    def requires_retry(self) -> bool:
        return self.outcome == HandlerOutcome.TRANSIENT_FAILURE

    @classmethod
    def ok(cls, message: str, **metadata: Any) -> "HandlerResult":
        return cls(HandlerOutcome.SUCCESS, message, metadata)

    @classmethod
    def retry(cls, message: str, **metadata: Any) -> "HandlerResult":
        return cls(HandlerOutcome.TRANSIENT_FAILURE, message, metadata)

    @classmethod
    def fail(cls, message: str, **metadata: Any) -> "HandlerResult":
        return cls(HandlerOutcome.PERMANENT_FAILURE, message, metadata)
