"""Shared test fixtures: SQLite store, fake Redis, recording collaborators."""

import hashlib
import hmac
import time
import uuid

import pytest
from fakeredis import aioredis

from billing_sync.core.config import Settings
from billing_sync.db.base import build_engine, build_session_factory, create_tables
from billing_sync.db.models import Customer, Invoice, Plan, Subscription
from billing_sync.webhooks.envelope import WebhookEnvelope
from billing_sync.webhooks.pipeline import build_pipeline

WEBHOOK_SECRET = "whsec_test_secret"


# ── Collaborator fakes ──────────────────────────────────────────────


class RecordingSender:
    """NotificationSender that records every call as (method, kwargs)."""

    def __init__(self):
        self.calls: list[tuple[str, dict]] = []

    def named(self, method: str) -> list[dict]:
        return [kwargs for name, kwargs in self.calls if name == method]

    async def send_welcome_email(self, customer_id, email, plan_name):
        self.calls.append(("send_welcome_email", {"customer_id": customer_id, "email": email, "plan_name": plan_name}))

    async def send_receipt_email(self, customer_id, email, invoice_id, amount_cents, currency):
        self.calls.append(
            (
                "send_receipt_email",
                {
                    "customer_id": customer_id,
                    "email": email,
                    "invoice_id": invoice_id,
                    "amount_cents": amount_cents,
                    "currency": currency,
                },
            )
        )

    async def send_payment_failed_email(self, customer_id, email, invoice_id, attempt_count, next_attempt_at, escalated):
        self.calls.append(
            (
                "send_payment_failed_email",
                {
                    "customer_id": customer_id,
                    "invoice_id": invoice_id,
                    "attempt_count": attempt_count,
                    "escalated": escalated,
                },
            )
        )

    async def send_payment_action_required_email(self, customer_id, email, invoice_id, hosted_invoice_url):
        self.calls.append(
            (
                "send_payment_action_required_email",
                {"customer_id": customer_id, "invoice_id": invoice_id, "hosted_invoice_url": hosted_invoice_url},
            )
        )

    async def send_cancellation_email(self, customer_id, email, subscription_id, ended_at):
        self.calls.append(
            ("send_cancellation_email", {"customer_id": customer_id, "subscription_id": subscription_id})
        )

    async def send_trial_ending_email(self, customer_id, email, subscription_id, trial_end, has_payment_method):
        self.calls.append(
            (
                "send_trial_ending_email",
                {
                    "customer_id": customer_id,
                    "subscription_id": subscription_id,
                    "has_payment_method": has_payment_method,
                },
            )
        )


class FakeProcessorClient:
    """In-memory stand-in for ProcessorClient."""

    def __init__(self):
        self.subscriptions: dict[str, dict] = {}
        self.payment_methods: dict[str, list[dict]] = {}
        self.error: Exception | None = None
        self.calls: list[tuple[str, str]] = []

    async def get_subscription(self, subscription_id):
        self.calls.append(("get_subscription", subscription_id))
        if self.error:
            raise self.error
        return self.subscriptions.get(subscription_id)

    async def get_checkout_session(self, session_id):
        self.calls.append(("get_checkout_session", session_id))
        return None

    async def get_customer(self, customer_id):
        self.calls.append(("get_customer", customer_id))
        return None

    async def list_payment_methods(self, customer_id, limit=10):
        self.calls.append(("list_payment_methods", customer_id))
        if self.error:
            raise self.error
        return self.payment_methods.get(customer_id, [])


# ── Helpers ─────────────────────────────────────────────────────────


def make_event(event_type: str, obj: dict, event_id: str | None = None, created: int | None = None) -> dict:
    """Build a minimal Stripe-style event dict."""
    return {
        "id": event_id or f"evt_{uuid.uuid4().hex[:16]}",
        "object": "event",
        "type": event_type,
        "created": created if created is not None else int(time.time()),
        "data": {"object": obj},
    }


def make_envelope(
    event_type: str, obj: dict, event_id: str | None = None, created: int | None = None
) -> WebhookEnvelope:
    return WebhookEnvelope.model_validate(make_event(event_type, obj, event_id, created))


def sign_payload(payload: str, secret: str = WEBHOOK_SECRET, timestamp: int | None = None) -> str:
    """Stripe-Signature header value: t=<ts>,v1=HMAC_SHA256(secret, '<ts>.<payload>')."""
    timestamp = timestamp or int(time.time())
    signed = f"{timestamp}.{payload}".encode()
    signature = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def subscription_object(
    stripe_subscription_id: str = "sub_123",
    customer: str = "cus_123",
    price_id: str = "price_basic",
    status: str = "active",
    **overrides,
) -> dict:
    obj = {
        "id": stripe_subscription_id,
        "object": "subscription",
        "customer": customer,
        "status": status,
        "start_date": 1_760_000_000,
        "cancel_at_period_end": False,
        "items": {"data": [{"quantity": 1, "price": {"id": price_id}}]},
        "metadata": {},
    }
    obj.update(overrides)
    return obj


def invoice_object(
    stripe_invoice_id: str = "in_123",
    customer: str = "cus_123",
    subscription: str | None = "sub_123",
    status: str = "open",
    **overrides,
) -> dict:
    obj = {
        "id": stripe_invoice_id,
        "object": "invoice",
        "customer": customer,
        "status": status,
        "number": "INV-0001",
        "total": 2000,
        "amount_due": 2000,
        "amount_paid": 0,
        "amount_remaining": 2000,
        "currency": "usd",
        "attempt_count": 1,
        "parent": {"subscription_details": {"subscription": subscription}},
    }
    obj.update(overrides)
    return obj


# ── Fixtures ────────────────────────────────────────────────────────


@pytest.fixture
def settings():
    return Settings(
        database_url="sqlite+aiosqlite://",
        stripe_secret_key="",
        stripe_webhook_secret=WEBHOOK_SECRET,
        grace_period_days=7,
        webhook_queue_name="webhooks-test",
        webhook_retry_delays_seconds=[60, 300, 900],
        run_webhook_worker=False,
    )


@pytest.fixture
async def engine(tmp_path):
    """File-backed SQLite so every session sees the same database."""
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'billing.db'}")
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
async def redis_client():
    """Create a fake Redis client for testing."""
    client = aioredis.FakeRedis(decode_responses=True)
    yield client
    await client.flushall()
    await client.aclose()


@pytest.fixture
def sender():
    return RecordingSender()


@pytest.fixture
def processor_client():
    return FakeProcessorClient()


@pytest.fixture
def pipeline(session_factory, redis_client, settings, sender, processor_client):
    return build_pipeline(session_factory, redis_client, settings, sender=sender, client=processor_client)


# ── Seed data ───────────────────────────────────────────────────────


@pytest.fixture
async def plan(session_factory):
    async with session_factory() as session:
        plan = Plan(
            name="Basic",
            stripe_price_id="price_basic",
            stripe_product_id="prod_basic",
            amount_cents=2000,
            billing_interval="month",
            interval_count=1,
        )
        session.add(plan)
        await session.commit()
        return plan


@pytest.fixture
async def pro_plan(session_factory):
    async with session_factory() as session:
        plan = Plan(
            name="Pro",
            stripe_price_id="price_pro",
            stripe_product_id="prod_pro",
            amount_cents=290_000,
            billing_interval="year",
            interval_count=1,
        )
        session.add(plan)
        await session.commit()
        return plan


@pytest.fixture
async def customer(session_factory):
    async with session_factory() as session:
        customer = Customer(email="ada@example.com", stripe_customer_id="cus_123", first_name="Ada")
        session.add(customer)
        await session.commit()
        return customer


async def add_subscription(
    session_factory,
    customer: Customer,
    plan: Plan,
    status: str = "active",
    stripe_subscription_id: str = "sub_123",
    **fields,
) -> Subscription:
    async with session_factory() as session:
        subscription = Subscription(
            customer_id=customer.id,
            plan_id=plan.id,
            stripe_subscription_id=stripe_subscription_id,
            status=status,
            **fields,
        )
        session.add(subscription)
        await session.commit()
        return subscription


async def add_invoice(
    session_factory,
    customer: Customer,
    subscription: Subscription | None = None,
    status: str = "open",
    stripe_invoice_id: str = "in_123",
    metadata: dict | None = None,
    **fields,
) -> Invoice:
    async with session_factory() as session:
        invoice = Invoice(
            customer_id=customer.id,
            subscription_id=subscription.id if subscription else None,
            stripe_invoice_id=stripe_invoice_id,
            status=status,
            metadata_=metadata or {},
            **fields,
        )
        session.add(invoice)
        await session.commit()
        return invoice


async def reload(session_factory, model, row_id):
    async with session_factory() as session:
        return await session.get(model, row_id)
