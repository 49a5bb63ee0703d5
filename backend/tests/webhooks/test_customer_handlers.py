"""Tests for customer.* handlers."""

import pytest

from billing_sync.db.models import Customer
from billing_sync.webhooks.handlers.customers import split_name
from tests.conftest import add_subscription, make_envelope, reload

pytestmark = pytest.mark.unit


def customer_object(**overrides) -> dict:
    obj = {"id": "cus_123", "object": "customer", "email": "ada@example.com", "name": "Ada", "phone": None}
    obj.update(overrides)
    return obj


@pytest.mark.parametrize(
    "name,expected",
    [
        ("Ada King Lovelace", ("Ada", "King Lovelace")),
        ("Ada", ("Ada", None)),
        ("  ", (None, None)),
        (None, (None, None)),
    ],
)
def test_split_name(name, expected):
    assert split_name(name) == expected


@pytest.mark.asyncio
async def test_created_only_records(pipeline, customer):
    result = await pipeline.dispatcher.dispatch(make_envelope("customer.created", customer_object()))

    assert result.success


@pytest.mark.asyncio
async def test_updated_syncs_contact_fields(pipeline, session_factory, customer):
    result = await pipeline.dispatcher.dispatch(
        make_envelope(
            "customer.updated",
            customer_object(email="ada@lovelace.dev", name="Ada Lovelace", phone="+44 20 0000 0000"),
        )
    )

    assert result.success
    assert set(result.metadata["changes"]) == {"email", "phone", "last_name"}
    refreshed = await reload(session_factory, Customer, customer.id)
    assert refreshed.email == "ada@lovelace.dev"
    assert refreshed.full_name == "Ada Lovelace"
    assert refreshed.phone == "+44 20 0000 0000"


@pytest.mark.asyncio
async def test_updated_unknown_customer_is_ok(pipeline):
    result = await pipeline.dispatcher.dispatch(make_envelope("customer.updated", customer_object(id="cus_other")))

    assert result.success
    assert "not found" in result.message


@pytest.mark.asyncio
async def test_deleted_with_live_subscription_flags_for_review(pipeline, session_factory, customer, plan):
    await add_subscription(session_factory, customer, plan, status="active")

    result = await pipeline.dispatcher.dispatch(make_envelope("customer.deleted", customer_object()))

    assert result.success
    assert result.metadata["manual_review"] is True
    assert result.message == "Customer has active subscriptions - manual review needed"
    refreshed = await reload(session_factory, Customer, customer.id)
    assert refreshed.is_deleted is False
    assert refreshed.stripe_customer_id == "cus_123"
    assert refreshed.requires_manual_review is True
    assert "1 active subscription" in refreshed.review_reason


@pytest.mark.asyncio
async def test_deleted_without_live_subscriptions_soft_deletes(pipeline, session_factory, customer, plan):
    await add_subscription(session_factory, customer, plan, status="canceled")
    envelope = make_envelope("customer.deleted", customer_object())

    first = await pipeline.dispatcher.dispatch(envelope)
    second = await pipeline.dispatcher.dispatch(envelope)

    assert first.success and second.success
    refreshed = await reload(session_factory, Customer, customer.id)
    assert refreshed.is_deleted is True
    assert refreshed.deleted_at is not None
    assert refreshed.stripe_customer_id is None
    # stripe id was cleared, so the second delivery no longer finds the row
    assert "not found" in second.message
