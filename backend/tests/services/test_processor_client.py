"""Tests for ProcessorClient error classification and retries."""

import pytest
import stripe

from billing_sync.core.exceptions import ProcessorPermanentError, ProcessorTransientError
from billing_sync.services.processor_client import ProcessorClient, classify_stripe_error

pytestmark = pytest.mark.unit


@pytest.fixture
def client():
    return ProcessorClient("sk_test_123", max_attempts=3, wait_multiplier=0)


def _not_found():
    return stripe.InvalidRequestError(
        "No such subscription: 'sub_x'", "id", code="resource_missing", http_status=404
    )


def test_classify_not_found_is_none():
    assert classify_stripe_error(_not_found()) is None


def test_classify_connection_error_is_transient():
    assert isinstance(classify_stripe_error(stripe.APIConnectionError("reset")), ProcessorTransientError)


def test_classify_server_error_is_transient():
    error = classify_stripe_error(stripe.APIError("internal", http_status=503))
    assert isinstance(error, ProcessorTransientError)
    assert error.status_code == 503


def test_classify_rate_limit_is_transient():
    assert isinstance(classify_stripe_error(stripe.RateLimitError("slow down", http_status=429)), ProcessorTransientError)


def test_classify_auth_error_is_permanent():
    error = classify_stripe_error(stripe.AuthenticationError("bad key", http_status=401))
    assert isinstance(error, ProcessorPermanentError)


@pytest.mark.asyncio
async def test_get_subscription_returns_dict(client, monkeypatch):
    seen = {}

    async def fake_retrieve(subscription_id, **kwargs):
        seen["id"] = subscription_id
        seen["api_key"] = kwargs.get("api_key")
        return {"id": subscription_id, "status": "active"}

    monkeypatch.setattr(stripe.Subscription, "retrieve_async", fake_retrieve)

    result = await client.get_subscription("sub_1")

    assert result == {"id": "sub_1", "status": "active"}
    assert seen == {"id": "sub_1", "api_key": "sk_test_123"}


@pytest.mark.asyncio
async def test_get_subscription_not_found_returns_none(client, monkeypatch):
    async def fake_retrieve(subscription_id, **kwargs):
        raise _not_found()

    monkeypatch.setattr(stripe.Subscription, "retrieve_async", fake_retrieve)

    assert await client.get_subscription("sub_x") is None


@pytest.mark.asyncio
async def test_transient_errors_are_retried(client, monkeypatch):
    calls = []

    async def flaky(subscription_id, **kwargs):
        calls.append(subscription_id)
        if len(calls) < 3:
            raise stripe.APIConnectionError("connection reset")
        return {"id": subscription_id, "status": "active"}

    monkeypatch.setattr(stripe.Subscription, "retrieve_async", flaky)

    result = await client.get_subscription("sub_1")

    assert result["status"] == "active"
    assert len(calls) == 3


@pytest.mark.asyncio
async def test_transient_errors_give_up_after_max_attempts(client, monkeypatch):
    calls = []

    async def down(subscription_id, **kwargs):
        calls.append(subscription_id)
        raise stripe.APIError("unavailable", http_status=503)

    monkeypatch.setattr(stripe.Subscription, "retrieve_async", down)

    with pytest.raises(ProcessorTransientError):
        await client.get_subscription("sub_1")
    assert len(calls) == 3


@pytest.mark.asyncio
async def test_permanent_errors_are_not_retried(client, monkeypatch):
    calls = []

    async def rejected(subscription_id, **kwargs):
        calls.append(subscription_id)
        raise stripe.AuthenticationError("bad key", http_status=401)

    monkeypatch.setattr(stripe.Subscription, "retrieve_async", rejected)

    with pytest.raises(ProcessorPermanentError):
        await client.get_subscription("sub_1")
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_list_payment_methods(client, monkeypatch):
    async def fake_list(**kwargs):
        assert kwargs["customer"] == "cus_1"
        return {"object": "list", "data": [{"id": "pm_1"}]}

    monkeypatch.setattr(stripe.PaymentMethod, "list_async", fake_list)

    assert await client.list_payment_methods("cus_1") == [{"id": "pm_1"}]
