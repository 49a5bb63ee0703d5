"""HTTP tests for POST /api/webhooks/{processor} and the health probe."""

import json

import pytest
from httpx import ASGITransport, AsyncClient

from billing_sync.domain.billing_status import WebhookEventStatus
from billing_sync.main import create_app
from tests.conftest import make_event, sign_payload

pytestmark = pytest.mark.integration


@pytest.fixture
def app(pipeline):
    app = create_app()
    app.state.pipeline = pipeline
    return app


@pytest.fixture
async def client(app):
    # ASGITransport skips the lifespan, so the test pipeline is the one in use
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client


def _signed_request(event: dict) -> dict:
    body = json.dumps(event)
    return {"content": body, "headers": {"stripe-signature": sign_payload(body), "content-type": "application/json"}}


@pytest.mark.asyncio
async def test_valid_event_is_acknowledged_and_queued(client, pipeline):
    event = make_event("invoice.paid", {"id": "in_1"}, event_id="evt_http_1")

    response = await client.post("/api/webhooks/stripe", **_signed_request(event))

    assert response.status_code == 200
    assert response.json() == {
        "received": True,
        "eventId": "evt_http_1",
        "eventType": "invoice.paid",
        "queued": True,
        "duplicate": False,
    }
    record = await pipeline.ledger.get("evt_http_1")
    assert record.status == WebhookEventStatus.QUEUED.value
    assert await pipeline.queue.is_queued("evt_http_1")


@pytest.mark.asyncio
async def test_redelivery_is_acknowledged_as_duplicate(client, pipeline):
    request = _signed_request(make_event("invoice.paid", {"id": "in_1"}, event_id="evt_http_dup"))

    await client.post("/api/webhooks/stripe", **request)
    response = await client.post("/api/webhooks/stripe", **request)

    assert response.status_code == 200
    assert response.json()["duplicate"] is True
    assert await pipeline.queue.get_length() == 1


@pytest.mark.asyncio
async def test_unknown_event_type_still_returns_200(client):
    request = _signed_request(make_event("issuing_card.created", {"id": "ic_1"}))

    response = await client.post("/api/webhooks/stripe", **request)

    assert response.status_code == 200


@pytest.mark.asyncio
async def test_invalid_signature_returns_400(client, pipeline):
    body = json.dumps(make_event("invoice.paid", {"id": "in_1"}, event_id="evt_forged"))

    response = await client.post(
        "/api/webhooks/stripe",
        content=body,
        headers={"stripe-signature": sign_payload(body, secret="whsec_wrong")},
    )

    assert response.status_code == 400
    assert response.json()["detail"] == "Invalid signature"
    assert await pipeline.ledger.get("evt_forged") is None


@pytest.mark.asyncio
async def test_missing_signature_returns_400(client):
    response = await client.post("/api/webhooks/stripe", content=b"{}")

    assert response.status_code == 400


@pytest.mark.asyncio
async def test_signed_garbage_returns_400(client):
    body = "not json"

    response = await client.post("/api/webhooks/stripe", content=body, headers={"stripe-signature": sign_payload(body)})

    assert response.status_code == 400
    assert response.json()["detail"] == "Invalid payload"


@pytest.mark.asyncio
async def test_unknown_processor_returns_404(client):
    response = await client.post("/api/webhooks/paypal", content=b"{}")

    assert response.status_code == 404


@pytest.mark.asyncio
async def test_health(client, app):
    response = await client.get("/api/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy", "service": "billing-sync"}

    app.state.shutting_down = True
    response = await client.get("/api/health")
    assert response.status_code == 503


@pytest.mark.asyncio
async def test_ready_reports_degraded_without_connections(client):
    response = await client.get("/api/ready")

    assert response.status_code == 503
    assert response.json()["status"] == "degraded"
    assert response.json()["checks"] == {"database": False, "redis": False}
