"""Tests for correlation ID middleware.

Verifies:
- X-Request-ID header in responses
- Custom correlation ID echoing
- Debug ID in error responses without secret leakage
"""

import uuid

import pytest
from fastapi.testclient import TestClient

from billing_sync.main import create_app

pytestmark = pytest.mark.integration


@pytest.fixture
def client():
    # No lifespan: app.state.pipeline is never set
    return TestClient(create_app())


def test_response_includes_correlation_id_header(client):
    """Every API response should include X-Request-ID header with valid UUID."""
    response = client.get("/api/health")

    assert "x-request-id" in response.headers
    uuid.UUID(response.headers["x-request-id"])


def test_custom_correlation_id_echoed(client):
    """Client-provided X-Request-ID should be echoed back in response."""
    response = client.get("/api/health", headers={"X-Request-ID": "custom-id-123"})

    assert response.headers["x-request-id"] == "custom-id-123"


def test_error_response_includes_debug_id(client):
    """Error responses carry a debug_id and nothing internal."""
    response = client.post("/api/webhooks/stripe", content=b"{}", headers={"stripe-signature": "t=1,v1=x"})

    assert response.status_code == 503
    body = response.json()
    uuid.UUID(body["debug_id"])

    response_text = response.text.lower()
    leaked = [kw for kw in ("traceback", "password", "secret", "whsec") if kw in response_text]
    assert not leaked, f"Response leaked forbidden keywords: {leaked}"


def test_different_requests_get_different_ids(client):
    """Each request should get a unique correlation ID."""
    first = client.get("/api/health")
    second = client.get("/api/health")

    assert first.headers["x-request-id"] != second.headers["x-request-id"]


def test_oversized_correlation_id_is_replaced(client):
    """A request id longer than the limit is swapped for a generated UUID."""
    response = client.get("/api/health", headers={"X-Request-ID": "x" * 500})

    uuid.UUID(response.headers["x-request-id"])
