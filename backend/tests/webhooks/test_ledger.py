"""Tests for IdempotencyLedger."""

from datetime import timedelta

import pytest

from billing_sync.core.clock import utcnow
from billing_sync.domain.billing_status import WebhookEventStatus
from billing_sync.webhooks.ledger import IdempotencyLedger

pytestmark = pytest.mark.unit


@pytest.fixture
def ledger(session_factory):
    return IdempotencyLedger(session_factory)


@pytest.mark.asyncio
async def test_mark_queued_inserts_row(ledger):
    assert await ledger.has_processed("evt_1") is False

    assert await ledger.mark_queued("evt_1", "invoice.paid", {"id": "evt_1"}) is True

    record = await ledger.get("evt_1")
    assert record.status == WebhookEventStatus.QUEUED.value
    assert record.event_type == "invoice.paid"
    assert record.raw_payload == {"id": "evt_1"}
    assert record.retry_count == 0
    assert await ledger.has_processed("evt_1") is True


@pytest.mark.asyncio
async def test_mark_queued_duplicate_returns_false(ledger):
    assert await ledger.mark_queued("evt_1", "invoice.paid", {"id": "evt_1"}) is True
    assert await ledger.mark_queued("evt_1", "invoice.paid", {"id": "evt_1", "again": True}) is False

    record = await ledger.get("evt_1")
    assert record.raw_payload == {"id": "evt_1"}


@pytest.mark.asyncio
async def test_failed_increments_retry_count(ledger):
    await ledger.mark_queued("evt_1", "invoice.paid", {})

    await ledger.update_status("evt_1", "invoice.paid", WebhookEventStatus.FAILED, "boom")
    await ledger.update_status("evt_1", "invoice.paid", WebhookEventStatus.RETRYING)
    await ledger.update_status("evt_1", "invoice.paid", WebhookEventStatus.FAILED, "boom again")

    record = await ledger.get("evt_1")
    assert record.status == WebhookEventStatus.FAILED.value
    assert record.retry_count == 2
    assert record.error_message == "boom again"


@pytest.mark.asyncio
async def test_processed_stamps_time_and_clears_error(ledger):
    await ledger.mark_queued("evt_1", "invoice.paid", {})
    await ledger.update_status("evt_1", "invoice.paid", WebhookEventStatus.FAILED, "boom")

    await ledger.update_status("evt_1", "invoice.paid", WebhookEventStatus.PROCESSED)

    record = await ledger.get("evt_1")
    assert record.status == WebhookEventStatus.PROCESSED.value
    assert record.processed_at is not None
    assert record.error_message is None
    assert record.retry_count == 1


@pytest.mark.asyncio
async def test_update_status_missing_record_returns_none(ledger):
    assert await ledger.update_status("evt_missing", "x", WebhookEventStatus.PROCESSED) is None


@pytest.mark.asyncio
async def test_get_queued_by_id_returns_any_status(ledger):
    await ledger.mark_queued("evt_1", "invoice.paid", {})
    await ledger.update_status("evt_1", "invoice.paid", WebhookEventStatus.RETRYING)

    record = await ledger.get_queued_by_id("evt_1")
    assert record is not None
    assert record.status == WebhookEventStatus.RETRYING.value
    assert await ledger.get_queued_by_id("evt_other") is None


@pytest.mark.asyncio
async def test_list_failed(ledger):
    await ledger.mark_queued("evt_ok", "a", {})
    await ledger.mark_queued("evt_bad", "b", {})
    await ledger.update_status("evt_bad", "b", WebhookEventStatus.FAILED, "nope")

    failed = await ledger.list_failed()
    assert [r.event_id for r in failed] == ["evt_bad"]


@pytest.mark.asyncio
async def test_list_stale_only_returns_old_pending_rows(ledger):
    await ledger.mark_queued("evt_pending", "a", {})
    await ledger.mark_queued("evt_done", "b", {})
    await ledger.update_status("evt_done", "b", WebhookEventStatus.PROCESSED)

    assert await ledger.list_stale(900) == []

    later = utcnow() + timedelta(hours=1)
    stale = await ledger.list_stale(900, now=later)
    assert [r.event_id for r in stale] == ["evt_pending"]
