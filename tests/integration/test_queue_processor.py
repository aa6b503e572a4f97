"""Integration tests for the SyncQueueProcessor retry/backoff lifecycle."""

from datetime import timedelta
from unittest.mock import AsyncMock

import pytest
from sqlalchemy.exc import OperationalError

from calsync.config.config_loader import QueueSettings
from calsync.core.dispatcher import OperationDispatcher
from calsync.core.exceptions import QueueUnavailableError
from calsync.core.models import QueueOperation, QueueStatus, SyncResult
from calsync.core.processor import SyncQueueProcessor


def _processor(store, clock, handler, settings=None, operation=QueueOperation.CREATE_EVENT):
    dispatcher = OperationDispatcher(timeout_seconds=5)
    dispatcher.register(operation, handler)
    return SyncQueueProcessor(store, dispatcher, settings=settings or QueueSettings(), clock=clock)


@pytest.mark.asyncio
async def test_fresh_item_processed_immediately(store, clock):
    processor = _processor(store, clock, AsyncMock(return_value=True))
    item = await processor.enqueue(
        QueueOperation.CREATE_EVENT, {"eventId": "e1"}, priority=5, max_retries=3
    )

    stats = await processor.process_queue(batch_size=10)

    assert stats.to_dict() == {"processed": 1, "succeeded": 1, "failed": 0, "retried": 0}
    stored = await store.get(item.id)
    assert stored.status == QueueStatus.COMPLETED
    assert stored.processed_at == clock.now


@pytest.mark.asyncio
async def test_empty_queue_returns_zero_stats(store, clock):
    processor = _processor(store, clock, AsyncMock(return_value=True))

    stats = await processor.process_queue()

    assert stats.to_dict() == {"processed": 0, "succeeded": 0, "failed": 0, "retried": 0}


@pytest.mark.asyncio
async def test_retries_exhaust_after_max_retries(store, clock):
    handler = AsyncMock(return_value=SyncResult.failed("provider down"))
    processor = _processor(store, clock, handler)
    item = await processor.enqueue(QueueOperation.CREATE_EVENT, {}, max_retries=2)

    first = await processor.process_queue()
    assert first.to_dict() == {"processed": 1, "succeeded": 0, "failed": 0, "retried": 1}
    after_first = await store.get(item.id)
    assert after_first.status == QueueStatus.PENDING
    assert after_first.retry_count == 1
    assert after_first.scheduled_for == clock.now + timedelta(minutes=2)
    assert after_first.last_error == "provider down"

    clock.advance(minutes=3)
    second = await processor.process_queue()
    assert second.to_dict() == {"processed": 1, "succeeded": 0, "failed": 1, "retried": 0}
    after_second = await store.get(item.id)
    assert after_second.status == QueueStatus.FAILED
    assert after_second.retry_count == 2

    clock.advance(hours=1)
    third = await processor.process_queue()
    assert third.processed == 0
    assert handler.await_count == 2


@pytest.mark.asyncio
async def test_retry_schedule_strictly_increases(store, clock):
    processor = _processor(store, clock, AsyncMock(return_value=False))
    item = await processor.enqueue(QueueOperation.CREATE_EVENT, {}, max_retries=5)

    delays = []
    for _ in range(4):
        failed_at = clock.now
        await processor.process_queue()
        stored = await store.get(item.id)
        delays.append(stored.scheduled_for - failed_at)
        clock.now = stored.scheduled_for

    assert delays == [timedelta(minutes=m) for m in (2, 4, 8, 16)]

    await processor.process_queue()
    final = await store.get(item.id)
    assert final.status == QueueStatus.FAILED
    assert final.retry_count == 5


@pytest.mark.asyncio
async def test_one_raising_item_does_not_abort_batch(store, clock):
    async def handler(item):
        if item.payload.get("n") == 3:
            raise RuntimeError("malformed upstream response")
        return True

    processor = _processor(store, clock, handler)
    items = []
    for n in range(1, 6):
        items.append(await processor.enqueue(QueueOperation.CREATE_EVENT, {"n": n}))
        clock.advance(seconds=1)

    stats = await processor.process_queue(batch_size=10)

    assert stats.to_dict() == {"processed": 5, "succeeded": 4, "failed": 0, "retried": 1}
    broken = await store.get(items[2].id)
    assert broken.status == QueueStatus.PENDING
    assert broken.last_error == "malformed upstream response"
    for item in items[:2] + items[3:]:
        assert (await store.get(item.id)).status == QueueStatus.COMPLETED


@pytest.mark.asyncio
async def test_unknown_operation_fails_immediately(store, clock):
    processor = _processor(store, clock, AsyncMock(return_value=True))
    item = await processor.enqueue("SEND_FAX", {}, max_retries=3)

    stats = await processor.process_queue()

    assert stats.failed == 1
    stored = await store.get(item.id)
    assert stored.status == QueueStatus.FAILED
    assert stored.last_error == "Unknown operation: SEND_FAX"


@pytest.mark.asyncio
async def test_unknown_operation_retries_when_fail_fast_disabled(store, clock):
    settings = QueueSettings(fail_fast_permanent_errors=False)
    processor = _processor(store, clock, AsyncMock(return_value=True), settings=settings)
    item = await processor.enqueue("SEND_FAX", {}, max_retries=3)

    stats = await processor.process_queue()

    assert stats.retried == 1
    assert (await store.get(item.id)).status == QueueStatus.PENDING


@pytest.mark.asyncio
async def test_permanent_result_flag_is_terminal(store, clock):
    handler = AsyncMock(return_value=SyncResult.failed("calendar deleted", permanent=True))
    processor = _processor(store, clock, handler)
    item = await processor.enqueue(QueueOperation.CREATE_EVENT, {}, max_retries=3)

    stats = await processor.process_queue()

    assert stats.failed == 1
    assert (await store.get(item.id)).retry_count == 1


@pytest.mark.asyncio
async def test_claim_failure_raises_queue_unavailable(store, clock, monkeypatch):
    processor = _processor(store, clock, AsyncMock(return_value=True))
    monkeypatch.setattr(
        store, "claim_batch",
        AsyncMock(side_effect=OperationalError("SELECT", {}, Exception("database is locked")))
    )

    with pytest.raises(QueueUnavailableError):
        await processor.process_queue()


@pytest.mark.asyncio
async def test_outcome_write_failure_leaves_item_for_stale_sweep(store, clock, monkeypatch):
    processor = _processor(store, clock, AsyncMock(return_value=True))
    item = await processor.enqueue(QueueOperation.CREATE_EVENT, {})
    monkeypatch.setattr(
        store, "mark_completed",
        AsyncMock(side_effect=OperationalError("UPDATE", {}, Exception("disk I/O error")))
    )

    stats = await processor.process_queue()

    assert stats.processed == 1
    assert (await store.get(item.id)).status == QueueStatus.PROCESSING


@pytest.mark.asyncio
async def test_item_recovered_during_dispatch_is_not_counted_as_success(store, clock):
    async def slow_handler(item):
        clock.advance(minutes=20)
        await store.recover_stale(timedelta(minutes=15))
        return True

    processor = _processor(store, clock, slow_handler)
    item = await processor.enqueue(QueueOperation.CREATE_EVENT, {})

    stats = await processor.process_queue()

    assert stats.to_dict() == {"processed": 1, "succeeded": 0, "failed": 1, "retried": 0}
    assert (await store.get(item.id)).status == QueueStatus.PENDING


@pytest.mark.asyncio
async def test_enqueue_keeps_explicit_zero_max_retries(store, clock):
    processor = _processor(store, clock, AsyncMock(return_value=True))

    explicit = await processor.enqueue(QueueOperation.CREATE_EVENT, {}, max_retries=0)
    defaulted = await processor.enqueue(QueueOperation.CREATE_EVENT, {})

    assert explicit.max_retries == 0
    assert defaulted.max_retries == QueueSettings().default_max_retries


@pytest.mark.asyncio
async def test_queue_stats_report_oldest_pending_age(store, clock):
    processor = _processor(store, clock, AsyncMock(return_value=True))
    await processor.enqueue(QueueOperation.CREATE_EVENT, {})
    clock.advance(seconds=90)

    stats = await processor.get_queue_stats()

    assert stats.counts_by_status["pending"] == 1
    assert stats.oldest_pending_age_ms == 90_000


@pytest.mark.asyncio
async def test_purge_old_reports_deleted_count(store, clock):
    processor = _processor(store, clock, AsyncMock(return_value=True))
    await processor.enqueue(QueueOperation.CREATE_EVENT, {})
    await processor.process_queue()
    pending = await processor.enqueue(QueueOperation.CREATE_EVENT, {})

    clock.advance(days=10)
    result = await processor.purge_old(older_than_days=7)

    assert result == {"deleted_count": 1}
    assert (await store.get(pending.id)).status == QueueStatus.PENDING
