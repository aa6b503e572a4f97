"""Integration tests for the SyncQueueStore against SQLite."""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from calsync.core.models import QueueOperation, QueueStatus
from calsync.core.queue_store import SyncQueueStore


@pytest.mark.asyncio
async def test_enqueue_defaults(store, clock):
    item = await store.enqueue(QueueOperation.CREATE_EVENT, {"event": {"id": "e1"}})

    assert item.status == QueueStatus.PENDING
    assert item.retry_count == 0
    assert item.max_retries == 3
    assert item.priority == 0
    assert item.scheduled_for == clock.now
    assert item.created_at == clock.now


@pytest.mark.asyncio
async def test_store_accepts_any_operation_string(store):
    item = await store.enqueue("SEND_FAX")

    stored = await store.get(item.id)
    assert stored.operation == "SEND_FAX"
    assert stored.operation_kind is None


@pytest.mark.asyncio
async def test_claim_orders_by_priority_then_schedule(store, clock):
    low = await store.enqueue(QueueOperation.PULL_CHANGES, priority=0)
    clock.advance(seconds=1)
    high_late = await store.enqueue(QueueOperation.CREATE_EVENT, priority=5)
    clock.advance(seconds=1)
    high_early = await store.enqueue(
        QueueOperation.UPDATE_EVENT, priority=5, scheduled_for=clock.now - timedelta(minutes=10)
    )

    claimed = await store.claim_batch(batch_size=10)

    assert [item.id for item in claimed] == [high_early.id, high_late.id, low.id]
    assert all(item.status == QueueStatus.PROCESSING for item in claimed)
    assert all(item.claimed_at == clock.now for item in claimed)


@pytest.mark.asyncio
async def test_claim_respects_batch_size(store):
    for _ in range(5):
        await store.enqueue(QueueOperation.CREATE_EVENT)

    claimed = await store.claim_batch(batch_size=2)

    assert len(claimed) == 2
    counts = await store.counts_by_status()
    assert counts["processing"] == 2
    assert counts["pending"] == 3


@pytest.mark.asyncio
async def test_future_items_are_not_claimed(store, clock):
    await store.enqueue(QueueOperation.CREATE_EVENT, scheduled_for=clock.now + timedelta(minutes=5))

    assert await store.claim_batch() == []

    clock.advance(minutes=5)
    assert len(await store.claim_batch()) == 1


@pytest.mark.asyncio
async def test_offset_schedule_is_stored_as_utc(store, clock):
    # 10:30 at UTC+2 is 08:30 UTC, already due at the 09:00 UTC clock
    local_time = datetime(2026, 1, 5, 10, 30, tzinfo=timezone(timedelta(hours=2)))

    item = await store.enqueue(QueueOperation.CREATE_EVENT, scheduled_for=local_time)

    assert item.scheduled_for == datetime(2026, 1, 5, 8, 30)
    assert [claimed.id for claimed in await store.claim_batch()] == [item.id]


@pytest.mark.asyncio
async def test_claim_filters_by_retry_count(store, clock):
    item = await store.enqueue(QueueOperation.CREATE_EVENT, max_retries=5)
    await store.mark_processing(item.id)
    await store.mark_retry(item.id, clock.now, "flaky", retry_count=2)

    assert await store.claim_batch(max_retries=2) == []
    assert len(await store.claim_batch(max_retries=3)) == 1


@pytest.mark.asyncio
async def test_concurrent_claims_never_share_an_item(db, clock):
    first = SyncQueueStore(db, clock=clock)
    second = SyncQueueStore(db, clock=clock)
    for _ in range(6):
        await first.enqueue(QueueOperation.CREATE_EVENT)

    batch_a, batch_b = await asyncio.gather(
        first.claim_batch(batch_size=6),
        second.claim_batch(batch_size=6)
    )

    ids_a = {item.id for item in batch_a}
    ids_b = {item.id for item in batch_b}
    assert ids_a.isdisjoint(ids_b)
    assert len(ids_a | ids_b) == 6


@pytest.mark.asyncio
async def test_mark_processing_only_succeeds_once(store):
    item = await store.enqueue(QueueOperation.CREATE_EVENT)

    assert await store.mark_processing(item.id) is not None
    assert await store.mark_processing(item.id) is None


@pytest.mark.asyncio
async def test_completion_requires_processing(store):
    item = await store.enqueue(QueueOperation.CREATE_EVENT)

    assert await store.mark_completed(item.id) is False

    await store.mark_processing(item.id)
    assert await store.mark_completed(item.id) is True

    stored = await store.get(item.id)
    assert stored.status == QueueStatus.COMPLETED
    assert stored.processed_at is not None
    assert stored.claimed_at is None


@pytest.mark.asyncio
async def test_cancel_and_requeue(store):
    item = await store.enqueue(QueueOperation.CREATE_EVENT)

    assert await store.cancel(item.id) is True
    assert await store.cancel(item.id) is False
    assert (await store.get(item.id)).status == QueueStatus.CANCELLED

    assert await store.requeue(item.id) is True
    requeued = await store.get(item.id)
    assert requeued.status == QueueStatus.PENDING
    assert requeued.retry_count == 0


@pytest.mark.asyncio
async def test_requeue_refuses_pending_items(store):
    item = await store.enqueue(QueueOperation.CREATE_EVENT)

    assert await store.requeue(item.id) is False


@pytest.mark.asyncio
async def test_recover_stale_returns_old_claims_to_pending(store, clock):
    stale = await store.enqueue(QueueOperation.CREATE_EVENT)
    await store.mark_processing(stale.id)
    clock.advance(minutes=20)
    fresh = await store.enqueue(QueueOperation.UPDATE_EVENT)
    await store.mark_processing(fresh.id)

    recovered = await store.recover_stale(timedelta(minutes=15))

    assert recovered == 1
    assert (await store.get(stale.id)).status == QueueStatus.PENDING
    assert (await store.get(fresh.id)).status == QueueStatus.PROCESSING


@pytest.mark.asyncio
async def test_purge_deletes_only_old_terminal_items(store, clock):
    completed = await store.enqueue(QueueOperation.CREATE_EVENT)
    await store.mark_processing(completed.id)
    await store.mark_completed(completed.id)
    pending = await store.enqueue(QueueOperation.CREATE_EVENT)

    clock.advance(days=10)
    deleted = await store.purge(clock.now - timedelta(days=7), ["completed", "pending"])

    assert deleted == 1
    assert await store.get(completed.id) is None
    assert (await store.get(pending.id)).status == QueueStatus.PENDING


@pytest.mark.asyncio
async def test_purge_keeps_recent_terminal_items(store, clock):
    item = await store.enqueue(QueueOperation.CREATE_EVENT)
    await store.cancel(item.id)

    clock.advance(days=3)
    deleted = await store.purge(clock.now - timedelta(days=7), [QueueStatus.CANCELLED])

    assert deleted == 0
    assert await store.get(item.id) is not None


@pytest.mark.asyncio
async def test_counts_and_oldest_pending(store, clock):
    first = await store.enqueue(QueueOperation.CREATE_EVENT)
    clock.advance(minutes=1)
    await store.enqueue(QueueOperation.CREATE_EVENT)
    await store.cancel(first.id)

    counts = await store.counts_by_status()

    assert counts == {"pending": 1, "processing": 0, "completed": 0, "failed": 0, "cancelled": 1}
    assert await store.oldest_pending_created_at() == clock.now
