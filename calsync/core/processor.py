"""
Sync queue processor
Claims due items, dispatches them and records each outcome with retry/backoff
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterable, Optional, Union

from sqlalchemy.exc import SQLAlchemyError

from calsync.config.config_loader import QueueSettings
from calsync.core import retry_policy
from calsync.core.dispatcher import OperationDispatcher
from calsync.core.exceptions import PermanentSyncError, QueueUnavailableError
from calsync.core.models import (
    QueueItem, QueueOperation, QueuePayload, QueueStatus, TERMINAL_STATUSES, utc_now
)
from calsync.core.queue_store import SyncQueueStore


@dataclass
class ProcessingStats:
    """Counters for one processing pass"""
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    retried: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            'processed': self.processed,
            'succeeded': self.succeeded,
            'failed': self.failed,
            'retried': self.retried
        }


@dataclass
class QueueStats:
    """Snapshot of queue health"""
    counts_by_status: Dict[str, int] = field(default_factory=dict)
    oldest_pending_age_ms: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            **self.counts_by_status,
            'oldest_pending_age_ms': self.oldest_pending_age_ms
        }


class SyncQueueProcessor:
    """Drains the sync queue one batch at a time"""

    def __init__(
        self,
        store: SyncQueueStore,
        dispatcher: OperationDispatcher,
        settings: Optional[QueueSettings] = None,
        clock: Callable[[], datetime] = utc_now
    ):
        self.store = store
        self.dispatcher = dispatcher
        self.settings = settings or QueueSettings()
        self.clock = clock
        self.logger = logging.getLogger(__name__)

    async def process_queue(self, batch_size: Optional[int] = None, max_retries: Optional[int] = None) -> ProcessingStats:
        """
        Run one processing pass.

        Each claimed item is dispatched in turn and its outcome persisted
        before the next one starts. A failure of one item never aborts the
        pass; only an unreachable store does, as QueueUnavailableError.
        """
        batch_size = batch_size or self.settings.batch_size
        if max_retries is None:
            max_retries = self.settings.max_retries

        stats = ProcessingStats()
        start_time = time.time()

        try:
            items = await self.store.claim_batch(batch_size=batch_size, max_retries=max_retries)
        except SQLAlchemyError as e:
            self.logger.error(f"Could not claim queue items: {e}")
            raise QueueUnavailableError(f"Sync queue unavailable: {e}") from e

        if not items:
            return stats

        self.logger.info(f"Processing {len(items)} queued sync item(s)")

        for item in items:
            stats.processed += 1
            outcome = await self._process_item(item)
            if outcome == 'completed':
                stats.succeeded += 1
            elif outcome == 'retried':
                stats.retried += 1
            else:
                stats.failed += 1

        duration_ms = (time.time() - start_time) * 1000
        self.logger.info(
            f"Queue pass finished in {duration_ms:.0f}ms: {stats.succeeded} succeeded, "
            f"{stats.retried} retried, {stats.failed} failed"
        )
        return stats

    async def _process_item(self, item: QueueItem) -> str:
        permanent = False
        try:
            result = await self.dispatcher.dispatch(item)
            error = None if result.success else result.error
            permanent = result.permanent
        except PermanentSyncError as e:
            error = str(e)
            permanent = self.settings.fail_fast_permanent_errors
            self.logger.error(f"Item {item.id} ({item.operation}) failed permanently: {error}")
        except Exception as e:
            error = str(e) or type(e).__name__
            self.logger.error(f"Item {item.id} ({item.operation}) raised: {error}", exc_info=True)

        try:
            if error is None:
                if not await self.store.mark_completed(item.id):
                    return self._outcome_lost(item)
                self.logger.debug(f"Item {item.id} ({item.operation}) completed")
                return 'completed'

            decision = retry_policy.decide(item, self.clock(), permanent=permanent)
            if decision.terminal:
                if not await self.store.mark_failed_terminal(item.id, error, decision.retry_count):
                    return self._outcome_lost(item)
                self.logger.warning(
                    f"Item {item.id} ({item.operation}) failed after "
                    f"{decision.retry_count} attempt(s): {error}"
                )
                return 'failed'

            if not await self.store.mark_retry(item.id, decision.next_schedule, error, decision.retry_count):
                return self._outcome_lost(item)
            self.logger.info(
                f"Item {item.id} ({item.operation}) retry {decision.retry_count} "
                f"scheduled for {decision.next_schedule.isoformat()}"
            )
            return 'retried'

        except SQLAlchemyError as e:
            # Item stays in processing until the stale sweep returns it
            self.logger.error(f"Could not record outcome of item {item.id}: {e}")
            return 'failed'

    def _outcome_lost(self, item: QueueItem) -> str:
        # The stale sweep returned the item to pending while it was dispatched
        self.logger.warning(f"Outcome of item {item.id} ({item.operation}) not recorded; item is no longer processing")
        return 'failed'

    async def enqueue(
        self,
        operation: Union[QueueOperation, str],
        payload: Union[QueuePayload, Dict[str, Any], None] = None,
        integration_id: Optional[str] = None,
        event_id: Optional[str] = None,
        priority: Optional[int] = None,
        scheduled_for: Optional[datetime] = None,
        max_retries: Optional[int] = None
    ) -> QueueItem:
        return await self.store.enqueue(
            operation,
            payload,
            integration_id=integration_id,
            event_id=event_id,
            priority=self.settings.default_priority if priority is None else priority,
            scheduled_for=scheduled_for,
            max_retries=self.settings.default_max_retries if max_retries is None else max_retries
        )

    async def get_queue_stats(self) -> QueueStats:
        counts = await self.store.counts_by_status()
        oldest = await self.store.oldest_pending_created_at()

        age_ms = None
        if oldest is not None:
            age_ms = max(0, int((self.clock() - oldest).total_seconds() * 1000))

        return QueueStats(counts_by_status=counts, oldest_pending_age_ms=age_ms)

    async def purge_old(
        self,
        older_than_days: Optional[int] = None,
        statuses: Optional[Iterable[Union[QueueStatus, str]]] = None
    ) -> Dict[str, int]:
        """Delete terminal items older than the given number of days"""
        if older_than_days is None:
            older_than_days = self.settings.purge_after_days
        if older_than_days < 0:
            raise ValueError("older_than_days cannot be negative")

        cutoff = self.clock() - timedelta(days=older_than_days)
        deleted = await self.store.purge(cutoff, statuses or TERMINAL_STATUSES)
        self.logger.info(f"Purged {deleted} queue item(s) older than {older_than_days} day(s)")
        return {'deleted_count': deleted}

    async def recover_stale(self, stale_after: Optional[timedelta] = None) -> int:
        return await self.store.recover_stale(stale_after or self.settings.stale_after)

    async def cancel(self, item_id: str) -> bool:
        return await self.store.cancel(item_id)

    async def requeue(self, item_id: str) -> bool:
        return await self.store.requeue(item_id)
