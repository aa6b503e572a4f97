"""
Durable queue store for calendar sync work items
Every mutation is an atomic single-row conditional update
"""

import logging
import uuid
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

from sqlalchemy import select, update, delete, func, and_

from calsync.core.database import DatabaseService
from calsync.core.models import (
    SyncQueueItemDB, QueueItem, QueueOperation, QueueStatus, QueuePayload,
    TERMINAL_STATUSES, parse_datetime, utc_now
)


class SyncQueueStore:
    """Data access for the `sync_queue` table"""

    def __init__(self, db: DatabaseService, clock: Callable[[], datetime] = utc_now):
        self.db = db
        self.clock = clock
        self.logger = logging.getLogger(__name__)

    async def enqueue(
        self,
        operation: Union[QueueOperation, str],
        payload: Union[QueuePayload, Dict[str, Any], None] = None,
        integration_id: Optional[str] = None,
        event_id: Optional[str] = None,
        priority: int = 0,
        scheduled_for: Optional[datetime] = None,
        max_retries: int = 3
    ) -> QueueItem:
        """Insert a new pending item. The operation kind is not validated here."""
        if isinstance(operation, QueueOperation):
            operation = operation.value
        if not operation:
            raise ValueError("operation is required")
        if hasattr(payload, 'to_dict'):
            payload = payload.to_dict()

        now = self.clock()
        db_item = SyncQueueItemDB(
            id=str(uuid.uuid4()),
            operation=operation,
            integration_id=integration_id,
            event_id=event_id,
            payload=payload or {},
            status=QueueStatus.PENDING.value,
            priority=priority,
            retry_count=0,
            max_retries=max_retries,
            scheduled_for=parse_datetime(scheduled_for) or now,
            created_at=now,
            updated_at=now
        )

        async with self.db.get_session() as session:
            session.add(db_item)

        self.logger.debug(f"Queued {operation} ({db_item.id}) priority={priority}")
        return db_item.to_domain_model()

    async def get(self, item_id: str) -> Optional[QueueItem]:
        async with self.db.get_session() as session:
            db_item = await session.get(SyncQueueItemDB, item_id)
            return db_item.to_domain_model() if db_item else None

    async def claim_batch(self, batch_size: int = 10, max_retries: Optional[int] = None) -> List[QueueItem]:
        """Claim up to `batch_size` eligible items, most urgent and most overdue first.

        Candidates are selected, then each one is claimed with a conditional
        update; an item another processor claimed in between is skipped, so a
        given item is returned by at most one caller.
        """
        now = self.clock()
        conditions = [
            SyncQueueItemDB.status == QueueStatus.PENDING.value,
            SyncQueueItemDB.scheduled_for <= now,
            SyncQueueItemDB.retry_count < SyncQueueItemDB.max_retries,
        ]
        if max_retries is not None:
            conditions.append(SyncQueueItemDB.retry_count < max_retries)

        async with self.db.get_session() as session:
            result = await session.execute(
                select(SyncQueueItemDB.id)
                .where(and_(*conditions))
                .order_by(
                    SyncQueueItemDB.priority.desc(),
                    SyncQueueItemDB.scheduled_for.asc(),
                    SyncQueueItemDB.created_at.asc()
                )
                .limit(batch_size)
            )
            candidate_ids = list(result.scalars().all())

        claimed = []
        for item_id in candidate_ids:
            item = await self.mark_processing(item_id)
            if item is not None:
                claimed.append(item)
            else:
                self.logger.debug(f"Item {item_id} was claimed by another processor")

        return claimed

    async def mark_processing(self, item_id: str) -> Optional[QueueItem]:
        """Move a pending item to processing; returns None if it is no longer pending"""
        now = self.clock()
        async with self.db.get_session() as session:
            result = await session.execute(
                update(SyncQueueItemDB)
                .where(
                    SyncQueueItemDB.id == item_id,
                    SyncQueueItemDB.status == QueueStatus.PENDING.value
                )
                .values(status=QueueStatus.PROCESSING.value, claimed_at=now, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                return None

            db_item = await session.get(SyncQueueItemDB, item_id)
            return db_item.to_domain_model()

    async def mark_completed(self, item_id: str) -> bool:
        now = self.clock()
        return await self._transition(
            item_id,
            from_statuses=(QueueStatus.PROCESSING,),
            status=QueueStatus.COMPLETED.value,
            processed_at=now,
            claimed_at=None,
            updated_at=now
        )

    async def mark_failed_terminal(self, item_id: str, error: Optional[str], retry_count: int) -> bool:
        now = self.clock()
        return await self._transition(
            item_id,
            from_statuses=(QueueStatus.PROCESSING,),
            status=QueueStatus.FAILED.value,
            retry_count=retry_count,
            last_error=error,
            processed_at=now,
            claimed_at=None,
            updated_at=now
        )

    async def mark_retry(self, item_id: str, next_schedule: datetime, error: Optional[str], retry_count: int) -> bool:
        return await self._transition(
            item_id,
            from_statuses=(QueueStatus.PROCESSING,),
            status=QueueStatus.PENDING.value,
            retry_count=retry_count,
            scheduled_for=next_schedule,
            last_error=error,
            claimed_at=None,
            updated_at=self.clock()
        )

    async def cancel(self, item_id: str) -> bool:
        """Cancel a pending item"""
        now = self.clock()
        return await self._transition(
            item_id,
            from_statuses=(QueueStatus.PENDING,),
            status=QueueStatus.CANCELLED.value,
            processed_at=now,
            updated_at=now
        )

    async def requeue(self, item_id: str) -> bool:
        """Manually retry a failed or cancelled item with a fresh retry budget"""
        now = self.clock()
        return await self._transition(
            item_id,
            from_statuses=(QueueStatus.FAILED, QueueStatus.CANCELLED),
            status=QueueStatus.PENDING.value,
            retry_count=0,
            scheduled_for=now,
            last_error=None,
            processed_at=None,
            updated_at=now
        )

    async def recover_stale(self, stale_after: timedelta) -> int:
        """Return items stuck in processing longer than `stale_after` to pending"""
        cutoff = self.clock() - stale_after

        async with self.db.get_session() as session:
            result = await session.execute(
                select(SyncQueueItemDB.id).where(
                    SyncQueueItemDB.status == QueueStatus.PROCESSING.value,
                    SyncQueueItemDB.claimed_at < cutoff
                )
            )
            stale_ids = list(result.scalars().all())

        recovered = 0
        for item_id in stale_ids:
            async with self.db.get_session() as session:
                result = await session.execute(
                    update(SyncQueueItemDB)
                    .where(
                        SyncQueueItemDB.id == item_id,
                        SyncQueueItemDB.status == QueueStatus.PROCESSING.value,
                        SyncQueueItemDB.claimed_at < cutoff
                    )
                    .values(
                        status=QueueStatus.PENDING.value,
                        claimed_at=None,
                        last_error="Recovered from stale processing claim",
                        updated_at=self.clock()
                    )
                    .execution_options(synchronize_session=False)
                )
                recovered += result.rowcount

        if recovered:
            self.logger.warning(f"Recovered {recovered} stale processing item(s)")
        return recovered

    async def purge(self, older_than: datetime, statuses: Iterable[Union[QueueStatus, str]]) -> int:
        """Delete terminal items older than the cutoff; pending/processing items are never touched"""
        terminal_values = {status.value for status in TERMINAL_STATUSES}
        requested = {s.value if isinstance(s, QueueStatus) else str(s).lower() for s in statuses}
        ignored = requested - terminal_values
        if ignored:
            self.logger.warning(f"Refusing to purge non-terminal statuses: {sorted(ignored)}")

        purge_values = sorted(requested & terminal_values)
        if not purge_values:
            return 0

        async with self.db.get_session() as session:
            result = await session.execute(
                delete(SyncQueueItemDB)
                .where(
                    SyncQueueItemDB.status.in_(purge_values),
                    func.coalesce(SyncQueueItemDB.processed_at, SyncQueueItemDB.created_at) < older_than
                )
                .execution_options(synchronize_session=False)
            )
            return result.rowcount

    async def counts_by_status(self) -> Dict[str, int]:
        counts = {status.value: 0 for status in QueueStatus}
        async with self.db.get_session() as session:
            result = await session.execute(
                select(SyncQueueItemDB.status, func.count(SyncQueueItemDB.id))
                .group_by(SyncQueueItemDB.status)
            )
            for status, count in result.all():
                counts[status] = count
        return counts

    async def oldest_pending_created_at(self) -> Optional[datetime]:
        async with self.db.get_session() as session:
            result = await session.execute(
                select(func.min(SyncQueueItemDB.created_at))
                .where(SyncQueueItemDB.status == QueueStatus.PENDING.value)
            )
            return result.scalar_one_or_none()

    async def list_items(self, status: Optional[QueueStatus] = None, limit: int = 100) -> List[QueueItem]:
        query = select(SyncQueueItemDB)
        if status is not None:
            query = query.where(SyncQueueItemDB.status == status.value)
        query = query.order_by(SyncQueueItemDB.created_at.desc()).limit(limit)

        async with self.db.get_session() as session:
            result = await session.execute(query)
            return [db_item.to_domain_model() for db_item in result.scalars().all()]

    async def find_open_item(
        self,
        operation: Union[QueueOperation, str],
        event_id: str,
        integration_id: Optional[str]
    ) -> Optional[QueueItem]:
        """Pending or processing item of one operation for an (event, integration) pair"""
        if isinstance(operation, QueueOperation):
            operation = operation.value
        query = (
            select(SyncQueueItemDB)
            .where(
                SyncQueueItemDB.operation == operation,
                SyncQueueItemDB.event_id == event_id,
                SyncQueueItemDB.integration_id == integration_id,
                SyncQueueItemDB.status.in_([QueueStatus.PENDING.value, QueueStatus.PROCESSING.value])
            )
            .order_by(SyncQueueItemDB.created_at.asc())
        )
        async with self.db.get_session() as session:
            result = await session.execute(query)
            db_item = result.scalars().first()
            return db_item.to_domain_model() if db_item else None

    async def replace_payload(self, item_id: str, payload: Union[QueuePayload, Dict[str, Any]]) -> bool:
        """Swap the payload of an item that has not been claimed yet"""
        if hasattr(payload, 'to_dict'):
            payload = payload.to_dict()
        return await self._transition(
            item_id,
            from_statuses=(QueueStatus.PENDING,),
            payload=payload,
            updated_at=self.clock()
        )

    async def _transition(self, item_id: str, from_statuses, **values) -> bool:
        async with self.db.get_session() as session:
            result = await session.execute(
                update(SyncQueueItemDB)
                .where(
                    SyncQueueItemDB.id == item_id,
                    SyncQueueItemDB.status.in_([status.value for status in from_statuses])
                )
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                self.logger.warning(
                    f"Item {item_id} not in {[s.value for s in from_statuses]}; "
                    f"{values.get('status', 'update')} skipped"
                )
                return False
            return True
