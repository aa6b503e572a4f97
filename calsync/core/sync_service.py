"""
Calendar sync service
Builds the queue components from configuration and offers direct event sync
with queue fallback for the targets that fail
"""

import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from calsync.config.config_loader import QueueSettings, load_config
from calsync.core.conflict_resolver import ConflictResolver
from calsync.core.credentials import CredentialCipher
from calsync.core.database import DEFAULT_DATABASE_URL, DatabaseService
from calsync.core.dispatcher import OperationDispatcher
from calsync.core.executors import EVENT_PUSH_OPERATIONS, SyncExecutor
from calsync.core.mock_provider import MockCalendarProvider
from calsync.core.models import (
    DateRangePayload, EventPayload, EventSnapshot, PushChangesPayload, QueueItem,
    QueueOperation, SyncResult, utc_now
)
from calsync.core.processor import SyncQueueProcessor
from calsync.core.provider_client import ProviderRegistry
from calsync.core.queue_store import SyncQueueStore
from calsync.core.repositories import EventRepository, IntegrationRepository

DIRECT_SYNC_RETRY_PRIORITY = 1


def build_provider_registry(config: Dict[str, Any]) -> ProviderRegistry:
    """Registry with the provider clients enabled in configuration"""
    registry = ProviderRegistry()
    if config.get('providers', {}).get('enable_mock', True):
        registry.register(MockCalendarProvider.provider_name, MockCalendarProvider())
    return registry


class CalendarSyncService:
    """Owns the database, queue store, executors and processor of one application"""

    def __init__(
        self,
        config: Optional[Dict[str, Any]] = None,
        db: Optional[DatabaseService] = None,
        providers: Optional[ProviderRegistry] = None,
        clock: Callable[[], datetime] = utc_now
    ):
        self.config = config if config is not None else load_config()
        self.settings = QueueSettings.from_config(self.config)
        self.clock = clock
        self.logger = logging.getLogger(__name__)

        db_config = self.config.get('database', {})
        self.db = db or DatabaseService(db_config.get('url') or DEFAULT_DATABASE_URL, echo=db_config.get('echo', False))
        self.providers = providers or build_provider_registry(self.config)

        self.store = SyncQueueStore(self.db, clock=clock)
        self.integrations = IntegrationRepository(
            self.db, clock=clock, cipher=CredentialCipher.from_config(self.config)
        )
        self.events = EventRepository(self.db, clock=clock)

        self.executor = SyncExecutor(
            integrations=self.integrations,
            events=self.events,
            providers=self.providers,
            store=self.store,
            resolver=ConflictResolver(),
            settings=self.settings,
            clock=clock
        )
        self.dispatcher = OperationDispatcher(timeout_seconds=self.settings.dispatch_timeout_seconds)
        self.executor.register_with(self.dispatcher)

        self.processor = SyncQueueProcessor(self.store, self.dispatcher, settings=self.settings, clock=clock)

    async def initialize(self):
        """Create tables when missing"""
        await self.db.create_tables()
        self.logger.info(f"Calendar sync service ready, providers: {self.providers.providers()}")

    async def close(self):
        await self.db.close()

    async def sync_event(
        self,
        event: EventSnapshot,
        operation: QueueOperation,
        target_integration_ids: Optional[List[str]] = None
    ) -> List[SyncResult]:
        """
        Push an event to its targets right away

        Each target that fails is handed to the queue as a retry item aimed
        at that integration only.

        Returns:
            One SyncResult per target integration
        """
        if operation not in EVENT_PUSH_OPERATIONS:
            raise ValueError(f"{operation.value} is not an event operation")

        if operation != QueueOperation.DELETE_EVENT:
            await self.events.save(event)

        payload = EventPayload(event=event, target_integration_ids=target_integration_ids)
        targets = await self.executor.event_targets(payload)
        if not targets:
            self.logger.info(f"No targets for {operation.value} of {event.id}")
            return []

        results = await self.executor.fan_out(event, targets, EVENT_PUSH_OPERATIONS[operation])

        for result in results:
            if result.success:
                continue
            await self.store.enqueue(
                operation,
                EventPayload(event=event, target_integration_ids=[result.integration_id]),
                integration_id=result.integration_id,
                event_id=event.id,
                priority=DIRECT_SYNC_RETRY_PRIORITY,
                max_retries=self.settings.default_max_retries
            )
            self.logger.warning(
                f"Direct {operation.value} of {event.id} to {result.integration_id} failed, queued for retry"
            )

        return results

    async def schedule_pull(
        self,
        integration_id: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None
    ) -> QueueItem:
        return await self.processor.enqueue(
            QueueOperation.PULL_CHANGES,
            DateRangePayload(start_date=start_date, end_date=end_date),
            integration_id=integration_id
        )

    async def schedule_push(self, integration_id: Optional[str] = None, since: Optional[datetime] = None) -> QueueItem:
        return await self.processor.enqueue(
            QueueOperation.PUSH_CHANGES,
            PushChangesPayload(since=since),
            integration_id=integration_id
        )
