"""
Repositories for the records the sync executors read and reconcile:
calendar integrations, local events and per-integration event mappings
"""

import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import select, update

from calsync.core.credentials import CredentialCipher, CredentialError, is_sealed
from calsync.core.database import DatabaseService
from calsync.core.models import (
    CalendarIntegrationDB, CalendarIntegration, EventSyncDB, EventSyncRecord,
    EventSyncStatus, LocalEventDB, EventSnapshot, SyncDirection, utc_now
)


class IntegrationRepository:
    """Lookup of external calendar connections plus sync bookkeeping"""

    def __init__(
        self,
        db: DatabaseService,
        clock: Callable[[], datetime] = utc_now,
        cipher: Optional[CredentialCipher] = None
    ):
        self.db = db
        self.clock = clock
        self.cipher = cipher
        self.logger = logging.getLogger(__name__)

    def _to_domain(self, db_integration: CalendarIntegrationDB) -> CalendarIntegration:
        integration = db_integration.to_domain_model()
        if is_sealed(integration.credentials):
            if self.cipher is None:
                raise CredentialError(f"Credentials of integration {integration.id} are encrypted and no key is configured")
            integration.credentials = self.cipher.open(integration.credentials)
        return integration

    async def get(self, integration_id: str) -> Optional[CalendarIntegration]:
        async with self.db.get_session() as session:
            db_integration = await session.get(CalendarIntegrationDB, integration_id)
            return self._to_domain(db_integration) if db_integration else None

    async def add(self, integration: CalendarIntegration) -> CalendarIntegration:
        db_integration = CalendarIntegrationDB(
            id=integration.id,
            provider=integration.provider,
            name=integration.name,
            calendar_target=integration.calendar_target,
            credentials=self.cipher.seal(integration.credentials) if self.cipher else integration.credentials,
            is_active=integration.is_active,
            sync_direction=integration.sync_direction.value,
            sync_token=integration.sync_token,
            last_sync_at=integration.last_sync_at,
            last_push_at=integration.last_push_at
        )
        async with self.db.get_session() as session:
            session.add(db_integration)
        return self._to_domain(db_integration)

    async def list_active(self, exporting: bool = False, importing: bool = False) -> List[CalendarIntegration]:
        """Active integrations, optionally restricted to those that accept pushes or pulls"""
        query = select(CalendarIntegrationDB).where(CalendarIntegrationDB.is_active.is_(True))
        if exporting:
            query = query.where(CalendarIntegrationDB.sync_direction.in_([
                SyncDirection.BIDIRECTIONAL.value, SyncDirection.EXPORT_ONLY.value
            ]))
        if importing:
            query = query.where(CalendarIntegrationDB.sync_direction.in_([
                SyncDirection.BIDIRECTIONAL.value, SyncDirection.IMPORT_ONLY.value
            ]))
        query = query.order_by(CalendarIntegrationDB.created_at.asc())

        async with self.db.get_session() as session:
            result = await session.execute(query)
            return [self._to_domain(row) for row in result.scalars().all()]

    async def update_sync_state(self, integration_id: str, sync_token: Optional[str]):
        """Record a completed pull and the token for the next incremental one"""
        now = self.clock()
        async with self.db.get_session() as session:
            await session.execute(
                update(CalendarIntegrationDB)
                .where(CalendarIntegrationDB.id == integration_id)
                .values(sync_token=sync_token, last_sync_at=now, updated_at=now)
            )

    async def update_push_watermark(self, integration_id: str, watermark: datetime):
        async with self.db.get_session() as session:
            await session.execute(
                update(CalendarIntegrationDB)
                .where(CalendarIntegrationDB.id == integration_id)
                .values(last_push_at=watermark, updated_at=self.clock())
            )


class EventRepository:
    """Local events and their per-integration sync mappings"""

    def __init__(self, db: DatabaseService, clock: Callable[[], datetime] = utc_now):
        self.db = db
        self.clock = clock
        self.logger = logging.getLogger(__name__)

    async def get(self, event_id: str) -> Optional[EventSnapshot]:
        async with self.db.get_session() as session:
            db_event = await session.get(LocalEventDB, event_id)
            return db_event.to_domain_model() if db_event else None

    async def save(self, snapshot: EventSnapshot) -> EventSnapshot:
        """Insert or overwrite the local copy of an event"""
        async with self.db.get_session() as session:
            db_event = await session.get(LocalEventDB, snapshot.id)
            if db_event is None:
                db_event = LocalEventDB(id=snapshot.id, created_at=self.clock())
                session.add(db_event)
            db_event.apply_snapshot(snapshot)
            return db_event.to_domain_model()

    async def list_modified_since(self, since: Optional[datetime]) -> List[EventSnapshot]:
        query = select(LocalEventDB)
        if since is not None:
            query = query.where(LocalEventDB.updated_at > since)
        query = query.order_by(LocalEventDB.updated_at.asc())

        async with self.db.get_session() as session:
            result = await session.execute(query)
            return [row.to_domain_model() for row in result.scalars().all()]

    async def get_mapping(self, event_id: str, integration_id: str) -> Optional[EventSyncRecord]:
        async with self.db.get_session() as session:
            result = await session.execute(
                select(EventSyncDB).where(
                    EventSyncDB.event_id == event_id,
                    EventSyncDB.integration_id == integration_id
                )
            )
            db_mapping = result.scalar_one_or_none()
            return db_mapping.to_domain_model() if db_mapping else None

    async def find_mapping_by_external_id(self, integration_id: str, external_id: str) -> Optional[EventSyncRecord]:
        async with self.db.get_session() as session:
            result = await session.execute(
                select(EventSyncDB).where(
                    EventSyncDB.integration_id == integration_id,
                    EventSyncDB.external_id == external_id
                )
            )
            db_mapping = result.scalars().first()
            return db_mapping.to_domain_model() if db_mapping else None

    async def track_sync(
        self,
        event_id: str,
        integration_id: str,
        provider: str,
        status: EventSyncStatus,
        external_id: Optional[str] = None,
        error: Optional[str] = None,
        conflict_data: Optional[Dict[str, Any]] = None,
        clear_external_id: bool = False
    ) -> EventSyncRecord:
        """Upsert the mapping row for (event, integration)"""
        now = self.clock()
        async with self.db.get_session() as session:
            result = await session.execute(
                select(EventSyncDB).where(
                    EventSyncDB.event_id == event_id,
                    EventSyncDB.integration_id == integration_id
                )
            )
            db_mapping = result.scalar_one_or_none()
            if db_mapping is None:
                db_mapping = EventSyncDB(
                    event_id=event_id,
                    integration_id=integration_id,
                    provider=provider,
                    created_at=now
                )
                session.add(db_mapping)

            db_mapping.sync_status = status.value
            if clear_external_id:
                db_mapping.external_id = None
            elif external_id:
                db_mapping.external_id = external_id
            db_mapping.last_sync_error = error
            db_mapping.conflict_data = conflict_data
            if status == EventSyncStatus.SYNCED:
                db_mapping.last_sync_at = now
            db_mapping.updated_at = now
            return db_mapping.to_domain_model()
