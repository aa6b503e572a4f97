"""
Pytest configuration and fixtures for calsync tests
"""

from datetime import datetime, timedelta
from typing import Optional

import pytest

from calsync.config.config_loader import QueueSettings, default_config
from calsync.core.conflict_resolver import ConflictResolver
from calsync.core.database import DatabaseService
from calsync.core.dispatcher import OperationDispatcher
from calsync.core.executors import SyncExecutor
from calsync.core.mock_provider import MockCalendarProvider
from calsync.core.models import CalendarIntegration, EventSnapshot, SyncDirection
from calsync.core.processor import SyncQueueProcessor
from calsync.core.provider_client import ProviderRegistry
from calsync.core.queue_store import SyncQueueStore
from calsync.core.repositories import EventRepository, IntegrationRepository


BASE_TIME = datetime(2026, 1, 5, 9, 0, 0)


class FakeClock:
    """Manually advanced clock, injected wherever the code asks for `now`"""

    def __init__(self, start: datetime = BASE_TIME):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


def make_event(event_id: str = "evt-1", updated_at: Optional[datetime] = None, **fields) -> EventSnapshot:
    start = fields.pop('start', BASE_TIME + timedelta(days=1))
    return EventSnapshot(
        id=event_id,
        title=fields.pop('title', f"Event {event_id}"),
        start=start,
        end=fields.pop('end', start + timedelta(hours=1)),
        updated_at=updated_at or BASE_TIME,
        **fields
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
async def db(tmp_path):
    """File-backed SQLite database so separate sessions see each other's commits"""
    service = DatabaseService(f"sqlite+aiosqlite:///{tmp_path / 'calsync_test.db'}")
    await service.create_tables()
    yield service
    await service.close()


@pytest.fixture
def store(db, clock):
    return SyncQueueStore(db, clock=clock)


@pytest.fixture
def integrations(db, clock):
    return IntegrationRepository(db, clock=clock)


@pytest.fixture
def events(db, clock):
    return EventRepository(db, clock=clock)


@pytest.fixture
def mock_provider():
    return MockCalendarProvider()


@pytest.fixture
def providers(mock_provider):
    registry = ProviderRegistry()
    registry.register("MOCK", mock_provider)
    return registry


@pytest.fixture
def settings():
    return QueueSettings()


@pytest.fixture
def executor(integrations, events, providers, store, settings, clock):
    return SyncExecutor(
        integrations=integrations,
        events=events,
        providers=providers,
        store=store,
        resolver=ConflictResolver(),
        settings=settings,
        clock=clock
    )


@pytest.fixture
def dispatcher(executor):
    dispatcher = OperationDispatcher(timeout_seconds=5)
    executor.register_with(dispatcher)
    return dispatcher


@pytest.fixture
def processor(store, dispatcher, settings, clock):
    return SyncQueueProcessor(store, dispatcher, settings=settings, clock=clock)


@pytest.fixture
def add_integration(integrations):
    """Factory storing a MOCK integration"""

    async def _add(
        integration_id: str,
        direction: SyncDirection = SyncDirection.BIDIRECTIONAL,
        is_active: bool = True,
        provider: str = "MOCK"
    ) -> CalendarIntegration:
        return await integrations.add(CalendarIntegration(
            id=integration_id,
            provider=provider,
            name=f"Calendar {integration_id}",
            is_active=is_active,
            sync_direction=direction
        ))

    return _add


@pytest.fixture
def test_config(tmp_path):
    config = default_config()
    config['database']['url'] = f"sqlite+aiosqlite:///{tmp_path / 'calsync_api.db'}"
    config['api']['api_key'] = 'test-api-key'
    return config
