"""
calsync core module
Exports the queue models and the leaf components
"""

from .exceptions import (
    SyncQueueError,
    QueueUnavailableError,
    PermanentSyncError,
    IntegrationNotFoundError,
    InvalidPayloadError,
    UnknownOperationError,
    ProviderError
)
from .models import (
    QueueOperation,
    QueueStatus,
    QueueItem,
    SyncResult,
    EventSnapshot,
    EventPayload,
    DateRangePayload,
    PushChangesPayload,
    ConflictPayload,
    CalendarIntegration,
    CalendarProvider,
    SyncDirection,
    ResolutionStrategy
)
from .database import DatabaseService
from .queue_store import SyncQueueStore
from .dispatcher import OperationDispatcher
from .conflict_resolver import ConflictResolver, Resolution
from .provider_client import ProviderClient, ProviderRegistry
from .mock_provider import MockCalendarProvider

__all__ = [
    # Errors
    'SyncQueueError',
    'QueueUnavailableError',
    'PermanentSyncError',
    'IntegrationNotFoundError',
    'InvalidPayloadError',
    'UnknownOperationError',
    'ProviderError',

    # Models
    'QueueOperation',
    'QueueStatus',
    'QueueItem',
    'SyncResult',
    'EventSnapshot',
    'EventPayload',
    'DateRangePayload',
    'PushChangesPayload',
    'ConflictPayload',
    'CalendarIntegration',
    'CalendarProvider',
    'SyncDirection',
    'ResolutionStrategy',

    # Components
    'DatabaseService',
    'SyncQueueStore',
    'OperationDispatcher',
    'ConflictResolver',
    'Resolution',
    'ProviderClient',
    'ProviderRegistry',
    'MockCalendarProvider'
]
