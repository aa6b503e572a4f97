"""
Core data models for the calendar sync queue - SQLAlchemy Integration
Queue items, calendar integrations, event sync mappings and local events,
plus the domain dataclasses the processor and executors work with
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Any, List, Optional, Union

from sqlalchemy import (
    Column, String, DateTime, Integer, Text, Boolean, JSON, Index, UniqueConstraint
)
from sqlalchemy.orm import declarative_base

from calsync.core.exceptions import InvalidPayloadError

Base = declarative_base()


def utc_now() -> datetime:
    """Naive UTC timestamp, the representation stored in every DateTime column"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_datetime(value: Any) -> Optional[datetime]:
    """Parse ISO strings or datetimes into naive UTC datetimes"""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str):
        dt = datetime.fromisoformat(value.replace('Z', '+00:00'))
    else:
        raise ValueError(f"Cannot interpret {value!r} as a datetime")

    if dt.tzinfo:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def _isoformat(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


class QueueOperation(Enum):
    """Kinds of work a queue item can carry"""
    CREATE_EVENT = "CREATE_EVENT"
    UPDATE_EVENT = "UPDATE_EVENT"
    DELETE_EVENT = "DELETE_EVENT"
    PULL_CHANGES = "PULL_CHANGES"
    PUSH_CHANGES = "PUSH_CHANGES"
    RESOLVE_CONFLICT = "RESOLVE_CONFLICT"


class QueueStatus(Enum):
    """Queue item lifecycle status"""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = (QueueStatus.COMPLETED, QueueStatus.FAILED, QueueStatus.CANCELLED)


class CalendarProvider(Enum):
    """External calendar providers an integration can point at"""
    GOOGLE = "GOOGLE"
    NOTION = "NOTION"
    OUTLOOK = "OUTLOOK"
    MOCK = "MOCK"


class SyncDirection(Enum):
    """Which way events flow for an integration"""
    BIDIRECTIONAL = "BIDIRECTIONAL"
    IMPORT_ONLY = "IMPORT_ONLY"
    EXPORT_ONLY = "EXPORT_ONLY"


class EventSyncStatus(Enum):
    """Per-integration sync state of a single local event"""
    PENDING = "pending"
    SYNCED = "synced"
    ERROR = "error"
    CONFLICT = "conflict"


class ResolutionStrategy(Enum):
    """How a conflict between a local and a remote event is settled"""
    LOCAL = "local"
    REMOTE = "remote"
    MERGE = "merge"


class PushOperation(Enum):
    """Operation passed to a provider client for a single event"""
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


# SQLAlchemy Models
class SyncQueueItemDB(Base):
    """SQLAlchemy model for sync queue items"""
    __tablename__ = 'sync_queue'

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    operation = Column(String(50), nullable=False)
    integration_id = Column(String(36), nullable=True, index=True)
    event_id = Column(String(100), nullable=True, index=True)
    payload = Column(JSON, nullable=False, default=dict)
    status = Column(String(20), nullable=False, default=QueueStatus.PENDING.value, index=True)
    priority = Column(Integer, nullable=False, default=0, index=True)
    retry_count = Column(Integer, nullable=False, default=0)
    max_retries = Column(Integer, nullable=False, default=3)
    last_error = Column(Text, nullable=True)
    scheduled_for = Column(DateTime, nullable=False, default=utc_now, index=True)
    claimed_at = Column(DateTime, nullable=True)
    processed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utc_now)
    updated_at = Column(DateTime, nullable=False, default=utc_now, onupdate=utc_now)

    __table_args__ = (
        Index('idx_sync_queue_claim', 'status', 'priority', 'scheduled_for'),
    )

    def to_domain_model(self) -> 'QueueItem':
        """Convert SQLAlchemy model to domain model"""
        return QueueItem(
            id=self.id,
            operation=self.operation,
            integration_id=self.integration_id,
            event_id=self.event_id,
            payload=dict(self.payload or {}),
            status=QueueStatus(self.status),
            priority=self.priority,
            retry_count=self.retry_count,
            max_retries=self.max_retries,
            last_error=self.last_error,
            scheduled_for=self.scheduled_for,
            claimed_at=self.claimed_at,
            processed_at=self.processed_at,
            created_at=self.created_at
        )

    def __repr__(self):
        return f"<SyncQueueItem(id={self.id}, operation={self.operation}, status={self.status})>"


class CalendarIntegrationDB(Base):
    """SQLAlchemy model for external calendar connections"""
    __tablename__ = 'calendar_integrations'

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    provider = Column(String(20), nullable=False, index=True)
    name = Column(String(200), nullable=False, default="")
    calendar_target = Column(String(200), nullable=True)
    credentials = Column(JSON, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    sync_direction = Column(String(20), nullable=False, default=SyncDirection.BIDIRECTIONAL.value)
    sync_token = Column(Text, nullable=True)
    last_sync_at = Column(DateTime, nullable=True)
    last_push_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utc_now)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now)

    def to_domain_model(self) -> 'CalendarIntegration':
        """Convert to domain model"""
        return CalendarIntegration(
            id=self.id,
            provider=self.provider,
            name=self.name,
            calendar_target=self.calendar_target,
            credentials=dict(self.credentials or {}),
            is_active=self.is_active,
            sync_direction=SyncDirection(self.sync_direction),
            sync_token=self.sync_token,
            last_sync_at=self.last_sync_at,
            last_push_at=self.last_push_at
        )


class EventSyncDB(Base):
    """SQLAlchemy model mapping a local event to its copy in one integration"""
    __tablename__ = 'event_syncs'

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    event_id = Column(String(100), nullable=False, index=True)
    integration_id = Column(String(36), nullable=False, index=True)
    provider = Column(String(20), nullable=False)
    external_id = Column(String(255), nullable=True, index=True)
    sync_status = Column(String(20), nullable=False, default=EventSyncStatus.PENDING.value, index=True)
    last_sync_at = Column(DateTime, nullable=True)
    last_sync_error = Column(Text, nullable=True)
    conflict_data = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=utc_now)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now)

    __table_args__ = (
        UniqueConstraint('event_id', 'integration_id', name='uq_event_syncs_event_integration'),
    )

    def to_domain_model(self) -> 'EventSyncRecord':
        """Convert to domain model"""
        return EventSyncRecord(
            event_id=self.event_id,
            integration_id=self.integration_id,
            provider=self.provider,
            external_id=self.external_id,
            sync_status=EventSyncStatus(self.sync_status),
            last_sync_at=self.last_sync_at,
            last_sync_error=self.last_sync_error,
            conflict_data=self.conflict_data
        )


class LocalEventDB(Base):
    """SQLAlchemy model for the local copy of a calendar event"""
    __tablename__ = 'events'

    id = Column(String(100), primary_key=True, default=lambda: str(uuid.uuid4()))
    title = Column(String(200), nullable=False, default="")
    description = Column(Text, default="")
    start_time = Column(DateTime, nullable=True)
    end_time = Column(DateTime, nullable=True)
    all_day = Column(Boolean, default=False)
    location = Column(String(200), default="")
    attendees = Column(JSON, default=list)
    status = Column(String(20), nullable=False, default="scheduled")
    field_updated_at = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=utc_now)
    updated_at = Column(DateTime, default=utc_now, index=True)

    def to_domain_model(self) -> 'EventSnapshot':
        """Convert SQLAlchemy model to an event snapshot"""
        return EventSnapshot(
            id=self.id,
            title=self.title or "",
            description=self.description or "",
            start=self.start_time,
            end=self.end_time,
            all_day=bool(self.all_day),
            location=self.location or "",
            attendees=list(self.attendees or []),
            status=self.status,
            updated_at=self.updated_at,
            field_updated_at={
                name: parse_datetime(value)
                for name, value in (self.field_updated_at or {}).items()
            }
        )

    def apply_snapshot(self, snapshot: 'EventSnapshot'):
        """Copy the synced fields of a snapshot onto this row"""
        self.title = snapshot.title
        self.description = snapshot.description
        self.start_time = snapshot.start
        self.end_time = snapshot.end
        self.all_day = snapshot.all_day
        self.location = snapshot.location
        self.attendees = list(snapshot.attendees)
        self.status = snapshot.status
        self.field_updated_at = {
            name: _isoformat(value) for name, value in snapshot.field_updated_at.items()
        } or None
        self.updated_at = snapshot.updated_at or utc_now()


# Domain models
SYNCED_FIELDS = ('title', 'description', 'start', 'end', 'all_day', 'location', 'attendees', 'status')


@dataclass
class EventSnapshot:
    """Point-in-time copy of a calendar event, as carried in queue payloads"""
    id: str
    title: str = ""
    description: str = ""
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    all_day: bool = False
    location: str = ""
    attendees: List[str] = field(default_factory=list)
    status: str = "scheduled"
    updated_at: Optional[datetime] = None
    field_updated_at: Dict[str, datetime] = field(default_factory=dict)

    def field_modified_at(self, name: str) -> Optional[datetime]:
        """Modification time of a single field, falling back to the event's"""
        return self.field_updated_at.get(name) or self.updated_at

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'title': self.title,
            'description': self.description,
            'start': _isoformat(self.start),
            'end': _isoformat(self.end),
            'all_day': self.all_day,
            'location': self.location,
            'attendees': list(self.attendees),
            'status': self.status,
            'updated_at': _isoformat(self.updated_at),
            'field_updated_at': {
                name: _isoformat(value) for name, value in self.field_updated_at.items()
            }
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'EventSnapshot':
        if not isinstance(data, dict) or not data.get('id'):
            raise ValueError("event snapshot requires an 'id'")
        return cls(
            id=str(data['id']),
            title=data.get('title') or "",
            description=data.get('description') or "",
            start=parse_datetime(data.get('start')),
            end=parse_datetime(data.get('end')),
            all_day=bool(data.get('all_day', False)),
            location=data.get('location') or "",
            attendees=list(data.get('attendees') or []),
            status=data.get('status') or "scheduled",
            updated_at=parse_datetime(data.get('updated_at')),
            field_updated_at={
                name: parse_datetime(value)
                for name, value in (data.get('field_updated_at') or {}).items()
                if value
            }
        )


# Typed payloads, one shape per operation
@dataclass
class EventPayload:
    """Payload of CREATE_EVENT / UPDATE_EVENT / DELETE_EVENT items"""
    event: EventSnapshot
    target_integration_ids: Optional[List[str]] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {'event': self.event.to_dict()}
        if self.target_integration_ids is not None:
            data['target_integration_ids'] = list(self.target_integration_ids)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'EventPayload':
        targets = data.get('target_integration_ids')
        return cls(
            event=EventSnapshot.from_dict(data.get('event')),
            target_integration_ids=list(targets) if targets is not None else None
        )


@dataclass
class DateRangePayload:
    """Payload of PULL_CHANGES items; both bounds optional"""
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {'start_date': _isoformat(self.start_date), 'end_date': _isoformat(self.end_date)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'DateRangePayload':
        payload = cls(
            start_date=parse_datetime(data.get('start_date')),
            end_date=parse_datetime(data.get('end_date'))
        )
        if payload.start_date and payload.end_date and payload.start_date > payload.end_date:
            raise ValueError("start_date is after end_date")
        return payload


@dataclass
class PushChangesPayload:
    """Payload of PUSH_CHANGES items; `since` overrides the stored watermark"""
    since: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {'since': _isoformat(self.since)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PushChangesPayload':
        return cls(since=parse_datetime(data.get('since')))


@dataclass
class ConflictPayload:
    """Payload of RESOLVE_CONFLICT items"""
    event_id: str
    resolution: ResolutionStrategy = ResolutionStrategy.MERGE
    remote_event: Optional[EventSnapshot] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'event_id': self.event_id,
            'resolution': self.resolution.value,
            'remote_event': self.remote_event.to_dict() if self.remote_event else None
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ConflictPayload':
        if not data.get('event_id'):
            raise ValueError("conflict payload requires an 'event_id'")
        remote = data.get('remote_event')
        return cls(
            event_id=str(data['event_id']),
            resolution=ResolutionStrategy(data.get('resolution', ResolutionStrategy.MERGE.value)),
            remote_event=EventSnapshot.from_dict(remote) if remote else None
        )


QueuePayload = Union[EventPayload, DateRangePayload, PushChangesPayload, ConflictPayload]

PAYLOAD_TYPES = {
    QueueOperation.CREATE_EVENT: EventPayload,
    QueueOperation.UPDATE_EVENT: EventPayload,
    QueueOperation.DELETE_EVENT: EventPayload,
    QueueOperation.PULL_CHANGES: DateRangePayload,
    QueueOperation.PUSH_CHANGES: PushChangesPayload,
    QueueOperation.RESOLVE_CONFLICT: ConflictPayload,
}


def parse_payload(operation: QueueOperation, data: Optional[Dict[str, Any]]) -> QueuePayload:
    """Build the typed payload for an operation, raising InvalidPayloadError on bad input"""
    payload_type = PAYLOAD_TYPES[operation]
    try:
        return payload_type.from_dict(data or {})
    except (ValueError, TypeError, KeyError, AttributeError) as e:
        raise InvalidPayloadError(operation.value, str(e)) from e


@dataclass
class QueueItem:
    """Queue item domain model"""
    operation: str
    id: Optional[str] = None
    payload: Dict[str, Any] = field(default_factory=dict)
    integration_id: Optional[str] = None
    event_id: Optional[str] = None
    status: QueueStatus = QueueStatus.PENDING
    priority: int = 0
    retry_count: int = 0
    max_retries: int = 3
    last_error: Optional[str] = None
    scheduled_for: Optional[datetime] = None
    claimed_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    @property
    def operation_kind(self) -> Optional[QueueOperation]:
        """The operation as an enum member, or None when unrecognised"""
        try:
            return QueueOperation(self.operation)
        except ValueError:
            return None

    def typed_payload(self) -> QueuePayload:
        operation = self.operation_kind
        if operation is None:
            raise InvalidPayloadError(self.operation, "unknown operation")
        return parse_payload(operation, self.payload)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'operation': self.operation,
            'integration_id': self.integration_id,
            'event_id': self.event_id,
            'payload': self.payload,
            'status': self.status.value,
            'priority': self.priority,
            'retry_count': self.retry_count,
            'max_retries': self.max_retries,
            'last_error': self.last_error,
            'scheduled_for': _isoformat(self.scheduled_for),
            'claimed_at': _isoformat(self.claimed_at),
            'processed_at': _isoformat(self.processed_at),
            'created_at': _isoformat(self.created_at)
        }


@dataclass
class SyncResult:
    """Outcome of a single executor or provider invocation"""
    success: bool
    error: Optional[str] = None
    provider: Optional[str] = None
    integration_id: Optional[str] = None
    external_id: Optional[str] = None
    operation: Optional[str] = None
    permanent: bool = False

    @classmethod
    def ok(cls, **kwargs) -> 'SyncResult':
        return cls(success=True, **kwargs)

    @classmethod
    def failed(cls, error: str, **kwargs) -> 'SyncResult':
        return cls(success=False, error=error, **kwargs)


@dataclass
class CalendarIntegration:
    """Read-only view of an external calendar connection"""
    id: str
    provider: str
    name: str = ""
    calendar_target: Optional[str] = None
    credentials: Dict[str, Any] = field(default_factory=dict)
    is_active: bool = True
    sync_direction: SyncDirection = SyncDirection.BIDIRECTIONAL
    sync_token: Optional[str] = None
    last_sync_at: Optional[datetime] = None
    last_push_at: Optional[datetime] = None

    @property
    def can_export(self) -> bool:
        return self.sync_direction in (SyncDirection.BIDIRECTIONAL, SyncDirection.EXPORT_ONLY)

    @property
    def can_import(self) -> bool:
        return self.sync_direction in (SyncDirection.BIDIRECTIONAL, SyncDirection.IMPORT_ONLY)


@dataclass
class EventSyncRecord:
    """Mapping between a local event and its copy in one integration"""
    event_id: str
    integration_id: str
    provider: str
    external_id: Optional[str] = None
    sync_status: EventSyncStatus = EventSyncStatus.PENDING
    last_sync_at: Optional[datetime] = None
    last_sync_error: Optional[str] = None
    conflict_data: Optional[Dict[str, Any]] = None


@dataclass
class RemoteEvent:
    """Event fetched from a provider; `event.id` is the local id when the provider knows it"""
    external_id: str
    event: EventSnapshot


@dataclass
class PullResult:
    """Events returned by a provider pull plus the next incremental sync token"""
    events: List[RemoteEvent] = field(default_factory=list)
    sync_token: Optional[str] = None


@dataclass
class ConflictInfo:
    """Both sides of an event changed since the last successful sync"""
    event_id: str
    integration_id: str
    local_version: datetime
    remote_version: datetime
    local_event: EventSnapshot
    remote_event: EventSnapshot
    differing_fields: List[str] = field(default_factory=list)
    auto_resolvable: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            'event_id': self.event_id,
            'integration_id': self.integration_id,
            'local_version': _isoformat(self.local_version),
            'remote_version': _isoformat(self.remote_version),
            'local_event': self.local_event.to_dict(),
            'remote_event': self.remote_event.to_dict(),
            'differing_fields': list(self.differing_fields),
            'auto_resolvable': self.auto_resolvable
        }


def snapshot_fields_equal(left: EventSnapshot, right: EventSnapshot, name: str) -> bool:
    """Compare one synced field of two snapshots"""
    return getattr(left, name) == getattr(right, name)


def differing_fields(left: EventSnapshot, right: EventSnapshot) -> List[str]:
    return [name for name in SYNCED_FIELDS if not snapshot_fields_equal(left, right, name)]
