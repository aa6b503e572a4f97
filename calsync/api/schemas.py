"""
Pydantic schemas for the sync queue API
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class QueueOperationEnum(str, Enum):
    CREATE_EVENT = "CREATE_EVENT"
    UPDATE_EVENT = "UPDATE_EVENT"
    DELETE_EVENT = "DELETE_EVENT"
    PULL_CHANGES = "PULL_CHANGES"
    PUSH_CHANGES = "PUSH_CHANGES"
    RESOLVE_CONFLICT = "RESOLVE_CONFLICT"


class QueueStatusEnum(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class EnqueueRequest(BaseModel):
    operation: QueueOperationEnum
    payload: Dict[str, Any] = Field(default_factory=dict)
    integration_id: Optional[str] = None
    event_id: Optional[str] = None
    priority: Optional[int] = Field(None, ge=-100, le=100)
    scheduled_for: Optional[datetime] = None
    max_retries: Optional[int] = Field(None, ge=1, le=20)


class ProcessRequest(BaseModel):
    batch_size: Optional[int] = Field(None, ge=1, le=500)
    max_retries: Optional[int] = Field(None, ge=1, le=20)


class QueueItemResponse(BaseModel):
    id: str
    operation: str
    integration_id: Optional[str] = None
    event_id: Optional[str] = None
    payload: Dict[str, Any] = Field(default_factory=dict)
    status: QueueStatusEnum
    priority: int
    retry_count: int
    max_retries: int
    last_error: Optional[str] = None
    scheduled_for: Optional[datetime] = None
    processed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class ProcessingStatsResponse(BaseModel):
    processed: int
    succeeded: int
    failed: int
    retried: int


class QueueStatsResponse(BaseModel):
    counts_by_status: Dict[str, int]
    oldest_pending_age_ms: Optional[int] = None
    timestamp: datetime


class CleanupResponse(BaseModel):
    deleted_count: int


class RecoverResponse(BaseModel):
    recovered_count: int


class ItemActionResponse(BaseModel):
    success: bool
    message: str
