"""
Sync Queue API Router
Queue statistics, manual processing, enqueue, cleanup and per-item actions
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from calsync.api.dependencies import get_processor, verify_api_key
from calsync.api.schemas import (
    CleanupResponse, EnqueueRequest, ItemActionResponse, ProcessRequest,
    ProcessingStatsResponse, QueueItemResponse, QueueStatsResponse, QueueStatusEnum,
    RecoverResponse
)
from calsync.core.models import QueueOperation, QueueStatus, parse_payload, utc_now
from calsync.core.processor import SyncQueueProcessor

router = APIRouter(prefix="/api/v1/sync/queue", tags=["sync-queue"])
logger = logging.getLogger(__name__)


@router.get("", response_model=QueueStatsResponse)
async def get_queue_stats(
    authenticated: bool = Depends(verify_api_key),
    processor: SyncQueueProcessor = Depends(get_processor)
):
    """Counts per status and age of the oldest pending item"""
    stats = await processor.get_queue_stats()
    return QueueStatsResponse(
        counts_by_status=stats.counts_by_status,
        oldest_pending_age_ms=stats.oldest_pending_age_ms,
        timestamp=utc_now()
    )


@router.get("/items", response_model=List[QueueItemResponse])
async def list_queue_items(
    status_filter: Optional[QueueStatusEnum] = Query(None, alias="status"),
    limit: int = Query(100, ge=1, le=1000),
    authenticated: bool = Depends(verify_api_key),
    processor: SyncQueueProcessor = Depends(get_processor)
):
    items = await processor.store.list_items(
        status=QueueStatus(status_filter.value) if status_filter else None,
        limit=limit
    )
    return [QueueItemResponse(**item.to_dict()) for item in items]


@router.post("/process", response_model=ProcessingStatsResponse)
async def process_queue(
    request: Optional[ProcessRequest] = None,
    authenticated: bool = Depends(verify_api_key),
    processor: SyncQueueProcessor = Depends(get_processor)
):
    """Run one processing pass; 503 when the queue store is unreachable"""
    request = request or ProcessRequest()
    logger.info("Manual queue processing triggered")
    stats = await processor.process_queue(batch_size=request.batch_size, max_retries=request.max_retries)
    return ProcessingStatsResponse(**stats.to_dict())


@router.post("", response_model=QueueItemResponse, status_code=status.HTTP_201_CREATED)
async def enqueue_item(
    request: EnqueueRequest,
    authenticated: bool = Depends(verify_api_key),
    processor: SyncQueueProcessor = Depends(get_processor)
):
    operation = QueueOperation(request.operation.value)
    # Raises InvalidPayloadError (400) before anything is stored
    payload = parse_payload(operation, request.payload)

    item = await processor.enqueue(
        operation,
        payload,
        integration_id=request.integration_id,
        event_id=request.event_id,
        priority=request.priority,
        scheduled_for=request.scheduled_for,
        max_retries=request.max_retries
    )
    return QueueItemResponse(**item.to_dict())


@router.delete("", response_model=CleanupResponse)
async def cleanup_queue(
    older_than: int = Query(7, ge=0, description="Age in days"),
    statuses: Optional[str] = Query(None, description="Comma separated terminal statuses"),
    authenticated: bool = Depends(verify_api_key),
    processor: SyncQueueProcessor = Depends(get_processor)
):
    """Delete completed, failed or cancelled items older than `older_than` days"""
    status_list = [part.strip() for part in statuses.split(',') if part.strip()] if statuses else None
    result = await processor.purge_old(older_than_days=older_than, statuses=status_list)
    return CleanupResponse(**result)


@router.post("/recover", response_model=RecoverResponse)
async def recover_stale_items(
    authenticated: bool = Depends(verify_api_key),
    processor: SyncQueueProcessor = Depends(get_processor)
):
    recovered = await processor.recover_stale()
    return RecoverResponse(recovered_count=recovered)


@router.get("/{item_id}", response_model=QueueItemResponse)
async def get_queue_item(
    item_id: str,
    authenticated: bool = Depends(verify_api_key),
    processor: SyncQueueProcessor = Depends(get_processor)
):
    item = await processor.store.get(item_id)
    if item is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Queue item {item_id} not found")
    return QueueItemResponse(**item.to_dict())


@router.post("/{item_id}/retry", response_model=ItemActionResponse)
async def retry_item(
    item_id: str,
    authenticated: bool = Depends(verify_api_key),
    processor: SyncQueueProcessor = Depends(get_processor)
):
    """Return a failed or cancelled item to the queue with a fresh retry budget"""
    if not await processor.requeue(item_id):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Queue item {item_id} is not failed or cancelled"
        )
    return ItemActionResponse(success=True, message=f"Queue item {item_id} requeued")


@router.post("/{item_id}/cancel", response_model=ItemActionResponse)
async def cancel_item(
    item_id: str,
    authenticated: bool = Depends(verify_api_key),
    processor: SyncQueueProcessor = Depends(get_processor)
):
    if not await processor.cancel(item_id):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Queue item {item_id} is not pending"
        )
    return ItemActionResponse(success=True, message=f"Queue item {item_id} cancelled")
