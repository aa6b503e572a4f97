"""
Centralized API Error Handling
Maps sync queue exceptions to consistent JSON error responses
"""

import logging
import uuid
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from calsync.core.exceptions import QueueUnavailableError, SyncQueueError

logger = logging.getLogger(__name__)


def create_error_response(
    message: str,
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
    error_code: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None
) -> JSONResponse:
    """Create standardized error response"""
    error_payload = {
        "detail": message,
        "status_code": status_code,
        "request_id": str(uuid.uuid4())
    }

    if error_code:
        error_payload["error_code"] = error_code

    if details:
        error_payload["details"] = details

    return JSONResponse(status_code=status_code, content=error_payload)


async def queue_unavailable_handler(request: Request, exc: QueueUnavailableError) -> JSONResponse:
    logger.error(f"Queue unavailable on {request.url.path}: {exc}")
    return create_error_response(
        str(exc),
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        error_code="QUEUE_UNAVAILABLE"
    )


async def sync_queue_error_handler(request: Request, exc: SyncQueueError) -> JSONResponse:
    logger.warning(f"Sync queue error on {request.url.path}: {exc}")
    return create_error_response(
        str(exc),
        status_code=status.HTTP_400_BAD_REQUEST,
        error_code=type(exc).__name__
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all exception handler"""
    logger.error(f"Unhandled exception on {request.url.path}: {exc}", exc_info=True)
    return create_error_response(
        "Internal server error",
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        error_code="INTERNAL_ERROR"
    )


def register_exception_handlers(app: FastAPI):
    app.add_exception_handler(QueueUnavailableError, queue_unavailable_handler)
    app.add_exception_handler(SyncQueueError, sync_queue_error_handler)
    app.add_exception_handler(Exception, general_exception_handler)
