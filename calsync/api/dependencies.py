"""
API Dependencies for the sync queue router
Shared dependencies for authentication and access to the sync service
"""

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from typing import Optional
import hmac
import logging

from calsync.core.processor import SyncQueueProcessor
from calsync.core.sync_service import CalendarSyncService

# Initialize security scheme
security = HTTPBearer(auto_error=False)
logger = logging.getLogger(__name__)


class APIAuthenticator:
    """Centralized API authentication handler"""

    def __init__(self, api_key: str):
        self.api_key = api_key

    def verify_api_key(self, credentials: Optional[HTTPAuthorizationCredentials] = None) -> bool:
        """Verify API key from authorization header"""
        if not credentials:
            return False
        return hmac.compare_digest(credentials.credentials.encode(), self.api_key.encode())

    def raise_unauthorized(self):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing API key",
            headers={"WWW-Authenticate": "Bearer"},
        )


# Set during app initialization
_authenticator: Optional[APIAuthenticator] = None
_sync_service: Optional[CalendarSyncService] = None


def init_api_dependencies(api_key: str, sync_service: CalendarSyncService):
    """Initialize API dependencies with configuration"""
    global _authenticator, _sync_service
    _authenticator = APIAuthenticator(api_key)
    _sync_service = sync_service
    logger.info("API dependencies initialized")


def reset_api_dependencies():
    global _authenticator, _sync_service
    _authenticator = None
    _sync_service = None


async def verify_api_key(credentials: HTTPAuthorizationCredentials = Depends(security)) -> bool:
    """FastAPI dependency for API key verification"""
    if not _authenticator:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="API authentication not initialized"
        )

    if not _authenticator.verify_api_key(credentials):
        _authenticator.raise_unauthorized()

    return True


async def get_sync_service() -> CalendarSyncService:
    if _sync_service is None:
        logger.error("Sync service not initialized - please check init_api_dependencies")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Sync service not available"
        )
    return _sync_service


async def get_processor(service: CalendarSyncService = Depends(get_sync_service)) -> SyncQueueProcessor:
    """FastAPI dependency to get the queue processor"""
    return service.processor
