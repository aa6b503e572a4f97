"""
ProviderClient interface for external calendar backends
Google, Notion and Outlook REST clients live outside this package and
plug in through this interface
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, List, Optional
import logging

from calsync.core.models import (
    CalendarIntegration, EventSnapshot, PullResult, PushOperation, SyncResult
)


class ProviderClient(ABC):
    """
    Abstract base class for calendar provider clients

    Implementations report push outcomes as SyncResult rather than raising;
    any exception that does escape is converted into a failed SyncResult by
    the executor.
    """

    provider_name: str = ""

    def __init__(self):
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    @abstractmethod
    async def push_event(
        self,
        integration: CalendarIntegration,
        event: EventSnapshot,
        operation: PushOperation,
        external_id: Optional[str] = None
    ) -> SyncResult:
        """
        Create, update or delete one event in the integration's calendar

        Args:
            integration: Target connection
            event: Local event snapshot
            operation: create, update or delete
            external_id: Provider id of the event when already mirrored

        Returns:
            SyncResult carrying the provider's id for the event on success
        """
        pass

    @abstractmethod
    async def pull_events(
        self,
        integration: CalendarIntegration,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        sync_token: Optional[str] = None
    ) -> PullResult:
        """
        Fetch remote events

        Args:
            integration: Source connection
            start: Start of time window (UTC); provider default when None
            end: End of time window (UTC); provider default when None
            sync_token: Token from the previous pull for incremental sync

        Returns:
            PullResult with the remote events and the next sync token
        """
        pass


class ProviderRegistry:
    """Registry of provider clients keyed by provider name"""

    def __init__(self):
        self._clients: Dict[str, ProviderClient] = {}

    def register(self, provider: str, client: ProviderClient):
        self._clients[provider.upper()] = client

    def get(self, provider: str) -> Optional[ProviderClient]:
        return self._clients.get((provider or "").upper())

    def providers(self) -> List[str]:
        return sorted(self._clients)
