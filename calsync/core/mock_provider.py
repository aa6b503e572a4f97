"""
In-memory calendar provider for development and testing
Stores pushed events per integration and serves them back on pull
"""

import uuid
from copy import deepcopy
from datetime import datetime
from typing import Dict, List, Optional

from calsync.core.exceptions import ProviderError
from calsync.core.models import (
    CalendarIntegration, CalendarProvider, EventSnapshot, PullResult, PushOperation, RemoteEvent, SyncResult
)
from calsync.core.provider_client import ProviderClient


class MockCalendarProvider(ProviderClient):
    """Mock provider backed by a dict of calendars"""

    provider_name = CalendarProvider.MOCK.value

    def __init__(self):
        super().__init__()
        # integration id -> external id -> event
        self.calendars: Dict[str, Dict[str, EventSnapshot]] = {}
        self.pushes: List[Dict[str, str]] = []
        self.failing_integrations: Dict[str, str] = {}
        self._sync_generation = 0

    def fail_for(self, integration_id: str, error: str = "Mock provider failure"):
        """Make every call for an integration report failure"""
        self.failing_integrations[integration_id] = error

    def add_remote_event(self, integration_id: str, external_id: str, event: EventSnapshot):
        """Seed an event as if it had been created on the provider side"""
        self.calendars.setdefault(integration_id, {})[external_id] = deepcopy(event)

    async def push_event(
        self,
        integration: CalendarIntegration,
        event: EventSnapshot,
        operation: PushOperation,
        external_id: Optional[str] = None
    ) -> SyncResult:
        self.pushes.append({
            'integration_id': integration.id,
            'event_id': event.id,
            'operation': operation.value
        })

        if integration.id in self.failing_integrations:
            return SyncResult.failed(
                self.failing_integrations[integration.id],
                provider=self.provider_name,
                integration_id=integration.id,
                operation=operation.value
            )

        calendar = self.calendars.setdefault(integration.id, {})

        if operation == PushOperation.DELETE:
            if external_id:
                calendar.pop(external_id, None)
            return SyncResult.ok(
                provider=self.provider_name,
                integration_id=integration.id,
                operation=operation.value
            )

        if operation == PushOperation.UPDATE and external_id in calendar:
            target_id = external_id
        else:
            target_id = external_id or f"mock-{uuid.uuid4().hex[:12]}"

        calendar[target_id] = deepcopy(event)
        self.logger.debug(f"Mock {operation.value} of {event.id} as {target_id}")

        return SyncResult.ok(
            provider=self.provider_name,
            integration_id=integration.id,
            external_id=target_id,
            operation=operation.value
        )

    async def pull_events(
        self,
        integration: CalendarIntegration,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        sync_token: Optional[str] = None
    ) -> PullResult:
        if integration.id in self.failing_integrations:
            raise ProviderError(self.provider_name, self.failing_integrations[integration.id])

        events = []
        for external_id, event in self.calendars.get(integration.id, {}).items():
            if start and event.end and event.end < start:
                continue
            if end and event.start and event.start > end:
                continue
            events.append(RemoteEvent(external_id=external_id, event=deepcopy(event)))

        self._sync_generation += 1
        return PullResult(events=events, sync_token=f"mock-sync-{self._sync_generation}")
