"""
Sync executors: one handler per queue operation
Event pushes fan out to every target integration concurrently and count as
successful when at least one target accepted the change
"""

import asyncio
import logging
from dataclasses import replace
from datetime import datetime
from typing import Callable, List, Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError

from calsync.config.config_loader import QueueSettings
from calsync.core.conflict_resolver import ConflictResolver
from calsync.core.dispatcher import OperationDispatcher
from calsync.core.exceptions import IntegrationNotFoundError, InvalidPayloadError
from calsync.core.models import (
    CalendarIntegration, ConflictInfo, ConflictPayload, DateRangePayload, EventPayload,
    EventSnapshot, EventSyncStatus, PushChangesPayload, PushOperation, QueueItem,
    QueueOperation, QueueStatus, RemoteEvent, ResolutionStrategy, SyncResult, utc_now
)
from calsync.core.provider_client import ProviderRegistry
from calsync.core.queue_store import SyncQueueStore
from calsync.core.repositories import EventRepository, IntegrationRepository


EVENT_PUSH_OPERATIONS = {
    QueueOperation.CREATE_EVENT: PushOperation.CREATE,
    QueueOperation.UPDATE_EVENT: PushOperation.UPDATE,
    QueueOperation.DELETE_EVENT: PushOperation.DELETE,
}


class SyncExecutor:
    """Performs the provider interaction behind each queue operation"""

    def __init__(
        self,
        integrations: IntegrationRepository,
        events: EventRepository,
        providers: ProviderRegistry,
        store: SyncQueueStore,
        resolver: Optional[ConflictResolver] = None,
        settings: Optional[QueueSettings] = None,
        clock: Callable[[], datetime] = utc_now
    ):
        self.integrations = integrations
        self.events = events
        self.providers = providers
        self.store = store
        self.resolver = resolver or ConflictResolver()
        self.settings = settings or QueueSettings()
        self.clock = clock
        self.logger = logging.getLogger(__name__)

    def register_with(self, dispatcher: OperationDispatcher):
        """Register every operation handler with a dispatcher"""
        dispatcher.register(QueueOperation.CREATE_EVENT, self.sync_event)
        dispatcher.register(QueueOperation.UPDATE_EVENT, self.sync_event)
        dispatcher.register(QueueOperation.DELETE_EVENT, self.sync_event)
        dispatcher.register(QueueOperation.PULL_CHANGES, self.pull_changes)
        dispatcher.register(QueueOperation.PUSH_CHANGES, self.push_changes)
        dispatcher.register(QueueOperation.RESOLVE_CONFLICT, self.resolve_conflict)

    # ------------------------------------------------------------------
    # CREATE_EVENT / UPDATE_EVENT / DELETE_EVENT
    # ------------------------------------------------------------------

    async def sync_event(self, item: QueueItem) -> SyncResult:
        """Push one event snapshot to every target integration"""
        payload: EventPayload = item.typed_payload()
        operation = EVENT_PUSH_OPERATIONS[item.operation_kind]

        await self._require_integration(item.integration_id)
        targets = await self.event_targets(payload)
        if not targets:
            return SyncResult.failed("No export integrations configured")

        results = await self.fan_out(payload.event, targets, operation)
        succeeded = [r for r in results if r.success]
        for result in results:
            if not result.success:
                self.logger.warning(
                    f"{operation.value} of {payload.event.id} failed on "
                    f"{result.provider} ({result.integration_id}): {result.error}"
                )

        if succeeded:
            self.logger.info(
                f"{operation.value} of {payload.event.id} reached "
                f"{len(succeeded)}/{len(results)} integration(s)"
            )
            return SyncResult.ok(operation=operation.value)

        errors = "; ".join(f"{r.provider}: {r.error}" for r in results)
        return SyncResult.failed(f"All {len(results)} integration(s) failed: {errors}", operation=operation.value)

    async def fan_out(
        self,
        event: EventSnapshot,
        targets: Sequence[CalendarIntegration],
        operation: PushOperation
    ) -> List[SyncResult]:
        """Push to all targets concurrently and collect one SyncResult per target"""
        external_ids = []
        for integration in targets:
            mapping = await self.events.get_mapping(event.id, integration.id)
            external_ids.append(mapping.external_id if mapping else None)

        results = await asyncio.gather(*(
            self._push_to_target(event, integration, operation, external_id)
            for integration, external_id in zip(targets, external_ids)
        ))

        for integration, result in zip(targets, results):
            await self._track_result(event, integration, result, operation)

        return list(results)

    async def _push_to_target(
        self,
        event: EventSnapshot,
        integration: CalendarIntegration,
        operation: PushOperation,
        external_id: Optional[str]
    ) -> SyncResult:
        base = {'provider': integration.provider, 'integration_id': integration.id}

        client = self.providers.get(integration.provider)
        if client is None:
            return SyncResult.failed(f"Provider {integration.provider} not implemented", **base)

        if operation == PushOperation.DELETE and not external_id:
            # Never mirrored to this integration, nothing to remove
            return SyncResult.ok(operation=operation.value, **base)

        if operation == PushOperation.UPDATE and not external_id:
            operation = PushOperation.CREATE

        timeout = self.settings.provider_timeout_seconds
        try:
            result = await asyncio.wait_for(
                client.push_event(integration, event, operation, external_id=external_id),
                timeout=timeout
            )
        except asyncio.TimeoutError:
            return SyncResult.failed(f"Push timed out after {timeout}s", operation=operation.value, **base)
        except Exception as e:
            return SyncResult.failed(str(e) or type(e).__name__, operation=operation.value, **base)

        result.provider = result.provider or integration.provider
        result.integration_id = result.integration_id or integration.id
        result.operation = result.operation or operation.value
        if result.success and not result.external_id and operation != PushOperation.DELETE:
            result.external_id = external_id
        return result

    async def _track_result(
        self,
        event: EventSnapshot,
        integration: CalendarIntegration,
        result: SyncResult,
        operation: PushOperation
    ):
        try:
            await self.events.track_sync(
                event.id,
                integration.id,
                integration.provider,
                EventSyncStatus.SYNCED if result.success else EventSyncStatus.ERROR,
                external_id=result.external_id,
                error=result.error,
                # The remote copy is gone; a later update must create a new one
                clear_external_id=result.success and operation == PushOperation.DELETE
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error tracking sync of {event.id} on {integration.id}: {e}")

    async def event_targets(self, payload: EventPayload) -> List[CalendarIntegration]:
        if payload.target_integration_ids is None:
            return await self.integrations.list_active(exporting=True)

        targets = []
        for integration_id in payload.target_integration_ids:
            integration = await self.integrations.get(integration_id)
            if integration is None:
                self.logger.warning(f"Skipping missing target integration {integration_id}")
                continue
            if integration.is_active and integration.can_export:
                targets.append(integration)
        return targets

    async def _require_integration(self, integration_id: Optional[str]) -> Optional[CalendarIntegration]:
        if integration_id is None:
            return None
        integration = await self.integrations.get(integration_id)
        if integration is None:
            raise IntegrationNotFoundError(integration_id)
        return integration

    # ------------------------------------------------------------------
    # PULL_CHANGES
    # ------------------------------------------------------------------

    async def pull_changes(self, item: QueueItem) -> SyncResult:
        """Fetch remote events and reconcile them with local state.

        Conflicts do not fail the pull; they are queued for the resolver.
        """
        payload: DateRangePayload = item.typed_payload()

        integration = await self._require_integration(item.integration_id)
        if integration is not None:
            sources = [integration] if integration.is_active and integration.can_import else []
        else:
            sources = await self.integrations.list_active(importing=True)

        if not sources:
            return SyncResult.failed("No import integrations configured")

        fetched = 0
        pulled_events = 0
        conflicts: List[ConflictInfo] = []
        errors = []

        for source in sources:
            client = self.providers.get(source.provider)
            if client is None:
                errors.append(f"Provider {source.provider} not implemented")
                continue

            try:
                result = await asyncio.wait_for(
                    client.pull_events(source, payload.start_date, payload.end_date, source.sync_token),
                    timeout=self.settings.provider_timeout_seconds
                )
            except asyncio.TimeoutError:
                errors.append(f"{source.provider}: pull timed out")
                self.logger.error(f"Pull from {source.provider} ({source.id}) timed out")
                continue
            except Exception as e:
                errors.append(f"{source.provider}: {e}")
                self.logger.error(f"Error pulling from {source.provider} ({source.id}): {e}")
                continue

            fetched += 1
            for remote in result.events:
                pulled_events += 1
                conflict = await self._reconcile_remote_event(source, remote)
                if conflict is not None:
                    conflicts.append(conflict)

            await self.integrations.update_sync_state(source.id, result.sync_token)

        self.logger.info(
            f"Pulled {pulled_events} events from {fetched}/{len(sources)} integration(s), "
            f"{len(conflicts)} conflicts"
        )

        if fetched == 0:
            return SyncResult.failed("; ".join(errors) or "No integration could be fetched")
        return SyncResult.ok()

    async def _reconcile_remote_event(
        self,
        integration: CalendarIntegration,
        remote: RemoteEvent
    ) -> Optional[ConflictInfo]:
        mapping = await self.events.find_mapping_by_external_id(integration.id, remote.external_id)
        local_id = mapping.event_id if mapping else (remote.event.id or None)
        local = await self.events.get(local_id) if local_id else None

        if local is None:
            new_id = local_id or f"{integration.provider.lower()}-{remote.external_id}"
            snapshot = replace(remote.event, id=new_id)
            if snapshot.updated_at is None:
                snapshot.updated_at = self.clock()
            await self.events.save(snapshot)
            await self.events.track_sync(
                new_id, integration.id, integration.provider,
                EventSyncStatus.SYNCED, external_id=remote.external_id
            )
            return None

        remote_snapshot = replace(remote.event, id=local.id)
        if mapping is None:
            mapping = await self.events.get_mapping(local.id, integration.id)
        last_sync_at = mapping.last_sync_at if mapping else None

        conflict = self.resolver.detect(local, remote_snapshot, last_sync_at, integration.id)
        if conflict is not None:
            await self.events.track_sync(
                local.id, integration.id, integration.provider,
                EventSyncStatus.CONFLICT, external_id=remote.external_id,
                conflict_data=conflict.to_dict()
            )
            if self.settings.auto_enqueue_conflicts:
                await self._queue_resolution(integration, local.id, remote_snapshot)
            return conflict

        remote_newer = (
            remote_snapshot.updated_at is not None
            and (local.updated_at is None or remote_snapshot.updated_at > local.updated_at)
        )
        if remote_newer:
            await self.events.save(remote_snapshot)
            await self.events.track_sync(
                local.id, integration.id, integration.provider,
                EventSyncStatus.SYNCED, external_id=remote.external_id
            )
        elif mapping is None:
            await self.events.track_sync(
                local.id, integration.id, integration.provider,
                EventSyncStatus.PENDING, external_id=remote.external_id
            )
        return None

    async def _queue_resolution(self, integration: CalendarIntegration, event_id: str, remote: EventSnapshot):
        """Queue one RESOLVE_CONFLICT per (event, integration); later pulls refresh its remote copy"""
        payload = ConflictPayload(
            event_id=event_id,
            resolution=self.settings.conflict_strategy,
            remote_event=remote
        )

        open_item = await self.store.find_open_item(QueueOperation.RESOLVE_CONFLICT, event_id, integration.id)
        if open_item is not None:
            if open_item.status == QueueStatus.PENDING:
                await self.store.replace_payload(open_item.id, payload)
            self.logger.debug(f"Conflict on {event_id} already queued as {open_item.id}")
            return

        await self.store.enqueue(
            QueueOperation.RESOLVE_CONFLICT,
            payload,
            integration_id=integration.id,
            event_id=event_id,
            priority=self.settings.conflict_priority,
            max_retries=self.settings.default_max_retries
        )

    # ------------------------------------------------------------------
    # PUSH_CHANGES
    # ------------------------------------------------------------------

    async def push_changes(self, item: QueueItem) -> SyncResult:
        """Push every local event modified since each integration's watermark"""
        payload: PushChangesPayload = item.typed_payload()

        integration = await self._require_integration(item.integration_id)
        if integration is not None:
            targets = [integration] if integration.is_active and integration.can_export else []
        else:
            targets = await self.integrations.list_active(exporting=True)

        if not targets:
            return SyncResult.failed("No export integrations configured")

        failed_targets = []
        for target in targets:
            watermark = payload.since or target.last_push_at
            changed = await self.events.list_modified_since(watermark)
            if not changed:
                continue

            results = []
            for event in changed:
                results.extend(await self.fan_out(event, [target], PushOperation.UPDATE))

            failures = [r for r in results if not r.success]
            if failures:
                failed_targets.append(f"{target.provider} ({target.id}): {failures[0].error}")
                self.logger.warning(
                    f"Push to {target.id}: {len(failures)}/{len(results)} event(s) failed, "
                    f"watermark kept at {watermark}"
                )
                continue

            newest = max(event.updated_at for event in changed if event.updated_at is not None)
            if target.last_push_at is not None and target.last_push_at >= newest:
                # Replay from an explicit `since`; the watermark only moves forward
                self.logger.info(f"Pushed {len(changed)} event(s) to {target.id}, watermark unchanged")
                continue
            await self.integrations.update_push_watermark(target.id, newest)
            self.logger.info(f"Pushed {len(changed)} event(s) to {target.id}")

        if failed_targets:
            return SyncResult.failed("Push incomplete for " + "; ".join(failed_targets))
        return SyncResult.ok()

    # ------------------------------------------------------------------
    # RESOLVE_CONFLICT
    # ------------------------------------------------------------------

    async def resolve_conflict(self, item: QueueItem) -> SyncResult:
        payload: ConflictPayload = item.typed_payload()

        integration = await self._require_integration(item.integration_id)
        local = await self.events.get(payload.event_id)
        remote = payload.remote_event

        if local is None:
            if payload.resolution == ResolutionStrategy.REMOTE and remote is not None:
                await self.events.save(replace(remote, id=payload.event_id))
                return SyncResult.ok()
            raise InvalidPayloadError(item.operation, f"local event {payload.event_id} not found")

        if remote is None:
            if payload.resolution != ResolutionStrategy.LOCAL:
                raise InvalidPayloadError(item.operation, "remote_event is required for remote/merge")
            remote = local

        resolution = self.resolver.resolve(local, remote, payload.resolution)

        if resolution.update_local:
            await self.events.save(resolution.event)

        if resolution.push_remote and integration is not None:
            await self.store.enqueue(
                QueueOperation.UPDATE_EVENT,
                EventPayload(event=resolution.event, target_integration_ids=[integration.id]),
                integration_id=integration.id,
                event_id=resolution.event.id,
                priority=self.settings.conflict_priority,
                max_retries=self.settings.default_max_retries
            )

        if integration is not None:
            await self.events.track_sync(
                local.id, integration.id, integration.provider,
                EventSyncStatus.PENDING if resolution.push_remote else EventSyncStatus.SYNCED
            )

        self.logger.info(f"Resolved conflict on {local.id} with strategy {payload.resolution.value}")
        return SyncResult.ok()
