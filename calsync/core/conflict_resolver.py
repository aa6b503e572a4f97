"""
Conflict detection and resolution between local and remote event versions
"""

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Dict, Optional

from calsync.core.models import (
    ConflictInfo, EventSnapshot, ResolutionStrategy, SYNCED_FIELDS, differing_fields
)


@dataclass
class Resolution:
    """Outcome of resolving one conflict"""
    strategy: ResolutionStrategy
    event: EventSnapshot
    update_local: bool
    push_remote: bool
    field_sources: Dict[str, str] = field(default_factory=dict)


class ConflictResolver:
    """Decides which version of a concurrently edited event wins"""

    def __init__(self):
        self.logger = logging.getLogger(__name__)

    def detect(
        self,
        local: EventSnapshot,
        remote: EventSnapshot,
        last_sync_at: Optional[datetime],
        integration_id: str
    ) -> Optional[ConflictInfo]:
        """A conflict exists when both sides changed since the last successful sync"""
        if last_sync_at is None or local.updated_at is None or remote.updated_at is None:
            return None

        both_modified = local.updated_at > last_sync_at and remote.updated_at > last_sync_at
        if not both_modified:
            return None

        fields_changed = differing_fields(local, remote)
        if not fields_changed:
            return None

        return ConflictInfo(
            event_id=local.id,
            integration_id=integration_id,
            local_version=local.updated_at,
            remote_version=remote.updated_at,
            local_event=local,
            remote_event=remote,
            differing_fields=fields_changed,
            auto_resolvable=all(
                name in local.field_updated_at and name in remote.field_updated_at
                for name in fields_changed
            )
        )

    def resolve(self, local: EventSnapshot, remote: EventSnapshot, strategy: ResolutionStrategy) -> Resolution:
        if strategy == ResolutionStrategy.LOCAL:
            # Remote side is overwritten with local state on the next push
            return Resolution(
                strategy=strategy,
                event=local,
                update_local=False,
                push_remote=True,
                field_sources={name: 'local' for name in SYNCED_FIELDS}
            )

        if strategy == ResolutionStrategy.REMOTE:
            return Resolution(
                strategy=strategy,
                event=replace(remote, id=local.id),
                update_local=True,
                push_remote=False,
                field_sources={name: 'remote' for name in SYNCED_FIELDS}
            )

        merged, sources = self.merge(local, remote)
        return Resolution(
            strategy=strategy,
            event=merged,
            update_local=bool(differing_fields(merged, local)),
            push_remote=bool(differing_fields(merged, remote)),
            field_sources=sources
        )

    def merge(self, local: EventSnapshot, remote: EventSnapshot):
        """Field-level last-modified-wins; ties keep the local value"""
        values = {}
        timestamps = {}
        sources = {}

        for name in SYNCED_FIELDS:
            local_ts = local.field_modified_at(name)
            remote_ts = remote.field_modified_at(name)

            remote_wins = (
                getattr(local, name) != getattr(remote, name)
                and remote_ts is not None
                and (local_ts is None or remote_ts > local_ts)
            )
            source = remote if remote_wins else local
            values[name] = getattr(source, name)
            sources[name] = 'remote' if remote_wins else 'local'

            chosen_ts = remote_ts if remote_wins else local_ts
            if chosen_ts is not None and name in source.field_updated_at:
                timestamps[name] = chosen_ts

        candidates = [ts for ts in (local.updated_at, remote.updated_at) if ts is not None]
        merged = EventSnapshot(
            id=local.id,
            updated_at=max(candidates) if candidates else None,
            field_updated_at=timestamps,
            **values
        )

        remote_fields = [name for name, source in sources.items() if source == 'remote']
        if remote_fields:
            self.logger.debug(f"Merged {local.id}: remote wins {remote_fields}")
        return merged, sources
