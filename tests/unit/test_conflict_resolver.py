"""Unit tests for conflict detection and resolution."""

from datetime import datetime, timedelta

import pytest

from calsync.core.conflict_resolver import ConflictResolver
from calsync.core.models import EventSnapshot, ResolutionStrategy

T0 = datetime(2026, 1, 5, 9, 0, 0)


@pytest.fixture
def resolver():
    return ConflictResolver()


@pytest.fixture
def local_event():
    return EventSnapshot(
        id="evt-1",
        title="Local title",
        location="Room A",
        start=T0 + timedelta(days=1),
        end=T0 + timedelta(days=1, hours=1),
        updated_at=T0 + timedelta(hours=1),
        field_updated_at={"title": T0 + timedelta(hours=1), "location": T0}
    )


@pytest.fixture
def remote_event():
    return EventSnapshot(
        id="evt-1",
        title="Remote title",
        location="Room B",
        start=T0 + timedelta(days=1),
        end=T0 + timedelta(days=1, hours=1),
        updated_at=T0 + timedelta(hours=2),
        field_updated_at={"title": T0 + timedelta(minutes=30), "location": T0 + timedelta(hours=2)}
    )


def test_detects_conflict_when_both_sides_changed(resolver, local_event, remote_event):
    conflict = resolver.detect(local_event, remote_event, last_sync_at=T0, integration_id="int-1")

    assert conflict is not None
    assert conflict.event_id == "evt-1"
    assert conflict.integration_id == "int-1"
    assert set(conflict.differing_fields) == {"title", "location"}
    assert conflict.auto_resolvable is True


def test_no_conflict_without_previous_sync(resolver, local_event, remote_event):
    assert resolver.detect(local_event, remote_event, last_sync_at=None, integration_id="int-1") is None


def test_no_conflict_when_only_remote_changed(resolver, local_event, remote_event):
    last_sync = T0 + timedelta(hours=1, minutes=30)

    assert resolver.detect(local_event, remote_event, last_sync_at=last_sync, integration_id="int-1") is None


def test_no_conflict_when_content_is_identical(resolver, local_event):
    remote = EventSnapshot(**{**local_event.__dict__, "updated_at": T0 + timedelta(hours=3)})

    assert resolver.detect(local_event, remote, last_sync_at=T0, integration_id="int-1") is None


def test_local_strategy_keeps_local_and_pushes(resolver, local_event, remote_event):
    resolution = resolver.resolve(local_event, remote_event, ResolutionStrategy.LOCAL)

    assert resolution.event is local_event
    assert resolution.update_local is False
    assert resolution.push_remote is True


def test_remote_strategy_overwrites_local(resolver, local_event, remote_event):
    resolution = resolver.resolve(local_event, remote_event, ResolutionStrategy.REMOTE)

    assert resolution.event.title == "Remote title"
    assert resolution.event.id == "evt-1"
    assert resolution.update_local is True
    assert resolution.push_remote is False


def test_merge_takes_newest_value_per_field(resolver, local_event, remote_event):
    resolution = resolver.resolve(local_event, remote_event, ResolutionStrategy.MERGE)

    assert resolution.event.title == "Local title"
    assert resolution.event.location == "Room B"
    assert resolution.field_sources["title"] == "local"
    assert resolution.field_sources["location"] == "remote"
    assert resolution.update_local is True
    assert resolution.push_remote is True
    assert resolution.event.updated_at == T0 + timedelta(hours=2)


def test_merge_tie_keeps_local_value(resolver):
    same_time = T0 + timedelta(hours=1)
    local = EventSnapshot(id="evt-2", title="Mine", updated_at=same_time, field_updated_at={"title": same_time})
    remote = EventSnapshot(id="evt-2", title="Theirs", updated_at=same_time, field_updated_at={"title": same_time})

    merged, sources = resolver.merge(local, remote)

    assert merged.title == "Mine"
    assert sources["title"] == "local"


def test_merge_falls_back_to_event_timestamp(resolver):
    local = EventSnapshot(id="evt-3", description="old", updated_at=T0)
    remote = EventSnapshot(id="evt-3", description="new", updated_at=T0 + timedelta(minutes=5))

    merged, sources = resolver.merge(local, remote)

    assert merged.description == "new"
    assert sources["description"] == "remote"
