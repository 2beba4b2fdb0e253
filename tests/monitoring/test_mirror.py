"""Tests for the in-memory projection."""

from __future__ import annotations

import pytest

from mailmirror.monitoring.differ import diff_snapshots
from mailmirror.monitoring.mirror import InMemoryMirror
from mailmirror.monitoring.models import ScanFailed, StatusChanged, SubjectChanged
from mailmirror.monitoring.monitor import FolderMonitor


def test_replaying_diffs_reproduces_identities(entry_factory, snapshot_factory):
    snapshot_a = snapshot_factory([entry_factory(i) for i in ("i1", "i2", "i3")])
    snapshot_b = snapshot_factory(
        [entry_factory("i2", is_read=True), entry_factory("i3", subject="Edited"), entry_factory("i4")],
        total_count=12,
    )
    mirror = InMemoryMirror()

    mirror.apply_all(diff_snapshots(None, snapshot_a))
    mirror.apply_all(diff_snapshots(snapshot_a, snapshot_b))

    assert mirror.identities() == sorted(snapshot_b.identities())
    assert mirror.get("i2").is_read is True
    assert mirror.get("i3").subject == "Edited"
    assert mirror.total_count == 12


def test_changes_for_unknown_messages_are_ignored(folder_path):
    mirror = InMemoryMirror(folder_path)

    mirror.handle(
        StatusChanged(folder_path=folder_path, identity="ghost", previous_is_read=False, new_is_read=True)
    )
    mirror.handle(SubjectChanged(folder_path=folder_path, identity="ghost", new_subject="x"))

    assert mirror.messages == {}
    assert mirror.applied == 2


def test_events_for_other_folders_are_ignored(folder_path):
    mirror = InMemoryMirror(folder_path)

    mirror.handle(
        ScanFailed(
            folder_path="Inbox\\Other",
            error_code="BRIDGE_TIMEOUT",
            message="timed out",
            consecutive_failures=1,
            retry_in_seconds=30,
        )
    )

    assert mirror.last_error is None
    assert mirror.applied == 0


@pytest.mark.asyncio
async def test_mirror_follows_live_monitor(
    bridge, event_bus, folder_path, entry_factory, snapshot_factory
):
    """Priming does not replay the folder; later changes are mirrored."""
    bridge.push(
        snapshot_factory([entry_factory("i1"), entry_factory("i2")], total_count=2),
        snapshot_factory([entry_factory("i2"), entry_factory("i3")], total_count=2),
    )
    mirror = InMemoryMirror(folder_path)
    event_bus.subscribe(folder_path, mirror.handle)
    monitor = FolderMonitor(
        folder_path=folder_path,
        bridge=bridge,
        event_bus=event_bus,
        interval_ms=1000,
        max_backoff_ms=5000,
    )

    await monitor.tick()
    assert mirror.identities() == []
    assert mirror.total_count == 2

    await monitor.tick()
    assert mirror.identities() == ["i3"]


@pytest.mark.asyncio
async def test_seeded_mirror_matches_folder_after_live_scans(
    bridge, event_bus, folder_path, entry_factory, snapshot_factory
):
    snapshot_a = snapshot_factory([entry_factory(i) for i in ("i1", "i2", "i3")])
    snapshot_b = snapshot_factory(
        [entry_factory("i2", is_read=True), entry_factory("i3", subject="Edited"), entry_factory("i4")],
        total_count=12,
    )
    bridge.push(snapshot_a, snapshot_b)
    mirror = InMemoryMirror(folder_path)
    event_bus.subscribe(folder_path, mirror.handle)
    monitor = FolderMonitor(
        folder_path=folder_path,
        bridge=bridge,
        event_bus=event_bus,
        interval_ms=1000,
        max_backoff_ms=5000,
    )

    await monitor.tick()
    mirror.seed(snapshot_a)
    await monitor.tick()

    assert mirror.identities() == sorted(snapshot_b.identities())
    assert mirror.get("i2").is_read is True
    assert mirror.get("i3").subject == "Edited"
    assert mirror.total_count == 12
