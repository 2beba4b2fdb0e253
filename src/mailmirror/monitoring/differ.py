"""Identity-based differencing of two folder snapshots.

Events for one scan are returned in a fixed order:

1. ``NewMessage`` in current enumeration order
2. ``StatusChanged`` / ``SubjectChanged`` / ``GenericModified`` in current
   enumeration order
3. ``Deleted`` in previous enumeration order
4. at most one ``CountChanged``

A status flip and a subject edit on the same message both fire;
``GenericModified`` fires only when neither did and the modification time
moved forward.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Dict, List, Optional

from .models import (
    ChangeEvent,
    CountChanged,
    Deleted,
    FolderSnapshot,
    GenericModified,
    MessageSnapshotEntry,
    NewMessage,
    StatusChanged,
    SubjectChanged,
)

logger = logging.getLogger(__name__)


def _same_subject(left: Optional[str], right: Optional[str]) -> bool:
    return (left or "") == (right or "")


def _modification_advanced(
    previous: Optional[datetime], current: Optional[datetime]
) -> bool:
    if previous is None or current is None:
        return False
    return current > previous


def _entry_changes(
    folder_path: str,
    before: MessageSnapshotEntry,
    after: MessageSnapshotEntry,
    occurred_at: datetime,
) -> List[ChangeEvent]:
    changes: List[ChangeEvent] = []
    if before.is_read != after.is_read:
        changes.append(
            StatusChanged(
                folder_path=folder_path,
                occurred_at=occurred_at,
                identity=after.identity,
                subject=after.subject,
                previous_is_read=before.is_read,
                new_is_read=after.is_read,
            )
        )
    if not _same_subject(before.subject, after.subject):
        changes.append(
            SubjectChanged(
                folder_path=folder_path,
                occurred_at=occurred_at,
                identity=after.identity,
                previous_subject=before.subject,
                new_subject=after.subject,
            )
        )
    if not changes and _modification_advanced(before.last_modified_at, after.last_modified_at):
        changes.append(
            GenericModified(
                folder_path=folder_path,
                occurred_at=occurred_at,
                identity=after.identity,
                subject=after.subject,
            )
        )
    return changes


def diff_snapshots(
    previous: Optional[FolderSnapshot], current: FolderSnapshot
) -> List[ChangeEvent]:
    """Compute the change events that turn ``previous`` into ``current``.

    Args:
        previous: Last successfully observed snapshot, or None on first run
        current: Freshly fetched snapshot of the same folder

    Returns:
        Ordered list of change events (empty when nothing changed)
    """
    folder_path = current.folder_path
    occurred_at = current.captured_at
    remaining: Dict[str, MessageSnapshotEntry] = (
        previous.by_identity() if previous is not None else {}
    )

    added: List[ChangeEvent] = []
    modified: List[ChangeEvent] = []
    for entry in current.entries:
        before = remaining.pop(entry.identity, None)
        if before is None:
            added.append(NewMessage(folder_path=folder_path, occurred_at=occurred_at, entry=entry))
            continue
        modified.extend(_entry_changes(folder_path, before, entry, occurred_at))

    deleted: List[ChangeEvent] = []
    if previous is not None:
        for entry in previous.entries:
            if entry.identity in remaining:
                deleted.append(
                    Deleted(
                        folder_path=folder_path,
                        occurred_at=occurred_at,
                        identity=entry.identity,
                        last_known_subject=entry.subject,
                    )
                )

    events: List[ChangeEvent] = [*added, *modified, *deleted]
    if previous is not None and current.total_count != previous.total_count:
        events.append(
            CountChanged(
                folder_path=folder_path,
                occurred_at=occurred_at,
                previous_total=previous.total_count,
                new_total=current.total_count,
                delta=current.total_count - previous.total_count,
            )
        )

    if events:
        logger.debug(
            "Snapshot diff produced events",
            extra={
                "folder_path": folder_path,
                "new": len(added),
                "modified": len(modified),
                "deleted": len(deleted),
            },
        )
    return events


__all__ = ["diff_snapshots"]
