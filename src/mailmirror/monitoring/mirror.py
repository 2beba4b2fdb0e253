
"""In-memory projection of monitor events.

``InMemoryMirror`` is the reference downstream consumer: it applies each
change event as an upsert or delete keyed by identity. Subscribe its
``handle`` method to an ``EventBus`` to keep a local copy of a folder.
Priming publishes only ``MonitoringStarted``, so a mirror fed from a live
bus must be seeded from the priming snapshot with ``seed``.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional

from .models import (
    CountChanged,
    Deleted,
    FolderSnapshot,
    GenericModified,
    MessageSnapshotEntry,
    MonitoringStarted,
    MonitorEvent,
    NewMessage,
    ScanFailed,
    StatusChanged,
    SubjectChanged,
)


logger = logging.getLogger(__name__)


class InMemoryMirror:
    """Dictionary of mirrored messages for one folder."""

    def __init__(self, folder_path: Optional[str] = None) -> None:
        self.folder_path = folder_path
        self.messages: Dict[str, MessageSnapshotEntry] = {}
        self.total_count: Optional[int] = None
        self.last_error: Optional[str] = None
        self.applied = 0

    def identities(self) -> List[str]:
        return sorted(self.messages)

    def get(self, identity: str) -> Optional[MessageSnapshotEntry]:
        return self.messages.get(identity)

    def seed(self, snapshot: FolderSnapshot) -> None:
        """Replace the mirrored messages with the contents of ``snapshot``."""
        self.messages = snapshot.by_identity()
        self.total_count = snapshot.total_count

    def handle(self, event: MonitorEvent) -> None:
        """Apply one event. Events for other folders are ignored."""
        if self.folder_path is not None and event.folder_path != self.folder_path:
            return
        self.apply(event)

    def apply_all(self, events: Iterable[MonitorEvent]) -> None:
        for event in events:
            self.apply(event)

    def apply(self, event: MonitorEvent) -> None:
        if isinstance(event, NewMessage):
            self.messages[event.entry.identity] = event.entry
        elif isinstance(event, StatusChanged):
            self._update(event.identity, is_read=event.new_is_read)
        elif isinstance(event, SubjectChanged):
            self._update(event.identity, subject=event.new_subject)
        elif isinstance(event, GenericModified):
            # Nothing tracked changed; keep the mirrored copy.
            pass
        elif isinstance(event, Deleted):
            self.messages.pop(event.identity, None)
        elif isinstance(event, CountChanged):
            self.total_count = event.new_total
        elif isinstance(event, MonitoringStarted):
            self.total_count = event.total_count
            self.last_error = None
        elif isinstance(event, ScanFailed):
            self.last_error = event.error_code
        self.applied += 1

    def _update(self, identity: str, **changes) -> None:
        entry = self.messages.get(identity)
        if entry is None:
            logger.debug(
                "Change for unknown message ignored",
                extra={"folder_path": self.folder_path, "identity": identity},
            )
            return
        self.messages[identity] = entry.model_copy(update=changes)


__all__ = ["InMemoryMirror"]
