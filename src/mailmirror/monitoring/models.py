"""Snapshot and event models for folder monitoring.

Snapshots are what the mail bridge reports for one folder at one instant;
events are what the differencer and the folder monitor publish to
subscribers. Every event type carries a ``kind`` discriminator so producers
and consumers agree on the payload shape, and ``parse_event`` turns a
serialized payload back into the right model.
"""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, model_validator

from .state_machine import MonitorStatus


# ---------------------------------------------------------------------------
# Snapshot models
# ---------------------------------------------------------------------------


class MessageSnapshotEntry(BaseModel):
    """One observed message at a point in time."""

    model_config = ConfigDict(frozen=True)

    identity: str = Field(..., min_length=1, description="Stable key within a folder")
    subject: Optional[str] = Field(default=None, description="Subject as reported")
    is_read: bool = Field(default=False, description="Read flag")
    received_at: datetime = Field(..., description="Bridge-reported receive time")
    last_modified_at: Optional[datetime] = Field(
        default=None, description="Last modification time, when the bridge has it"
    )
    sender_address: Optional[str] = Field(default=None, description="Sender address")
    has_attachment: bool = Field(default=False, description="Has at least one attachment")


class FolderSnapshot(BaseModel):
    """All enumerated messages of one folder at one scan instant.

    ``total_count`` is the folder size reported by the mail store and may
    exceed ``len(entries)`` when the bridge truncates enumeration.
    """

    model_config = ConfigDict(frozen=True)

    folder_path: str = Field(..., description="Folder path in bridge addressing")
    entries: List[MessageSnapshotEntry] = Field(default_factory=list)
    captured_at: datetime = Field(default_factory=datetime.utcnow)
    total_count: int = Field(..., ge=0, description="Folder size reported by the store")

    @model_validator(mode="before")
    @classmethod
    def _default_total_count(cls, data: Any) -> Any:
        if isinstance(data, dict) and data.get("total_count") is None:
            data = dict(data)
            data["total_count"] = len(data.get("entries") or [])
        return data

    @model_validator(mode="after")
    def _check_invariants(self) -> "FolderSnapshot":
        seen = set()
        for entry in self.entries:
            if entry.identity in seen:
                raise ValueError(f"duplicate identity in snapshot: {entry.identity}")
            seen.add(entry.identity)
        if self.total_count < len(self.entries):
            raise ValueError(
                f"total_count ({self.total_count}) is lower than the number of entries ({len(self.entries)})"
            )
        return self

    @property
    def is_truncated(self) -> bool:
        return self.total_count > len(self.entries)

    def identities(self) -> List[str]:
        return [entry.identity for entry in self.entries]

    def by_identity(self) -> Dict[str, MessageSnapshotEntry]:
        return {entry.identity: entry for entry in self.entries}


class FetchOptions(BaseModel):
    """Options passed to the bridge for one snapshot request."""

    max_items: int = Field(default=2000, ge=1, description="Upper bound on entries returned")
    since: Optional[datetime] = Field(
        default=None, description="Advisory receive-time filter"
    )


# ---------------------------------------------------------------------------
# Change events
# ---------------------------------------------------------------------------


class _FolderEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    folder_path: str
    occurred_at: datetime = Field(default_factory=datetime.utcnow)


class NewMessage(_FolderEvent):
    """A message whose identity was not present in the previous snapshot."""

    kind: Literal["new_message"] = "new_message"
    entry: MessageSnapshotEntry

    @property
    def identity(self) -> str:
        return self.entry.identity


class StatusChanged(_FolderEvent):
    """The read flag of a known message flipped."""

    kind: Literal["status_changed"] = "status_changed"
    identity: str
    subject: Optional[str] = None
    previous_is_read: bool
    new_is_read: bool


class SubjectChanged(_FolderEvent):
    """The subject of a known message was edited."""

    kind: Literal["subject_changed"] = "subject_changed"
    identity: str
    previous_subject: Optional[str] = None
    new_subject: Optional[str] = None


class GenericModified(_FolderEvent):
    """``last_modified_at`` advanced but no tracked field changed."""

    kind: Literal["generic_modified"] = "generic_modified"
    identity: str
    subject: Optional[str] = None


class Deleted(_FolderEvent):
    """A previously observed message is no longer enumerated."""

    kind: Literal["deleted"] = "deleted"
    identity: str
    last_known_subject: Optional[str] = None


class CountChanged(_FolderEvent):
    """Folder-level total changed between two scans."""

    kind: Literal["count_changed"] = "count_changed"
    previous_total: int = Field(..., ge=0)
    new_total: int = Field(..., ge=0)
    delta: int

    @model_validator(mode="after")
    def _check_delta(self) -> "CountChanged":
        if self.delta != self.new_total - self.previous_total:
            raise ValueError("delta must equal new_total - previous_total")
        return self


# ---------------------------------------------------------------------------
# Monitor notices
# ---------------------------------------------------------------------------


class MonitoringStarted(_FolderEvent):
    """Published once, on the first successful scan after a monitor starts."""

    kind: Literal["monitoring_started"] = "monitoring_started"
    total_count: int = Field(..., ge=0)
    entry_count: int = Field(..., ge=0)


class ScanFailed(_FolderEvent):
    """Published on every failed scan; the host shows it as a degraded state."""

    kind: Literal["scan_failed"] = "scan_failed"
    error_code: str
    message: str
    consecutive_failures: int = Field(..., ge=1)
    retry_in_seconds: float = Field(..., ge=0.0)


ChangeEvent = Annotated[
    Union[NewMessage, StatusChanged, SubjectChanged, GenericModified, Deleted, CountChanged],
    Field(discriminator="kind"),
]

MonitorEvent = Annotated[
    Union[
        NewMessage,
        StatusChanged,
        SubjectChanged,
        GenericModified,
        Deleted,
        CountChanged,
        MonitoringStarted,
        ScanFailed,
    ],
    Field(discriminator="kind"),
]

CHANGE_EVENT_TYPES = (
    NewMessage,
    StatusChanged,
    SubjectChanged,
    GenericModified,
    Deleted,
    CountChanged,
)
NOTICE_TYPES = (MonitoringStarted, ScanFailed)

_EVENT_ADAPTER: TypeAdapter = TypeAdapter(MonitorEvent)


def parse_event(payload: Dict[str, Any]) -> MonitorEvent:
    """Validate a serialized event payload into its typed model."""
    return _EVENT_ADAPTER.validate_python(payload)


# ---------------------------------------------------------------------------
# Status reporting
# ---------------------------------------------------------------------------


class MonitorStatusReport(BaseModel):
    """Read-only view of one folder monitor for dashboards."""

    folder_path: str
    status: MonitorStatus
    interval_ms: int
    consecutive_failures: int = 0
    last_scan_at: Optional[datetime] = None
    last_error: Optional[str] = None
    scans_completed: int = 0
    ticks_dropped: int = 0
    message_count: int = 0
    total_count: Optional[int] = None
    next_delay_seconds: Optional[float] = None


__all__ = [
    "MessageSnapshotEntry",
    "FolderSnapshot",
    "FetchOptions",
    "NewMessage",
    "StatusChanged",
    "SubjectChanged",
    "GenericModified",
    "Deleted",
    "CountChanged",
    "MonitoringStarted",
    "ScanFailed",
    "ChangeEvent",
    "MonitorEvent",
    "CHANGE_EVENT_TYPES",
    "NOTICE_TYPES",
    "parse_event",
    "MonitorStatusReport",
]
