"""Folder monitoring: bridge adapters, snapshot differencing, per-folder
polling monitors and event delivery."""

from .backoff import BackoffPolicy
from .bridge import (
    ERROR_PREFIX,
    FOLDER_NOT_FOUND_MARKER,
    FolderAddress,
    FolderBridge,
    PowerShellBridge,
    SubprocessBridge,
    parse_bridge_output,
    split_folder_path,
)
from .differ import diff_snapshots
from .events import WILDCARD, EventBus, EventHandler, Subscription
from .mirror import InMemoryMirror
from .models import (
    CHANGE_EVENT_TYPES,
    NOTICE_TYPES,
    ChangeEvent,
    CountChanged,
    Deleted,
    FetchOptions,
    FolderSnapshot,
    GenericModified,
    MessageSnapshotEntry,
    MonitorEvent,
    MonitoringStarted,
    MonitorStatusReport,
    NewMessage,
    ScanFailed,
    StatusChanged,
    SubjectChanged,
    parse_event,
)
from .monitor import FolderMonitor
from .registry import MonitorRegistry
from .state_machine import (
    VALID_TRANSITIONS,
    MonitorStatus,
    StateMachineValidator,
    StateTransition,
)

__all__ = [
    "BackoffPolicy",
    "ERROR_PREFIX",
    "FOLDER_NOT_FOUND_MARKER",
    "FolderAddress",
    "FolderBridge",
    "PowerShellBridge",
    "SubprocessBridge",
    "parse_bridge_output",
    "split_folder_path",
    "diff_snapshots",
    "WILDCARD",
    "EventBus",
    "EventHandler",
    "Subscription",
    "InMemoryMirror",
    "CHANGE_EVENT_TYPES",
    "NOTICE_TYPES",
    "ChangeEvent",
    "CountChanged",
    "Deleted",
    "FetchOptions",
    "FolderSnapshot",
    "GenericModified",
    "MessageSnapshotEntry",
    "MonitorEvent",
    "MonitoringStarted",
    "MonitorStatusReport",
    "NewMessage",
    "ScanFailed",
    "StatusChanged",
    "SubjectChanged",
    "parse_event",
    "FolderMonitor",
    "MonitorRegistry",
    "VALID_TRANSITIONS",
    "MonitorStatus",
    "StateMachineValidator",
    "StateTransition",
]
