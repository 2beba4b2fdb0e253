"""Lifecycle states and transition validation for folder monitors.

A monitor's status tag is the only thing that serializes its scans: a tick
is accepted only from ``IDLE`` or ``BACKOFF`` and moves the monitor to
``SCANNING``; any tick arriving while ``SCANNING`` is dropped. This module
keeps the transition table so that property is checked on every change
instead of relying on scattered flag checks.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Set

from mailmirror.errors import InvalidStateTransitionError


logger = logging.getLogger(__name__)


class MonitorStatus(str, Enum):
    """Folder monitor lifecycle states."""

    IDLE = "idle"  # Waiting for the next tick
    SCANNING = "scanning"  # Bridge call in flight
    BACKOFF = "backoff"  # Last scan failed, next tick delayed
    STOPPED = "stopped"  # Terminal


VALID_TRANSITIONS: Dict[MonitorStatus, Set[MonitorStatus]] = {
    MonitorStatus.IDLE: {
        MonitorStatus.SCANNING,  # Tick accepted
        MonitorStatus.STOPPED,  # Stop command
    },
    MonitorStatus.SCANNING: {
        MonitorStatus.IDLE,  # Scan succeeded
        MonitorStatus.BACKOFF,  # Scan failed
        MonitorStatus.STOPPED,  # Stop while in flight, result discarded
    },
    MonitorStatus.BACKOFF: {
        MonitorStatus.SCANNING,  # Retry tick
        MonitorStatus.STOPPED,  # Stop command
    },
    MonitorStatus.STOPPED: set(),
}


@dataclass
class StateTransition:
    """Records one validated state change of a monitor."""

    folder_path: str
    from_status: MonitorStatus
    to_status: MonitorStatus
    timestamp: datetime
    reason: Optional[str] = None

    def is_valid(self) -> bool:
        return self.to_status in VALID_TRANSITIONS.get(self.from_status, set())


@dataclass
class StateMachineValidator:
    """Validates transitions and keeps a bounded history for diagnostics."""

    history_limit: int = 50
    _history: List[StateTransition] = field(default_factory=list, init=False, repr=False)

    def validate_transition(
        self,
        folder_path: str,
        from_status: MonitorStatus,
        to_status: MonitorStatus,
        *,
        reason: Optional[str] = None,
    ) -> StateTransition:
        """Validate a monitor state transition before applying it.

        Args:
            folder_path: Folder the monitor watches
            from_status: Current status
            to_status: Desired status
            reason: Optional reason recorded in the history

        Returns:
            The recorded StateTransition

        Raises:
            InvalidStateTransitionError: If the transition is not allowed
        """
        transition = StateTransition(
            folder_path=folder_path,
            from_status=from_status,
            to_status=to_status,
            timestamp=datetime.utcnow(),
            reason=reason,
        )
        if not transition.is_valid():
            logger.error(
                "Invalid monitor state transition",
                extra={
                    "folder_path": folder_path,
                    "from_status": from_status.value,
                    "to_status": to_status.value,
                },
            )
            raise InvalidStateTransitionError(
                f"Invalid transition: {from_status.value} -> {to_status.value}",
                details={"folder_path": folder_path},
            )

        self._history.append(transition)
        if len(self._history) > self.history_limit:
            del self._history[: len(self._history) - self.history_limit]
        return transition

    @property
    def history(self) -> List[StateTransition]:
        return list(self._history)


__all__ = [
    "MonitorStatus",
    "VALID_TRANSITIONS",
    "StateTransition",
    "StateMachineValidator",
]
