"""Per-folder polling state machine.

One ``FolderMonitor`` owns the polling timer, the cached previous snapshot
and the failure counter of a single folder:

- a timer tick (or ``scan_now``) moves ``idle``/``backoff`` to ``scanning``
  and calls the bridge; ticks arriving while ``scanning`` are dropped
- the first successful scan publishes a single ``MonitoringStarted``
  notice; later scans publish the differencer's events in order
- a failed scan publishes ``ScanFailed`` and delays the next tick by
  ``min(interval * consecutive_failures, max_backoff)``
- ``stop`` cancels the timer; an in-flight bridge call finishes but its
  result is discarded

Events of one scan are published while the monitor is still ``scanning``,
so they are fully delivered before the next scan can start.
"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime
from typing import List, Optional

from mailmirror.audit import AuditLogger
from mailmirror.errors import BridgeError, BridgeFault, ConfigurationError, InvalidStateTransitionError

from .audit_events import log_monitor_lifecycle, log_scan_completed, log_scan_failed
from .backoff import BackoffPolicy
from .bridge import FolderBridge
from .differ import diff_snapshots
from .events import EventBus
from .models import (
    FetchOptions,
    FolderSnapshot,
    MonitorEvent,
    MonitoringStarted,
    MonitorStatusReport,
    ScanFailed,
)
from .state_machine import MonitorStatus, StateMachineValidator


logger = logging.getLogger(__name__)


class FolderMonitor:
    """Polls one folder through the bridge and publishes what changed."""

    def __init__(
        self,
        *,
        folder_path: str,
        bridge: FolderBridge,
        event_bus: EventBus,
        interval_ms: int,
        max_backoff_ms: int,
        max_items: int = 2000,
        audit_logger: Optional[AuditLogger] = None,
    ):
        """Initialize folder monitor.

        Args:
            folder_path: Folder path in bridge addressing
            bridge: Snapshot source
            event_bus: Destination for published events
            interval_ms: Polling interval, also the backoff unit
            max_backoff_ms: Cap on the delay after repeated failures
            max_items: Maximum entries requested per snapshot
            audit_logger: Optional audit logger for scan outcomes
        """
        if interval_ms < 1:
            raise ConfigurationError(
                f"Polling interval must be positive, got {interval_ms}",
                details={"folder_path": folder_path},
            )
        self.folder_path = folder_path
        self._bridge = bridge
        self._event_bus = event_bus
        self._interval_ms = interval_ms
        self._max_backoff_ms = max(max_backoff_ms, 1)
        self._fetch_options = FetchOptions(max_items=max_items)
        self._audit = audit_logger

        self._status = MonitorStatus.IDLE
        self._validator = StateMachineValidator()
        self._previous_snapshot: Optional[FolderSnapshot] = None
        self._consecutive_failures = 0
        self._last_scan_at: Optional[datetime] = None
        self._last_error: Optional[str] = None
        self._scans_completed = 0
        self._ticks_dropped = 0
        self._next_delay_seconds: Optional[float] = None

        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._timer: Optional[asyncio.TimerHandle] = None
        self._scan_task: Optional[asyncio.Task[bool]] = None
        self._scan_idle = asyncio.Event()
        self._scan_idle.set()

    # ------------------------------------------------------------------
    # Read-only state
    # ------------------------------------------------------------------

    @property
    def status(self) -> MonitorStatus:
        return self._status

    @property
    def interval_ms(self) -> int:
        return self._interval_ms

    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures

    @property
    def last_scan_at(self) -> Optional[datetime]:
        return self._last_scan_at

    @property
    def ticks_dropped(self) -> int:
        return self._ticks_dropped

    @property
    def next_delay_seconds(self) -> Optional[float]:
        """Delay used for the most recently scheduled tick."""
        return self._next_delay_seconds

    @property
    def backoff(self) -> BackoffPolicy:
        return BackoffPolicy(
            base_interval_ms=self._interval_ms,
            max_interval_ms=self._max_backoff_ms,
        )

    @property
    def is_primed(self) -> bool:
        """True once a first snapshot has been cached."""
        return self._previous_snapshot is not None

    @property
    def timer_pending(self) -> bool:
        return self._timer is not None

    def status_report(self) -> MonitorStatusReport:
        snapshot = self._previous_snapshot
        return MonitorStatusReport(
            folder_path=self.folder_path,
            status=self._status,
            interval_ms=self._interval_ms,
            consecutive_failures=self._consecutive_failures,
            last_scan_at=self._last_scan_at,
            last_error=self._last_error,
            scans_completed=self._scans_completed,
            ticks_dropped=self._ticks_dropped,
            message_count=len(snapshot.entries) if snapshot else 0,
            total_count=snapshot.total_count if snapshot else None,
            next_delay_seconds=self._next_delay_seconds,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Schedule the first tick immediately. Requires a running loop."""
        if self._status is MonitorStatus.STOPPED:
            raise InvalidStateTransitionError(
                "Stopped monitors cannot be restarted",
                details={"folder_path": self.folder_path},
            )
        if self._loop is not None:
            raise RuntimeError("Folder monitor already running")

        self._loop = asyncio.get_running_loop()
        logger.info(
            f"Monitoring started for {self.folder_path}",
            extra={"folder_path": self.folder_path, "interval_ms": self._interval_ms},
        )
        log_monitor_lifecycle(
            self._audit,
            folder_path=self.folder_path,
            started=True,
            interval_ms=self._interval_ms,
        )
        self._schedule(0.0)

    def stop(self) -> None:
        """Cancel the pending tick and move to ``stopped``.

        An in-flight scan keeps running until the bridge answers; its result
        is then discarded.
        """
        if self._status is MonitorStatus.STOPPED:
            return
        self._cancel_timer()
        in_flight = self._status is MonitorStatus.SCANNING
        if not in_flight and self._scan_task is not None and not self._scan_task.done():
            # Timer fired but the scan task has not started yet.
            self._scan_task.cancel()
        self._transition(MonitorStatus.STOPPED, reason="stop requested")
        logger.info(
            f"Monitoring stopped for {self.folder_path}",
            extra={"folder_path": self.folder_path, "scan_in_flight": in_flight},
        )
        log_monitor_lifecycle(
            self._audit,
            folder_path=self.folder_path,
            started=False,
            interval_ms=self._interval_ms,
        )

    async def wait_closed(self) -> None:
        """Wait until no scan is in flight."""
        await self._scan_idle.wait()

    def update_interval(self, interval_ms: int) -> None:
        """Adopt a new polling interval.

        A tick already waiting on the normal interval is rescheduled with the
        new one; a backoff delay in progress is left alone.
        """
        if interval_ms < 1:
            raise ConfigurationError(
                f"Polling interval must be positive, got {interval_ms}",
                details={"folder_path": self.folder_path},
            )
        if interval_ms == self._interval_ms:
            return
        self._interval_ms = interval_ms
        logger.info(
            f"Polling interval for {self.folder_path} set to {interval_ms}ms",
            extra={"folder_path": self.folder_path, "interval_ms": interval_ms},
        )
        # The priming tick keeps its immediate slot.
        if self._status is MonitorStatus.IDLE and self._timer is not None and self.is_primed:
            self._schedule(interval_ms / 1000.0)

    # ------------------------------------------------------------------
    # Scanning
    # ------------------------------------------------------------------

    async def scan_now(self) -> bool:
        """Run a scan immediately, subject to the same drop rule as timer ticks."""
        return await self.tick()

    async def tick(self) -> bool:
        """Handle one tick.

        Returns:
            True if a scan ran and its outcome was applied, False if the tick
            was dropped or the result discarded
        """
        if self._status is MonitorStatus.STOPPED:
            return False
        if self._status is MonitorStatus.SCANNING:
            self._ticks_dropped += 1
            logger.debug(
                "Tick dropped, scan already in flight",
                extra={"folder_path": self.folder_path, "ticks_dropped": self._ticks_dropped},
            )
            return False

        self._cancel_timer()
        self._transition(MonitorStatus.SCANNING)
        self._scan_idle.clear()
        started = time.monotonic()
        try:
            snapshot: Optional[FolderSnapshot] = None
            error: Optional[BridgeError] = None
            try:
                snapshot = await self._bridge.fetch_snapshot(self.folder_path, self._fetch_options)
            except BridgeError as exc:
                error = exc
            except Exception as exc:  # noqa: BLE001
                logger.error(
                    f"Unexpected bridge error for {self.folder_path}",
                    exc_info=exc,
                    extra={"folder_path": self.folder_path},
                )
                error = BridgeFault(
                    f"Unexpected bridge error: {exc}",
                    details={"folder_path": self.folder_path, "error_type": type(exc).__name__},
                )
                error.__cause__ = exc

            if self._status is MonitorStatus.STOPPED:
                logger.info(
                    "Discarding scan result of stopped monitor",
                    extra={"folder_path": self.folder_path},
                )
                return False

            try:
                if error is not None:
                    await self._handle_failure(error)
                else:
                    await self._handle_success(snapshot, time.monotonic() - started)
            except Exception as exc:  # noqa: BLE001
                await self._recover(exc)
            return True
        finally:
            self._scan_idle.set()

    async def _recover(self, exc: Exception) -> None:
        """Route an error raised while applying a scan into the retry path."""
        logger.error(
            f"Unexpected error while applying scan of {self.folder_path}",
            exc_info=exc,
            extra={"folder_path": self.folder_path, "status": self._status.value},
        )
        if self._status is MonitorStatus.STOPPED:
            return
        if self._status is MonitorStatus.SCANNING:
            fault = BridgeFault(
                f"Unexpected scan error: {exc}",
                details={"folder_path": self.folder_path, "error_type": type(exc).__name__},
            )
            fault.__cause__ = exc
            await self._handle_failure(fault)
            return
        # Outcome already applied; only the follow-up tick may be missing.
        if self._timer is None:
            if self._status is MonitorStatus.BACKOFF:
                self._schedule(self.backoff.delay_seconds(self._consecutive_failures))
            else:
                self._schedule(self._interval_ms / 1000.0)

    async def _handle_success(self, snapshot: FolderSnapshot, duration_seconds: float) -> None:
        primed = self._previous_snapshot is None
        events: List[MonitorEvent]
        if primed:
            events = [
                MonitoringStarted(
                    folder_path=self.folder_path,
                    occurred_at=snapshot.captured_at,
                    total_count=snapshot.total_count,
                    entry_count=len(snapshot.entries),
                )
            ]
        else:
            events = list(diff_snapshots(self._previous_snapshot, snapshot))

        if events:
            await self._event_bus.publish(self.folder_path, events)
        if self._status is MonitorStatus.STOPPED:
            return

        self._previous_snapshot = snapshot
        self._consecutive_failures = 0
        self._last_error = None
        self._last_scan_at = snapshot.captured_at
        self._scans_completed += 1
        self._transition(MonitorStatus.IDLE)

        logger.debug(
            f"Scan of {self.folder_path} completed",
            extra={
                "folder_path": self.folder_path,
                "total_count": snapshot.total_count,
                "events": len(events),
                "primed": primed,
            },
        )
        log_scan_completed(
            self._audit,
            folder_path=self.folder_path,
            total_count=snapshot.total_count,
            entry_count=len(snapshot.entries),
            events_published=len(events),
            primed=primed,
            duration_seconds=duration_seconds,
        )
        self._schedule(self._interval_ms / 1000.0)

    async def _handle_failure(self, error: BridgeError) -> None:
        self._consecutive_failures += 1
        self._last_error = error.code
        delay = self.backoff.delay_seconds(self._consecutive_failures)

        logger.warning(
            f"Scan of {self.folder_path} failed ({error.code}), retrying in {delay:.1f}s "
            f"(failure {self._consecutive_failures}): {error.message}",
            extra={
                "folder_path": self.folder_path,
                "error_code": error.code,
                "consecutive_failures": self._consecutive_failures,
                "retry_in_seconds": delay,
            },
        )
        notice = ScanFailed(
            folder_path=self.folder_path,
            error_code=error.code,
            message=error.user_message,
            consecutive_failures=self._consecutive_failures,
            retry_in_seconds=delay,
        )
        await self._event_bus.publish(self.folder_path, [notice])
        if self._status is MonitorStatus.STOPPED:
            return

        self._transition(MonitorStatus.BACKOFF, reason=error.code)
        log_scan_failed(
            self._audit,
            folder_path=self.folder_path,
            error_code=error.code,
            consecutive_failures=self._consecutive_failures,
            retry_in_seconds=delay,
        )
        self._schedule(delay)

    # ------------------------------------------------------------------
    # Timer plumbing
    # ------------------------------------------------------------------

    def _schedule(self, delay_seconds: float) -> None:
        self._cancel_timer()
        self._next_delay_seconds = delay_seconds
        if self._loop is None:
            # Not started: ticks are driven manually.
            return
        self._timer = self._loop.call_later(delay_seconds, self._on_timer)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _on_timer(self) -> None:
        self._timer = None
        if self._status is MonitorStatus.STOPPED or self._loop is None:
            return
        self._scan_task = self._loop.create_task(self.tick())
        self._scan_task.add_done_callback(self._on_scan_done)

    def _on_scan_done(self, task: "asyncio.Task[bool]") -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                f"Scan task for {self.folder_path} crashed",
                exc_info=exc,
                extra={"folder_path": self.folder_path},
            )

    def _transition(self, to_status: MonitorStatus, *, reason: Optional[str] = None) -> None:
        self._validator.validate_transition(
            self.folder_path, self._status, to_status, reason=reason
        )
        logger.debug(
            "Monitor state change",
            extra={
                "folder_path": self.folder_path,
                "from_status": self._status.value,
                "to_status": to_status.value,
            },
        )
        self._status = to_status


__all__ = ["FolderMonitor"]
