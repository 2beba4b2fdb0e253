"""Registry of active folder monitors.

The host owns one ``MonitorRegistry`` and passes it wherever monitoring is
started or stopped; there is no module-level instance. The registry is the
only place that validates caller input, so ``ConfigurationError`` is the one
error type it raises.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, Iterable, List, Optional

from mailmirror.audit import AuditLogger
from mailmirror.configuration.settings import FolderConfig, MonitorSettings
from mailmirror.errors import ConfigurationError

from .bridge import FolderBridge, PowerShellBridge
from .events import EventBus
from .models import MonitorStatusReport
from .monitor import FolderMonitor


logger = logging.getLogger(__name__)


class MonitorRegistry:
    """Starts, stops and tracks one ``FolderMonitor`` per folder path."""

    def __init__(
        self,
        bridge: FolderBridge,
        event_bus: EventBus,
        settings: Optional[MonitorSettings] = None,
        audit_logger: Optional[AuditLogger] = None,
    ) -> None:
        self._bridge = bridge
        self._event_bus = event_bus
        self._settings = settings or MonitorSettings()
        self._audit = audit_logger
        self._monitors: Dict[str, FolderMonitor] = {}

    @classmethod
    def with_powershell_bridge(
        cls,
        settings: Optional[MonitorSettings] = None,
        *,
        event_bus: Optional[EventBus] = None,
        audit_logger: Optional[AuditLogger] = None,
    ) -> "MonitorRegistry":
        """Build a registry backed by the Outlook PowerShell bridge."""
        settings = settings or MonitorSettings()
        bridge = PowerShellBridge(
            executable=settings.powershell_executable,
            timeout_seconds=settings.bridge_timeout_seconds,
        )
        return cls(
            bridge,
            event_bus or EventBus(audit_logger=audit_logger),
            settings,
            audit_logger,
        )

    @property
    def settings(self) -> MonitorSettings:
        return self._settings

    @property
    def event_bus(self) -> EventBus:
        return self._event_bus

    def start_monitoring(self, folder_path: str, interval_ms: Optional[int] = None) -> FolderMonitor:
        """Begin polling ``folder_path``.

        A path that is already monitored keeps its monitor: the same interval
        is a no-op, a different one is adopted by the live monitor without
        re-priming.

        Raises:
            ConfigurationError: If the path is empty or the interval is out of bounds
        """
        if not folder_path or not folder_path.strip():
            raise ConfigurationError("Folder path must not be empty")
        interval = self._settings.default_interval_ms if interval_ms is None else interval_ms
        if not self._settings.interval_in_bounds(interval):
            raise ConfigurationError(
                f"Polling interval {interval}ms is outside "
                f"[{self._settings.min_interval_ms}, {self._settings.max_interval_ms}]",
                details={"folder_path": folder_path, "interval_ms": interval},
            )

        existing = self._monitors.get(folder_path)
        if existing is not None:
            if existing.interval_ms != interval:
                existing.update_interval(interval)
            else:
                logger.debug(
                    "Folder already monitored",
                    extra={"folder_path": folder_path, "interval_ms": interval},
                )
            return existing

        try:
            asyncio.get_running_loop()
        except RuntimeError as exc:
            raise ConfigurationError(
                "Monitoring can only be started from a running event loop",
                details={"folder_path": folder_path},
            ) from exc

        monitor = FolderMonitor(
            folder_path=folder_path,
            bridge=self._bridge,
            event_bus=self._event_bus,
            interval_ms=interval,
            max_backoff_ms=self._settings.max_backoff_ms,
            max_items=self._settings.max_items,
            audit_logger=self._audit,
        )
        monitor.start()
        self._monitors[folder_path] = monitor
        return monitor

    def start_from_config(self, folders: Iterable[FolderConfig]) -> List[FolderMonitor]:
        """Start every enabled folder of a configuration."""
        started = []
        for folder in folders:
            if not folder.enabled:
                logger.debug("Skipping disabled folder", extra={"folder_path": folder.path})
                continue
            started.append(self.start_monitoring(folder.path, folder.interval_ms))
        logger.info(
            f"Started {len(started)} configured folder monitors",
            extra={"monitors": len(started)},
        )
        return started

    def stop_monitoring(self, folder_path: str) -> bool:
        """Stop polling ``folder_path``.

        Returns:
            True if a monitor was stopped, False if the path was not monitored
        """
        monitor = self._monitors.pop(folder_path, None)
        if monitor is None:
            return False
        monitor.stop()
        return True

    def list_monitored(self) -> List[str]:
        return sorted(self._monitors)

    def get_monitor(self, folder_path: str) -> Optional[FolderMonitor]:
        return self._monitors.get(folder_path)

    def status(self) -> List[MonitorStatusReport]:
        """Status reports of all monitors, sorted by folder path."""
        return [self._monitors[path].status_report() for path in sorted(self._monitors)]

    async def shutdown(self) -> None:
        """Stop every monitor and wait for in-flight scans to settle."""
        monitors = list(self._monitors.values())
        self._monitors.clear()
        for monitor in monitors:
            monitor.stop()
        if monitors:
            await asyncio.gather(*(monitor.wait_closed() for monitor in monitors))
        logger.info("Monitor registry shut down", extra={"monitors": len(monitors)})

    async def __aenter__(self) -> "MonitorRegistry":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.shutdown()


__all__ = ["MonitorRegistry"]
