"""Audit event types and logging helpers for folder monitoring.

Event Types:
- Monitor lifecycle (started, stopped)
- Scan outcomes (completed, failed)
- Subscriber failures

Payloads carry counts, error codes and a hashed folder path only; message
subjects and sender addresses are never recorded. Audit failures are logged
and swallowed so that a full disk cannot stop monitoring.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Dict, Optional

from mailmirror.audit import AuditEvent, AuditLogger, hash_folder_path


logger = logging.getLogger(__name__)

AUDIT_SOURCE = "folder_monitor"


class MonitorAuditEvents:
    """Audit action names used by the monitoring package."""

    MONITOR_STARTED = "monitor_started"
    MONITOR_STOPPED = "monitor_stopped"
    SCAN_COMPLETED = "scan_completed"
    SCAN_FAILED = "scan_failed"
    HANDLER_FAILED = "handler_failed"


def _record(
    audit_logger: Optional[AuditLogger],
    *,
    action: str,
    status: str,
    folder_path: Optional[str],
    attempt: Optional[int] = None,
    metadata: Optional[Dict[str, object]] = None,
) -> None:
    if audit_logger is None:
        return
    event = AuditEvent(
        source=AUDIT_SOURCE,
        action=action,
        status=status,
        timestamp=datetime.utcnow(),
        folder_hash=hash_folder_path(folder_path) if folder_path else None,
        attempt=attempt,
        metadata=metadata or {},
    )
    try:
        audit_logger.record(event)
    except Exception as exc:  # noqa: BLE001
        logger.warning(
            "Failed to write audit event",
            extra={"action": action, "error": str(exc)},
        )


def log_monitor_lifecycle(
    audit_logger: Optional[AuditLogger],
    *,
    folder_path: str,
    started: bool,
    interval_ms: int,
) -> None:
    """Log a monitor start or stop."""
    _record(
        audit_logger,
        action=MonitorAuditEvents.MONITOR_STARTED if started else MonitorAuditEvents.MONITOR_STOPPED,
        status="success",
        folder_path=folder_path,
        metadata={"interval_ms": interval_ms},
    )


def log_scan_completed(
    audit_logger: Optional[AuditLogger],
    *,
    folder_path: str,
    total_count: int,
    entry_count: int,
    events_published: int,
    primed: bool,
    duration_seconds: float,
) -> None:
    """Log a successful scan."""
    _record(
        audit_logger,
        action=MonitorAuditEvents.SCAN_COMPLETED,
        status="success",
        folder_path=folder_path,
        metadata={
            "total_count": total_count,
            "entry_count": entry_count,
            "events_published": events_published,
            "primed": primed,
            "duration_seconds": round(duration_seconds, 3),
        },
    )


def log_scan_failed(
    audit_logger: Optional[AuditLogger],
    *,
    folder_path: str,
    error_code: str,
    consecutive_failures: int,
    retry_in_seconds: float,
) -> None:
    """Log a failed scan and the backoff that follows it."""
    _record(
        audit_logger,
        action=MonitorAuditEvents.SCAN_FAILED,
        status="failed",
        folder_path=folder_path,
        attempt=consecutive_failures,
        metadata={"error_code": error_code, "retry_in_seconds": retry_in_seconds},
    )


def log_handler_failed(
    audit_logger: Optional[AuditLogger],
    *,
    folder_path: str,
    subscription_id: str,
    event_kind: str,
    error_type: str,
) -> None:
    """Log a subscriber that raised during delivery."""
    _record(
        audit_logger,
        action=MonitorAuditEvents.HANDLER_FAILED,
        status="failed",
        folder_path=folder_path,
        metadata={
            "subscription_id": subscription_id,
            "event_kind": event_kind,
            "error_type": error_type,
        },
    )


__all__ = [
    "MonitorAuditEvents",
    "log_monitor_lifecycle",
    "log_scan_completed",
    "log_scan_failed",
    "log_handler_failed",
]
