"""Tamper-evident audit logging for folder monitoring.

Audit entries describe what the monitor did (scans, failures, lifecycle
changes, failing subscribers) without recording message content: folder
paths are stored as a SHA-256 digest and subjects or sender addresses are
never written.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from hashlib import sha256
from pathlib import Path
from typing import Dict, Iterable, Optional

logger = logging.getLogger(__name__)


def hash_folder_path(folder_path: str) -> str:
    """Return a stable digest for a folder path suitable for audit payloads."""
    return sha256(folder_path.encode("utf-8")).hexdigest()[:16]


@dataclass(frozen=True)
class AuditEvent:
    """Represents a structured audit event."""

    source: str
    action: str
    status: str
    timestamp: datetime
    folder_hash: Optional[str] = None
    attempt: Optional[int] = None
    metadata: Dict[str, object] = field(default_factory=dict)

    def to_payload(self) -> Dict[str, object]:
        payload: Dict[str, object] = {
            "source": self.source,
            "action": self.action,
            "status": self.status,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.folder_hash:
            payload["folder_hash"] = self.folder_hash
        if self.attempt is not None:
            payload["attempt"] = self.attempt
        if self.metadata:
            payload["metadata"] = self.metadata
        return payload


@dataclass
class AuditLogger:
    """Writes append-only, hash-chained JSONL audit logs.

    Attributes:
        output_dir: Directory for audit log files
        filename: Name of the main audit log file
        max_bytes: Maximum log file size before rotation
        retention_days: Days to retain rotated logs
        manifest_name: Name of the manifest file tracking the chain head
    """

    output_dir: Path
    filename: str = "audit.log"
    max_bytes: int = 5 * 1024 * 1024
    retention_days: int = 30
    manifest_name: str = "audit_manifest.json"

    def __post_init__(self) -> None:
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self._path = self.output_dir / self.filename
        self._manifest_path = self.output_dir / self.manifest_name
        if not self._manifest_path.exists():
            self._save_manifest({"last_hash": None, "previous_hash": None, "rotated": []})

    @property
    def path(self) -> Path:
        return self._path

    def record(self, event: AuditEvent) -> None:
        payload = event.to_payload()
        chained = self._augment_with_chain(payload)
        with self._path.open("a", encoding="utf-8") as fp:
            fp.write(json.dumps(chained, separators=(",", ":")) + "\n")
        self._rotate_if_needed()
        self._prune_old_logs()

    def verify(self, *, path: Optional[Path] = None) -> bool:
        """Verify the integrity of the audit log chain.

        Args:
            path: Optional path to verify (defaults to current log)

        Returns:
            True if chain is valid, False if tampered
        """
        target = path or self._path
        if not target.exists():
            return True
        previous_hash = self._load_manifest().get("previous_hash")
        for entry in _iter_json_lines(target):
            if entry.get("chain_prev") != previous_hash:
                return False
            current_hash = entry.get("chain_hash")
            if current_hash != _compute_chain_hash(entry):
                return False
            previous_hash = current_hash
        return True

    def iter_events(self, *, path: Optional[Path] = None) -> Iterable[Dict[str, object]]:
        target = path or self._path
        if not target.exists():
            return
        yield from _iter_json_lines(target)

    def _augment_with_chain(self, payload: Dict[str, object]) -> Dict[str, object]:
        manifest = self._load_manifest()
        last_hash = manifest.get("last_hash")
        chained = dict(payload)
        chained["chain_prev"] = last_hash
        chained["chain_hash"] = _compute_chain_hash(chained)
        manifest["last_hash"] = chained["chain_hash"]
        self._save_manifest(manifest)
        return chained

    def _rotate_if_needed(self) -> None:
        if not self._path.exists():
            return
        if self._path.stat().st_size < self.max_bytes:
            return
        timestamp = datetime.utcnow().strftime("%Y%m%d%H%M%S")
        rotated_name = self.output_dir / f"audit-{timestamp}.log"
        os.replace(self._path, rotated_name)
        manifest = self._load_manifest()
        rotated = manifest.get("rotated", [])
        rotated.append(
            {
                "path": rotated_name.name,
                "closed_at": datetime.utcnow().isoformat(),
                "hash": manifest.get("last_hash"),
            }
        )
        manifest["rotated"] = rotated
        # The fresh log chains on from the last entry of the rotated one.
        manifest["previous_hash"] = manifest.get("last_hash")
        self._save_manifest(manifest)

    def _prune_old_logs(self) -> None:
        cutoff = datetime.utcnow() - timedelta(days=self.retention_days)
        for file_path in self.output_dir.glob("audit-*.log"):
            timestamp = _extract_timestamp(file_path.name)
            if timestamp and timestamp < cutoff:
                file_path.unlink(missing_ok=True)

    def _load_manifest(self) -> Dict[str, object]:
        return json.loads(self._manifest_path.read_text(encoding="utf-8"))

    def _save_manifest(self, manifest: Dict[str, object]) -> None:
        tmp_path = self._manifest_path.with_suffix(".tmp")
        tmp_path.write_text(json.dumps(manifest, indent=2), encoding="utf-8")
        os.replace(tmp_path, self._manifest_path)


def _compute_chain_hash(payload: Dict[str, object]) -> str:
    canonical = json.dumps(
        {k: payload[k] for k in sorted(payload) if k != "chain_hash"},
        separators=(",", ":"),
    )
    return sha256(canonical.encode("utf-8")).hexdigest()


def _iter_json_lines(path: Path) -> Iterable[Dict[str, object]]:
    with path.open("r", encoding="utf-8") as fp:
        for line in fp:
            line = line.strip()
            if not line:
                continue
            yield json.loads(line)


def _extract_timestamp(filename: str) -> Optional[datetime]:
    try:
        stamp = filename.split("-")[1].split(".")[0]
        return datetime.strptime(stamp, "%Y%m%d%H%M%S")
    except (IndexError, ValueError):
        return None


__all__ = ["AuditEvent", "AuditLogger", "hash_folder_path"]
