"""External mail bridge adapter.

The mail store is only reachable through an external scripting process
(PowerShell driving the Outlook object model). Each snapshot request spawns
exactly one process, waits for its JSON answer under a hard deadline and
turns the outcome into either a ``FolderSnapshot`` or one of the typed
``BridgeError`` failures. The adapter never retries; retry and backoff are
the folder monitor's job.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
import re
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol, Sequence, Set, Tuple, runtime_checkable

import psutil
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from mailmirror.errors import BridgeFault, BridgeNotFound, BridgeTimeout

from .models import FetchOptions, FolderSnapshot, MessageSnapshotEntry


logger = logging.getLogger(__name__)

FOLDER_NOT_FOUND_MARKER = "FOLDER_NOT_FOUND"
ERROR_PREFIX = "ERROR:"
INBOX_ALIASES = ("Inbox", "Boîte de réception")


@runtime_checkable
class FolderBridge(Protocol):
    """Anything that can produce a snapshot of a folder."""

    async def fetch_snapshot(
        self, folder_path: str, options: Optional[FetchOptions] = None
    ) -> FolderSnapshot:
        ...


# ---------------------------------------------------------------------------
# Folder addressing
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FolderAddress:
    """A folder path split into its store (account) and folder segments."""

    account: Optional[str]
    parts: Tuple[str, ...]


_ACCOUNT_PATTERN = re.compile(r"^\\{0,2}([^\\]+@[^\\]+)(?:\\|$)")


def split_folder_path(folder_path: str) -> FolderAddress:
    """Parse the bridge addressing scheme.

    Accepted forms are ``\\\\account@host\\Inbox\\Sub``, ``account@host\\Sub``
    and plain ``Inbox\\Sub``. A leading inbox segment is dropped because
    resolution always starts at the store's inbox.
    """
    path = folder_path.strip()
    account: Optional[str] = None
    match = _ACCOUNT_PATTERN.match(path)
    if match:
        account = match.group(1)
        path = path[match.end():]

    parts = [part.strip() for part in path.split("\\") if part.strip()]
    if parts and parts[0] in INBOX_ALIASES:
        parts = parts[1:]
    return FolderAddress(account=account, parts=tuple(parts))


# ---------------------------------------------------------------------------
# Output parsing
# ---------------------------------------------------------------------------


class _BridgeEmail(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    entry_id: Optional[str] = Field(default=None, alias="EntryID")
    subject: Optional[str] = Field(default=None, alias="Subject")
    unread: bool = Field(default=False, alias="UnRead")
    received_time: datetime = Field(..., alias="ReceivedTime")
    last_modification_time: Optional[datetime] = Field(
        default=None, alias="LastModificationTime"
    )
    sender_email_address: Optional[str] = Field(default=None, alias="SenderEmailAddress")
    has_attachments: bool = Field(default=False, alias="HasAttachments")


class _BridgePayload(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    folder_path: Optional[str] = Field(default=None, alias="FolderPath")
    folder_name: Optional[str] = Field(default=None, alias="FolderName")
    total_items: Optional[int] = Field(default=None, ge=0, alias="TotalItems")
    emails: List[_BridgeEmail] = Field(default_factory=list, alias="Emails")

    @field_validator("emails", mode="before")
    @classmethod
    def _listify(cls, value: Any) -> Any:
        # ConvertTo-Json collapses single-element arrays into an object.
        if value is None:
            return []
        if isinstance(value, dict):
            return [value]
        return value


def _fallback_identity(email: _BridgeEmail) -> str:
    material = "|".join(
        [
            email.received_time.isoformat(),
            email.sender_email_address or "",
            email.subject or "",
        ]
    )
    return "synthetic:" + hashlib.sha1(material.encode("utf-8")).hexdigest()[:20]


def _first_line(text: str) -> str:
    lines = text.lstrip("\ufeff").strip().splitlines()
    return lines[0].strip() if lines else ""


def parse_bridge_output(
    folder_path: str,
    output: str,
    *,
    captured_at: Optional[datetime] = None,
) -> FolderSnapshot:
    """Turn raw bridge stdout into a snapshot.

    Raises:
        BridgeNotFound: If the bridge reported the folder as missing
        BridgeFault: If the bridge reported an error or the output is invalid
    """
    text = output.strip().lstrip("\ufeff")
    if _first_line(text) == FOLDER_NOT_FOUND_MARKER:
        raise BridgeNotFound(
            "Folder path did not resolve in the mail store",
            details={"folder_path": folder_path},
        )
    if text.startswith(ERROR_PREFIX):
        raise BridgeFault(
            text[len(ERROR_PREFIX):].strip() or "Bridge reported an unspecified error",
            details={"folder_path": folder_path},
        )
    if not text:
        raise BridgeFault("Bridge produced no output", details={"folder_path": folder_path})

    try:
        raw = json.loads(text)
    except json.JSONDecodeError as exc:
        raise BridgeFault(
            f"Bridge output is not valid JSON: {exc.msg}",
            details={"folder_path": folder_path},
        ) from exc
    if not isinstance(raw, dict):
        raise BridgeFault(
            "Bridge output is not a JSON object", details={"folder_path": folder_path}
        )

    try:
        payload = _BridgePayload.model_validate(raw)
    except ValidationError as exc:
        raise BridgeFault(
            f"Bridge output failed validation: {exc.error_count()} error(s)",
            details={"folder_path": folder_path},
        ) from exc

    entries: List[MessageSnapshotEntry] = []
    seen: Set[str] = set()
    fallback_counts: Dict[str, int] = {}
    duplicates = 0
    for email in payload.emails:
        identity = email.entry_id.strip() if email.entry_id else ""
        if not identity:
            base = _fallback_identity(email)
            occurrence = fallback_counts.get(base, 0)
            fallback_counts[base] = occurrence + 1
            identity = base if occurrence == 0 else f"{base}#{occurrence}"
        if identity in seen:
            duplicates += 1
            continue
        seen.add(identity)
        entries.append(
            MessageSnapshotEntry(
                identity=identity,
                subject=email.subject,
                is_read=not email.unread,
                received_at=email.received_time,
                last_modified_at=email.last_modification_time,
                sender_address=email.sender_email_address or None,
                has_attachment=email.has_attachments,
            )
        )

    if duplicates:
        logger.warning(
            "Bridge returned duplicate identities; keeping first occurrence",
            extra={"folder_path": folder_path, "duplicates": duplicates},
        )

    total = payload.total_items if payload.total_items is not None else len(entries)
    if total < len(entries):
        logger.warning(
            "Bridge under-reported folder size",
            extra={"folder_path": folder_path, "total_items": total, "entries": len(entries)},
        )
        total = len(entries)

    return FolderSnapshot(
        folder_path=folder_path,
        entries=entries,
        captured_at=captured_at or datetime.utcnow(),
        total_count=total,
    )


# ---------------------------------------------------------------------------
# Subprocess bridge
# ---------------------------------------------------------------------------


def _kill_process_tree(pid: int) -> None:
    """Hard-kill a process and every descendant it spawned."""
    try:
        parent = psutil.Process(pid)
    except psutil.NoSuchProcess:
        return
    try:
        children = parent.children(recursive=True)
    except psutil.NoSuchProcess:
        children = []
    for proc in [*children, parent]:
        try:
            proc.kill()
        except psutil.NoSuchProcess:
            continue
        except psutil.AccessDenied:
            logger.warning("Access denied while killing bridge process", extra={"pid": proc.pid})


class SubprocessBridge:
    """Runs one external process per snapshot request.

    Subclasses provide ``build_command``; stdout is parsed with
    ``parse_bridge_output``.
    """

    def __init__(self, *, timeout_seconds: float = 30.0, encoding: str = "utf-8") -> None:
        """Initialize bridge.

        Args:
            timeout_seconds: Hard deadline for one invocation; the process tree
                is killed when it expires
            encoding: Encoding of the process output
        """
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be positive")
        self.timeout_seconds = timeout_seconds
        self.encoding = encoding
        self.invocations = 0

    def build_command(self, folder_path: str, options: FetchOptions) -> Sequence[str]:
        raise NotImplementedError

    async def fetch_snapshot(
        self, folder_path: str, options: Optional[FetchOptions] = None
    ) -> FolderSnapshot:
        """Fetch a snapshot of ``folder_path``.

        Raises:
            BridgeTimeout: If the process did not finish before the deadline
            BridgeNotFound: If the folder does not resolve
            BridgeFault: On spawn failure, non-zero exit or invalid output
        """
        options = options or FetchOptions()
        argv = list(self.build_command(folder_path, options))
        self.invocations += 1
        started = time.monotonic()

        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise BridgeFault(
                f"Could not start bridge process: {exc}",
                details={"folder_path": folder_path, "executable": argv[0] if argv else None},
            ) from exc

        try:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(), timeout=self.timeout_seconds
            )
        except asyncio.TimeoutError:
            _kill_process_tree(process.pid)
            await process.wait()
            logger.warning(
                "Bridge timed out, process killed",
                extra={"folder_path": folder_path, "timeout_seconds": self.timeout_seconds},
            )
            raise BridgeTimeout(
                f"Bridge did not answer within {self.timeout_seconds:g}s",
                details={"folder_path": folder_path},
            ) from None
        except asyncio.CancelledError:
            _kill_process_tree(process.pid)
            raise

        elapsed = time.monotonic() - started
        text = stdout.decode(self.encoding, errors="replace")
        logger.debug(
            "Bridge call finished",
            extra={
                "folder_path": folder_path,
                "returncode": process.returncode,
                "duration_seconds": round(elapsed, 3),
            },
        )

        stripped = text.strip()
        reported = (
            _first_line(stripped) == FOLDER_NOT_FOUND_MARKER
            or stripped.startswith(ERROR_PREFIX)
        )
        if process.returncode != 0 and not reported:
            error_text = stderr.decode(self.encoding, errors="replace").strip()
            raise BridgeFault(
                f"Bridge exited with code {process.returncode}: {error_text[-500:]}",
                details={"folder_path": folder_path, "returncode": process.returncode},
            )
        return parse_bridge_output(folder_path, text)


# ---------------------------------------------------------------------------
# PowerShell / Outlook bridge
# ---------------------------------------------------------------------------


_UTF8_PREAMBLE = (
    "[Console]::OutputEncoding = [System.Text.Encoding]::UTF8; "
    "$OutputEncoding = [System.Text.Encoding]::UTF8; "
)

_SNAPSHOT_SCRIPT = r"""
$ErrorActionPreference = "Stop"
$ProgressPreference = "SilentlyContinue"
try {
  $outlook = New-Object -ComObject Outlook.Application
  $namespace = $outlook.GetNamespace("MAPI")
  $account = @@ACCOUNT@@
  $parts = @(@@PARTS@@)
  if ($account) {
    $store = $null
    foreach ($candidate in $namespace.Stores) {
      if ($candidate.DisplayName -eq $account -or $candidate.DisplayName -like "*$account*") {
        $store = $candidate
        break
      }
    }
    if (-not $store) { Write-Output "FOLDER_NOT_FOUND"; exit 1 }
    $folder = $store.GetDefaultFolder(6)
  } else {
    $folder = $namespace.GetDefaultFolder(6)
  }
  foreach ($part in $parts) {
    $next = $null
    foreach ($sub in $folder.Folders) {
      if ($sub.Name -eq $part) { $next = $sub; break }
    }
    if (-not $next) { Write-Output "FOLDER_NOT_FOUND"; exit 1 }
    $folder = $next
  }
  $since = @@SINCE@@
  $limit = @@LIMIT@@
  $items = $folder.Items
  $items.Sort("[ReceivedTime]", $true)
  $emails = New-Object System.Collections.ArrayList
  foreach ($item in $items) {
    if ($emails.Count -ge $limit) { break }
    try {
      if ($since -and $item.ReceivedTime -lt $since) { break }
      [void]$emails.Add(@{
        EntryID = $item.EntryID
        Subject = $item.Subject
        UnRead = [bool]$item.UnRead
        ReceivedTime = $item.ReceivedTime.ToString("yyyy-MM-ddTHH:mm:ss")
        LastModificationTime = $item.LastModificationTime.ToString("yyyy-MM-ddTHH:mm:ss")
        SenderEmailAddress = $item.SenderEmailAddress
        HasAttachments = $item.Attachments.Count -gt 0
      })
    } catch {
      continue
    }
  }
  $result = @{
    FolderPath = @@FOLDER_PATH@@
    FolderName = $folder.Name
    TotalItems = $folder.Items.Count
    UnreadItems = $folder.UnReadItemCount
    EmailsRetrieved = $emails.Count
    Emails = $emails.ToArray()
  }
  Write-Output ($result | ConvertTo-Json -Depth 4 -Compress)
} catch {
  Write-Output "ERROR: $($_.Exception.Message)"
  exit 1
}
"""


def _ps_quote(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


class PowerShellBridge(SubprocessBridge):
    """Snapshot bridge driving Outlook through a PowerShell COM script."""

    def __init__(
        self,
        *,
        executable: str = "powershell",
        timeout_seconds: float = 30.0,
    ) -> None:
        super().__init__(timeout_seconds=timeout_seconds)
        self.executable = executable

    def render_script(self, folder_path: str, options: FetchOptions) -> str:
        address = split_folder_path(folder_path)
        account = _ps_quote(address.account) if address.account else "$null"
        parts = ", ".join(_ps_quote(part) for part in address.parts)
        since = (
            f"[DateTime]::Parse({_ps_quote(options.since.strftime('%Y-%m-%dT%H:%M:%S'))})"
            if options.since
            else "$null"
        )
        return (
            _SNAPSHOT_SCRIPT.replace("@@ACCOUNT@@", account)
            .replace("@@PARTS@@", parts)
            .replace("@@SINCE@@", since)
            .replace("@@LIMIT@@", str(options.max_items))
            .replace("@@FOLDER_PATH@@", _ps_quote(folder_path))
        )

    def build_command(self, folder_path: str, options: FetchOptions) -> Sequence[str]:
        return [
            self.executable,
            "-NoProfile",
            "-NonInteractive",
            "-ExecutionPolicy",
            "Bypass",
            "-OutputFormat",
            "Text",
            "-Command",
            _UTF8_PREAMBLE + self.render_script(folder_path, options),
        ]


__all__ = [
    "FolderBridge",
    "FolderAddress",
    "split_folder_path",
    "parse_bridge_output",
    "SubprocessBridge",
    "PowerShellBridge",
    "FOLDER_NOT_FOUND_MARKER",
    "ERROR_PREFIX",
]
