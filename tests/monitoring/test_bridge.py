"""Tests for the external mail bridge adapter."""

from __future__ import annotations

import json
import sys
import time
from datetime import datetime

import pytest

from mailmirror.errors import BridgeFault, BridgeNotFound, BridgeTimeout
from mailmirror.monitoring.bridge import (
    FolderBridge,
    PowerShellBridge,
    SubprocessBridge,
    parse_bridge_output,
    split_folder_path,
)
from mailmirror.monitoring.models import FetchOptions


FOLDER = "\\\\me@example.com\\Inbox\\Clients"


def _email(entry_id="AAA1", **overrides):
    email = {
        "EntryID": entry_id,
        "Subject": "Hello",
        "UnRead": True,
        "ReceivedTime": "2024-03-01T09:00:00",
        "SenderEmailAddress": "alice@example.com",
        "HasAttachments": False,
    }
    email.update(overrides)
    return email


def _payload(emails, total=None):
    return json.dumps(
        {
            "FolderPath": FOLDER,
            "FolderName": "Clients",
            "TotalItems": len(emails) if total is None else total,
            "UnreadItems": 0,
            "EmailsRetrieved": len(emails),
            "Emails": emails,
        }
    )


# ============================================================================
# Folder addressing
# ============================================================================


@pytest.mark.parametrize(
    "path, account, parts",
    [
        ("\\\\me@example.com\\Inbox\\Clients\\Acme", "me@example.com", ("Clients", "Acme")),
        ("me@example.com\\Projects", "me@example.com", ("Projects",)),
        ("\\\\me@example.com", "me@example.com", ()),
        ("Inbox\\Clients", None, ("Clients",)),
        ("Boîte de réception\\Clients", None, ("Clients",)),
        ("Archive\\2023", None, ("Archive", "2023")),
    ],
)
def test_split_folder_path(path, account, parts):
    address = split_folder_path(path)

    assert address.account == account
    assert address.parts == parts


# ============================================================================
# Output parsing
# ============================================================================


def test_parse_valid_payload():
    captured = datetime(2024, 3, 1, 12, 0, 0)
    output = _payload(
        [
            _email("AAA1", UnRead=True, HasAttachments=True),
            _email("AAA2", Subject="Re: Hello", UnRead=False),
        ],
        total=40,
    )

    snapshot = parse_bridge_output(FOLDER, output, captured_at=captured)

    assert snapshot.folder_path == FOLDER
    assert snapshot.captured_at == captured
    assert snapshot.total_count == 40
    assert snapshot.is_truncated
    assert snapshot.identities() == ["AAA1", "AAA2"]
    first, second = snapshot.entries
    assert first.is_read is False
    assert first.has_attachment is True
    assert first.sender_address == "alice@example.com"
    assert second.is_read is True
    assert second.subject == "Re: Hello"


def test_parse_single_email_object():
    """ConvertTo-Json emits an object instead of a one-element array."""
    output = json.dumps({"TotalItems": 1, "Emails": _email("ONLY")})

    snapshot = parse_bridge_output(FOLDER, output)

    assert snapshot.identities() == ["ONLY"]


def test_parse_null_emails_means_empty_folder():
    snapshot = parse_bridge_output(FOLDER, json.dumps({"TotalItems": 0, "Emails": None}))

    assert snapshot.entries == []
    assert snapshot.total_count == 0


def test_parse_strips_byte_order_mark():
    snapshot = parse_bridge_output(FOLDER, "\ufeff" + _payload([_email()]))

    assert snapshot.identities() == ["AAA1"]


def test_parse_folder_not_found():
    with pytest.raises(BridgeNotFound):
        parse_bridge_output(FOLDER, "FOLDER_NOT_FOUND\r\n")


def test_parse_marker_text_inside_payload_is_data():
    output = _payload([_email("AAA1", Subject="Re: FOLDER_NOT_FOUND in logs")])

    snapshot = parse_bridge_output(FOLDER, output)

    assert snapshot.identities() == ["AAA1"]
    assert snapshot.entries[0].subject == "Re: FOLDER_NOT_FOUND in logs"


def test_parse_error_marker():
    with pytest.raises(BridgeFault) as excinfo:
        parse_bridge_output(FOLDER, "ERROR: Outlook is not running")

    assert excinfo.value.message == "Outlook is not running"


@pytest.mark.parametrize("output", ["", "   \n", "not json", "[1, 2, 3]"])
def test_parse_rejects_garbage(output):
    with pytest.raises(BridgeFault):
        parse_bridge_output(FOLDER, output)


def test_parse_rejects_email_without_received_time():
    email = _email()
    del email["ReceivedTime"]

    with pytest.raises(BridgeFault):
        parse_bridge_output(FOLDER, _payload([email]))


def test_parse_synthesizes_missing_identities():
    output = _payload([_email(None), _email(""), _email("REAL")])

    snapshot = parse_bridge_output(FOLDER, output)

    identities = snapshot.identities()
    assert len(identities) == 3
    assert identities[0].startswith("synthetic:")
    assert identities[1] == identities[0] + "#1"
    assert identities[2] == "REAL"


def test_parse_synthetic_identity_is_stable():
    output = _payload([_email(None)])

    first = parse_bridge_output(FOLDER, output)
    second = parse_bridge_output(FOLDER, output)

    assert first.identities() == second.identities()


def test_parse_keeps_first_duplicate():
    output = _payload([_email("DUP", Subject="first"), _email("DUP", Subject="second")])

    snapshot = parse_bridge_output(FOLDER, output)

    assert len(snapshot.entries) == 1
    assert snapshot.entries[0].subject == "first"


def test_parse_raises_under_reported_total():
    output = _payload([_email("A"), _email("B")], total=1)

    snapshot = parse_bridge_output(FOLDER, output)

    assert snapshot.total_count == 2


# ============================================================================
# Subprocess bridge
# ============================================================================


class ScriptBridge(SubprocessBridge):
    """Runs a Python snippet in place of the mail client script."""

    def __init__(self, script: str, **kwargs):
        super().__init__(**kwargs)
        self.script = script

    def build_command(self, folder_path, options):
        return [sys.executable, "-c", self.script]


@pytest.mark.asyncio
async def test_subprocess_bridge_success():
    output = _payload([_email("AAA1")], total=3)
    bridge = ScriptBridge(f"print({output!r})", timeout_seconds=20)

    snapshot = await bridge.fetch_snapshot(FOLDER)

    assert snapshot.identities() == ["AAA1"]
    assert snapshot.total_count == 3
    assert bridge.invocations == 1


@pytest.mark.asyncio
async def test_subprocess_bridge_timeout_kills_process():
    bridge = ScriptBridge("import time; time.sleep(30)", timeout_seconds=0.5)

    started = time.monotonic()
    with pytest.raises(BridgeTimeout):
        await bridge.fetch_snapshot(FOLDER)

    assert time.monotonic() - started < 10


@pytest.mark.asyncio
async def test_subprocess_bridge_non_zero_exit():
    bridge = ScriptBridge(
        "import sys; sys.stderr.write('COM failure'); sys.exit(3)", timeout_seconds=20
    )

    with pytest.raises(BridgeFault) as excinfo:
        await bridge.fetch_snapshot(FOLDER)

    assert "COM failure" in excinfo.value.message
    assert excinfo.value.details["returncode"] == 3


@pytest.mark.asyncio
async def test_subprocess_bridge_reported_not_found_with_exit_code():
    bridge = ScriptBridge(
        "import sys; print('FOLDER_NOT_FOUND'); sys.exit(1)", timeout_seconds=20
    )

    with pytest.raises(BridgeNotFound):
        await bridge.fetch_snapshot(FOLDER)


@pytest.mark.asyncio
async def test_subprocess_bridge_failed_exit_with_marker_in_subject():
    output = _payload([_email("AAA1", Subject="FOLDER_NOT_FOUND again")])
    bridge = ScriptBridge(f"import sys; print({output!r}); sys.exit(2)", timeout_seconds=20)

    with pytest.raises(BridgeFault) as excinfo:
        await bridge.fetch_snapshot(FOLDER)

    assert excinfo.value.details["returncode"] == 2


@pytest.mark.asyncio
async def test_subprocess_bridge_missing_executable():
    class MissingBridge(SubprocessBridge):
        def build_command(self, folder_path, options):
            return ["/nonexistent/mail-bridge-binary"]

    with pytest.raises(BridgeFault):
        await MissingBridge().fetch_snapshot(FOLDER)


def test_subprocess_bridge_rejects_non_positive_timeout():
    with pytest.raises(ValueError):
        ScriptBridge("pass", timeout_seconds=0)


# ============================================================================
# PowerShell bridge
# ============================================================================


def test_powershell_bridge_is_a_folder_bridge():
    assert isinstance(PowerShellBridge(), FolderBridge)


def test_powershell_command_line():
    bridge = PowerShellBridge(executable="pwsh", timeout_seconds=12)

    argv = bridge.build_command(FOLDER, FetchOptions(max_items=50))

    assert argv[0] == "pwsh"
    assert argv[1:6] == ["-NoProfile", "-NonInteractive", "-ExecutionPolicy", "Bypass", "-OutputFormat"]
    assert argv[-2] == "-Command"
    assert "[Console]::OutputEncoding" in argv[-1]
    assert bridge.timeout_seconds == 12


def test_powershell_script_rendering():
    bridge = PowerShellBridge()

    script = bridge.render_script(
        "\\\\me@example.com\\Inbox\\Client's\\Acme",
        FetchOptions(max_items=50, since=datetime(2024, 1, 2, 3, 4, 5)),
    )

    assert "$account = 'me@example.com'" in script
    assert "$parts = @('Client''s', 'Acme')" in script
    assert "$limit = 50" in script
    assert "[DateTime]::Parse('2024-01-02T03:04:05')" in script
    assert "@@" not in script


def test_powershell_script_without_account_or_since():
    script = PowerShellBridge().render_script("Inbox", FetchOptions())

    assert "$account = $null" in script
    assert "$parts = @()" in script
    assert "$since = $null" in script
    assert "$limit = 2000" in script
