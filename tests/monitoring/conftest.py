"""Shared fixtures for folder monitoring tests."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta
from typing import Callable, List, Optional

import pytest

from mailmirror.monitoring.events import EventBus
from mailmirror.monitoring.models import FetchOptions, FolderSnapshot, MessageSnapshotEntry


FOLDER = "\\\\me@example.com\\Inbox\\Clients"
BASE_TIME = datetime(2024, 3, 1, 9, 0, 0)


def make_entry(
    identity: str,
    *,
    subject: Optional[str] = None,
    is_read: bool = False,
    minutes: int = 0,
    last_modified_at: Optional[datetime] = None,
) -> MessageSnapshotEntry:
    return MessageSnapshotEntry(
        identity=identity,
        subject=subject if subject is not None else f"Subject {identity}",
        is_read=is_read,
        received_at=BASE_TIME + timedelta(minutes=minutes),
        last_modified_at=last_modified_at,
        sender_address="sender@example.com",
    )


def make_snapshot(
    entries: List[MessageSnapshotEntry],
    *,
    total_count: Optional[int] = None,
    folder_path: str = FOLDER,
    captured_at: Optional[datetime] = None,
) -> FolderSnapshot:
    return FolderSnapshot(
        folder_path=folder_path,
        entries=entries,
        total_count=len(entries) if total_count is None else total_count,
        captured_at=captured_at or BASE_TIME,
    )


class ScriptedBridge:
    """Fake bridge replaying a script of snapshots and errors.

    Each call consumes the next scripted response; the last one repeats once
    the script is exhausted. Setting ``gate`` holds every call until the event
    is set.
    """

    def __init__(self, responses=None) -> None:
        self.responses = list(responses or [])
        self.calls: List[str] = []
        self.options: List[Optional[FetchOptions]] = []
        self.gate: Optional[asyncio.Event] = None
        self.entered = asyncio.Event()

    def push(self, *responses) -> None:
        self.responses.extend(responses)

    async def fetch_snapshot(
        self, folder_path: str, options: Optional[FetchOptions] = None
    ) -> FolderSnapshot:
        self.calls.append(folder_path)
        self.options.append(options)
        self.entered.set()
        if self.gate is not None:
            await self.gate.wait()
        if not self.responses:
            raise AssertionError("ScriptedBridge has no scripted response")
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, BaseException):
            raise response
        if callable(response):
            return response(folder_path)
        return response


class Recorder:
    """Event handler collecting everything it receives."""

    def __init__(self) -> None:
        self.events = []

    def __call__(self, event) -> None:
        self.events.append(event)

    @property
    def kinds(self) -> List[str]:
        return [event.kind for event in self.events]

    def clear(self) -> None:
        self.events.clear()


@pytest.fixture
def entry_factory() -> Callable[..., MessageSnapshotEntry]:
    return make_entry


@pytest.fixture
def snapshot_factory() -> Callable[..., FolderSnapshot]:
    return make_snapshot


@pytest.fixture
def bridge() -> ScriptedBridge:
    return ScriptedBridge()


@pytest.fixture
def event_bus() -> EventBus:
    return EventBus()


@pytest.fixture
def recorder(event_bus) -> Recorder:
    recorder = Recorder()
    event_bus.subscribe(FOLDER, recorder)
    return recorder


@pytest.fixture
def folder_path() -> str:
    return FOLDER
