"""Tests for monitor state transitions."""

from __future__ import annotations

import pytest

from mailmirror.errors import InvalidStateTransitionError
from mailmirror.monitoring.backoff import BackoffPolicy
from mailmirror.monitoring.state_machine import (
    VALID_TRANSITIONS,
    MonitorStatus,
    StateMachineValidator,
)


FOLDER = "Inbox\\Clients"


@pytest.mark.parametrize(
    "from_status, to_status",
    [
        (MonitorStatus.IDLE, MonitorStatus.SCANNING),
        (MonitorStatus.SCANNING, MonitorStatus.IDLE),
        (MonitorStatus.SCANNING, MonitorStatus.BACKOFF),
        (MonitorStatus.BACKOFF, MonitorStatus.SCANNING),
        (MonitorStatus.IDLE, MonitorStatus.STOPPED),
        (MonitorStatus.SCANNING, MonitorStatus.STOPPED),
        (MonitorStatus.BACKOFF, MonitorStatus.STOPPED),
    ],
)
def test_valid_transitions(from_status, to_status):
    validator = StateMachineValidator()

    transition = validator.validate_transition(FOLDER, from_status, to_status)

    assert transition.is_valid()
    assert validator.history == [transition]


@pytest.mark.parametrize(
    "from_status, to_status",
    [
        (MonitorStatus.IDLE, MonitorStatus.BACKOFF),
        (MonitorStatus.BACKOFF, MonitorStatus.IDLE),
        (MonitorStatus.SCANNING, MonitorStatus.SCANNING),
        (MonitorStatus.STOPPED, MonitorStatus.SCANNING),
        (MonitorStatus.STOPPED, MonitorStatus.IDLE),
    ],
)
def test_invalid_transitions(from_status, to_status):
    validator = StateMachineValidator()

    with pytest.raises(InvalidStateTransitionError) as excinfo:
        validator.validate_transition(FOLDER, from_status, to_status)

    assert isinstance(excinfo.value, ValueError)
    assert validator.history == []


def test_stopped_is_terminal():
    assert VALID_TRANSITIONS[MonitorStatus.STOPPED] == set()


def test_history_is_bounded():
    validator = StateMachineValidator(history_limit=3)

    for _ in range(4):
        validator.validate_transition(FOLDER, MonitorStatus.IDLE, MonitorStatus.SCANNING)
        validator.validate_transition(FOLDER, MonitorStatus.SCANNING, MonitorStatus.IDLE, reason="ok")

    history = validator.history
    assert len(history) == 3
    assert history[-1].reason == "ok"


@pytest.mark.parametrize(
    "failures, expected_ms",
    [(0, 30000), (1, 30000), (2, 60000), (5, 150000), (10, 300000), (50, 300000)],
)
def test_backoff_grows_linearly_and_caps(failures, expected_ms):
    policy = BackoffPolicy(base_interval_ms=30000, max_interval_ms=300000)

    assert policy.delay_ms(failures) == expected_ms
    assert policy.delay_seconds(failures) == expected_ms / 1000
