"""Tests for the error hierarchy and user-facing messages."""

from __future__ import annotations

import pytest

from mailmirror.errors import (
    BridgeError,
    BridgeFault,
    BridgeNotFound,
    BridgeTimeout,
    ConfigurationError,
    HandlerError,
    InvalidStateTransitionError,
    MailMirrorError,
    format_error_for_ui,
    format_error_for_user,
    get_recovery_suggestion,
    get_user_message,
)
from mailmirror.errors.user_messages import ERROR_MESSAGES


@pytest.mark.parametrize("error_type", [BridgeTimeout, BridgeNotFound, BridgeFault])
def test_bridge_errors_share_a_base(error_type):
    error = error_type()

    assert isinstance(error, BridgeError)
    assert isinstance(error, MailMirrorError)
    assert error.recoverable is True
    assert error.message == error_type.default_message


def test_error_codes_have_messages():
    for error_type in (
        MailMirrorError,
        BridgeError,
        BridgeTimeout,
        BridgeNotFound,
        BridgeFault,
        HandlerError,
        ConfigurationError,
        InvalidStateTransitionError,
    ):
        assert error_type.code in ERROR_MESSAGES


def test_configuration_error_is_not_recoverable():
    error = ConfigurationError("interval too small", details={"interval_ms": 1})

    assert error.recoverable is False
    assert error.to_dict() == {
        "code": "CONFIGURATION_ERROR",
        "message": "interval too small",
        "user_message": ERROR_MESSAGES["CONFIGURATION_ERROR"],
        "recoverable": False,
        "details": {"interval_ms": 1},
    }


def test_invalid_transition_is_a_value_error():
    with pytest.raises(ValueError):
        raise InvalidStateTransitionError("idle -> backoff")


def test_user_message_override():
    error = BridgeFault("raw COM text", user_message="Outlook crashed")

    assert error.user_message == "Outlook crashed"
    assert str(error) == "raw COM text"


def test_messages_for_codes_and_unknown_errors():
    assert get_user_message("BRIDGE_TIMEOUT") == ERROR_MESSAGES["BRIDGE_TIMEOUT"]
    assert get_user_message(KeyError("x")) == ERROR_MESSAGES["UNKNOWN_ERROR"]
    assert get_recovery_suggestion(BridgeNotFound()).startswith("The folder may have been renamed")


def test_format_error_for_user():
    text = format_error_for_user(BridgeTimeout())

    message, suggestion = text.split("\n\nSuggestion: ")
    assert message == ERROR_MESSAGES["BRIDGE_TIMEOUT"]
    assert suggestion == get_recovery_suggestion("BRIDGE_TIMEOUT")


def test_format_error_for_ui():
    payload = format_error_for_ui(ConfigurationError())

    assert payload["code"] == "CONFIGURATION_ERROR"
    assert payload["recoverable"] is False
    assert payload["message"]
    assert payload["suggestion"]
