"""Centralized error definitions for MailMirror.

Usage:
    from mailmirror.errors import BridgeError, ConfigurationError

    try:
        snapshot = await bridge.fetch_snapshot(path, options)
    except BridgeError as e:
        banner = format_error_for_user(e)

Propagation rules:
- ``BridgeError`` subclasses never escape a folder monitor; they become
  backoff plus a ``ScanFailed`` notice.
- ``HandlerError`` never escapes the event bus.
- ``ConfigurationError`` is the only error raised back to registry callers.
"""

from __future__ import annotations

from mailmirror.errors.user_messages import (
    format_error_for_ui,
    format_error_for_user,
    get_recovery_suggestion,
    get_user_message,
)


# =============================================================================
# Base Error
# =============================================================================


class MailMirrorError(Exception):
    """Base exception for all MailMirror errors.

    Attributes:
        code: Error code for categorization
        user_message: User-friendly message (optional override)
        recoverable: Whether the error is potentially recoverable
        details: Additional error details for debugging
    """

    code: str = "MAILMIRROR_ERROR"
    default_message: str = "An unexpected error occurred"
    recoverable: bool = True

    def __init__(
        self,
        message: str | None = None,
        *,
        user_message: str | None = None,
        details: dict | None = None,
    ) -> None:
        self.message = message or self.default_message
        self._user_message = user_message
        self.details = details or {}
        super().__init__(self.message)

    @property
    def user_message(self) -> str:
        """Get user-friendly message."""
        if self._user_message:
            return self._user_message
        return get_user_message(self)

    @property
    def recovery_suggestion(self) -> str:
        """Get recovery suggestion."""
        return get_recovery_suggestion(self)

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "code": self.code,
            "message": self.message,
            "user_message": self.user_message,
            "recoverable": self.recoverable,
            "details": self.details,
        }


# =============================================================================
# Bridge Errors
# =============================================================================


class BridgeError(MailMirrorError):
    """Base error for the external mail bridge. Always retryable."""

    code = "BRIDGE_ERROR"
    default_message = "Mail bridge call failed"


class BridgeTimeout(BridgeError):
    """The bridge process did not answer before its deadline and was killed."""

    code = "BRIDGE_TIMEOUT"
    default_message = "Mail bridge timed out"


class BridgeNotFound(BridgeError):
    """The folder path did not resolve inside the mail store."""

    code = "BRIDGE_NOT_FOUND"
    default_message = "Folder not found"


class BridgeFault(BridgeError):
    """The bridge reported an internal error or produced unparseable output."""

    code = "BRIDGE_FAULT"
    default_message = "Mail bridge fault"


# =============================================================================
# Subscriber Errors
# =============================================================================


class HandlerError(MailMirrorError):
    """A subscriber raised while handling an event. Isolated and logged."""

    code = "HANDLER_ERROR"
    default_message = "Event handler failed"


# =============================================================================
# Configuration Errors
# =============================================================================


class ConfigurationError(MailMirrorError):
    """Invalid monitoring configuration. Fatal to the offending call only."""

    code = "CONFIGURATION_ERROR"
    default_message = "Invalid monitoring configuration"
    recoverable = False


# =============================================================================
# State Machine Errors
# =============================================================================


class InvalidStateTransitionError(MailMirrorError, ValueError):
    """Raised when a monitor attempts a transition outside VALID_TRANSITIONS.

    Example:
        A stopped monitor trying to move back to scanning raises this,
        since stopped monitors cannot be restarted.
    """

    code = "INVALID_STATE_TRANSITION"
    default_message = "Invalid monitor state transition"
    recoverable = False


__all__ = [
    "MailMirrorError",
    "BridgeError",
    "BridgeTimeout",
    "BridgeNotFound",
    "BridgeFault",
    "HandlerError",
    "ConfigurationError",
    "InvalidStateTransitionError",
    "get_user_message",
    "get_recovery_suggestion",
    "format_error_for_user",
    "format_error_for_ui",
]
