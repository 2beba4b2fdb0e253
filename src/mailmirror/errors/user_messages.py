"""User-friendly error messages for MailMirror.

The host UI shows these strings when a monitored folder enters a degraded
state, so users see "Outlook is not responding" rather than a raw
subprocess traceback.

Privacy Note:
- Messages NEVER include message subjects or sender addresses
- Folder paths are not echoed back
"""

from __future__ import annotations

from typing import Any


# =============================================================================
# Error Message Catalog
# =============================================================================

ERROR_MESSAGES: dict[str, str] = {
    # Bridge errors
    "BRIDGE_ERROR": "The mail client bridge reported a problem.",
    "BRIDGE_TIMEOUT": "The mail client did not answer in time.",
    "BRIDGE_NOT_FOUND": "The monitored folder could not be found in the mail client.",
    "BRIDGE_FAULT": "The mail client returned an unexpected response.",
    # Subscriber errors
    "HANDLER_ERROR": "A listener failed while processing a mailbox change.",
    # Configuration errors
    "CONFIGURATION_ERROR": "There's a monitoring configuration issue.",
    # State machine errors
    "INVALID_STATE_TRANSITION": "The folder monitor reached an unexpected state.",
    # Generic
    "MAILMIRROR_ERROR": "An unexpected error occurred. Monitoring will retry.",
    "UNKNOWN_ERROR": "Something went wrong. Monitoring will retry.",
}


# =============================================================================
# Recovery Suggestions
# =============================================================================

RECOVERY_SUGGESTIONS: dict[str, str] = {
    "BRIDGE_ERROR": "Check that the mail client is running.",
    "BRIDGE_TIMEOUT": "Make sure the mail client is open and not showing a dialog. Monitoring retries automatically.",
    "BRIDGE_NOT_FOUND": "The folder may have been renamed or moved. Update the folder configuration.",
    "BRIDGE_FAULT": "Restart the mail client. If the problem persists, check the application logs.",
    "HANDLER_ERROR": "Check the application logs for the failing listener.",
    "CONFIGURATION_ERROR": "Review the folder path and polling interval.",
    "INVALID_STATE_TRANSITION": "Stop and start monitoring for this folder.",
    "MAILMIRROR_ERROR": "If the problem persists, restart the application.",
    "UNKNOWN_ERROR": "If the problem persists, restart the application.",
}


def _error_code(error: Any) -> str:
    if hasattr(error, "code"):
        return error.code
    if isinstance(error, str):
        return error
    return type(error).__name__.upper()


def get_user_message(error: Any) -> str:
    """Get user-friendly message for an error.

    Args:
        error: The error (can be Exception or error code string)

    Returns:
        User-friendly error message
    """
    return ERROR_MESSAGES.get(_error_code(error), ERROR_MESSAGES["UNKNOWN_ERROR"])


def get_recovery_suggestion(error: Any) -> str:
    """Get recovery suggestion for an error.

    Args:
        error: The error (can be Exception or error code string)

    Returns:
        Recovery suggestion
    """
    return RECOVERY_SUGGESTIONS.get(
        _error_code(error), RECOVERY_SUGGESTIONS["UNKNOWN_ERROR"]
    )


def format_error_for_user(error: Any) -> str:
    """Format a complete user-friendly error message.

    Args:
        error: The error to format

    Returns:
        Complete error message with recovery suggestion
    """
    message = get_user_message(error)
    suggestion = get_recovery_suggestion(error)

    return f"{message}\n\nSuggestion: {suggestion}"


def format_error_for_ui(error: Any) -> dict:
    """Format error for the host UI's warning banner.

    Args:
        error: The error to format

    Returns:
        Dictionary with code, message, suggestion and recoverable flag
    """
    return {
        "code": _error_code(error),
        "message": get_user_message(error),
        "suggestion": get_recovery_suggestion(error),
        "recoverable": getattr(error, "recoverable", True),
    }


__all__ = [
    "ERROR_MESSAGES",
    "RECOVERY_SUGGESTIONS",
    "get_user_message",
    "get_recovery_suggestion",
    "format_error_for_user",
    "format_error_for_ui",
]
