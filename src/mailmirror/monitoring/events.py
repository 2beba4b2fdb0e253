"""Event delivery to monitor subscribers.

Subscribers register for one folder path or for ``"*"`` (every folder).
Events are delivered in the order the monitor publishes them: for each
event, folder subscribers first and wildcard subscribers second, each group
in subscription order. Handlers may be plain callables or coroutine
functions. A handler that raises is reported and skipped; it never stops
delivery to the others and never propagates into the monitor.
"""

from __future__ import annotations

import inspect
import logging
import uuid
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Union

from mailmirror.audit import AuditLogger
from mailmirror.errors import ConfigurationError, HandlerError

from .audit_events import log_handler_failed
from .models import MonitorEvent


logger = logging.getLogger(__name__)

WILDCARD = "*"

EventHandler = Callable[[MonitorEvent], Union[None, Awaitable[Any]]]


@dataclass(frozen=True)
class Subscription:
    """One registered handler."""

    subscription_id: str
    folder_path: str
    handler: EventHandler


class EventBus:
    """Fans monitor events out to registered handlers."""

    def __init__(self, *, audit_logger: Optional[AuditLogger] = None) -> None:
        self._subscriptions: Dict[str, Subscription] = {}
        self._audit = audit_logger
        self.handler_errors = 0
        self.deliveries = 0

    def subscribe(self, folder_path: str, handler: EventHandler) -> str:
        """Register ``handler`` for ``folder_path`` (or ``"*"``).

        Subscribing the same handler to the same path twice returns the
        existing subscription id.

        Raises:
            ConfigurationError: If the path is empty or the handler is not callable
        """
        if not folder_path:
            raise ConfigurationError("Subscription path must not be empty")
        if not callable(handler):
            raise ConfigurationError("Subscription handler must be callable")

        for subscription in self._subscriptions.values():
            if subscription.folder_path == folder_path and subscription.handler == handler:
                return subscription.subscription_id

        subscription_id = uuid.uuid4().hex
        self._subscriptions[subscription_id] = Subscription(
            subscription_id=subscription_id,
            folder_path=folder_path,
            handler=handler,
        )
        logger.debug(
            "Subscriber registered",
            extra={"subscription_id": subscription_id, "folder_path": folder_path},
        )
        return subscription_id

    def unsubscribe(self, subscription_id: str) -> bool:
        """Remove a subscription. Unknown ids are ignored.

        Returns:
            True if a subscription was removed
        """
        removed = self._subscriptions.pop(subscription_id, None)
        if removed is not None:
            logger.debug(
                "Subscriber removed",
                extra={"subscription_id": subscription_id, "folder_path": removed.folder_path},
            )
        return removed is not None

    def subscriptions(self, folder_path: Optional[str] = None) -> List[str]:
        """List subscription ids, optionally only those registered for ``folder_path``."""
        return [
            subscription.subscription_id
            for subscription in self._subscriptions.values()
            if folder_path is None or subscription.folder_path == folder_path
        ]

    def _targets(self, folder_path: str) -> List[Subscription]:
        direct = [s for s in self._subscriptions.values() if s.folder_path == folder_path]
        wildcard = [s for s in self._subscriptions.values() if s.folder_path == WILDCARD]
        return direct + wildcard

    async def publish(self, folder_path: str, events: Iterable[MonitorEvent]) -> int:
        """Deliver ``events`` in order to every matching subscriber.

        Returns:
            Number of successful handler invocations
        """
        delivered = 0
        for event in events:
            for subscription in self._targets(folder_path):
                if await self._deliver(subscription, folder_path, event):
                    delivered += 1
        self.deliveries += delivered
        return delivered

    async def _deliver(
        self, subscription: Subscription, folder_path: str, event: MonitorEvent
    ) -> bool:
        try:
            result = subscription.handler(event)
            if inspect.isawaitable(result):
                await result
        except Exception as exc:  # noqa: BLE001
            self.handler_errors += 1
            error = HandlerError(
                f"Handler {subscription.subscription_id} failed on {event.kind}: {exc}",
                details={
                    "subscription_id": subscription.subscription_id,
                    "event_kind": event.kind,
                    "error_type": type(exc).__name__,
                },
            )
            logger.error(
                error.message,
                exc_info=exc,
                extra={"folder_path": folder_path, **error.details},
            )
            log_handler_failed(
                self._audit,
                folder_path=folder_path,
                subscription_id=subscription.subscription_id,
                event_kind=event.kind,
                error_type=type(exc).__name__,
            )
            return False
        return True


__all__ = ["EventBus", "EventHandler", "Subscription", "WILDCARD"]
