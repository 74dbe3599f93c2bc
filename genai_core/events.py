"""Simple event bus shared by the registry, the orchestrator and their waiters."""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Callable, DefaultDict

__all__ = [
    "Event",
    "EventHandler",
    "EventBus",
    "SERVICE_REGISTERED_EVENT",
    "SERVICE_INITIALIZED_EVENT",
    "SERVICE_FAILED_EVENT",
    "MODULE_STATUS_EVENT",
    "PHASE_EVENT",
    "NOTICE_EVENT",
    "STANDARD_EVENTS",
]

SERVICE_REGISTERED_EVENT = "service.registered"
SERVICE_INITIALIZED_EVENT = "service.initialized"
SERVICE_FAILED_EVENT = "service.initialization_failed"
MODULE_STATUS_EVENT = "module.status"
PHASE_EVENT = "lifecycle.phase"
NOTICE_EVENT = "lifecycle.notice"

STANDARD_EVENTS = (
    SERVICE_REGISTERED_EVENT,
    SERVICE_INITIALIZED_EVENT,
    SERVICE_FAILED_EVENT,
    MODULE_STATUS_EVENT,
    PHASE_EVENT,
    NOTICE_EVENT,
)


@dataclass(frozen=True)
class Event:
    """Lightweight event descriptor."""

    name: str
    payload: dict[str, Any]


EventHandler = Callable[[Event], None]


@dataclass(frozen=True)
class _EventSubscription:
    priority: int
    order: int
    handler: EventHandler


class EventBus:
    """Synchronous event bus with deterministic delivery.

    Handlers for one event run by descending priority, then in subscription
    order. The delivery list is snapshotted before dispatch, so handlers may
    unsubscribe themselves (or others) while an event is being delivered.
    """

    def __init__(self) -> None:
        self._handlers: DefaultDict[str, list[_EventSubscription]] = defaultdict(list)
        self._sequence: DefaultDict[str, int] = defaultdict(int)
        self._logger = logging.getLogger(__name__)

    def on(self, event_name: str, handler: EventHandler, priority: int = 0) -> None:
        """Register a handler for `event_name` with optional priority."""
        order = self._sequence[event_name]
        self._sequence[event_name] = order + 1
        self._handlers[event_name].append(
            _EventSubscription(priority=priority, order=order, handler=handler)
        )

    def off(self, event_name: str, handler: EventHandler) -> None:
        """Remove `handler`; removing an unknown handler is a no-op."""
        subscriptions = self._handlers.get(event_name)
        if not subscriptions:
            return
        remaining = [item for item in subscriptions if item.handler is not handler]
        if remaining:
            self._handlers[event_name] = remaining
        else:
            del self._handlers[event_name]

    def emit(self, event_name: str, payload: dict[str, Any] | None = None) -> None:
        event = Event(event_name, dict(payload or {}))
        subscriptions = sorted(
            self._handlers.get(event_name, ()),
            key=lambda item: (-item.priority, item.order),
        )
        self._logger.debug("emit %s to %d handler(s)", event_name, len(subscriptions))
        for subscription in subscriptions:
            subscription.handler(event)

    def listener_count(self, event_name: str) -> int:
        return len(self._handlers.get(event_name, ()))
