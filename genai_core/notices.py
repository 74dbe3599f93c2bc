"""User-visible notices posted while the application starts up."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

from .events import NOTICE_EVENT, EventBus

RESTART_ACTION = "restart"


class NoticeLevel(Enum):
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


_LOG_LEVELS = {
    NoticeLevel.INFO: logging.INFO,
    NoticeLevel.WARNING: logging.WARNING,
    NoticeLevel.CRITICAL: logging.ERROR,
}


@dataclass(frozen=True)
class Notice:
    """A message for the user.

    Blocking notices take over the surface until acted upon; the others are
    shown alongside whatever still works.
    """

    level: NoticeLevel
    title: str
    message: str
    actions: tuple[str, ...] = ()
    blocking: bool = False
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def render(self) -> str:
        line = f"[{self.level.value}] {self.title}: {self.message}"
        if self.actions:
            line += " (" + ", ".join(self.actions) + ")"
        return line


class NoticeBoard:
    """Collects notices and forwards them to the event bus."""

    def __init__(self, events: EventBus | None = None, *, logger: logging.Logger | None = None) -> None:
        self.events = events
        self._logger = logger or logging.getLogger(__name__)
        self._notices: list[Notice] = []

    def post(self, notice: Notice) -> Notice:
        self._notices.append(notice)
        self._logger.log(_LOG_LEVELS[notice.level], "notice: %s", notice.render())
        if self.events is not None:
            self.events.emit(NOTICE_EVENT, {"notice": notice})
        return notice

    @property
    def notices(self) -> tuple[Notice, ...]:
        return tuple(self._notices)

    def blocking(self) -> tuple[Notice, ...]:
        return tuple(notice for notice in self._notices if notice.blocking)

    def render(self) -> list[str]:
        return [notice.render() for notice in self._notices]

    def clear(self) -> None:
        self._notices.clear()
