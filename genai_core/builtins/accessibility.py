"""Screen-reader style announcements of application state changes."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone

POLITENESS_LEVELS = ("polite", "assertive")


@dataclass(frozen=True)
class Announcement:
    message: str
    politeness: str
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class Announcer:
    def __init__(self, *, logger: logging.Logger | None = None, max_history: int = 50) -> None:
        self._logger = logger or logging.getLogger(__name__)
        self._max_history = max_history
        self._announcements: list[Announcement] = []

    def announce(self, message: str, *, politeness: str = "polite") -> Announcement:
        if politeness not in POLITENESS_LEVELS:
            raise ValueError(f"politeness must be one of {', '.join(POLITENESS_LEVELS)}")
        announcement = Announcement(message=message, politeness=politeness)
        self._announcements.append(announcement)
        del self._announcements[: -self._max_history]
        self._logger.info("announce (%s): %s", politeness, message)
        return announcement

    @property
    def announcements(self) -> tuple[Announcement, ...]:
        return tuple(self._announcements)
