"""Track long-lived tasks and closeable resources so they can be released."""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass
from typing import Any

DEFAULT_MAX_TRACKED = 500


@dataclass(frozen=True)
class ResourceStats:
    tasks: int
    running_tasks: int
    closeables: int

    @property
    def total(self) -> int:
        return self.tasks + self.closeables


class ResourceTracker:
    """Keeps references to tasks and objects with ``close``/``aclose``."""

    def __init__(self, *, max_tracked: int = DEFAULT_MAX_TRACKED, logger: logging.Logger | None = None) -> None:
        self.max_tracked = max_tracked
        self._logger = logger or logging.getLogger(__name__)
        self._tasks: set[asyncio.Task[Any]] = set()
        self._closeables: list[Any] = []

    def track_task(self, task: asyncio.Task[Any]) -> asyncio.Task[Any]:
        self._tasks.add(task)
        return task

    def track(self, resource: Any) -> Any:
        if not (callable(getattr(resource, "close", None)) or callable(getattr(resource, "aclose", None))):
            raise TypeError(f"{type(resource).__name__} has neither close() nor aclose()")
        self._closeables.append(resource)
        return resource

    def stats(self) -> ResourceStats:
        return ResourceStats(
            tasks=len(self._tasks),
            running_tasks=sum(1 for task in self._tasks if not task.done()),
            closeables=len(self._closeables),
        )

    def perform_cleanup(self) -> int:
        """Forget finished tasks; returns how many were dropped."""
        finished = {task for task in self._tasks if task.done()}
        self._tasks -= finished
        if finished:
            self._logger.debug("released %d finished task(s)", len(finished))
        return len(finished)

    def health_check(self) -> bool:
        stats = self.stats()
        if stats.total > self.max_tracked:
            self._logger.warning(
                "tracking %d resources (limit %d)", stats.total, self.max_tracked
            )
            return False
        return True

    async def dispose(self) -> None:
        """Cancel running tasks and close every tracked resource."""
        pending = [task for task in self._tasks if not task.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._tasks.clear()

        closeables, self._closeables = self._closeables, []
        for resource in reversed(closeables):
            closer = getattr(resource, "aclose", None) or resource.close
            result = closer()
            if inspect.isawaitable(result):
                await result
