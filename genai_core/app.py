"""Application object that wires together the genai core services."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Iterable, Mapping, Sequence

from .builtins import (
    CONFIG_STORE_SERVICE,
    ORCHESTRATOR_SERVICE,
    REGISTRY_SERVICE,
    WORKSPACE_SERVICE,
    builtin_modules,
)
from .config import YamlConfigStore
from .errors import DuplicateServiceError
from .events import EventBus
from .notices import NoticeBoard
from .orchestrator import LifecycleOrchestrator, ModuleSpec, OrchestratorStatus
from .services import ServiceRegistry
from .workspace import WorkspaceLayout, WorkspaceResolver


ServiceProvider = Callable[[], Any]


@dataclass(frozen=True)
class AppStatus:
    workspace: WorkspaceLayout
    ready: bool
    orchestrator: OrchestratorStatus
    notices: Sequence[str]

    def as_dict(self) -> dict[str, Any]:
        return {
            "workspace_root": str(self.workspace.root),
            "ready": self.ready,
            **self.orchestrator.as_dict(),
            "notices": list(self.notices),
        }


class GenAIApp:
    """Entry point that glues the workspace, configuration, registry and modules."""

    def __init__(
        self,
        *,
        start_dir: Path | str | None = None,
        modules: Iterable[ModuleSpec] | None = None,
        env: Mapping[str, str] | None = None,
        logger: logging.Logger | None = None,
        registry: ServiceRegistry | None = None,
    ) -> None:
        self.logger = logger or logging.getLogger("genai_core.app")
        self.workspace_resolver = WorkspaceResolver(env=env)
        normalized_start = Path(start_dir) if isinstance(start_dir, str) else start_dir
        self.workspace = self.workspace_resolver.ensure_workspace(normalized_start)
        self.config = YamlConfigStore(path=self.workspace.config_file)
        self.registry = registry or ServiceRegistry(EventBus())
        self.events = self.registry.events
        self.notices = NoticeBoard(self.events)
        self.orchestrator = LifecycleOrchestrator(
            self.registry,
            builtin_modules() if modules is None else modules,
            config_store=self.config,
            notices=self.notices,
        )
        self._ready: bool | None = None
        self._register_services()

    def _register_services(self) -> None:
        self._register_service(WORKSPACE_SERVICE, lambda: self.workspace)
        self._register_service(CONFIG_STORE_SERVICE, lambda: self.config)
        self._register_service("events", lambda: self.events)
        self._register_service("notices", lambda: self.notices)
        self._register_service(REGISTRY_SERVICE, lambda: self.registry)
        self._register_service(ORCHESTRATOR_SERVICE, lambda: self.orchestrator)

    def _register_service(self, name: str, provider: ServiceProvider) -> None:
        try:
            self.registry.register(name, provider)
        except DuplicateServiceError:
            self.logger.debug("service %s already registered, skipping", name)

    async def bootstrap(self) -> AppStatus:
        self._ready = await self.orchestrator.initialize()
        return self.status()

    def status(self) -> AppStatus:
        return AppStatus(
            workspace=self.workspace,
            ready=bool(self._ready),
            orchestrator=self.orchestrator.get_status(),
            notices=self.notices.render(),
        )

    async def retry(self, name: str) -> Any:
        return await self.orchestrator.reinitialize_module(name)

    async def shutdown(self) -> None:
        await self.orchestrator.shutdown()
