"""Phased application bootstrap built on top of the service registry.

Modules are registered into the registry as services whose factory is an
isolating initializer: whatever a module constructor raises is caught, logged
and recorded on that module, and dependents receive either the module, a
configured stand-in, or ``None``. Only a failure of the bootstrap sequence
itself (configuration with no defaults, a critical module without stand-in)
aborts ``initialize`` and switches the process into fallback mode.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import sys
import time
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from functools import partial
from types import MappingProxyType
from typing import Any, Callable, Iterable, Mapping, MutableMapping

from .compat import LEGACY_MODULES
from .config import APP_CONFIG_KEY, DEFAULT_CONFIG, KeyValueStore, lookup, merge_config
from .errors import (
    ConfigurationError,
    CriticalModuleError,
    InitializationError,
    OrchestratorError,
    ServiceNotRegisteredError,
)
from .events import MODULE_STATUS_EVENT, PHASE_EVENT, EventBus
from .notices import RESTART_ACTION, Notice, NoticeBoard, NoticeLevel
from .services import ServiceRegistry

__all__ = [
    "InitializationRecord",
    "LifecycleOrchestrator",
    "ModuleContext",
    "ModuleFactory",
    "ModuleSpec",
    "ModuleState",
    "ModuleTier",
    "OrchestratorStatus",
    "ProcessPhase",
]

DEFAULT_HEALTH_CHECK_TIMEOUT = 5.0


class ModuleTier(Enum):
    CORE = "core"
    FEATURE = "feature"


class ModuleState(Enum):
    """Lifecycle states for a single module."""

    NOT_STARTED = "not-started"
    INITIALIZING = "initializing"
    READY = "ready"
    NOT_AVAILABLE = "not-available"
    ERROR = "error"


class ProcessPhase(Enum):
    """Lifecycle states for the bootstrap as a whole."""

    NOT_STARTED = "not-started"
    LOADING_CONFIG = "loading-config"
    CORE_INIT = "core-init"
    FEATURE_INIT = "feature-init"
    FINALIZING = "finalizing"
    READY = "ready"
    FALLBACK_MODE = "fallback-mode"
    FAILED = "failed"


@dataclass(frozen=True)
class ModuleContext:
    """What a module factory gets to build its instance."""

    name: str
    dependencies: Mapping[str, Any]
    config: Mapping[str, Any]
    events: EventBus
    logger: logging.Logger

    def dependency(self, name: str) -> Any:
        return self.dependencies.get(name)


ModuleFactory = Callable[[ModuleContext], Any]


@dataclass(frozen=True)
class ModuleSpec:
    """One entry of the module table supplied by the composition root.

    ``factory=None`` means the implementation is not part of this build; the
    module is then recorded as not available, which is not an error.
    """

    name: str
    factory: ModuleFactory | None
    tier: ModuleTier = ModuleTier.FEATURE
    dependencies: tuple[str, ...] = ()
    critical: bool = False
    fallback: Callable[[], Any] | None = None
    config_flag: str | None = None
    description: str = ""

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("module name cannot be empty.")
        object.__setattr__(self, "dependencies", tuple(self.dependencies))


@dataclass
class InitializationRecord:
    name: str
    status: ModuleState = ModuleState.NOT_STARTED
    error: str | None = None
    detail: str | None = None
    fallback_active: bool = False
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(frozen=True)
class OrchestratorStatus:
    phase: ProcessPhase
    initialized: tuple[str, ...]
    failed: tuple[str, ...]
    modules: tuple[str, ...]
    duration: float
    degraded: bool
    records: Mapping[str, InitializationRecord]

    def as_dict(self) -> dict[str, Any]:
        return {
            "phase": self.phase.value,
            "initialized": list(self.initialized),
            "failed": list(self.failed),
            "modules": list(self.modules),
            "duration": self.duration,
            "degraded": self.degraded,
            "records": {
                name: {
                    **asdict(record),
                    "status": record.status.value,
                    "timestamp": record.timestamp.isoformat(),
                }
                for name, record in self.records.items()
            },
        }


class LifecycleOrchestrator:
    """Drive configuration, core modules, feature modules and finalization."""

    def __init__(
        self,
        registry: ServiceRegistry,
        modules: Iterable[ModuleSpec],
        *,
        config_store: KeyValueStore | None = None,
        default_config: Mapping[str, Any] | None = DEFAULT_CONFIG,
        notices: NoticeBoard | None = None,
        error_reporting_module: str = "error_reporter",
        accessibility_module: str = "accessibility",
        resource_module: str = "resource_tracker",
        legacy_namespace: MutableMapping[str, Any] | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.registry = registry
        self.events = registry.events
        self.config_store = config_store
        self.default_config = default_config
        self.notices = notices or NoticeBoard(self.events)
        self.error_reporting_module = error_reporting_module
        self.accessibility_module = accessibility_module
        self.resource_module = resource_module
        self.legacy_namespace = legacy_namespace
        self._logger = logger or logging.getLogger(__name__)

        self._specs: dict[str, ModuleSpec] = {}
        for spec in modules:
            if spec.name in self._specs:
                raise ValueError(f"module {spec.name!r} listed twice")
            self._specs[spec.name] = spec
        self._records: dict[str, InitializationRecord] = {
            name: InitializationRecord(name=name) for name in self._specs
        }
        self._modules: dict[str, Any] = {}
        self._stand_ins: dict[str, Any] = {}
        self._disabled: set[str] = set()
        self._config: dict[str, Any] | None = None
        self._phase = ProcessPhase.NOT_STARTED
        self._modules_registered = False
        self._started_at: float | None = None
        self._finished_at: float | None = None
        self._health_check_timeout = DEFAULT_HEALTH_CHECK_TIMEOUT
        self._previous_excepthook: Any = None
        self._trapped_loop: asyncio.AbstractEventLoop | None = None
        self._previous_loop_handler: Any = None
        self.health: dict[str, bool] = {}
        self.degraded = False

    # ---------- Bootstrap ----------

    async def initialize(self) -> bool:
        """Run every phase; return ``False`` when fallback mode was entered."""
        self._started_at = time.monotonic()
        self._finished_at = None
        self._logger.info("starting initialization of %d module(s)", len(self._specs))
        try:
            await self._load_configuration()
            self._register_modules()
            await self._initialize_core_modules()
            await self._initialize_feature_modules()
            await self._finalize()
        except Exception as exc:
            self._logger.error("initialization failed: %s", exc, exc_info=True)
            await self.attempt_fallback_initialization(exc)
            self._finished_at = time.monotonic()
            return False

        self._set_phase(ProcessPhase.READY)
        self._finished_at = time.monotonic()
        self._logger.info(
            "initialized %d of %d module(s) in %.0fms",
            len(self._modules),
            len(self._specs),
            self.duration * 1000,
        )
        self._announce("Application ready")
        return True

    async def _load_configuration(self) -> None:
        self._set_phase(ProcessPhase.LOADING_CONFIG)
        loaded: Any = None
        if self.config_store is not None:
            try:
                loaded = self.config_store.load(APP_CONFIG_KEY)
            except Exception as exc:
                if self.default_config is None:
                    raise ConfigurationError(
                        "configuration could not be loaded and no defaults are configured"
                    ) from exc
                self._logger.warning("failed to load configuration, using defaults: %s", exc)
                loaded = None
        if loaded is not None and not isinstance(loaded, Mapping):
            self._logger.warning("ignoring malformed configuration of type %s", type(loaded).__name__)
            loaded = None
        if loaded is None and self.default_config is None:
            raise ConfigurationError("no configuration found and no defaults are configured")

        self._config = merge_config(self.default_config or {}, loaded)
        timeout = lookup(self._config, "performance.health_check_timeout", DEFAULT_HEALTH_CHECK_TIMEOUT)
        try:
            self._health_check_timeout = float(timeout)
        except (TypeError, ValueError):
            self._logger.warning(
                "invalid performance.health_check_timeout %r, using %.1fs",
                timeout,
                DEFAULT_HEALTH_CHECK_TIMEOUT,
            )
            self._health_check_timeout = DEFAULT_HEALTH_CHECK_TIMEOUT
        self._logger.info("configuration loaded")

    def _register_modules(self) -> None:
        if self._modules_registered:
            return
        for spec in self._specs.values():
            self.registry.register(
                spec.name,
                partial(self._build_module, spec),
                dependencies=spec.dependencies,
            )
        self._modules_registered = True

    async def _initialize_core_modules(self) -> None:
        self._set_phase(ProcessPhase.CORE_INIT)
        await self._initialize_tier(ModuleTier.CORE)
        self._logger.info("core modules initialized")

    async def _initialize_feature_modules(self) -> None:
        self._set_phase(ProcessPhase.FEATURE_INIT)
        await self._initialize_tier(ModuleTier.FEATURE)

    async def _initialize_tier(self, tier: ModuleTier) -> None:
        """Resolve every module of `tier`, settling all before deciding.

        A module that cannot be resolved is recorded as ``error``; only a
        critical module without a stand-in aborts the bootstrap.
        """
        specs = [spec for spec in self._specs.values() if spec.tier is tier]
        results = await asyncio.gather(
            *(self.registry.get(spec.name) for spec in specs),
            return_exceptions=True,
        )
        escalated: list[BaseException] = []
        for spec, result in zip(specs, results):
            if not isinstance(result, BaseException):
                continue
            self._logger.error("%s module %s failed: %s", tier.value, spec.name, result)
            if self._records[spec.name].status is not ModuleState.ERROR:
                # never reached the module initializer, e.g. a dependency failed
                self._transition(spec.name, ModuleState.ERROR, error=str(result))
                if isinstance(result, Exception):
                    self._report_error(result, spec.name)
            if self._escalates(spec, result):
                escalated.append(result)
        if escalated:
            raise escalated[0]

    @staticmethod
    def _escalates(spec: ModuleSpec, error: BaseException) -> bool:
        if isinstance(error, InitializationError) and isinstance(error.cause, CriticalModuleError):
            return True
        return spec.critical and spec.fallback is None

    async def _build_module(self, spec: ModuleSpec, dependencies: Mapping[str, Any]) -> Any:
        """Per-module initializer; a module failure never escapes unless critical."""
        name = spec.name
        self._transition(name, ModuleState.INITIALIZING)
        if spec.factory is None:
            return self._unavailable(spec, "no implementation configured")
        if spec.config_flag and (
            name in self._disabled
            or (self._config is not None and not lookup(self._config, spec.config_flag, True))
        ):
            self._disabled.add(name)
            return self._unavailable(spec, f"disabled by {spec.config_flag}")

        context = ModuleContext(
            name=name,
            dependencies=MappingProxyType(dict(dependencies)),
            config=MappingProxyType(self._config or {}),
            events=self.events,
            logger=logging.getLogger(f"{__name__}.{name}"),
        )
        try:
            instance = spec.factory(context)
            if inspect.isawaitable(instance):
                instance = await instance
        except Exception as exc:
            self._logger.error("module %s failed to initialize: %s", name, exc, exc_info=True)
            self._modules.pop(name, None)
            self._transition(name, ModuleState.ERROR, error=str(exc))
            self._report_error(exc, name)
            if spec.fallback is not None:
                return self._stand_in(name, spec.fallback)
            if spec.critical:
                raise CriticalModuleError(name, exc) from exc
            return None

        if instance is None:
            return self._unavailable(spec, "factory produced no instance")
        self._modules[name] = instance
        self._stand_ins.pop(name, None)
        self._transition(name, ModuleState.READY)
        self._logger.info("module %s ready", name)
        return instance

    def _unavailable(self, spec: ModuleSpec, reason: str) -> Any:
        self._logger.info("module %s not available: %s", spec.name, reason)
        self._modules.pop(spec.name, None)
        self._transition(spec.name, ModuleState.NOT_AVAILABLE, detail=reason)
        if spec.fallback is not None:
            return self._stand_in(spec.name, spec.fallback)
        return None

    def _stand_in(self, name: str, fallback: Callable[[], Any]) -> Any:
        instance = fallback()
        self._stand_ins[name] = instance
        self._records[name].fallback_active = True
        self._logger.warning("module %s running with a stand-in", name)
        return instance

    # ---------- Finalize ----------

    async def _finalize(self) -> None:
        self._set_phase(ProcessPhase.FINALIZING)
        self._disable_legacy_modules()
        self._install_error_traps()
        await self._perform_health_checks()
        self._cleanup_initialization()
        self._logger.info("initialization finalized")

    def _disable_legacy_modules(self) -> None:
        for legacy in LEGACY_MODULES:
            if legacy.name in self._modules:
                self._logger.warning(
                    "disabling legacy module %s (replaced by %s)", legacy.name, legacy.replacement
                )
                del self._modules[legacy.name]
                self._transition(
                    legacy.name,
                    ModuleState.NOT_AVAILABLE,
                    detail=f"legacy module replaced by {legacy.replacement}",
                )
            if self.legacy_namespace is not None and self.legacy_namespace.get(legacy.name) is not None:
                self._logger.warning("disabling legacy module %s in shared namespace", legacy.name)
                self.legacy_namespace[legacy.name] = None

    def _install_error_traps(self) -> None:
        if self._trapped_loop is not None:
            return
        previous_hook = sys.excepthook
        previous_handler_holder: list[Any] = []

        def excepthook(exc_type: type[BaseException], exc: BaseException, tb: Any) -> None:
            if issubclass(exc_type, Exception):
                self._report_error(exc, None, source="excepthook")
            previous_hook(exc_type, exc, tb)

        def loop_handler(loop: asyncio.AbstractEventLoop, context: dict[str, Any]) -> None:
            exc = context.get("exception")
            if isinstance(exc, Exception):
                self._report_error(exc, None, source="event_loop")
            previous = previous_handler_holder[0]
            if previous is not None:
                previous(loop, context)
            else:
                loop.default_exception_handler(context)

        loop = asyncio.get_running_loop()
        previous_handler_holder.append(loop.get_exception_handler())
        loop.set_exception_handler(loop_handler)
        sys.excepthook = excepthook
        self._previous_excepthook = previous_hook
        self._previous_loop_handler = previous_handler_holder[0]
        self._trapped_loop = loop
        self._logger.debug("process-wide error traps installed")

    def _remove_error_traps(self) -> None:
        if self._trapped_loop is None:
            return
        sys.excepthook = self._previous_excepthook
        if not self._trapped_loop.is_closed():
            self._trapped_loop.set_exception_handler(self._previous_loop_handler)
        self._trapped_loop = None
        self._previous_excepthook = None
        self._previous_loop_handler = None

    async def _perform_health_checks(self) -> None:
        checks = [
            (name, instance.health_check)
            for name, instance in self._modules.items()
            if callable(getattr(instance, "health_check", None))
        ]
        if not checks:
            return
        results = await asyncio.gather(*(self._run_health_check(name, check) for name, check in checks))
        self.health = {name: healthy for (name, _), healthy in zip(checks, results)}
        failed = [name for name, healthy in self.health.items() if not healthy]
        if failed:
            self._logger.warning("%d health check(s) failed: %s", len(failed), ", ".join(failed))
        else:
            self._logger.info("all health checks passed")

    async def _run_health_check(self, name: str, check: Callable[[], Any]) -> bool:
        try:
            result = check()
            if inspect.isawaitable(result):
                result = await asyncio.wait_for(result, self._health_check_timeout)
        except Exception as exc:
            self._logger.warning("health check for %s failed: %s", name, exc)
            return False
        if result is False:
            self._logger.warning("health check for %s reported unhealthy", name)
            return False
        return True

    def _cleanup_initialization(self) -> None:
        self._config = None
        tracker = self._service(self.resource_module)
        cleanup = getattr(tracker, "perform_cleanup", None)
        if callable(cleanup):
            cleanup()

    # ---------- Fallback ----------

    async def attempt_fallback_initialization(self, original_error: BaseException) -> bool:
        """Bring up error reporting only and enter degraded mode.

        If even that fails the process is left in the terminal ``failed``
        phase with a blocking notice offering a restart.
        """
        self._logger.warning("attempting fallback initialization")
        try:
            await self._reinitialize_error_reporting()
            self._activate_degraded_mode()
            self._show_initialization_error(original_error)
        except Exception as fallback_error:
            self._logger.error("fallback initialization failed: %s", fallback_error, exc_info=True)
            self._show_critical_error()
            self._set_phase(ProcessPhase.FAILED)
            return False
        self._logger.warning("fallback initialization completed, running in degraded mode")
        return True

    async def _reinitialize_error_reporting(self) -> Any:
        spec = self._specs.get(self.error_reporting_module)
        if spec is None:
            raise OrchestratorError(f"no {self.error_reporting_module!r} module configured")
        dependencies = {name: self._service(name) for name in spec.dependencies}
        instance = await self._build_module(spec, dependencies)
        if instance is None:
            raise OrchestratorError(f"{self.error_reporting_module!r} is not available")
        return instance

    def _activate_degraded_mode(self) -> None:
        self.degraded = True
        self._set_phase(ProcessPhase.FALLBACK_MODE)
        self.notices.post(
            Notice(
                level=NoticeLevel.WARNING,
                title="Initialization warning",
                message="Some features may not be available due to initialization issues.",
                actions=(RESTART_ACTION,),
                blocking=True,
            )
        )

    def _show_initialization_error(self, error: BaseException) -> None:
        message = f"Initialization encountered issues: {error}"
        self._announce(message, politeness="assertive")
        self.notices.post(Notice(level=NoticeLevel.WARNING, title="Startup problem", message=message))

    def _show_critical_error(self) -> None:
        self.notices.post(
            Notice(
                level=NoticeLevel.CRITICAL,
                title="Critical error",
                message="The application failed to initialize. Please restart it.",
                actions=(RESTART_ACTION,),
                blocking=True,
            )
        )

    # ---------- Manual control ----------

    async def reinitialize_module(self, name: str) -> Any:
        """Rebuild one module; returns the module or ``None`` if still unusable."""
        if name not in self._specs:
            raise ServiceNotRegisteredError(name)
        self._register_modules()
        self._modules.pop(name, None)
        self._stand_ins.pop(name, None)
        self._records[name].fallback_active = False
        self.registry.invalidate(name)
        try:
            await self.registry.get(name)
        except InitializationError as exc:
            self._logger.error("reinitialization of %s failed: %s", name, exc)
        return self.get_module(name)

    async def shutdown(self) -> None:
        self._remove_error_traps()
        tracker = self._service(self.resource_module)
        dispose = getattr(tracker, "dispose", None)
        if callable(dispose):
            result = dispose()
            if inspect.isawaitable(result):
                await result

    # ---------- Queries ----------

    @property
    def phase(self) -> ProcessPhase:
        return self._phase

    @property
    def config(self) -> Mapping[str, Any] | None:
        return MappingProxyType(self._config) if self._config is not None else None

    @property
    def duration(self) -> float:
        if self._started_at is None:
            return 0.0
        end = self._finished_at if self._finished_at is not None else time.monotonic()
        return end - self._started_at

    def module_specs(self) -> tuple[ModuleSpec, ...]:
        return tuple(self._specs.values())

    def get_module(self, name: str) -> Any | None:
        return self._modules.get(name)

    def is_initialized(self, name: str) -> bool:
        record = self._records.get(name)
        return record is not None and record.status is ModuleState.READY

    def get_record(self, name: str) -> InitializationRecord | None:
        record = self._records.get(name)
        return replace(record) if record is not None else None

    def get_status(self) -> OrchestratorStatus:
        return OrchestratorStatus(
            phase=self._phase,
            initialized=tuple(
                name for name, record in self._records.items() if record.status is ModuleState.READY
            ),
            failed=tuple(
                name for name, record in self._records.items() if record.status is ModuleState.ERROR
            ),
            modules=tuple(self._modules),
            duration=self.duration,
            degraded=self.degraded,
            records={name: replace(record) for name, record in self._records.items()},
        )

    # ---------- Internal helpers ----------

    def _service(self, name: str) -> Any | None:
        if name in self._modules:
            return self._modules[name]
        return self._stand_ins.get(name)

    def _set_phase(self, phase: ProcessPhase) -> None:
        self._phase = phase
        self._logger.info("phase: %s", phase.value)
        self.events.emit(PHASE_EVENT, {"phase": phase.value})

    def _transition(
        self,
        name: str,
        status: ModuleState,
        *,
        error: str | None = None,
        detail: str | None = None,
    ) -> None:
        record = self._records.get(name)
        if record is None:
            return
        record.status = status
        record.error = error
        record.detail = detail
        record.timestamp = datetime.now(timezone.utc)
        self.events.emit(
            MODULE_STATUS_EVENT,
            {"name": name, "status": status.value, "error": error, "detail": detail},
        )

    def _report_error(self, error: BaseException, module: str | None, *, source: str = "module") -> None:
        reporter = self._service(self.error_reporting_module)
        handle = getattr(reporter, "handle", None)
        if not callable(handle):
            return
        context: dict[str, Any] = {"source": source, "show_ui": False}
        if module is not None:
            context["module"] = module
            context["component"] = True
        handle(error, context)

    def _announce(self, message: str, *, politeness: str = "polite") -> None:
        announcer = self._service(self.accessibility_module)
        announce = getattr(announcer, "announce", None)
        if callable(announce):
            announce(message, politeness=politeness)
