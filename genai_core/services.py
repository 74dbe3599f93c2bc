"""Service registry that lazily resolves named components and their dependencies."""

from __future__ import annotations

import asyncio
import contextvars
import inspect
import logging
from collections import Counter
from dataclasses import asdict, dataclass, field
from functools import partial
from typing import Any, Callable, Iterable

from .errors import (
    CircularDependencyError,
    DuplicateServiceError,
    InitializationError,
    ServiceNotRegisteredError,
    ServiceRegistryError,
    ServiceTimeoutError,
)
from .events import (
    SERVICE_FAILED_EVENT,
    SERVICE_INITIALIZED_EVENT,
    SERVICE_REGISTERED_EVENT,
    Event,
    EventBus,
)

__all__ = [
    "DEFAULT_WAIT_TIMEOUT",
    "FailedService",
    "InitializationReport",
    "RegistryStatus",
    "ServiceDefinition",
    "ServiceFactory",
    "ServiceRegistry",
]

DEFAULT_WAIT_TIMEOUT = 10.0

ServiceFactory = Callable[..., Any]

# Names being resolved by the current task, outermost first.
_RESOLUTION_CHAIN: contextvars.ContextVar[tuple[str, ...]] = contextvars.ContextVar(
    "genai_resolution_chain", default=()
)

_POSITIONAL = (
    inspect.Parameter.POSITIONAL_ONLY,
    inspect.Parameter.POSITIONAL_OR_KEYWORD,
    inspect.Parameter.VAR_POSITIONAL,
)


def _accepts_dependencies(factory: Any) -> bool:
    if not callable(factory):
        return False
    try:
        signature = inspect.signature(factory)
    except (TypeError, ValueError):
        return True
    return any(parameter.kind in _POSITIONAL for parameter in signature.parameters.values())


@dataclass(frozen=True)
class ServiceDefinition:
    """Immutable description of how a named service is built."""

    name: str
    factory: Any
    dependencies: tuple[str, ...] = ()
    singleton: bool = True
    eager: bool = False
    accepts_dependencies: bool = field(default=True, init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("service name cannot be empty.")
        object.__setattr__(self, "dependencies", tuple(self.dependencies))
        object.__setattr__(self, "accepts_dependencies", _accepts_dependencies(self.factory))


@dataclass(frozen=True)
class RegistryStatus:
    total: int
    initialized: int
    initializing: tuple[str, ...]
    pending: tuple[str, ...]

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class FailedService:
    name: str
    error: BaseException


@dataclass(frozen=True)
class InitializationReport:
    """Outcome of :meth:`ServiceRegistry.initialize_all`."""

    total: int
    succeeded: int
    failed: tuple[FailedService, ...] = ()

    @property
    def failed_names(self) -> tuple[str, ...]:
        return tuple(item.name for item in self.failed)


class ServiceRegistry:
    """Dependency registry with lazy, memoized asynchronous resolution.

    Singletons are built at most once: concurrent ``get`` calls for a service
    that is still being built attach to the same in-flight task instead of
    invoking the factory again. The in-flight task is shielded from its
    callers, so a caller that gives up (timeout, cancellation) never aborts
    the construction itself.
    """

    def __init__(
        self,
        events: EventBus | None = None,
        *,
        logger: logging.Logger | None = None,
    ) -> None:
        self.events = events or EventBus()
        self._logger = logger or logging.getLogger(__name__)
        self._definitions: dict[str, ServiceDefinition] = {}
        self._singletons: dict[str, Any] = {}
        self._initialized: set[str] = set()
        self._initializing: Counter[str] = Counter()
        self._pending: dict[str, asyncio.Task[Any]] = {}
        self._deferred_eager: list[str] = []
        self._background: set[asyncio.Task[Any]] = set()
        self._generation = 0

    # ---------- Registration ----------

    def register(
        self,
        name: str,
        factory: ServiceFactory | Any,
        *,
        dependencies: Iterable[str] = (),
        singleton: bool = True,
        eager: bool = False,
    ) -> ServiceDefinition:
        """Register `factory` under `name`, validating the dependency graph."""
        if name in self._definitions:
            raise DuplicateServiceError(name)
        definition = ServiceDefinition(
            name=name,
            factory=factory,
            dependencies=tuple(dependencies),
            singleton=singleton,
            eager=eager,
        )
        self._definitions[name] = definition
        try:
            self._validate_dependencies(name)
        except CircularDependencyError:
            del self._definitions[name]
            raise

        self._logger.debug(
            "registered service %s (dependencies=%s, singleton=%s, eager=%s)",
            name,
            list(definition.dependencies),
            singleton,
            eager,
        )
        self.events.emit(SERVICE_REGISTERED_EVENT, {"name": name, "definition": definition})
        if eager:
            self._schedule_eager(name)
        return definition

    def _validate_dependencies(self, root: str) -> None:
        visited: set[str] = set()
        path: list[str] = []

        def visit(name: str) -> None:
            if name in path:
                raise CircularDependencyError(path[path.index(name):] + [name])
            if name in visited:
                return
            definition = self._definitions.get(name)
            if definition is None:
                # not registered yet; validated again when it is
                return
            path.append(name)
            for dependency in definition.dependencies:
                visit(dependency)
            path.pop()
            visited.add(name)

        visit(root)

    def _schedule_eager(self, name: str) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._deferred_eager.append(name)
            return
        task = loop.create_task(
            self._resolve_eagerly(name),
            name=f"genai-eager-{name}",
            context=contextvars.Context(),
        )
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    def _start_deferred_eager(self) -> None:
        if not self._deferred_eager:
            return
        names, self._deferred_eager = self._deferred_eager, []
        for name in names:
            if name in self._definitions:
                self._schedule_eager(name)

    async def _resolve_eagerly(self, name: str) -> None:
        try:
            await self.get(name)
        except ServiceRegistryError as exc:
            self._logger.warning("eager initialization of %s failed: %s", name, exc)

    # ---------- Resolution ----------

    async def get(self, name: str) -> Any:
        """Resolve `name`, building it and its dependencies on first request."""
        self._start_deferred_eager()
        if name in self._singletons:
            return self._singletons[name]

        definition = self._definitions.get(name)
        if definition is None:
            raise ServiceNotRegisteredError(name)

        chain = _RESOLUTION_CHAIN.get()
        if name in chain:
            raise CircularDependencyError(chain[chain.index(name):] + (name,))

        task = self._pending.get(name)
        if task is None:
            task = asyncio.get_running_loop().create_task(
                self._resolve(definition, chain, self._generation),
                name=f"genai-resolve-{name}",
            )
            if definition.singleton:
                self._pending[name] = task
            task.add_done_callback(partial(self._resolution_done, name))
        else:
            self._logger.debug("attaching to in-flight resolution of %s", name)
        return await asyncio.shield(task)

    def _resolution_done(self, name: str, task: asyncio.Task[Any]) -> None:
        if self._pending.get(name) is task:
            del self._pending[name]
        if not task.cancelled():
            # mark the outcome as retrieved even when every caller gave up
            task.exception()

    async def _resolve(
        self,
        definition: ServiceDefinition,
        chain: tuple[str, ...],
        generation: int,
    ) -> Any:
        name = definition.name
        _RESOLUTION_CHAIN.set(chain + (name,))
        self._initializing[name] += 1
        try:
            dependencies = await self._resolve_dependencies(definition)
            instance = await self._construct(definition, dependencies)
        except CircularDependencyError as exc:
            self._report_failure(name, exc)
            raise
        except Exception as exc:
            error = InitializationError(name, exc)
            self._report_failure(name, error)
            raise error from exc
        finally:
            self._initializing[name] -= 1
            if self._initializing[name] <= 0:
                del self._initializing[name]

        if generation != self._generation:
            self._logger.debug("registry cleared while %s was resolving; not caching", name)
            return instance
        if definition.singleton:
            self._singletons[name] = instance
        self._initialized.add(name)
        self._logger.debug("service %s initialized", name)
        self.events.emit(SERVICE_INITIALIZED_EVENT, {"name": name, "instance": instance})
        return instance

    async def _resolve_dependencies(self, definition: ServiceDefinition) -> dict[str, Any]:
        if not definition.dependencies:
            return {}
        # settle every dependency before deciding; the factory never runs early
        results = await asyncio.gather(
            *(self.get(dependency) for dependency in definition.dependencies),
            return_exceptions=True,
        )
        resolved: dict[str, Any] = {}
        for dependency, result in zip(definition.dependencies, results):
            if isinstance(result, BaseException):
                raise result
            resolved[dependency] = result
        return resolved

    @staticmethod
    async def _construct(definition: ServiceDefinition, dependencies: dict[str, Any]) -> Any:
        factory = definition.factory
        if not callable(factory):
            return factory
        if definition.accepts_dependencies:
            result = factory(dependencies)
        else:
            result = factory()
        if inspect.isawaitable(result):
            result = await result
        return result

    def _report_failure(self, name: str, error: BaseException) -> None:
        self._logger.debug("service %s failed: %s", name, error)
        self.events.emit(SERVICE_FAILED_EVENT, {"name": name, "error": error})

    async def wait_for(self, name: str, timeout: float | None = DEFAULT_WAIT_TIMEOUT) -> Any:
        """Suspend until `name` is initialized, failing after `timeout` seconds.

        Waiting never triggers construction; something else has to ``get`` the
        service. Both listeners are detached on every exit path.
        """
        self._start_deferred_eager()
        if self.is_initialized(name):
            return await self.get(name)

        outcome: asyncio.Future[Any] = asyncio.get_running_loop().create_future()

        def on_initialized(event: Event) -> None:
            if event.payload.get("name") == name and not outcome.done():
                outcome.set_result(event.payload.get("instance"))

        def on_failed(event: Event) -> None:
            if event.payload.get("name") == name and not outcome.done():
                outcome.set_exception(event.payload["error"])

        self.events.on(SERVICE_INITIALIZED_EVENT, on_initialized)
        self.events.on(SERVICE_FAILED_EVENT, on_failed)
        try:
            return await asyncio.wait_for(outcome, timeout)
        except asyncio.TimeoutError as exc:
            raise ServiceTimeoutError(name, timeout or 0.0) from exc
        finally:
            self.events.off(SERVICE_INITIALIZED_EVENT, on_initialized)
            self.events.off(SERVICE_FAILED_EVENT, on_failed)

    async def initialize_all(self) -> InitializationReport:
        """Resolve every registered service; failures are reported, never raised."""
        names = self.get_service_names()
        results = await asyncio.gather(
            *(self.get(name) for name in names),
            return_exceptions=True,
        )
        failed = tuple(
            FailedService(name=name, error=result)
            for name, result in zip(names, results)
            if isinstance(result, BaseException)
        )
        if failed:
            self._logger.warning(
                "%d of %d service(s) failed to initialize: %s",
                len(failed),
                len(names),
                ", ".join(item.name for item in failed),
            )
        return InitializationReport(
            total=len(names),
            succeeded=len(names) - len(failed),
            failed=failed,
        )

    # ---------- Queries ----------

    def is_registered(self, name: str) -> bool:
        return name in self._definitions

    def is_initialized(self, name: str) -> bool:
        return name in self._initialized

    def get_service_names(self) -> tuple[str, ...]:
        return tuple(self._definitions)

    def get_definition(self, name: str) -> ServiceDefinition:
        definition = self._definitions.get(name)
        if definition is None:
            raise ServiceNotRegisteredError(name)
        return definition

    def get_status(self) -> RegistryStatus:
        names = self.get_service_names()
        return RegistryStatus(
            total=len(names),
            initialized=sum(1 for name in names if name in self._initialized),
            initializing=tuple(name for name in names if name in self._initializing),
            pending=tuple(
                name
                for name in names
                if name not in self._initialized and name not in self._initializing
            ),
        )

    # ---------- Scopes and teardown ----------

    def create_child(self) -> "ServiceRegistry":
        """Return a registry with the same definitions but none of the instances."""
        child = ServiceRegistry(logger=self._logger)
        for definition in self._definitions.values():
            child.register(
                definition.name,
                definition.factory,
                dependencies=definition.dependencies,
                singleton=definition.singleton,
                eager=False,
            )
        return child

    def invalidate(self, name: str) -> bool:
        """Drop the cached instance of `name` so the next ``get`` rebuilds it."""
        if name not in self._definitions:
            raise ServiceNotRegisteredError(name)
        had_instance = name in self._singletons
        self._singletons.pop(name, None)
        self._initialized.discard(name)
        return had_instance

    def clear(self) -> None:
        """Forget every definition, cached instance and in-flight marker."""
        self._generation += 1
        self._definitions.clear()
        self._singletons.clear()
        self._initialized.clear()
        self._initializing.clear()
        self._pending.clear()
        self._deferred_eager.clear()
