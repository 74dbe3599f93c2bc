"""Error types raised by the service registry and the lifecycle orchestrator."""

from __future__ import annotations

from typing import Sequence


class ServiceRegistryError(Exception):
    """Base class for service registry errors."""


class DuplicateServiceError(ServiceRegistryError):
    """Raised when a service name is registered twice."""

    def __init__(self, name: str) -> None:
        super().__init__(f"service {name!r} is already registered")
        self.name = name


class CircularDependencyError(ServiceRegistryError):
    """Raised when the dependency graph contains a cycle."""

    def __init__(self, cycle: Sequence[str]) -> None:
        self.cycle = tuple(cycle)
        super().__init__(f"circular dependency detected: {' -> '.join(self.cycle)}")


class ServiceNotRegisteredError(ServiceRegistryError, KeyError):
    """Raised when resolving a name nobody registered."""

    def __init__(self, name: str) -> None:
        super().__init__(f"service {name!r} is not registered")
        self.name = name

    def __str__(self) -> str:
        return str(self.args[0])


class InitializationError(ServiceRegistryError):
    """Raised when a service factory (or one of its dependencies) failed."""

    def __init__(self, name: str, cause: BaseException) -> None:
        super().__init__(f"failed to initialize service {name!r}: {cause}")
        self.name = name
        self.cause = cause


class ServiceTimeoutError(ServiceRegistryError, TimeoutError):
    """Raised when waiting for a service exceeds its deadline."""

    def __init__(self, name: str, timeout: float) -> None:
        super().__init__(f"timed out after {timeout:g}s waiting for service {name!r}")
        self.name = name
        self.timeout = timeout


class OrchestratorError(Exception):
    """Base class for lifecycle orchestrator failures."""


class ConfigurationError(OrchestratorError):
    """Raised when configuration cannot be read and no defaults exist."""


class CriticalModuleError(OrchestratorError):
    """Raised when a critical module fails without a stand-in."""

    def __init__(self, name: str, cause: BaseException) -> None:
        super().__init__(f"critical module {name!r} failed: {cause}")
        self.name = name
        self.cause = cause
