"""Service registry and phased lifecycle orchestration for genai."""

from .app import AppStatus, GenAIApp
from .config import DEFAULT_CONFIG, MemoryConfigStore, YamlConfigStore
from .errors import (
    CircularDependencyError,
    ConfigurationError,
    CriticalModuleError,
    DuplicateServiceError,
    InitializationError,
    OrchestratorError,
    ServiceNotRegisteredError,
    ServiceRegistryError,
    ServiceTimeoutError,
)
from .events import Event, EventBus
from .notices import Notice, NoticeBoard, NoticeLevel
from .orchestrator import (
    LifecycleOrchestrator,
    ModuleContext,
    ModuleSpec,
    ModuleState,
    ModuleTier,
    ProcessPhase,
)
from .services import InitializationReport, ServiceRegistry

__version__ = "0.1.0"

__all__ = [
    "AppStatus",
    "CircularDependencyError",
    "ConfigurationError",
    "CriticalModuleError",
    "DEFAULT_CONFIG",
    "DuplicateServiceError",
    "Event",
    "EventBus",
    "GenAIApp",
    "InitializationError",
    "InitializationReport",
    "LifecycleOrchestrator",
    "MemoryConfigStore",
    "ModuleContext",
    "ModuleSpec",
    "ModuleState",
    "ModuleTier",
    "Notice",
    "NoticeBoard",
    "NoticeLevel",
    "OrchestratorError",
    "ProcessPhase",
    "ServiceNotRegisteredError",
    "ServiceRegistry",
    "ServiceRegistryError",
    "ServiceTimeoutError",
    "YamlConfigStore",
    "__version__",
]
