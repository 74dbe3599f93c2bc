"""Module table for the modules that ship with genai."""

from __future__ import annotations

from ..config import lookup
from ..orchestrator import ModuleContext, ModuleSpec, ModuleTier
from .accessibility import Announcer
from .error_reporter import BasicErrorReporter, ErrorReporter
from .features import AIIntegration, ChatStore, ServiceDirectory, UIBootstrap
from .resources import DEFAULT_MAX_TRACKED, ResourceTracker
from .storage import NullSecureStorage, SecureStorage
from .validation import InputValidator, PermissiveValidator

__all__ = [
    "BUILTIN_MODULE_NAMES",
    "CONFIG_STORE_SERVICE",
    "ORCHESTRATOR_SERVICE",
    "REGISTRY_SERVICE",
    "WORKSPACE_SERVICE",
    "builtin_modules",
]

# Registry services the composition root provides next to the modules.
WORKSPACE_SERVICE = "workspace"
CONFIG_STORE_SERVICE = "config_store"
REGISTRY_SERVICE = "service_registry"
ORCHESTRATOR_SERVICE = "orchestrator"


def _error_reporter(context: ModuleContext) -> ErrorReporter:
    return ErrorReporter(logger=context.logger)


def _secure_storage(context: ModuleContext) -> SecureStorage:
    workspace = context.dependency(WORKSPACE_SERVICE)
    return SecureStorage(workspace.storage_dir, logger=context.logger)


def _resource_tracker(context: ModuleContext) -> ResourceTracker:
    limit = lookup(context.config, "performance.max_tracked_resources", DEFAULT_MAX_TRACKED)
    return ResourceTracker(max_tracked=int(limit), logger=context.logger)


def _input_validator(context: ModuleContext) -> InputValidator:
    return InputValidator()


def _accessibility(context: ModuleContext) -> Announcer:
    return Announcer(logger=context.logger)


def _service_directory(context: ModuleContext) -> ServiceDirectory:
    return ServiceDirectory(
        context.dependency(REGISTRY_SERVICE),
        context.dependency(ORCHESTRATOR_SERVICE),
    )


def _chat_store(context: ModuleContext) -> ChatStore:
    return ChatStore(
        context.dependency(CONFIG_STORE_SERVICE),
        validator=context.dependency("input_validator"),
        logger=context.logger,
    )


def _ai_integration(context: ModuleContext) -> AIIntegration:
    return AIIntegration(
        provider=str(lookup(context.config, "ai.provider", "default")),
        validator=context.dependency("input_validator"),
        storage=context.dependency("secure_storage"),
    )


def _ui_bootstrap(context: ModuleContext) -> UIBootstrap:
    ui = UIBootstrap(
        context.dependency("accessibility"),
        theme=str(lookup(context.config, "ui.theme", "default")),
        animations=bool(lookup(context.config, "ui.enable_animations", True)),
    )
    return ui.bootstrap()


def builtin_modules() -> tuple[ModuleSpec, ...]:
    """Return the module table in registration order."""
    return (
        ModuleSpec(
            "error_reporter",
            _error_reporter,
            tier=ModuleTier.CORE,
            critical=True,
            fallback=BasicErrorReporter,
            description="error codes, sanitised messages and history",
        ),
        ModuleSpec(
            "secure_storage",
            _secure_storage,
            tier=ModuleTier.CORE,
            dependencies=("error_reporter", WORKSPACE_SERVICE),
            fallback=NullSecureStorage,
            config_flag="security.enable_secure_storage",
            description="encrypted key-value storage",
        ),
        ModuleSpec(
            "resource_tracker",
            _resource_tracker,
            tier=ModuleTier.CORE,
            config_flag="performance.enable_resource_tracking",
            description="tracks tasks and closeable resources",
        ),
        ModuleSpec(
            "input_validator",
            _input_validator,
            tier=ModuleTier.CORE,
            fallback=PermissiveValidator,
            config_flag="security.enable_input_validation",
            description="text, identifier and API key validation",
        ),
        ModuleSpec(
            "accessibility",
            _accessibility,
            tier=ModuleTier.CORE,
            config_flag="ui.enable_accessibility",
            description="status announcements",
        ),
        ModuleSpec(
            "service_directory",
            _service_directory,
            dependencies=(REGISTRY_SERVICE, ORCHESTRATOR_SERVICE),
            description="lookup of started modules",
        ),
        ModuleSpec(
            "chat_store",
            _chat_store,
            dependencies=(CONFIG_STORE_SERVICE, "input_validator"),
            config_flag="features.enable_chat",
            description="conversation history",
        ),
        ModuleSpec(
            "ai_integration",
            _ai_integration,
            dependencies=("input_validator", "secure_storage"),
            config_flag="features.enable_ai",
            description="provider settings and prompt checks",
        ),
        ModuleSpec(
            "ui_bootstrap",
            _ui_bootstrap,
            dependencies=("accessibility",),
            config_flag="ui.enabled",
            description="interface shell",
        ),
    )


BUILTIN_MODULE_NAMES: tuple[str, ...] = tuple(spec.name for spec in builtin_modules())
