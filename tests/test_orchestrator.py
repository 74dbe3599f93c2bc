"""Tests for the phased LifecycleOrchestrator."""

from __future__ import annotations

import asyncio
import json
import logging
import sys

import pytest

from genai_core.builtins.error_reporter import BasicErrorReporter, ErrorReporter
from genai_core.config import APP_CONFIG_KEY, MemoryConfigStore
from genai_core.errors import ServiceNotRegisteredError
from genai_core.events import MODULE_STATUS_EVENT, PHASE_EVENT
from genai_core.notices import RESTART_ACTION, NoticeLevel
from genai_core.orchestrator import (
    LifecycleOrchestrator,
    ModuleSpec,
    ModuleState,
    ModuleTier,
    ProcessPhase,
)
from genai_core.services import ServiceRegistry


class BrokenStore:
    def load(self, key):
        raise OSError("disk unavailable")

    def save(self, key, value):
        raise OSError("disk unavailable")


def _reporter_spec(**overrides) -> ModuleSpec:
    options = {"tier": ModuleTier.CORE, "critical": True}
    options.update(overrides)
    return ModuleSpec("error_reporter", lambda ctx: ErrorReporter(logger=ctx.logger), **options)


def _fail(message: str):
    def factory(ctx):
        raise RuntimeError(message)

    return factory


def _orchestrator(*modules: ModuleSpec, config=None, **kwargs) -> LifecycleOrchestrator:
    store = MemoryConfigStore()
    if config is not None:
        store.save(APP_CONFIG_KEY, config)
    kwargs.setdefault("config_store", store)
    return LifecycleOrchestrator(ServiceRegistry(), modules, **kwargs)


@pytest.mark.asyncio
async def test_initialize_runs_every_phase_in_order() -> None:
    orchestrator = _orchestrator(
        _reporter_spec(),
        ModuleSpec("storage", lambda ctx: {"kind": "storage"}, tier=ModuleTier.CORE),
        ModuleSpec("chat", lambda ctx: ("chat", ctx.dependency("storage")), dependencies=("storage",)),
    )
    phases: list[str] = []
    orchestrator.events.on(PHASE_EVENT, lambda event: phases.append(event.payload["phase"]))

    assert await orchestrator.initialize() is True

    assert phases == ["loading-config", "core-init", "feature-init", "finalizing", "ready"]
    assert orchestrator.phase is ProcessPhase.READY
    assert orchestrator.get_module("chat") == ("chat", {"kind": "storage"})
    assert orchestrator.is_initialized("storage")
    status = orchestrator.get_status()
    assert status.initialized == ("error_reporter", "storage", "chat")
    assert status.failed == ()
    assert status.duration >= 0
    assert not status.degraded
    await orchestrator.shutdown()


@pytest.mark.asyncio
async def test_module_status_events_follow_lifecycle() -> None:
    orchestrator = _orchestrator(_reporter_spec(), ModuleSpec("feature", lambda ctx: object()))
    seen: list[str] = []

    def record(event):
        if event.payload["name"] == "feature":
            seen.append(event.payload["status"])

    orchestrator.events.on(MODULE_STATUS_EVENT, record)
    await orchestrator.initialize()

    assert seen == ["initializing", "ready"]
    await orchestrator.shutdown()


@pytest.mark.asyncio
async def test_failing_feature_does_not_abort_bootstrap() -> None:
    orchestrator = _orchestrator(
        _reporter_spec(),
        ModuleSpec("broken", _fail("feature exploded")),
        ModuleSpec("sibling", lambda ctx: "sibling"),
        ModuleSpec("consumer", lambda ctx: ("consumer", ctx.dependency("broken")), dependencies=("broken",)),
    )

    assert await orchestrator.initialize() is True

    assert orchestrator.get_module("broken") is None
    record = orchestrator.get_record("broken")
    assert record.status is ModuleState.ERROR
    assert record.error == "feature exploded"
    assert orchestrator.get_module("sibling") == "sibling"
    assert orchestrator.get_module("consumer") == ("consumer", None)
    assert orchestrator.get_status().failed == ("broken",)

    reporter = orchestrator.get_module("error_reporter")
    reported = [info for info in reporter.history() if info.context.get("module") == "broken"]
    assert reported and reported[0].message == "feature exploded"
    await orchestrator.shutdown()


@pytest.mark.asyncio
async def test_missing_implementation_is_not_available_not_failed() -> None:
    orchestrator = _orchestrator(_reporter_spec(), ModuleSpec("voice", None))

    assert await orchestrator.initialize() is True

    record = orchestrator.get_record("voice")
    assert record.status is ModuleState.NOT_AVAILABLE
    assert record.error is None
    assert orchestrator.get_status().failed == ()
    await orchestrator.shutdown()


@pytest.mark.asyncio
async def test_config_flag_disables_module() -> None:
    built: list[str] = []
    orchestrator = _orchestrator(
        _reporter_spec(),
        ModuleSpec("chat", lambda ctx: built.append("chat"), config_flag="features.enable_chat"),
        config={"features": {"enable_chat": False}},
    )

    assert await orchestrator.initialize() is True

    assert built == []
    record = orchestrator.get_record("chat")
    assert record.status is ModuleState.NOT_AVAILABLE
    assert record.detail == "disabled by features.enable_chat"
    await orchestrator.shutdown()


@pytest.mark.asyncio
async def test_modules_see_merged_configuration_which_is_discarded_afterwards() -> None:
    seen = {}

    def capture(ctx):
        seen["provider"] = ctx.config["ai"]["provider"]
        seen["chat"] = ctx.config["features"]["enable_chat"]
        return object()

    orchestrator = _orchestrator(
        _reporter_spec(),
        ModuleSpec("ai", capture),
        config={"ai": {"provider": "local"}},
    )

    assert await orchestrator.initialize() is True

    assert seen == {"provider": "local", "chat": True}
    assert orchestrator.config is None
    await orchestrator.shutdown()


@pytest.mark.asyncio
async def test_unreadable_configuration_falls_back_to_defaults() -> None:
    orchestrator = _orchestrator(_reporter_spec(), config_store=BrokenStore())

    assert await orchestrator.initialize() is True
    assert orchestrator.phase is ProcessPhase.READY
    await orchestrator.shutdown()


@pytest.mark.asyncio
async def test_configuration_failure_without_defaults_enters_fallback_mode() -> None:
    orchestrator = _orchestrator(
        _reporter_spec(),
        ModuleSpec("feature", lambda ctx: object()),
        config_store=BrokenStore(),
        default_config=None,
    )

    assert await orchestrator.initialize() is False

    assert orchestrator.phase is ProcessPhase.FALLBACK_MODE
    assert orchestrator.degraded
    rendered = orchestrator.notices.render()
    assert rendered
    blocking = orchestrator.notices.blocking()
    assert len(blocking) == 1
    assert RESTART_ACTION in blocking[0].actions
    assert orchestrator.is_initialized("error_reporter")
    assert not orchestrator.is_initialized("feature")


@pytest.mark.asyncio
async def test_stand_in_is_handed_to_dependents() -> None:
    orchestrator = _orchestrator(
        ModuleSpec(
            "error_reporter",
            _fail("reporter exploded"),
            tier=ModuleTier.CORE,
            critical=True,
            fallback=BasicErrorReporter,
        ),
        ModuleSpec("consumer", lambda ctx: ctx.dependency("error_reporter"), dependencies=("error_reporter",)),
    )

    assert await orchestrator.initialize() is True

    record = orchestrator.get_record("error_reporter")
    assert record.status is ModuleState.ERROR
    assert record.fallback_active
    assert orchestrator.get_module("error_reporter") is None
    assert isinstance(orchestrator.get_module("consumer"), BasicErrorReporter)
    await orchestrator.shutdown()


@pytest.mark.asyncio
async def test_critical_core_failure_enters_degraded_mode() -> None:
    orchestrator = _orchestrator(
        _reporter_spec(),
        ModuleSpec("vault", _fail("vault sealed"), tier=ModuleTier.CORE, critical=True),
        ModuleSpec("feature", lambda ctx: object(), dependencies=("vault",)),
    )

    assert await orchestrator.initialize() is False

    assert orchestrator.phase is ProcessPhase.FALLBACK_MODE
    assert orchestrator.get_record("vault").status is ModuleState.ERROR
    levels = [notice.level for notice in orchestrator.notices.notices]
    assert levels == [NoticeLevel.WARNING, NoticeLevel.WARNING]
    assert "vault sealed" in orchestrator.notices.notices[1].message


@pytest.mark.asyncio
async def test_failed_fallback_is_terminal_and_visible() -> None:
    orchestrator = _orchestrator(
        ModuleSpec("vault", _fail("vault sealed"), tier=ModuleTier.CORE, critical=True),
    )

    assert await orchestrator.initialize() is False

    assert orchestrator.phase is ProcessPhase.FAILED
    (notice,) = orchestrator.notices.notices
    assert notice.level is NoticeLevel.CRITICAL
    assert notice.blocking
    assert notice.actions == (RESTART_ACTION,)


@pytest.mark.asyncio
async def test_legacy_modules_are_disabled_at_finalize() -> None:
    namespace = {"legacy_chat_disabler": object(), "other": "kept"}
    orchestrator = _orchestrator(
        _reporter_spec(),
        ModuleSpec("api_settings_storage", lambda ctx: object()),
        legacy_namespace=namespace,
    )

    assert await orchestrator.initialize() is True

    assert orchestrator.get_module("api_settings_storage") is None
    record = orchestrator.get_record("api_settings_storage")
    assert record.status is ModuleState.NOT_AVAILABLE
    assert "secure_storage" in record.detail
    assert namespace == {"legacy_chat_disabler": None, "other": "kept"}
    await orchestrator.shutdown()


class Unhealthy:
    def health_check(self):
        return False


class Slow:
    async def health_check(self):
        await asyncio.sleep(1)
        return True


class Healthy:
    async def health_check(self):
        return True


@pytest.mark.asyncio
async def test_health_checks_only_warn() -> None:
    orchestrator = _orchestrator(
        _reporter_spec(),
        ModuleSpec("unhealthy", lambda ctx: Unhealthy()),
        ModuleSpec("slow", lambda ctx: Slow()),
        ModuleSpec("healthy", lambda ctx: Healthy()),
        config={"performance": {"health_check_timeout": 0.01}},
    )

    assert await orchestrator.initialize() is True

    assert orchestrator.health == {"unhealthy": False, "slow": False, "healthy": True}
    await orchestrator.shutdown()


@pytest.mark.asyncio
async def test_error_traps_report_and_are_restored_on_shutdown() -> None:
    original = sys.excepthook
    orchestrator = _orchestrator(_reporter_spec())
    await orchestrator.initialize()

    assert sys.excepthook is not original
    sys.excepthook(ValueError, ValueError("uncaught"), None)
    reporter = orchestrator.get_module("error_reporter")
    assert reporter.history()[0].message == "uncaught"
    assert reporter.history()[0].context["source"] == "excepthook"

    await orchestrator.shutdown()
    assert sys.excepthook is original


@pytest.mark.asyncio
async def test_reinitialize_module_retries_once_on_request() -> None:
    attempts = 0

    def flaky(ctx):
        nonlocal attempts
        attempts += 1
        if attempts == 1:
            raise RuntimeError("not yet")
        return "recovered"

    orchestrator = _orchestrator(_reporter_spec(), ModuleSpec("flaky", flaky))
    await orchestrator.initialize()
    assert orchestrator.get_record("flaky").status is ModuleState.ERROR
    assert attempts == 1

    assert await orchestrator.reinitialize_module("flaky") == "recovered"
    assert orchestrator.get_record("flaky").status is ModuleState.READY
    assert orchestrator.get_status().failed == ()

    with pytest.raises(ServiceNotRegisteredError):
        await orchestrator.reinitialize_module("unknown")
    await orchestrator.shutdown()


@pytest.mark.asyncio
async def test_status_serializes_to_json() -> None:
    orchestrator = _orchestrator(_reporter_spec(), ModuleSpec("broken", _fail("nope")))
    await orchestrator.initialize()

    payload = json.loads(json.dumps(orchestrator.get_status().as_dict()))

    assert payload["phase"] == "ready"
    assert payload["failed"] == ["broken"]
    assert payload["records"]["broken"]["status"] == "error"
    assert payload["records"]["broken"]["error"] == "nope"
    await orchestrator.shutdown()


def test_module_listed_twice_is_rejected() -> None:
    with pytest.raises(ValueError):
        _orchestrator(ModuleSpec("same", None), ModuleSpec("same", None))


@pytest.mark.asyncio
async def test_core_module_with_missing_dependency_is_recorded_as_error() -> None:
    orchestrator = _orchestrator(
        _reporter_spec(),
        ModuleSpec("storage", lambda ctx: object(), tier=ModuleTier.CORE, dependencies=("workspace",)),
        ModuleSpec("chat", lambda ctx: "chat"),
        ModuleSpec("history", lambda ctx: "history", dependencies=("storage",)),
    )

    assert await orchestrator.initialize() is True

    assert orchestrator.phase is ProcessPhase.READY
    record = orchestrator.get_record("storage")
    assert record.status is ModuleState.ERROR
    assert "'workspace' is not registered" in record.error
    assert orchestrator.get_module("storage") is None
    assert orchestrator.get_module("chat") == "chat"
    assert orchestrator.get_record("history").status is ModuleState.ERROR

    reporter = orchestrator.get_module("error_reporter")
    assert any(info.context.get("module") == "storage" for info in reporter.history())
    await orchestrator.shutdown()


@pytest.mark.asyncio
async def test_failing_core_module_without_stand_in_is_isolated() -> None:
    orchestrator = _orchestrator(
        _reporter_spec(),
        ModuleSpec("tracker", _fail("tracker exploded"), tier=ModuleTier.CORE),
        ModuleSpec("feature", lambda ctx: ("feature", ctx.dependency("tracker")), dependencies=("tracker",)),
    )

    assert await orchestrator.initialize() is True

    record = orchestrator.get_record("tracker")
    assert record.status is ModuleState.ERROR
    assert record.error == "tracker exploded"
    assert not record.fallback_active
    assert orchestrator.get_module("feature") == ("feature", None)
    assert orchestrator.get_status().failed == ("tracker",)
    await orchestrator.shutdown()


@pytest.mark.asyncio
async def test_core_module_whose_dependency_fails_is_isolated() -> None:
    orchestrator = _orchestrator(
        _reporter_spec(),
        ModuleSpec("db", lambda ctx: "db", tier=ModuleTier.CORE, dependencies=("driver",)),
        ModuleSpec("ui", lambda ctx: "ui"),
    )

    def driver():
        raise OSError("driver missing")

    orchestrator.registry.register("driver", driver)

    assert await orchestrator.initialize() is True

    record = orchestrator.get_record("db")
    assert record.status is ModuleState.ERROR
    assert "driver missing" in record.error
    assert orchestrator.get_module("ui") == "ui"
    await orchestrator.shutdown()


@pytest.mark.asyncio
async def test_critical_core_module_with_missing_dependency_enters_fallback() -> None:
    orchestrator = _orchestrator(
        _reporter_spec(),
        ModuleSpec("vault", lambda ctx: "vault", tier=ModuleTier.CORE, critical=True, dependencies=("keyring",)),
    )

    assert await orchestrator.initialize() is False

    assert orchestrator.phase is ProcessPhase.FALLBACK_MODE
    assert orchestrator.get_record("vault").status is ModuleState.ERROR


@pytest.mark.asyncio
async def test_malformed_health_check_timeout_uses_default(caplog: pytest.LogCaptureFixture) -> None:
    orchestrator = _orchestrator(
        _reporter_spec(),
        ModuleSpec("healthy", lambda ctx: Healthy()),
        config={"performance": {"health_check_timeout": "fast"}},
    )

    with caplog.at_level(logging.WARNING, logger="genai_core.orchestrator"):
        assert await orchestrator.initialize() is True

    assert orchestrator.phase is ProcessPhase.READY
    assert orchestrator.health == {"healthy": True}
    assert "invalid performance.health_check_timeout 'fast'" in caplog.text
    await orchestrator.shutdown()
