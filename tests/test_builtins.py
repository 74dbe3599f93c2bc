"""Tests for the modules that ship with genai."""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from genai_core.builtins import BUILTIN_MODULE_NAMES, builtin_modules
from genai_core.builtins.accessibility import Announcer
from genai_core.builtins.error_reporter import ErrorCode, ErrorReporter, sanitize_message, severity_for
from genai_core.builtins.features import AIIntegration, ChatStore, UIBootstrap
from genai_core.builtins.resources import ResourceTracker
from genai_core.builtins.storage import NullSecureStorage, SecureStorage, SecureStorageError
from genai_core.builtins.validation import InputValidator, PermissiveValidator
from genai_core.config import MemoryConfigStore
from genai_core.orchestrator import ModuleTier


def test_builtin_table_lists_core_before_features() -> None:
    specs = builtin_modules()
    tiers = [spec.tier for spec in specs]
    assert tiers == sorted(tiers, key=lambda tier: tier is ModuleTier.FEATURE)
    assert BUILTIN_MODULE_NAMES[:5] == (
        "error_reporter",
        "secure_storage",
        "resource_tracker",
        "input_validator",
        "accessibility",
    )
    critical = [spec.name for spec in specs if spec.critical]
    assert critical == ["error_reporter"]


@pytest.mark.parametrize(
    ("code", "severity"),
    [(1001, "critical"), (2002, "high"), (3004, "medium"), (4003, "low"), (5001, "medium"), (9001, "low")],
)
def test_severity_follows_code_ranges(code: int, severity: str) -> None:
    assert severity_for(code) == severity


def test_reporter_handles_codes_exceptions_and_strings() -> None:
    reporter = ErrorReporter()

    by_code = reporter.handle(int(ErrorCode.API_KEY_MISSING))
    assert by_code.severity == "critical"
    assert "API key is required" in by_code.message

    unknown = reporter.handle(7777)
    assert unknown.message == "Unknown error"

    timeout = reporter.handle(TimeoutError("provider slow"))
    assert timeout.code == ErrorCode.TIMEOUT
    assert timeout.stack is not None

    text = reporter.handle("plain message")
    assert text.code == ErrorCode.UNKNOWN_ERROR
    assert reporter.history()[0] is text


def test_reporter_sanitizes_messages() -> None:
    cleaned = sanitize_message("<img src=x onerror=alert(1)> javascript:run()")
    assert "<" not in cleaned and ">" not in cleaned
    assert "javascript:" not in cleaned
    assert "onerror=" not in cleaned
    assert len(sanitize_message("x" * 2000)) == 500
    assert sanitize_message(None) == "Invalid error message"


def test_reporter_history_is_bounded_and_listeners_notified() -> None:
    reporter = ErrorReporter(max_history=3)
    received = []
    reporter.add_listener(received.append)

    for index in range(5):
        reporter.handle(f"error {index}")

    assert [info.message for info in reporter.history()] == ["error 4", "error 3", "error 2"]
    assert len(received) == 5

    reporter.remove_listener(received.append)
    reporter.handle("after")
    assert len(received) == 5
    reporter.clear_history()
    assert reporter.history() == ()


def test_secure_storage_round_trips_encrypted(tmp_path: Path) -> None:
    storage = SecureStorage(tmp_path)
    storage.set_item("openai_api_key", "sk-secret-value")

    assert b"sk-secret-value" not in storage.data_path.read_bytes()
    reopened = SecureStorage(tmp_path)
    assert reopened.get_item("openai_api_key") == "sk-secret-value"
    assert reopened.keys() == ("openai_api_key",)

    reopened.remove_item("openai_api_key")
    assert reopened.get_item("openai_api_key") is None
    assert storage.health_check() is True
    assert storage.keys() == ()


def test_secure_storage_removes_keys_holding_none(tmp_path: Path) -> None:
    storage = SecureStorage(tmp_path)
    storage.set_item("empty", None)
    assert storage.keys() == ("empty",)

    storage.remove_item("empty")

    assert SecureStorage(tmp_path).keys() == ()


def test_secure_storage_rejects_foreign_key(tmp_path: Path) -> None:
    SecureStorage(tmp_path).set_item("token", "value")
    (tmp_path / "storage.key").unlink()

    with pytest.raises(SecureStorageError):
        SecureStorage(tmp_path).get_item("token")


def test_null_storage_stores_nothing() -> None:
    storage = NullSecureStorage()
    storage.set_item("key", "value")
    assert storage.get_item("key") is None
    assert storage.keys() == ()


@pytest.mark.asyncio
async def test_resource_tracker_cleans_up_and_disposes() -> None:
    tracker = ResourceTracker(max_tracked=2)
    closed: list[str] = []

    class Handle:
        def close(self):
            closed.append("sync")

    class AsyncHandle:
        async def aclose(self):
            closed.append("async")

    finished = tracker.track_task(asyncio.ensure_future(asyncio.sleep(0)))
    running = tracker.track_task(asyncio.ensure_future(asyncio.sleep(10)))
    await finished

    assert tracker.perform_cleanup() == 1
    assert tracker.stats().tasks == 1

    tracker.track(Handle())
    tracker.track(AsyncHandle())
    assert tracker.stats().total == 3
    assert tracker.health_check() is False

    await tracker.dispose()
    assert running.cancelled()
    assert closed == ["async", "sync"]
    assert tracker.stats().total == 0
    assert tracker.health_check() is True

    with pytest.raises(TypeError):
        tracker.track(object())


def test_validator_strips_markup_and_flags_patterns() -> None:
    validator = InputValidator()

    result = validator.validate_text("<b>hello</b> <script>x</script> onclick=run")
    assert result.valid
    assert "<" not in result.value
    assert "script tag" in result.warnings
    assert "inline event handler" in result.warnings

    too_long = validator.validate_text("abcdef", max_length=3)
    assert not too_long.valid
    assert too_long.value == "abc"

    assert not validator.validate_text("  ", required=True).valid
    assert not validator.validate_text(42).valid


def test_validator_checks_identifiers_and_keys() -> None:
    validator = InputValidator()
    assert validator.validate_identifier("chat_store").valid
    assert not validator.validate_identifier("9lives").valid
    assert validator.validate_api_key("sk-abcdefghijklmnop").valid
    assert not validator.validate_api_key("short").valid
    assert not validator.validate_api_key("").valid
    assert PermissiveValidator().validate_api_key("short").valid


def test_announcer_records_announcements() -> None:
    announcer = Announcer(max_history=2)
    announcer.announce("one")
    announcer.announce("two", politeness="assertive")
    announcer.announce("three")

    assert [item.message for item in announcer.announcements] == ["two", "three"]
    with pytest.raises(ValueError):
        announcer.announce("loud", politeness="shouting")


def test_chat_store_persists_through_key_value_store() -> None:
    store = MemoryConfigStore()
    chat = ChatStore(store, validator=InputValidator())
    conversation = chat.create_conversation("Planning")
    chat.add_message(conversation.id, "user", "<i>hi</i> there")

    reloaded = ChatStore(store)
    restored = reloaded.get_conversation(conversation.id)
    assert restored is not None
    assert restored.title == "Planning"
    assert [message.content for message in restored.messages] == ["hi there"]

    with pytest.raises(ValueError):
        chat.add_message(conversation.id, "user", "   ")
    with pytest.raises(KeyError):
        chat.add_message("missing", "user", "hello")

    assert reloaded.delete_conversation(conversation.id) is True
    assert ChatStore(store).conversations() == ()


def test_ai_integration_stores_validated_keys(tmp_path: Path) -> None:
    storage = SecureStorage(tmp_path)
    ai = AIIntegration("openai", InputValidator(), storage)

    assert not ai.configure_api_key("bad").valid
    assert not ai.has_api_key()
    assert ai.configure_api_key("sk-abcdefghijklmnop").valid
    assert ai.has_api_key()
    assert storage.get_item("openai_api_key") == "sk-abcdefghijklmnop"

    assert ai.prepare_prompt(" <b>Summarize</b> ") == "Summarize"
    with pytest.raises(ValueError):
        ai.prepare_prompt("")


def test_ui_bootstrap_announces_readiness() -> None:
    announcer = Announcer()
    ui = UIBootstrap(announcer, theme="dark").bootstrap()

    assert ui.bootstrapped
    assert ui.health_check()
    assert announcer.announcements[-1].message == "Interface loaded"
