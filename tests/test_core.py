"""Core runtime tests for workspace helpers, configuration and notices."""

from pathlib import Path

import pytest

from genai_core.config import (
    APP_CONFIG_KEY,
    DEFAULT_CONFIG,
    KeyValueStore,
    MemoryConfigStore,
    YamlConfigStore,
    lookup,
    merge_config,
)
from genai_core.errors import ConfigurationError
from genai_core.events import NOTICE_EVENT, EventBus
from genai_core.notices import RESTART_ACTION, Notice, NoticeBoard, NoticeLevel
from genai_core.workspace import WORKSPACE_ENV_VAR, WorkspaceResolver


def test_workspace_detects_existing(tmp_path: Path) -> None:
    project_dir = tmp_path / "project"
    nested = project_dir / "src" / "pkg"
    nested.mkdir(parents=True)
    marker = project_dir / ".genai"
    marker.mkdir()

    resolver = WorkspaceResolver(env={})
    assert resolver.find_workspace(nested) == marker.resolve()


def test_workspace_env_override_wins(tmp_path: Path) -> None:
    override = tmp_path / "elsewhere"
    resolver = WorkspaceResolver(env={WORKSPACE_ENV_VAR: str(override)})

    layout = resolver.ensure_workspace(tmp_path)

    assert layout.root == override.resolve()
    assert layout.storage_dir.is_dir()
    assert layout.logs_dir.is_dir()
    assert layout.config_file.name == "config.yml"


def test_workspace_is_created_under_start_dir(tmp_path: Path) -> None:
    layout = WorkspaceResolver(env={}).ensure_workspace(tmp_path)
    assert layout.root == (tmp_path / ".genai").resolve()
    assert layout.root.is_dir()


def test_yaml_config_store_round_trips(tmp_path: Path) -> None:
    config_file = tmp_path / "nested" / "config.yml"
    store = YamlConfigStore(path=config_file)
    assert store.load(APP_CONFIG_KEY) is None

    store.save(APP_CONFIG_KEY, {"ai": {"provider": "local"}})
    store.save("other", [1, 2])

    reopened = YamlConfigStore(path=config_file)
    assert reopened.load(APP_CONFIG_KEY) == {"ai": {"provider": "local"}}
    assert reopened.load("other") == [1, 2]
    assert isinstance(reopened, KeyValueStore)
    assert isinstance(MemoryConfigStore(), KeyValueStore)


def test_yaml_config_store_rejects_non_mapping(tmp_path: Path) -> None:
    config_file = tmp_path / "config.yml"
    config_file.write_text("- just\n- a list\n", encoding="utf-8")

    with pytest.raises(ConfigurationError):
        YamlConfigStore(path=config_file).load(APP_CONFIG_KEY)


def test_merge_config_is_deep_and_leaves_defaults_alone() -> None:
    merged = merge_config(DEFAULT_CONFIG, {"ui": {"theme": "dark"}, "extra": True})

    assert merged["ui"]["theme"] == "dark"
    assert merged["ui"]["enabled"] is True
    assert merged["extra"] is True
    assert DEFAULT_CONFIG["ui"]["theme"] == "default"
    with pytest.raises(TypeError):
        DEFAULT_CONFIG["ui"]["theme"] = "dark"  # type: ignore[index]


def test_lookup_reads_dotted_paths() -> None:
    config = {"features": {"enable_ai": False}}
    assert lookup(config, "features.enable_ai", True) is False
    assert lookup(config, "features.missing", "fallback") == "fallback"
    assert lookup(None, "anything") is None


def test_notice_board_emits_and_filters() -> None:
    bus = EventBus()
    delivered = []
    bus.on(NOTICE_EVENT, lambda event: delivered.append(event.payload["notice"]))
    board = NoticeBoard(bus)

    board.post(Notice(level=NoticeLevel.INFO, title="Hello", message="started"))
    banner = board.post(
        Notice(
            level=NoticeLevel.CRITICAL,
            title="Critical error",
            message="restart needed",
            actions=(RESTART_ACTION,),
            blocking=True,
        )
    )

    assert delivered == list(board.notices)
    assert board.blocking() == (banner,)
    assert board.render()[1] == "[critical] Critical error: restart needed (restart)"
    board.clear()
    assert board.notices == ()
