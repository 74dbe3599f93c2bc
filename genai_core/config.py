"""Key-value configuration collaborator and the built-in default configuration."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping, Protocol, runtime_checkable

import yaml
from platformdirs import user_config_dir

from .errors import ConfigurationError

DEFAULT_APP_NAME = "genai"
CONFIG_FILE_NAME = "config.yml"
APP_CONFIG_KEY = "app_config"


def _freeze(data: Mapping[str, Any]) -> Mapping[str, Any]:
    return MappingProxyType(
        {key: _freeze(value) if isinstance(value, Mapping) else value for key, value in data.items()}
    )


DEFAULT_CONFIG: Mapping[str, Any] = _freeze(
    {
        "security": {
            "enable_input_validation": True,
            "enable_secure_storage": True,
            "api_key_validation": True,
        },
        "features": {
            "enable_ai": True,
            "enable_chat": True,
            "enable_script_saving": True,
            "enable_presets": True,
        },
        "ai": {
            "provider": "default",
        },
        "ui": {
            "enabled": True,
            "enable_animations": True,
            "enable_accessibility": True,
            "theme": "default",
        },
        "performance": {
            "enable_resource_tracking": True,
            "max_tracked_resources": 500,
            "health_check_timeout": 5.0,
            "debug_mode": False,
        },
    }
)


def default_config_path() -> Path:
    """Return the platform-specific default config path for genai."""

    base_dir = Path(user_config_dir(DEFAULT_APP_NAME, appauthor=False))
    return base_dir / CONFIG_FILE_NAME


def merge_config(defaults: Mapping[str, Any], overrides: Mapping[str, Any] | None) -> dict[str, Any]:
    """Deep-merge `overrides` onto `defaults`; nested mappings merge key by key."""

    merged: dict[str, Any] = {
        key: merge_config(value, None) if isinstance(value, Mapping) else value
        for key, value in defaults.items()
    }
    for key, value in (overrides or {}).items():
        current = merged.get(key)
        if isinstance(current, Mapping) and isinstance(value, Mapping):
            merged[key] = merge_config(current, value)
        else:
            merged[key] = value
    return merged


def lookup(config: Mapping[str, Any] | None, dotted: str, default: Any = None) -> Any:
    """Read ``a.b.c`` out of nested mappings."""

    node: Any = config or {}
    for part in dotted.split("."):
        if not isinstance(node, Mapping) or part not in node:
            return default
        node = node[part]
    return node


@runtime_checkable
class KeyValueStore(Protocol):
    def load(self, key: str) -> Any | None: ...

    def save(self, key: str, value: Any) -> None: ...


@dataclass
class MemoryConfigStore:
    """In-memory store, mostly for tests and child scopes."""

    _store: dict[str, Any] = field(default_factory=dict)

    def load(self, key: str) -> Any | None:
        return self._store.get(key)

    def save(self, key: str, value: Any) -> None:
        self._store[key] = value


@dataclass
class YamlConfigStore:
    """File-backed store keeping every key in one YAML document."""

    path: Path = field(default_factory=default_config_path)

    def _read(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            raw = yaml.safe_load(self.path.read_text(encoding="utf-8")) or {}
        except (OSError, yaml.YAMLError) as exc:
            raise ConfigurationError(f"cannot read {self.path}: {exc}") from exc
        if not isinstance(raw, dict):
            raise ConfigurationError(f"{self.path} must contain a mapping")
        return raw

    def load(self, key: str) -> Any | None:
        return self._read().get(key)

    def save(self, key: str, value: Any) -> None:
        data = self._read()
        data[key] = value
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(
            yaml.safe_dump(data, sort_keys=False, allow_unicode=True), encoding="utf-8"
        )
