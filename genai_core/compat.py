"""Deprecated module implementations that must not stay reachable after startup."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class LegacyModule:
    """Legacy module name and the module that replaces it."""

    name: str
    replacement: str
    note: str | None = None


LEGACY_MODULES: tuple[LegacyModule, ...] = (
    LegacyModule(
        name="api_settings_storage",
        replacement="secure_storage",
        note="stored provider keys in plain text",
    ),
    LegacyModule(
        name="legacy_chat_disabler",
        replacement="chat_store",
        note="patched the chat surface instead of gating it through configuration",
    ),
)
