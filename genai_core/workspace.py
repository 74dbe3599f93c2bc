"""Locate or create the .genai workspace that holds configuration and storage."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping

from platformdirs import user_data_dir

from .config import CONFIG_FILE_NAME, DEFAULT_APP_NAME

DEFAULT_WORKSPACE_NAME = ".genai"
WORKSPACE_ENV_VAR = "GENAI_DIR"


@dataclass(frozen=True)
class WorkspaceLayout:
    """Directory structure inside a workspace root."""

    root: Path
    config_file: Path
    storage_dir: Path
    logs_dir: Path

    @classmethod
    def from_root(cls, root: Path) -> "WorkspaceLayout":
        root = root.resolve()
        return cls(
            root=root,
            config_file=root / CONFIG_FILE_NAME,
            storage_dir=root / "storage",
            logs_dir=root / "logs",
        )

    def ensure(self) -> None:
        for directory in (self.root, self.storage_dir, self.logs_dir):
            directory.mkdir(parents=True, exist_ok=True)


@dataclass
class WorkspaceResolver:
    """Resolve the workspace root from the environment or the directory tree."""

    workspace_name: str = DEFAULT_WORKSPACE_NAME
    env: Mapping[str, str] | None = None

    def __post_init__(self) -> None:
        self.env = self.env if self.env is not None else os.environ

    def find_workspace(self, start_dir: Path | None = None) -> Path | None:
        """Look for an existing workspace by walking parent directories."""
        override = self._override_root()
        if override is not None:
            return override if override.is_dir() else None
        start = (Path(start_dir) if start_dir else Path.cwd()).resolve()
        for current in (start, *start.parents):
            candidate = current / self.workspace_name
            if candidate.is_dir():
                return candidate
        return None

    def ensure_workspace(self, start_dir: Path | None = None) -> WorkspaceLayout:
        """Create the workspace hierarchy if needed and return its layout."""
        root = self._override_root() or self.find_workspace(start_dir)
        if root is None:
            if start_dir is None:
                root = Path(user_data_dir(DEFAULT_APP_NAME, appauthor=False)) / self.workspace_name
            else:
                root = Path(start_dir).resolve() / self.workspace_name
        layout = WorkspaceLayout.from_root(root)
        layout.ensure()
        return layout

    def _override_root(self) -> Path | None:
        value = self.env.get(WORKSPACE_ENV_VAR)
        if value:
            return Path(value).expanduser().resolve()
        return None
