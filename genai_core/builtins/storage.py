"""Encrypted on-disk storage for secrets such as provider API keys."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any

from cryptography.fernet import Fernet, InvalidToken

KEY_FILE_NAME = "storage.key"
DATA_FILE_NAME = "secure.bin"
_HEALTH_CHECK_KEY = "__health_check__"


class SecureStorageError(Exception):
    """Raised when the encrypted document cannot be read or written."""


class SecureStorage:
    """Fernet-encrypted JSON document holding string keys.

    The key is generated on first use and kept next to the data with
    owner-only permissions.
    """

    def __init__(self, root: Path | str, *, logger: logging.Logger | None = None) -> None:
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)
        self.key_path = self.root / KEY_FILE_NAME
        self.data_path = self.root / DATA_FILE_NAME
        self._logger = logger or logging.getLogger(__name__)
        self._fernet = Fernet(self._load_or_create_key())

    def _load_or_create_key(self) -> bytes:
        if self.key_path.exists():
            return self.key_path.read_bytes().strip()
        key = Fernet.generate_key()
        self.key_path.write_bytes(key)
        try:
            os.chmod(self.key_path, 0o600)
        except OSError:
            self._logger.debug("could not restrict permissions on %s", self.key_path)
        return key

    def _read(self) -> dict[str, Any]:
        if not self.data_path.exists():
            return {}
        try:
            payload = self._fernet.decrypt(self.data_path.read_bytes())
        except InvalidToken as exc:
            raise SecureStorageError(f"{self.data_path} cannot be decrypted") from exc
        data = json.loads(payload.decode("utf-8"))
        if not isinstance(data, dict):
            raise SecureStorageError(f"{self.data_path} does not hold a mapping")
        return data

    def _write(self, data: dict[str, Any]) -> None:
        token = self._fernet.encrypt(json.dumps(data, sort_keys=True).encode("utf-8"))
        self.data_path.write_bytes(token)

    def get_item(self, key: str) -> Any | None:
        return self._read().get(key)

    def set_item(self, key: str, value: Any) -> None:
        data = self._read()
        data[key] = value
        self._write(data)

    def remove_item(self, key: str) -> None:
        data = self._read()
        if key in data:
            del data[key]
            self._write(data)

    def keys(self) -> tuple[str, ...]:
        return tuple(sorted(self._read()))

    def clear(self) -> None:
        if self.data_path.exists():
            self.data_path.unlink()

    def health_check(self) -> bool:
        """Write, read back and remove a probe value."""
        self.set_item(_HEALTH_CHECK_KEY, "ok")
        try:
            return self.get_item(_HEALTH_CHECK_KEY) == "ok"
        finally:
            self.remove_item(_HEALTH_CHECK_KEY)


class NullSecureStorage:
    """Stand-in that stores nothing."""

    def get_item(self, key: str) -> Any | None:
        return None

    def set_item(self, key: str, value: Any) -> None:
        return None

    def remove_item(self, key: str) -> None:
        return None

    def keys(self) -> tuple[str, ...]:
        return ()

    def clear(self) -> None:
        return None
