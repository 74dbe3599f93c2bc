"""Centralized error reporting with numeric codes and severities."""

from __future__ import annotations

import logging
import re
import traceback
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import IntEnum
from typing import Any, Callable, Mapping

MAX_HISTORY = 100
MAX_MESSAGE_LENGTH = 500


class ErrorCode(IntEnum):
    SECURITY_VIOLATION = 1001
    API_KEY_MISSING = 1002
    UNAUTHORIZED_ACCESS = 1003

    STORAGE_UNAVAILABLE = 2001
    STORAGE_CORRUPT = 2002
    STORAGE_QUOTA_EXCEEDED = 2003
    ENCRYPTION_FAILED = 2004

    NETWORK_UNAVAILABLE = 3001
    TIMEOUT = 3004

    COMPONENT_INIT_FAILED = 4001
    INVALID_INPUT = 4003

    AI_MODULE_UNAVAILABLE = 5001

    UNKNOWN_ERROR = 9001
    INIT_FAILED = 9002
    DEPENDENCY_MISSING = 9003


MESSAGES: dict[ErrorCode, str] = {
    ErrorCode.SECURITY_VIOLATION: "Security violation detected. Action blocked.",
    ErrorCode.API_KEY_MISSING: "API key is required. Please configure your settings.",
    ErrorCode.UNAUTHORIZED_ACCESS: "Unauthorized access attempt blocked.",
    ErrorCode.STORAGE_UNAVAILABLE: "Storage system unavailable. Using temporary session data.",
    ErrorCode.STORAGE_CORRUPT: "Storage data corrupted. Restoring defaults.",
    ErrorCode.STORAGE_QUOTA_EXCEEDED: "Storage quota exceeded. Please clear old data.",
    ErrorCode.ENCRYPTION_FAILED: "Encryption failed. Data not saved securely.",
    ErrorCode.NETWORK_UNAVAILABLE: "Network connection unavailable.",
    ErrorCode.TIMEOUT: "Request timed out. Please try again.",
    ErrorCode.COMPONENT_INIT_FAILED: "Component failed to initialize properly.",
    ErrorCode.INVALID_INPUT: "Invalid input provided. Please check your data.",
    ErrorCode.AI_MODULE_UNAVAILABLE: "AI module not available.",
    ErrorCode.UNKNOWN_ERROR: "An unexpected error occurred.",
    ErrorCode.INIT_FAILED: "Initialization failed.",
    ErrorCode.DEPENDENCY_MISSING: "Required dependency missing.",
}

_SEVERITY_LOG_LEVELS = {
    "critical": logging.CRITICAL,
    "high": logging.ERROR,
    "medium": logging.WARNING,
    "low": logging.INFO,
}

_UNSAFE_MARKUP = re.compile(r"[<>]")
_SCRIPT_SCHEME = re.compile(r"javascript:", re.IGNORECASE)
_INLINE_HANDLER = re.compile(r"on\w+=", re.IGNORECASE)


def severity_for(code: int) -> str:
    """Map a code to its severity by range."""
    if 1000 <= code < 2000:
        return "critical"
    if 2000 <= code < 3000:
        return "high"
    if 3000 <= code < 4000:
        return "medium"
    if 4000 <= code < 5000:
        return "low"
    if 5000 <= code < 6000:
        return "medium"
    return "low"


def sanitize_message(message: Any) -> str:
    if not isinstance(message, str):
        return "Invalid error message"
    cleaned = _UNSAFE_MARKUP.sub("", message)
    cleaned = _SCRIPT_SCHEME.sub("", cleaned)
    cleaned = _INLINE_HANDLER.sub("", cleaned)
    return cleaned[:MAX_MESSAGE_LENGTH]


@dataclass(frozen=True)
class ErrorInfo:
    code: int
    message: str
    severity: str
    context: Mapping[str, Any] = field(default_factory=dict)
    stack: str | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


ErrorListener = Callable[[ErrorInfo], None]


class ErrorReporter:
    """Turn exceptions, codes and strings into logged, recorded ``ErrorInfo``."""

    def __init__(self, *, logger: logging.Logger | None = None, max_history: int = MAX_HISTORY) -> None:
        self._logger = logger or logging.getLogger(__name__)
        self._history: deque[ErrorInfo] = deque(maxlen=max_history)
        self._listeners: list[ErrorListener] = []

    def handle(self, error: BaseException | int | str, context: Mapping[str, Any] | None = None) -> ErrorInfo:
        info = self.process(error, dict(context or {}))
        self._logger.log(
            _SEVERITY_LOG_LEVELS.get(info.severity, logging.INFO),
            "[%s] %s",
            info.code,
            info.message,
        )
        self._history.appendleft(info)
        for listener in list(self._listeners):
            listener(info)
        return info

    def process(self, error: BaseException | int | str, context: Mapping[str, Any]) -> ErrorInfo:
        stack = None
        if isinstance(error, int):
            code = error
            try:
                message = MESSAGES.get(ErrorCode(code), "Unknown error")
            except ValueError:
                message = "Unknown error"
            severity = severity_for(code)
        elif isinstance(error, BaseException):
            code = int(self.classify(error, context))
            message = str(error) or MESSAGES.get(ErrorCode(code), "")
            severity = severity_for(code)
            stack = "".join(traceback.format_exception(type(error), error, error.__traceback__))
        elif isinstance(error, str):
            code = int(ErrorCode.UNKNOWN_ERROR)
            message = error
            severity = "medium"
        else:
            code = int(ErrorCode.UNKNOWN_ERROR)
            message = "Unknown error occurred"
            severity = "medium"
        return ErrorInfo(
            code=code,
            message=sanitize_message(message),
            severity=severity,
            context=dict(context),
            stack=stack,
        )

    @staticmethod
    def classify(error: BaseException, context: Mapping[str, Any]) -> ErrorCode:
        text = str(error).lower()
        if isinstance(error, TimeoutError):
            return ErrorCode.TIMEOUT
        if isinstance(error, PermissionError) or "unauthorized" in text or "forbidden" in text:
            return ErrorCode.UNAUTHORIZED_ACCESS
        if isinstance(error, ConnectionError) or "network" in text:
            return ErrorCode.NETWORK_UNAVAILABLE
        if "quota" in text:
            return ErrorCode.STORAGE_QUOTA_EXCEEDED
        if "api" in text and "key" in text:
            return ErrorCode.API_KEY_MISSING
        if context.get("component"):
            return ErrorCode.COMPONENT_INIT_FAILED
        if context.get("storage"):
            return ErrorCode.STORAGE_UNAVAILABLE
        if context.get("ai"):
            return ErrorCode.AI_MODULE_UNAVAILABLE
        return ErrorCode.UNKNOWN_ERROR

    def add_listener(self, listener: ErrorListener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def remove_listener(self, listener: ErrorListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def history(self) -> tuple[ErrorInfo, ...]:
        return tuple(self._history)

    def clear_history(self) -> None:
        self._history.clear()


class BasicErrorReporter:
    """Stand-in that only logs."""

    def __init__(self, *, logger: logging.Logger | None = None) -> None:
        self._logger = logger or logging.getLogger(__name__)

    def handle(self, error: BaseException | int | str, context: Mapping[str, Any] | None = None) -> None:
        self._logger.error("error: %s (context=%s)", error, dict(context or {}))
