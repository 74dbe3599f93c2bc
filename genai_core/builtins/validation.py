"""Input validation for text reaching prompts, storage and the UI."""

from __future__ import annotations

import re
from dataclasses import dataclass, field

DEFAULT_MAX_LENGTH = 10_000

_TAG = re.compile(r"<[^>]*>")
_DANGEROUS_PATTERNS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"<script\b", re.IGNORECASE), "script tag"),
    (re.compile(r"javascript:", re.IGNORECASE), "javascript: URL"),
    (re.compile(r"\bon\w+\s*=", re.IGNORECASE), "inline event handler"),
    (re.compile(r"<iframe\b", re.IGNORECASE), "iframe tag"),
    (re.compile(r"\beval\s*\(", re.IGNORECASE), "eval call"),
)
_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_\-]{0,63}$")
_API_KEY = re.compile(r"^[A-Za-z0-9_\-\.]{16,256}$")


@dataclass(frozen=True)
class ValidationResult:
    valid: bool
    value: str
    errors: tuple[str, ...] = ()
    warnings: tuple[str, ...] = field(default_factory=tuple)


class InputValidator:
    def validate_text(
        self,
        value: object,
        *,
        max_length: int = DEFAULT_MAX_LENGTH,
        strip_html: bool = True,
        required: bool = False,
    ) -> ValidationResult:
        if value is None:
            value = ""
        if not isinstance(value, str):
            return ValidationResult(valid=False, value="", errors=("input must be text",))

        errors: list[str] = []
        warnings = [label for pattern, label in _DANGEROUS_PATTERNS if pattern.search(value)]
        text = _TAG.sub("", value) if strip_html else value
        text = text.strip()
        if required and not text:
            errors.append("input is required")
        if len(text) > max_length:
            errors.append(f"input exceeds {max_length} characters")
            text = text[:max_length]
        return ValidationResult(valid=not errors, value=text, errors=tuple(errors), warnings=tuple(warnings))

    def validate_identifier(self, value: object) -> ValidationResult:
        text = value.strip() if isinstance(value, str) else ""
        if not _IDENTIFIER.match(text):
            return ValidationResult(valid=False, value=text, errors=("invalid identifier",))
        return ValidationResult(valid=True, value=text)

    def validate_api_key(self, value: object) -> ValidationResult:
        text = value.strip() if isinstance(value, str) else ""
        if not text:
            return ValidationResult(valid=False, value="", errors=("API key is required",))
        if not _API_KEY.match(text):
            return ValidationResult(valid=False, value=text, errors=("API key has an unexpected format",))
        return ValidationResult(valid=True, value=text)


class PermissiveValidator:
    """Stand-in that accepts everything."""

    def validate_text(self, value: object, **_: object) -> ValidationResult:
        return ValidationResult(valid=True, value="" if value is None else str(value))

    def validate_identifier(self, value: object) -> ValidationResult:
        return ValidationResult(valid=True, value="" if value is None else str(value))

    def validate_api_key(self, value: object) -> ValidationResult:
        return ValidationResult(valid=True, value="" if value is None else str(value))
