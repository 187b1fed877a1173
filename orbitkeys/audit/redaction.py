"""Secret redaction for audit logging.

Audit entries must never carry a usable key. Any OrbitKeys token found in
an entry is replaced with a short fingerprint so events for the same key
can still be correlated.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any

from ..auth.keys import KEY_PREFIX, key_fingerprint

_TOKEN_PATTERN = re.compile(re.escape(KEY_PREFIX) + r"[A-Za-z0-9_\-]+")

_PATTERNS: list[tuple[re.Pattern, str]] = [
    (re.compile(r"[Bb]earer\s+[a-zA-Z0-9\-_\.]+"), "[REDACTED:BEARER_TOKEN]"),
    (
        re.compile(r"(?i)(x-root-api-key|x-api-key|api[_-]?key)[\"']?\s*[:=]\s*[\"']?[a-zA-Z0-9\-_]{8,}"),
        r"\1=[REDACTED]",
    ),
]

SENSITIVE_FIELD_NAMES = ("api_key", "root_api_key", "token", "secret", "password")


@dataclass
class RedactionConfig:
    """Configuration for the redactor."""

    # Field names whose string values are always replaced
    sensitive_fields: tuple[str, ...] = SENSITIVE_FIELD_NAMES

    # Extra (pattern, replacement) pairs applied after the built-ins
    custom_patterns: list[tuple[re.Pattern, str]] = field(default_factory=list)

    # Maximum depth for nested structure redaction
    max_depth: int = 10


class Redactor:
    """Redacts OrbitKeys tokens and other secrets from text and structures."""

    def __init__(self, config: RedactionConfig | None = None):
        self.config = config or RedactionConfig()
        self._patterns = [*_PATTERNS, *self.config.custom_patterns]

    def redact_string(self, text: str) -> str:
        """Redact secrets from a string.

        OrbitKeys tokens become ``[REDACTED:orbitkey:<fingerprint>]``.
        """
        if not text or not isinstance(text, str):
            return text

        result = _TOKEN_PATTERN.sub(
            lambda m: f"[REDACTED:orbitkey:{key_fingerprint(m.group(0))}]", text
        )
        for pattern, replacement in self._patterns:
            result = pattern.sub(replacement, result)
        return result

    def redact_value(self, value: Any, depth: int = 0) -> Any:
        """Recursively redact secrets from any value."""
        if depth > self.config.max_depth:
            return "[MAX_DEPTH_EXCEEDED]"

        if value is None or isinstance(value, (bool, int, float)):
            return value

        if isinstance(value, str):
            return self.redact_string(value)

        if isinstance(value, dict):
            result = {}
            for key, item in value.items():
                if self._is_sensitive_field(str(key)) and isinstance(item, str) and item:
                    result[key] = "[REDACTED]"
                else:
                    result[key] = self.redact_value(item, depth + 1)
            return result

        if isinstance(value, (list, tuple)):
            return type(value)(self.redact_value(item, depth + 1) for item in value)

        return self.redact_string(str(value))

    def _is_sensitive_field(self, name: str) -> bool:
        name = name.lower()
        return any(sensitive in name for sensitive in self.config.sensitive_fields)


def redact_string(text: str) -> str:
    """Redact a string with the default configuration."""
    return Redactor().redact_string(text)


__all__ = [
    "RedactionConfig",
    "Redactor",
    "redact_string",
]
