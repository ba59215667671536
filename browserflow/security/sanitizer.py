"""
Secret redaction for process logs.

Run logs echo typed values, request headers and task variables; this module
keeps credentials that travel through them out of log output.
"""

import hashlib
import logging
import re
from copy import deepcopy
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Dict, Iterable, List, Optional, Pattern

logger = logging.getLogger(__name__)


class RedactionMethod(Enum):
    """Methods for redacting sensitive data."""
    MASK = auto()          # Replace with asterisks
    HASH = auto()          # Replace with a short digest
    PARTIAL = auto()       # Keep the first/last few chars
    PLACEHOLDER = auto()   # Replace with placeholder text


@dataclass
class SensitiveDataPattern:
    """Pattern for identifying a secret inside free text."""

    name: str
    pattern: Pattern[str]
    redaction_method: RedactionMethod = RedactionMethod.PLACEHOLDER
    placeholder: str = "[REDACTED]"
    partial_chars: int = 4
    group: int = 0  # Group redacted; 0 means the whole match
    enabled: bool = True

    def matches(self, text: str) -> List[re.Match]:
        if not self.enabled:
            return []
        return list(self.pattern.finditer(text))


# Keys whose values are redacted wholesale inside dicts and headers.
SENSITIVE_KEYS = frozenset({
    "password",
    "passwd",
    "api_key",
    "apikey",
    "x-api-key",
    "authorization",
    "token",
    "secret",
    "cookie",
    "internal_api_key",
})


class DataSanitizer:
    """Redacts credentials from strings, dicts and log records."""

    def __init__(self, extra_keys: Optional[Iterable[str]] = None):
        self.sensitive_keys = set(SENSITIVE_KEYS)
        if extra_keys:
            self.sensitive_keys.update(k.lower() for k in extra_keys)
        self.patterns: List[SensitiveDataPattern] = [
            SensitiveDataPattern(
                name="api_key_assignment",
                pattern=re.compile(
                    r'(api[_-]?key|apikey|access[_-]?token|x-api-key)\s*[:=]\s*["\']?([^"\'\s,}]+)',
                    re.IGNORECASE,
                ),
                group=2,
            ),
            SensitiveDataPattern(
                name="password_assignment",
                pattern=re.compile(
                    r'(password|passwd|pwd)\s*[:=]\s*["\']?([^"\'\s,}]+)',
                    re.IGNORECASE,
                ),
                placeholder="[PASSWORD]",
                group=2,
            ),
            SensitiveDataPattern(
                name="bearer_token",
                pattern=re.compile(r'Bearer\s+[A-Za-z0-9\-._~+/]+=*', re.IGNORECASE),
            ),
            SensitiveDataPattern(
                name="jwt_token",
                pattern=re.compile(r'eyJ[A-Za-z0-9_-]+\.eyJ[A-Za-z0-9_-]+\.[A-Za-z0-9_-]+'),
                redaction_method=RedactionMethod.HASH,
            ),
            SensitiveDataPattern(
                name="sk_key",
                pattern=re.compile(r'\bsk_[a-zA-Z0-9_]{8,}\b'),
                redaction_method=RedactionMethod.PARTIAL,
            ),
        ]

    def add_pattern(self, pattern: SensitiveDataPattern) -> None:
        """Add a custom pattern."""
        self.patterns.append(pattern)

    def sanitize_string(self, text: str) -> str:
        """
        Redact every enabled pattern in ``text``.

        Matches are applied from the end of the string backwards so earlier
        spans keep their offsets.
        """
        if not text:
            return text

        spans = []
        for pattern in self.patterns:
            for match in pattern.matches(text):
                spans.append((match.start(pattern.group), match.end(pattern.group), pattern))
        spans.sort(key=lambda item: item[0], reverse=True)

        result = text
        last_start = len(text) + 1
        for start, end, pattern in spans:
            if end > last_start:
                continue  # overlaps a span already redacted
            result = result[:start] + self._redact(result[start:end], pattern) + result[end:]
            last_start = start
        return result

    def _redact(self, secret: str, pattern: SensitiveDataPattern) -> str:
        if pattern.redaction_method == RedactionMethod.MASK:
            return "*" * len(secret)
        if pattern.redaction_method == RedactionMethod.HASH:
            digest = hashlib.sha256(secret.encode()).hexdigest()[:8]
            return f"[HASH:{digest}]"
        if pattern.redaction_method == RedactionMethod.PARTIAL:
            return mask_sensitive_data(secret, pattern.partial_chars, pattern.partial_chars)
        return pattern.placeholder

    def is_sensitive_key(self, key: Any) -> bool:
        return isinstance(key, str) and key.lower() in self.sensitive_keys

    def sanitize_dict(self, data: Dict[str, Any], max_depth: int = 10) -> Dict[str, Any]:
        """
        Sanitize a dictionary recursively.

        Args:
            data: Dictionary to sanitize
            max_depth: Maximum recursion depth

        Returns:
            Sanitized copy of ``data``
        """
        if max_depth <= 0:
            logger.warning("Max recursion depth reached in sanitize_dict")
            return data

        result = deepcopy(data)
        for key, value in result.items():
            if self.is_sensitive_key(key) and value:
                result[key] = "[REDACTED]"
            else:
                result[key] = self._sanitize_value(value, max_depth)
        return result

    def _sanitize_value(self, value: Any, max_depth: int) -> Any:
        if isinstance(value, str):
            return self.sanitize_string(value)
        if isinstance(value, dict):
            return self.sanitize_dict(value, max_depth - 1)
        if isinstance(value, list):
            return [self._sanitize_value(item, max_depth - 1) for item in value]
        return value

    def sanitize_log_record(self, record: logging.LogRecord) -> logging.LogRecord:
        """Sanitize the message and arguments of a log record in place."""
        if isinstance(record.msg, str):
            record.msg = self.sanitize_string(record.msg)

        if record.args:
            if isinstance(record.args, dict):
                record.args = self.sanitize_dict(record.args)
            else:
                record.args = tuple(
                    self.sanitize_string(arg) if isinstance(arg, str) else arg
                    for arg in record.args
                )
        return record


_default_sanitizer = DataSanitizer()


def sanitize_string(text: str) -> str:
    """Sanitize a string using default patterns."""
    return _default_sanitizer.sanitize_string(text)


def sanitize_dict(data: Dict[str, Any]) -> Dict[str, Any]:
    """Sanitize a dictionary using default rules."""
    return _default_sanitizer.sanitize_dict(data)


def mask_sensitive_data(text: str, start_chars: int = 4, end_chars: int = 4) -> str:
    """Mask ``text`` showing only its first and last characters."""
    if len(text) <= start_chars + end_chars:
        return "*" * len(text)
    return text[:start_chars] + "*" * (len(text) - start_chars - end_chars) + text[-end_chars:]
