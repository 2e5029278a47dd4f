"""Operator error types and sanitization utilities to prevent information leakage."""

from __future__ import annotations

import re
from typing import Any

import kopf


class DatabaseValidationError(ValueError):
    """The desired spec was rejected. Waits for a spec edit, no retry."""


class PolicyViolationError(kopf.PermanentError):
    """An operation is forbidden by the declared termination policy."""


class PhaseTransitionError(kopf.PermanentError):
    """A status write would move the phase along an illegal edge."""


class OwnershipError(kopf.TemporaryError):
    """Adding, removing or destroying an ownership marker failed."""


class HaltTimeoutError(kopf.TemporaryError):
    """The workload did not report a stopped state in time."""


# Patterns that might expose sensitive information
SENSITIVE_PATTERNS = [
    r"mysql://[^:\s]+:([^@\s]+)@",
    r"(?<![\w-])-p\"?([^\s\"]+)",
    r"identified by '([^']+)'",
]

# Fields to redact completely
SENSITIVE_FIELDS = {
    "password",
    "secret",
    "credentials",
    "token",
    "key",
}


def sanitize_error_message(message: str) -> str:
    """Sanitize error message to remove sensitive information.

    Args:
        message: Original error message

    Returns:
        Sanitized error message with sensitive data redacted
    """
    sanitized = message

    for pattern in SENSITIVE_PATTERNS:
        sanitized = re.sub(
            pattern,
            lambda m: m.group(0).replace(m.group(1), "[REDACTED]"),
            sanitized,
            flags=re.IGNORECASE,
        )

    for field in SENSITIVE_FIELDS:
        sanitized = re.sub(
            rf"(?<![A-Za-z]){field}\s*[:=]\s*([^\s,;\)]+)",
            rf"{field}: [REDACTED]",
            sanitized,
            flags=re.IGNORECASE,
        )

    return sanitized


def sanitize_exception(error: Exception) -> str:
    """Sanitize exception message.

    Args:
        error: Exception object

    Returns:
        Sanitized error message
    """
    return sanitize_error_message(str(error))


def sanitize_dict(data: dict[str, Any], sensitive_keys: set[str] | None = None) -> dict[str, Any]:
    """Sanitize dictionary by redacting sensitive fields.

    Args:
        data: Dictionary to sanitize
        sensitive_keys: Additional keys to redact (merged with SENSITIVE_FIELDS)

    Returns:
        Sanitized dictionary with sensitive values redacted
    """
    all_sensitive = SENSITIVE_FIELDS | (sensitive_keys or set())
    sanitized: dict[str, Any] = {}

    for key, value in data.items():
        key_lower = key.lower()
        if any(sensitive in key_lower for sensitive in all_sensitive):
            sanitized[key] = "[REDACTED]"
        elif isinstance(value, dict):
            sanitized[key] = sanitize_dict(value, sensitive_keys)
        elif isinstance(value, str):
            sanitized[key] = sanitize_error_message(value)
        else:
            sanitized[key] = value

    return sanitized
