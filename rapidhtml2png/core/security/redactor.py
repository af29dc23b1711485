"""
Log Redactor
============

Scrub sensitive values from arbitrary nested data before it is logged or
echoed back to a caller.

Keys are matched case-insensitively as sub-words: ``X-Api-Key``,
``refreshToken`` and ``client_secret`` are all treated as sensitive. The walk
is bounded by depth and tracks container identity, so an accidentally cyclic
structure is rendered with a marker instead of recursing forever.
"""

import re
from typing import Any, Dict, FrozenSet, Mapping, MutableMapping, Optional, Set

REDACTION_MARKER = "[REDACTED]"
CIRCULAR_MARKER = "[CIRCULAR]"
TRUNCATED_MARKER = "[TRUNCATED]"

MAX_DEPTH = 32

SENSITIVE_KEYS: FrozenSet[str] = frozenset(
    {
        "password",
        "passwd",
        "secret",
        "token",
        "api_key",
        "apikey",
        "access_token",
        "authorization",
        "cookie",
    }
)

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")
_SEPARATORS = re.compile(r"[\s\-.]+")


def _normalize_key(key: str) -> str:
    """Lowercase a key and turn camelCase, dashes and spaces into underscores."""
    key = _CAMEL_BOUNDARY.sub("_", key)
    return _SEPARATORS.sub("_", key).lower()


def is_sensitive_key(key: Any) -> bool:
    """Return True when ``key`` names a secret."""
    if not isinstance(key, str):
        return False

    normalized = _normalize_key(key)
    if normalized in SENSITIVE_KEYS:
        return True

    words = [word for word in normalized.split("_") if word]
    for sensitive in SENSITIVE_KEYS:
        parts = sensitive.split("_")
        width = len(parts)
        for i in range(len(words) - width + 1):
            if words[i : i + width] == parts:
                return True
    return False


def redact(data: Any, marker: str = REDACTION_MARKER) -> Any:
    """
    Return a copy of ``data`` with every sensitive value replaced.

    Args:
        data: Any value; mappings, lists, tuples and sets are walked
        marker: Replacement for sensitive values

    Returns:
        A structure of the same shape. Non-sensitive values are passed
        through unchanged.
    """
    return _redact(data, marker, 0, set())


def _redact(value: Any, marker: str, depth: int, active: Set[int]) -> Any:
    if not isinstance(value, (Mapping, list, tuple, set, frozenset)):
        return value

    if depth >= MAX_DEPTH:
        return TRUNCATED_MARKER

    identity = id(value)
    if identity in active:
        return CIRCULAR_MARKER

    active.add(identity)
    try:
        if isinstance(value, Mapping):
            result: Dict[Any, Any] = {}
            for key, item in value.items():
                if is_sensitive_key(key):
                    result[key] = marker
                else:
                    result[key] = _redact(item, marker, depth + 1, active)
            return result

        items = [_redact(item, marker, depth + 1, active) for item in value]
        if isinstance(value, tuple):
            return tuple(items)
        if isinstance(value, (set, frozenset)):
            # Unhashable replacements cannot live in a set; fall back to a list
            try:
                return type(value)(items)
            except TypeError:
                return items
        return items
    finally:
        active.discard(identity)


def redact_event(
    logger: Optional[Any], method_name: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    """structlog processor that redacts the whole event dictionary."""
    return redact(event_dict)
