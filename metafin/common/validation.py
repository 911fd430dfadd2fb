"""Validation helpers shared across packages."""

from __future__ import annotations

from typing import Any


def require_positive(value: int, *, name: str) -> int:
    """Return *value* if it is a positive integer, otherwise raise an error."""

    if not isinstance(value, int) or isinstance(value, bool):
        raise TypeError(f"{name} must be an int")
    if value <= 0:
        raise ValueError(f"{name} must be positive")
    return value


def require_non_negative(value: int, *, name: str) -> int:
    """Return *value* if it is an integer of zero or more."""

    if not isinstance(value, int) or isinstance(value, bool):
        raise TypeError(f"{name} must be an int")
    if value < 0:
        raise ValueError(f"{name} must not be negative")
    return value


def clamp_limit(raw: Any, *, default: int, maximum: int) -> int:
    """Best-effort conversion of a page size into ``1..maximum``.

    Missing or unparsable values fall back to *default*.
    """

    if raw is None or isinstance(raw, bool):
        return default
    if isinstance(raw, str):
        raw = raw.strip()
        if not raw:
            return default
    try:
        value = int(raw)
    except (TypeError, ValueError):
        return default
    if value <= 0:
        return default
    return min(value, maximum)


__all__ = ["require_positive", "require_non_negative", "clamp_limit"]
