"""Shared helpers and models used across metafin packages."""

from __future__ import annotations

from .errors import (
    ConfigurationError,
    ConflictError,
    ErrorCode,
    ItemNotFoundError,
    JellyfinError,
    JobNotFoundError,
    MetafinError,
    NotFoundError,
    PreviewTokenExpiredError,
    PreviewTokenNotFoundError,
    ProviderError,
    ValidationError,
)
from .validation import clamp_limit, require_non_negative, require_positive

__all__ = [
    "ConfigurationError",
    "ConflictError",
    "ErrorCode",
    "ItemNotFoundError",
    "JellyfinError",
    "JobNotFoundError",
    "MetafinError",
    "NotFoundError",
    "PreviewTokenExpiredError",
    "PreviewTokenNotFoundError",
    "ProviderError",
    "ValidationError",
    "clamp_limit",
    "require_non_negative",
    "require_positive",
]
