"""Exception hierarchy surfaced by metafin services and HTTP routes."""

from __future__ import annotations

from enum import Enum
from typing import Any, Mapping

import pydantic


class ErrorCode(str, Enum):
    VALIDATION_ERROR = "VALIDATION_ERROR"
    NOT_FOUND = "NOT_FOUND"
    TOKEN_EXPIRED = "TOKEN_EXPIRED"
    CONFLICT = "CONFLICT"
    JELLYFIN_ERROR = "JELLYFIN_ERROR"
    PROVIDER_ERROR = "PROVIDER_ERROR"
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class MetafinError(Exception):
    """Base class for errors that carry an error code and HTTP status."""

    code: ErrorCode = ErrorCode.INTERNAL_ERROR
    status_code: int = 500

    def __init__(
        self,
        message: str,
        *,
        details: Mapping[str, Any] | None = None,
        code: ErrorCode | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = dict(details or {})
        if code is not None:
            self.code = code
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-serialisable error payload."""

        payload: dict[str, Any] = {
            "error": {"code": self.code.value, "message": self.message}
        }
        if self.details:
            payload["error"]["details"] = self.details
        return payload


class ValidationError(MetafinError):
    code = ErrorCode.VALIDATION_ERROR
    status_code = 400

    @classmethod
    def from_pydantic(cls, exc: pydantic.ValidationError) -> "ValidationError":
        """Summarise a pydantic validation failure into one message."""

        errors = exc.errors(include_url=False, include_context=False, include_input=False)
        messages = []
        for error in errors:
            location = ".".join(str(part) for part in error.get("loc", ()))
            message = error.get("msg", "invalid value")
            messages.append(f"{location}: {message}" if location else message)
        return cls("; ".join(messages) or str(exc), details={"errors": errors})


class NotFoundError(MetafinError):
    code = ErrorCode.NOT_FOUND
    status_code = 404


class ItemNotFoundError(NotFoundError):
    def __init__(self, item_id: str) -> None:
        super().__init__(f"Item {item_id} not found", details={"item_id": item_id})
        self.item_id = item_id


class JobNotFoundError(NotFoundError):
    def __init__(self, job_id: str) -> None:
        super().__init__(f"Job {job_id} not found", details={"job_id": job_id})
        self.job_id = job_id


class PreviewTokenNotFoundError(NotFoundError):
    def __init__(self) -> None:
        super().__init__("Invalid or expired preview token")


class PreviewTokenExpiredError(MetafinError):
    code = ErrorCode.TOKEN_EXPIRED
    status_code = 410

    def __init__(self) -> None:
        super().__init__("Preview token has expired")


class ConflictError(MetafinError):
    code = ErrorCode.CONFLICT
    status_code = 409


class JellyfinError(MetafinError):
    code = ErrorCode.JELLYFIN_ERROR
    status_code = 502


class ProviderError(MetafinError):
    code = ErrorCode.PROVIDER_ERROR
    status_code = 502


class ConfigurationError(MetafinError):
    code = ErrorCode.CONFIGURATION_ERROR
    status_code = 500


__all__ = [
    "ErrorCode",
    "MetafinError",
    "ValidationError",
    "NotFoundError",
    "ItemNotFoundError",
    "JobNotFoundError",
    "PreviewTokenNotFoundError",
    "PreviewTokenExpiredError",
    "ConflictError",
    "JellyfinError",
    "ProviderError",
    "ConfigurationError",
]
