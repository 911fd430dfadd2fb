from __future__ import annotations

import json
from typing import Literal

from pydantic import AnyHttpUrl, Field, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .common.validation import require_positive


class Settings(BaseSettings):
    """Application configuration settings."""

    jellyfin_url: AnyHttpUrl | None = Field(default=None, validation_alias="JELLYFIN_URL")
    jellyfin_api_key: str | None = Field(
        default=None, validation_alias="JELLYFIN_API_KEY"
    )
    jellyfin_timeout: float = Field(default=10.0, validation_alias="JELLYFIN_TIMEOUT")
    jellyfin_page_size: int = Field(default=100, validation_alias="JELLYFIN_PAGE_SIZE")
    storage_backend: Literal["memory", "qdrant"] = Field(
        default="memory", validation_alias="STORAGE_BACKEND"
    )
    qdrant_url: str | None = Field(default=None, validation_alias="QDRANT_URL")
    qdrant_api_key: str | None = Field(
        default=None, validation_alias="QDRANT_API_KEY"
    )
    qdrant_host: str | None = Field(default=None, validation_alias="QDRANT_HOST")
    qdrant_port: int = Field(default=6333, validation_alias="QDRANT_PORT")
    qdrant_https: bool | None = Field(default=None, validation_alias="QDRANT_HTTPS")
    qdrant_collection_prefix: str = Field(
        default="metafin", validation_alias="QDRANT_COLLECTION_PREFIX"
    )
    preview_token_ttl_seconds: int = Field(
        default=1800, validation_alias="PREVIEW_TOKEN_TTL_SECONDS"
    )
    scan_batch_size: int = Field(default=50, validation_alias="SCAN_BATCH_SIZE")
    bulk_batch_size: int = Field(default=10, validation_alias="BULK_BATCH_SIZE")
    bulk_batch_delay: float = Field(default=0.1, validation_alias="BULK_BATCH_DELAY")
    max_concurrent_jobs: int = Field(default=2, validation_alias="MAX_CONCURRENT_JOBS")
    provider_rate_limits: dict[str, int] = Field(
        default_factory=dict, validation_alias="PROVIDER_RATE_LIMITS"
    )
    log_level: str = Field(default="info", validation_alias="LOG_LEVEL")

    @field_validator(
        "jellyfin_page_size",
        "preview_token_ttl_seconds",
        "scan_batch_size",
        "bulk_batch_size",
        "max_concurrent_jobs",
    )
    @classmethod
    def _validate_positive(cls, value: int, info: ValidationInfo) -> int:
        return require_positive(value, name=info.field_name)

    @field_validator("jellyfin_timeout", "bulk_batch_delay")
    @classmethod
    def _validate_non_negative_float(cls, value: float, info: ValidationInfo) -> float:
        if value < 0:
            raise ValueError(f"{info.field_name} must not be negative")
        return value

    @field_validator("provider_rate_limits", mode="before")
    @classmethod
    def _parse_rate_limits(cls, value: object) -> dict[str, int]:
        if value in (None, ""):
            return {}
        if isinstance(value, str):
            try:
                value = json.loads(value)
            except json.JSONDecodeError as exc:
                raise ValueError("PROVIDER_RATE_LIMITS must be valid JSON") from exc
        if isinstance(value, dict):
            return {str(k).lower(): int(v) for k, v in value.items()}
        raise TypeError("PROVIDER_RATE_LIMITS must be a mapping or JSON object")

    model_config = SettingsConfigDict(case_sensitive=False)
