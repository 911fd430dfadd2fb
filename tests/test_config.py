import pytest
from pydantic import ValidationError
from pydantic_settings import SettingsError

from metafin.config import Settings


def test_settings_defaults(monkeypatch):
    monkeypatch.delenv("STORAGE_BACKEND", raising=False)
    settings = Settings()
    assert settings.storage_backend == "memory"
    assert settings.jellyfin_url is None
    assert settings.preview_token_ttl_seconds == 1800
    assert settings.scan_batch_size == 50
    assert settings.bulk_batch_size == 10
    assert settings.max_concurrent_jobs == 2
    assert settings.provider_rate_limits == {}
    assert settings.qdrant_collection_prefix == "metafin"


def test_settings_env_override(monkeypatch):
    monkeypatch.setenv("QDRANT_PORT", "7001")
    monkeypatch.setenv("JELLYFIN_URL", "http://jellyfin.local:8096")
    monkeypatch.setenv("STORAGE_BACKEND", "qdrant")
    settings = Settings()
    assert settings.qdrant_port == 7001
    assert str(settings.jellyfin_url) == "http://jellyfin.local:8096/"
    assert settings.storage_backend == "qdrant"


@pytest.mark.parametrize(
    "name",
    [
        "JELLYFIN_PAGE_SIZE",
        "PREVIEW_TOKEN_TTL_SECONDS",
        "SCAN_BATCH_SIZE",
        "BULK_BATCH_SIZE",
        "MAX_CONCURRENT_JOBS",
    ],
)
def test_settings_reject_non_positive_sizes(monkeypatch, name):
    monkeypatch.setenv(name, "0")
    with pytest.raises(ValidationError, match="must be positive"):
        Settings()


def test_settings_reject_negative_delay(monkeypatch):
    monkeypatch.setenv("BULK_BATCH_DELAY", "-0.5")
    with pytest.raises(ValidationError, match="bulk_batch_delay must not be negative"):
        Settings()


def test_settings_invalid_backend(monkeypatch):
    monkeypatch.setenv("STORAGE_BACKEND", "sqlite")
    with pytest.raises(ValidationError):
        Settings()


def test_settings_provider_rate_limits(monkeypatch):
    monkeypatch.setenv("PROVIDER_RATE_LIMITS", '{"TVMaze": "5", "tmdb": 40}')
    settings = Settings()
    assert settings.provider_rate_limits == {"tvmaze": 5, "tmdb": 40}


def test_settings_invalid_rate_limits(monkeypatch):
    monkeypatch.setenv("PROVIDER_RATE_LIMITS", "not-json")
    with pytest.raises(SettingsError):
        Settings()
