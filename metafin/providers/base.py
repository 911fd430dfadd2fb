"""Interfaces shared by external metadata providers."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

CapabilityName = Literal["search", "metadata", "artwork", "episodes", "multi_language"]


class ProviderCapabilities(BaseModel):
    """Static feature flags a provider advertises."""

    model_config = ConfigDict(frozen=True)

    search: bool = False
    metadata: bool = False
    artwork: bool = False
    episodes: bool = False
    multi_language: bool = False


class ProviderSearchResult(BaseModel):
    id: str
    provider: str
    name: str
    year: Optional[int] = None
    overview: Optional[str] = None
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    language: Optional[str] = None
    country: Optional[str] = None
    network: Optional[str] = None
    status: Optional[str] = None
    genres: List[str] = Field(default_factory=list)
    poster_url: Optional[str] = None


class ProviderEpisode(BaseModel):
    season_number: int
    episode_number: int
    name: Optional[str] = None
    overview: Optional[str] = None
    air_date: Optional[str] = None
    runtime: Optional[int] = None
    still_url: Optional[str] = None


class ProviderSeries(BaseModel):
    id: str
    provider: str
    name: str
    original_name: Optional[str] = None
    overview: Optional[str] = None
    year: Optional[int] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    status: Optional[str] = None
    network: Optional[str] = None
    country: Optional[str] = None
    language: Optional[str] = None
    genres: List[str] = Field(default_factory=list)
    runtime: Optional[int] = None
    rating: Optional[float] = None
    poster_url: Optional[str] = None
    provider_ids: dict[str, str] = Field(default_factory=dict)
    episodes: Optional[List[ProviderEpisode]] = None


class ProviderArtwork(BaseModel):
    type: str
    url: str
    width: Optional[int] = None
    height: Optional[int] = None
    language: Optional[str] = None
    rating: Optional[float] = None


class ProviderHealth(BaseModel):
    provider: str
    name: str
    healthy: bool
    message: Optional[str] = None


class MetadataProvider(ABC):
    """Base class for metadata providers such as TVMaze.

    Subclasses declare their :attr:`capabilities`; the registry only routes a
    call to providers whose matching flag is set.
    """

    #: Stable key used in ``provider_ids`` and rate-limit settings.
    key: str = ""
    #: Human readable provider name.
    name: str = ""
    capabilities: ProviderCapabilities = ProviderCapabilities()

    def __init__(self, *, enabled: bool = True, logger: logging.Logger | None = None) -> None:
        self._enabled = enabled
        self._logger = logger or logging.getLogger(f"metafin.providers.{self.key or 'base'}")

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def logger(self) -> logging.Logger:
        return self._logger

    def supports(self, capability: CapabilityName) -> bool:
        return bool(getattr(self.capabilities, capability))

    @abstractmethod
    async def search(
        self, query: str, *, year: int | None = None, language: str | None = None
    ) -> list[ProviderSearchResult]:
        ...

    @abstractmethod
    async def get_metadata(
        self, provider_id: str, *, include_episodes: bool = False
    ) -> ProviderSeries:
        ...

    @abstractmethod
    async def get_artwork(self, provider_id: str) -> list[ProviderArtwork]:
        ...

    async def health_check(self) -> ProviderHealth:
        """Run a known search and report whether the provider answered."""

        try:
            results = await self.search("Breaking Bad")
        except Exception as exc:
            self._logger.warning("%s health check failed: %s", self.name, exc)
            return ProviderHealth(
                provider=self.key, name=self.name, healthy=False, message=str(exc)
            )
        if results:
            return ProviderHealth(provider=self.key, name=self.name, healthy=True, message="OK")
        return ProviderHealth(
            provider=self.key,
            name=self.name,
            healthy=False,
            message="No results returned for test query",
        )

    async def aclose(self) -> None:
        return None


__all__ = [
    "CapabilityName",
    "MetadataProvider",
    "ProviderArtwork",
    "ProviderCapabilities",
    "ProviderEpisode",
    "ProviderHealth",
    "ProviderSearchResult",
    "ProviderSeries",
]
