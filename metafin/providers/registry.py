"""Capability-based dispatch across registered metadata providers."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, Iterable, Sequence, TypeVar

from rapidfuzz import fuzz

from .base import (
    CapabilityName,
    MetadataProvider,
    ProviderArtwork,
    ProviderHealth,
    ProviderSearchResult,
    ProviderSeries,
)

LOGGER = logging.getLogger("metafin.providers")

T = TypeVar("T")

# Results scoring below this name similarity are dropped from ranked searches.
_FUZZY_MATCH_THRESHOLD = 60


@dataclass(slots=True)
class ProviderResults(Generic[T]):
    provider: str
    results: T | None = None
    error: str | None = None


def match_confidence(
    query: str, result: ProviderSearchResult, *, year: int | None = None
) -> float:
    """Blend the provider's own score with fuzzy name similarity.

    A matching ``year`` adds a small bonus; a mismatch costs the same.
    """

    similarity = fuzz.WRatio(query.strip().lower(), result.name.strip().lower()) / 100.0
    score = (similarity + result.confidence) / 2 if result.confidence else similarity
    if year is not None and result.year is not None:
        score += 0.1 if result.year == year else -0.1
    return round(min(max(score, 0.0), 1.0), 4)


def rank_results(
    query: str,
    results: Iterable[ProviderSearchResult],
    *,
    year: int | None = None,
    threshold: int = _FUZZY_MATCH_THRESHOLD,
) -> list[ProviderSearchResult]:
    """Rescore *results* against *query* and order them best first."""

    normalized = query.strip().lower()
    ranked = []
    for result in results:
        if fuzz.WRatio(normalized, result.name.strip().lower()) < threshold:
            continue
        ranked.append(
            result.model_copy(update={"confidence": match_confidence(query, result, year=year)})
        )
    ranked.sort(key=lambda result: (-result.confidence, result.provider, result.id))
    return ranked


class ProviderRegistry:
    """Holds providers by key and fans calls out to capable ones."""

    def __init__(
        self,
        providers: Sequence[MetadataProvider] = (),
        *,
        logger: logging.Logger | None = None,
    ) -> None:
        self._providers: dict[str, MetadataProvider] = {}
        self._logger = logger or LOGGER
        for provider in providers:
            self.register(provider)

    def register(self, provider: MetadataProvider) -> None:
        self._providers[provider.key] = provider
        self._logger.info("Registered provider %s.", provider.name)

    def get(self, key: str) -> MetadataProvider | None:
        return self._providers.get(key.lower())

    def available(self) -> list[MetadataProvider]:
        return [provider for provider in self._providers.values() if provider.enabled]

    def by_capability(self, capability: CapabilityName) -> list[MetadataProvider]:
        return [provider for provider in self.available() if provider.supports(capability)]

    async def _call(
        self,
        provider: MetadataProvider,
        description: str,
        call: Callable[[], Awaitable[T]],
    ) -> ProviderResults[T]:
        try:
            results = await call()
        except Exception as exc:
            self._logger.warning("%s failed for %s: %s", description, provider.name, exc)
            return ProviderResults(provider=provider.key, error=str(exc) or exc.__class__.__name__)
        return ProviderResults(provider=provider.key, results=results)

    async def search_all(
        self, query: str, *, year: int | None = None, language: str | None = None
    ) -> list[ProviderResults[list[ProviderSearchResult]]]:
        """Search every capable provider; one failing does not fail the rest."""

        providers = self.by_capability("search")
        return list(
            await asyncio.gather(
                *(
                    self._call(
                        provider,
                        "Search",
                        lambda provider=provider: provider.search(
                            query, year=year, language=language
                        ),
                    )
                    for provider in providers
                )
            )
        )

    async def search_ranked(
        self, query: str, *, year: int | None = None, language: str | None = None
    ) -> list[ProviderSearchResult]:
        combined: list[ProviderSearchResult] = []
        for outcome in await self.search_all(query, year=year, language=language):
            combined.extend(outcome.results or [])
        return rank_results(query, combined, year=year)

    async def _dispatch(
        self,
        requests: Sequence[tuple[str, str]],
        capability: CapabilityName,
        description: str,
        call: Callable[[MetadataProvider, str], Awaitable[T]],
    ) -> list[ProviderResults[T]]:
        async def run(key: str, provider_id: str) -> ProviderResults[T]:
            provider = self.get(key)
            if provider is None or not provider.enabled:
                return ProviderResults(provider=key, error="Provider not available")
            if not provider.supports(capability):
                return ProviderResults(
                    provider=key, error=f"Provider does not support {capability}"
                )
            return await self._call(provider, description, lambda: call(provider, provider_id))

        return list(await asyncio.gather(*(run(key, pid) for key, pid in requests)))

    async def get_metadata_all(
        self, requests: Sequence[tuple[str, str]], *, include_episodes: bool = False
    ) -> list[ProviderResults[ProviderSeries]]:
        return await self._dispatch(
            requests,
            "metadata",
            "Metadata fetch",
            lambda provider, pid: provider.get_metadata(pid, include_episodes=include_episodes),
        )

    async def get_artwork_all(
        self, requests: Sequence[tuple[str, str]]
    ) -> list[ProviderResults[list[ProviderArtwork]]]:
        return await self._dispatch(
            requests,
            "artwork",
            "Artwork fetch",
            lambda provider, pid: provider.get_artwork(pid),
        )

    async def health_check_all(self) -> list[ProviderHealth]:
        return list(
            await asyncio.gather(
                *(provider.health_check() for provider in self._providers.values())
            )
        )

    async def aclose(self) -> None:
        for provider in self._providers.values():
            await provider.aclose()


__all__ = [
    "ProviderRegistry",
    "ProviderResults",
    "match_confidence",
    "rank_results",
]
