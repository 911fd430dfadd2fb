"""TVMaze metadata provider."""

from __future__ import annotations

import html
import logging
import re
from typing import Any, Mapping

import httpx

from .. import __version__
from ..common.errors import ProviderError
from ..common.throttle import RequestThrottler
from .base import (
    MetadataProvider,
    ProviderArtwork,
    ProviderCapabilities,
    ProviderEpisode,
    ProviderSearchResult,
    ProviderSeries,
)

LOGGER = logging.getLogger("metafin.providers.tvmaze")

TVMAZE_BASE_URL = "https://api.tvmaze.com"
DEFAULT_RATE_LIMIT = 2
DEFAULT_TIMEOUT = 30.0

_TAG_RE = re.compile(r"<[^>]*>")


def clean_summary(summary: str | None) -> str | None:
    """Strip the HTML markup TVMaze wraps summaries in."""

    if not summary:
        return None
    text = html.unescape(_TAG_RE.sub("", summary)).replace("\xa0", " ").strip()
    return text or None


def _year(date: str | None) -> int | None:
    if not date or len(date) < 4 or not date[:4].isdigit():
        return None
    return int(date[:4])


def _network(show: Mapping[str, Any]) -> Mapping[str, Any]:
    return show.get("network") or show.get("webChannel") or {}


class TVMazeProvider(MetadataProvider):
    """Read-only client for the public TVMaze API."""

    key = "tvmaze"
    name = "TVMaze"
    capabilities = ProviderCapabilities(
        search=True, metadata=True, artwork=True, episodes=True, multi_language=True
    )

    def __init__(
        self,
        *,
        http_client: httpx.AsyncClient | None = None,
        rate_limit: int | None = DEFAULT_RATE_LIMIT,
        timeout: float = DEFAULT_TIMEOUT,
        base_url: str = TVMAZE_BASE_URL,
        enabled: bool = True,
        logger: logging.Logger | None = None,
    ) -> None:
        super().__init__(enabled=enabled, logger=logger or LOGGER)
        self._base_url = base_url.rstrip("/")
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=httpx.Timeout(timeout))
        self._throttle = RequestThrottler(limit=rate_limit)

    @property
    def rate_limit(self) -> int | None:
        return self._throttle.limit

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()

    def _error(
        self,
        code: str,
        message: str,
        *,
        retryable: bool = False,
        retry_after: int | None = None,
    ) -> ProviderError:
        details: dict[str, Any] = {
            "provider": self.key,
            "code": code,
            "retryable": retryable,
        }
        if retry_after is not None:
            details["retry_after"] = retry_after
        return ProviderError(message, details=details)

    async def _request(self, path: str, params: Mapping[str, str] | None = None) -> Any:
        await self._throttle.acquire()
        try:
            response = await self._http.get(
                f"{self._base_url}{path}",
                params=params,
                headers={"User-Agent": f"metafin/{__version__}"},
            )
        except httpx.TimeoutException as exc:
            raise self._error("TIMEOUT", "Request timeout", retryable=True) from exc
        except httpx.HTTPError as exc:
            self._logger.exception("HTTP error calling TVMaze %s", path)
            raise self._error("HTTP_ERROR", f"TVMaze request failed: {exc}", retryable=True) from exc

        if response.status_code == 429:
            retry_after = response.headers.get("retry-after", "60")
            raise self._error(
                "RATE_LIMITED",
                "Rate limit exceeded",
                retryable=True,
                retry_after=int(retry_after) if retry_after.isdigit() else 60,
            )
        if response.status_code == 404:
            raise self._error("NOT_FOUND", "Resource not found")
        if not response.is_success:
            raise self._error(
                "HTTP_ERROR",
                f"TVMaze API error: {response.status_code} {response.reason_phrase}",
                retryable=response.status_code >= 500,
            )
        if "application/json" not in response.headers.get("content-type", ""):
            raise self._error("INVALID_RESPONSE", "Expected JSON response")
        return response.json()

    async def search(
        self, query: str, *, year: int | None = None, language: str | None = None
    ) -> list[ProviderSearchResult]:
        try:
            results = await self._request("/search/shows", {"q": query})
        except ProviderError as exc:
            if exc.details.get("code") == "NOT_FOUND":
                return []
            raise
        return [self._search_result(entry) for entry in results or []]

    async def get_metadata(
        self, provider_id: str, *, include_episodes: bool = False
    ) -> ProviderSeries:
        show = await self._request(f"/shows/{provider_id}")
        episodes = await self._episodes(provider_id) if include_episodes else None
        return self._series(show, episodes)

    async def get_artwork(self, provider_id: str) -> list[ProviderArtwork]:
        show = await self._request(f"/shows/{provider_id}")
        image = show.get("image") or {}
        if not image.get("original"):
            return []
        return [
            ProviderArtwork(
                type="poster",
                url=image["original"],
                language="en" if show.get("language") == "English" else None,
                rating=(show.get("rating") or {}).get("average"),
            )
        ]

    async def _episodes(self, provider_id: str) -> list[ProviderEpisode]:
        try:
            episodes = await self._request(f"/shows/{provider_id}/episodes")
        except ProviderError as exc:
            if exc.details.get("code") == "NOT_FOUND":
                return []
            raise
        return [
            ProviderEpisode(
                season_number=episode.get("season") or 0,
                episode_number=episode.get("number") or 0,
                name=episode.get("name"),
                overview=clean_summary(episode.get("summary")),
                air_date=episode.get("airdate") or None,
                runtime=episode.get("runtime"),
                still_url=(episode.get("image") or {}).get("original"),
            )
            for episode in episodes or []
        ]

    def _search_result(self, entry: Mapping[str, Any]) -> ProviderSearchResult:
        show = entry.get("show") or {}
        network = _network(show)
        return ProviderSearchResult(
            id=str(show.get("id")),
            provider=self.key,
            name=show.get("name") or "",
            year=_year(show.get("premiered")),
            overview=clean_summary(show.get("summary")),
            confidence=min(max(float(entry.get("score") or 0.0), 0.0), 1.0),
            language=show.get("language"),
            country=(network.get("country") or {}).get("name"),
            network=network.get("name"),
            status=show.get("status"),
            genres=list(show.get("genres") or []),
            poster_url=(show.get("image") or {}).get("original"),
        )

    def _series(
        self, show: Mapping[str, Any], episodes: list[ProviderEpisode] | None
    ) -> ProviderSeries:
        network = _network(show)
        externals = show.get("externals") or {}
        provider_ids = {self.key: str(show.get("id"))}
        if externals.get("imdb"):
            provider_ids["imdb"] = str(externals["imdb"])
        if externals.get("thetvdb"):
            provider_ids["tvdb"] = str(externals["thetvdb"])
        return ProviderSeries(
            id=str(show.get("id")),
            provider=self.key,
            name=show.get("name") or "",
            original_name=show.get("name"),
            overview=clean_summary(show.get("summary")),
            year=_year(show.get("premiered")),
            start_date=show.get("premiered"),
            end_date=show.get("ended"),
            status=show.get("status"),
            network=network.get("name"),
            country=(network.get("country") or {}).get("name"),
            language=show.get("language"),
            genres=list(show.get("genres") or []),
            runtime=show.get("runtime") or show.get("averageRuntime"),
            rating=(show.get("rating") or {}).get("average"),
            poster_url=(show.get("image") or {}).get("original"),
            provider_ids=provider_ids,
            episodes=episodes,
        )


__all__ = ["TVMAZE_BASE_URL", "TVMazeProvider", "clean_summary"]
