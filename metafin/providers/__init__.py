"""External metadata providers."""

from __future__ import annotations

from .base import (
    MetadataProvider,
    ProviderArtwork,
    ProviderCapabilities,
    ProviderEpisode,
    ProviderHealth,
    ProviderSearchResult,
    ProviderSeries,
)
from .registry import ProviderRegistry, ProviderResults, match_confidence, rank_results
from .tvmaze import TVMazeProvider

__all__ = [
    "MetadataProvider",
    "ProviderArtwork",
    "ProviderCapabilities",
    "ProviderEpisode",
    "ProviderHealth",
    "ProviderRegistry",
    "ProviderResults",
    "ProviderSearchResult",
    "ProviderSeries",
    "TVMazeProvider",
    "match_confidence",
    "rank_results",
]
