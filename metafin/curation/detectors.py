"""Heuristic detectors for items that look misfiled in the library.

Each detector is a pure function ``(ItemContext) -> Reason | None``. The
:data:`DETECTORS` table pairs every detector with the highest severity it can
emit, which the analyzer uses to normalise scores.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Callable, Sequence

from ..common.types import Item, Reason, Severity

SEVERITY_WEIGHTS: dict[str, float] = {"low": 0.3, "medium": 0.6, "high": 1.0}

_EPISODE_NAME_PATTERNS = (
    re.compile(r"s\d+e\d+", re.IGNORECASE),
    re.compile(r"\d+x\d+", re.IGNORECASE),
    re.compile(r"episode \d+", re.IGNORECASE),
    re.compile(r"ep\d+", re.IGNORECASE),
    re.compile(r"\d{1,2}-\d{1,2}"),
)
_SEASON_NAME_PATTERNS = (
    re.compile(r"season \d+", re.IGNORECASE),
    re.compile(r"s\d+", re.IGNORECASE),
    re.compile(r"series \d+", re.IGNORECASE),
)
_MOVIE_NAME_PATTERNS = (
    re.compile(r"\(\d{4}\)$"),
    re.compile(r"\d{4}$"),
    re.compile(r"BluRay|BRRip|DVDRip|WEBRip", re.IGNORECASE),
)
_TV_PATH_MARKERS = ("season", "series", "s01", "s02", "s03", "s04", "s05")
_PATH_SEPARATORS = re.compile(r"[/\\]")

EPISODE_MAX_RUNTIME = 120
MOVIE_MIN_RUNTIME = 60


@dataclass(frozen=True, slots=True)
class ChildSummary:
    """Minimal view of a child item used by structural detectors."""

    id: str
    type: str
    name: str
    index_number: int | None = None

    @classmethod
    def from_item(cls, item: Item) -> "ChildSummary":
        return cls(
            id=item.id, type=item.type, name=item.name, index_number=item.index_number
        )


@dataclass(frozen=True, slots=True)
class ItemContext:
    item: Item
    children: Sequence[ChildSummary] = field(default_factory=tuple)
    parent: Item | None = None


Detector = Callable[[ItemContext], Reason | None]


def detect_naming_pattern(context: ItemContext) -> Reason | None:
    item = context.item
    name = item.name.lower()

    if item.type != "Episode":
        if any(pattern.search(name) for pattern in _EPISODE_NAME_PATTERNS):
            return Reason(
                type="naming_pattern",
                description=f"Item named like an episode but classified as {item.type}",
                severity="high",
                confidence=0.8,
            )

    if item.type != "Season":
        if any(pattern.fullmatch(name) for pattern in _SEASON_NAME_PATTERNS):
            return Reason(
                type="naming_pattern",
                description=f"Item named like a season but classified as {item.type}",
                severity="high",
                confidence=0.9,
            )

    if item.type in ("Episode", "Season"):
        if any(pattern.search(item.name) for pattern in _MOVIE_NAME_PATTERNS):
            return Reason(
                type="naming_pattern",
                description="TV content with movie-like naming",
                severity="medium",
                confidence=0.6,
            )
    return None


def detect_path_structure(context: ItemContext) -> Reason | None:
    item = context.item
    if not item.path:
        return None

    # Separators are counted as written, so a leading "/" is its own segment.
    parts = _PATH_SEPARATORS.split(item.path)
    if item.type == "Episode" and len(parts) < 3:
        return Reason(
            type="path_structure",
            description="Episode not in expected Show/Season/Episode structure",
            severity="medium",
            confidence=0.7,
        )
    if item.type == "Movie":
        tail = "/".join(parts[-3:]).lower()
        if any(marker in tail for marker in _TV_PATH_MARKERS):
            return Reason(
                type="path_structure",
                description="Movie in TV show directory structure",
                severity="medium",
                confidence=0.8,
            )
    return None


def detect_metadata_inconsistency(context: ItemContext) -> Reason | None:
    item = context.item
    children = context.children
    if item.type == "Series" and children:
        has_episodes = any(child.type == "Episode" for child in children)
        has_seasons = any(child.type == "Season" for child in children)
        if has_episodes and not has_seasons:
            return Reason(
                type="metadata_inconsistency",
                description="Series has episodes but no seasons",
                severity="medium",
                confidence=0.7,
            )
    if item.type == "Season" and not children:
        return Reason(
            type="metadata_inconsistency",
            description="Season with no episodes",
            severity="low",
            confidence=0.5,
        )
    return None


def detect_duration_anomaly(context: ItemContext) -> Reason | None:
    item = context.item
    runtime = item.runtime_mins
    if not runtime:
        return None
    if item.type == "Episode" and runtime > EPISODE_MAX_RUNTIME:
        return Reason(
            type="duration_anomaly",
            description=f"Episode unusually long ({runtime} minutes)",
            severity="medium",
            confidence=0.6,
        )
    if item.type == "Movie" and runtime < MOVIE_MIN_RUNTIME:
        return Reason(
            type="duration_anomaly",
            description=f"Movie unusually short ({runtime} minutes)",
            severity="medium",
            confidence=0.7,
        )
    return None


def detect_missing_seasons(context: ItemContext) -> Reason | None:
    if context.item.type != "Series":
        return None
    seasons = sorted(
        child.index_number
        for child in context.children
        if child.type == "Season" and child.index_number is not None
    )
    for previous, current in zip(seasons, seasons[1:]):
        if current - previous > 1:
            return Reason(
                type="missing_seasons",
                description=f"Missing seasons between {previous} and {current}",
                severity="low",
                confidence=0.4,
            )
    return None


DETECTORS: tuple[tuple[Detector, Severity], ...] = (
    (detect_naming_pattern, "high"),
    (detect_path_structure, "high"),
    (detect_metadata_inconsistency, "medium"),
    (detect_duration_anomaly, "medium"),
    (detect_missing_seasons, "low"),
)


__all__ = [
    "DETECTORS",
    "SEVERITY_WEIGHTS",
    "ChildSummary",
    "Detector",
    "ItemContext",
    "detect_duration_anomaly",
    "detect_metadata_inconsistency",
    "detect_missing_seasons",
    "detect_naming_pattern",
    "detect_path_structure",
]
