"""Type definitions for Jellyfin library items and curation results."""

from __future__ import annotations

from datetime import datetime
from typing import (
    Any,
    Dict,
    List,
    Literal,
    Mapping,
    MutableMapping,
    Optional,
    Sequence,
    TypeAlias,
)

from pydantic import BaseModel, ConfigDict, Field, model_validator

ItemType = Literal["Series", "Season", "Episode", "Movie", "Collection"]
ITEM_TYPES: tuple[str, ...] = ("Series", "Season", "Episode", "Movie", "Collection")

Severity = Literal["low", "medium", "high"]
ReasonType = Literal[
    "naming_pattern",
    "path_structure",
    "metadata_inconsistency",
    "duration_anomaly",
    "missing_seasons",
]


class Reason(BaseModel):
    """One heuristic finding about an item's classification."""

    model_config = ConfigDict(frozen=True)

    type: ReasonType
    description: str
    severity: Severity
    confidence: float = Field(ge=0.0, le=1.0)


class Person(BaseModel):
    """A credited person attached to an item."""

    name: str
    type: Optional[str] = None
    role: Optional[str] = None


class Library(BaseModel):
    id: str
    jellyfin_id: str
    name: str
    type: Optional[str] = None
    locations: List[str] = Field(default_factory=list)
    last_sync_at: Optional[datetime] = None


class Item(BaseModel):
    """Locally tracked copy of a Jellyfin library item."""

    id: str
    jellyfin_id: Optional[str] = None
    name: str
    type: ItemType
    library_id: Optional[str] = None
    parent_id: Optional[str] = None
    path: Optional[str] = None
    overview: Optional[str] = None
    year: Optional[int] = None
    premiere_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    date_created: Optional[datetime] = None
    date_modified: Optional[datetime] = None
    last_sync_at: Optional[datetime] = None
    runtime_mins: Optional[int] = None
    index_number: Optional[int] = None
    parent_index_number: Optional[int] = None
    official_rating: Optional[str] = None
    community_rating: Optional[float] = None
    genres: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    studios: List[str] = Field(default_factory=list)
    collections: List[str] = Field(default_factory=list)
    people: List[Person] = Field(default_factory=list)
    provider_ids: Dict[str, str] = Field(default_factory=dict)
    artwork: Dict[str, str] = Field(default_factory=dict)
    suspected_misclassification: bool = False
    misclassification_score: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    misclassification_reasons: List[Reason] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_flag_state(self) -> "Item":
        flagged = self.suspected_misclassification
        if flagged != (self.misclassification_score is not None):
            raise ValueError(
                "misclassification_score must be set exactly when the item is flagged"
            )
        if not flagged and self.misclassification_reasons:
            raise ValueError("unflagged items cannot carry misclassification reasons")
        return self


class ItemMetadata(BaseModel):
    """Comparable snapshot of an item's content fields."""

    name: Optional[str] = None
    overview: Optional[str] = None
    year: Optional[int] = None
    type: Optional[ItemType] = None
    premiere_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    official_rating: Optional[str] = None
    community_rating: Optional[float] = None
    season_number: Optional[int] = None
    episode_number: Optional[int] = None
    genres: Optional[List[str]] = None
    tags: Optional[List[str]] = None
    studios: Optional[List[str]] = None
    collections: Optional[List[str]] = None
    provider_ids: Optional[Dict[str, str]] = None
    artwork: Optional[Dict[str, str]] = None
    people: Optional[List[Person]] = None

    @classmethod
    def from_item(cls, item: Item) -> "ItemMetadata":
        season_number: int | None = None
        episode_number: int | None = None
        if item.type == "Episode":
            season_number = item.parent_index_number
            episode_number = item.index_number
        elif item.type == "Season":
            season_number = item.index_number
        return cls(
            name=item.name,
            overview=item.overview,
            year=item.year,
            type=item.type,
            premiere_date=item.premiere_date,
            end_date=item.end_date,
            official_rating=item.official_rating,
            community_rating=item.community_rating,
            season_number=season_number,
            episode_number=episode_number,
            genres=list(item.genres),
            tags=list(item.tags),
            studios=list(item.studios),
            collections=list(item.collections),
            provider_ids=dict(item.provider_ids),
            artwork=dict(item.artwork),
            people=[person.model_copy() for person in item.people],
        )


JobStatus = Literal["pending", "running", "completed", "failed", "cancelled"]
TERMINAL_JOB_STATUSES: frozenset[str] = frozenset({"completed", "failed", "cancelled"})


class Job(BaseModel):
    """Durable record of one asynchronous bulk execution."""

    id: str
    type: str
    status: JobStatus = "pending"
    progress: float = Field(default=0.0, ge=0.0, le=1.0)
    items_total: int = 0
    items_processed: int = 0
    items_failed: int = 0
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    error_message: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    updated_at: datetime

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_JOB_STATUSES


class OperationLog(BaseModel):
    """Append-only audit entry for one item processed by a job."""

    model_config = ConfigDict(frozen=True)

    id: str
    job_id: str
    item_id: str
    operation: str
    before: Optional[Dict[str, Any]] = None
    after: Optional[Dict[str, Any]] = None
    success: bool
    error_message: Optional[str] = None
    created_at: datetime
    sequence: int = 0


# Item attributes that metadata edits are allowed to write back.
CONTENT_FIELDS: tuple[str, ...] = (
    "name",
    "overview",
    "year",
    "type",
    "premiere_date",
    "end_date",
    "official_rating",
    "community_rating",
    "genres",
    "tags",
    "studios",
    "collections",
    "provider_ids",
    "artwork",
    "people",
)


JSONScalar: TypeAlias = str | int | float | bool | None
JSONValue: TypeAlias = JSONScalar | Sequence["JSONValue"] | Mapping[str, "JSONValue"]
JSONMapping: TypeAlias = Mapping[str, JSONValue]
MutableJSONMapping: TypeAlias = MutableMapping[str, JSONValue]


__all__ = [
    "ITEM_TYPES",
    "CONTENT_FIELDS",
    "ItemType",
    "Severity",
    "ReasonType",
    "Reason",
    "Person",
    "Library",
    "Item",
    "ItemMetadata",
    "Job",
    "JobStatus",
    "OperationLog",
    "TERMINAL_JOB_STATUSES",
    "JSONScalar",
    "JSONValue",
    "JSONMapping",
    "MutableJSONMapping",
]
