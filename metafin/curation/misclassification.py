"""Misclassification scoring and the flagged-item service."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Literal, Mapping, Optional, Sequence

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)

from ..common.errors import ItemNotFoundError, MetafinError
from ..common.types import Item, ItemMetadata, ItemType, Reason, Severity
from ..common.validation import clamp_limit
from ..storage import ItemFilter, ItemStore
from .detectors import DETECTORS, SEVERITY_WEIGHTS, ChildSummary, Detector, ItemContext

LOGGER = logging.getLogger("metafin.curation.misclassification")

REVIEW_THRESHOLD = 0.6
# Items scoring above this are persisted as flagged even when they fall short
# of the review threshold.
FLAG_THRESHOLD = 0.5
HIGH_PRIORITY_SCORE = 0.8
MEDIUM_PRIORITY_SCORE = 0.5

REVIEW_METADATA_FIELDS = frozenset(
    {
        "name",
        "overview",
        "year",
        "genres",
        "tags",
        "studios",
        "official_rating",
        "community_rating",
    }
)
_REVIEW_LIST_FIELDS = frozenset({"genres", "tags", "studios"})
_STATS_BATCH_SIZE = 200

ReviewActionName = Literal["dismiss", "correct_type", "update_metadata"]
ReviewPriority = Literal["low", "medium", "high"]

_SEVERITY_ORDER: dict[str, int] = {"low": 0, "medium": 1, "high": 2}

# (reason type, description marker, suggested type); first match wins.
_SUGGESTION_RULES: tuple[tuple[str, str, ItemType], ...] = (
    ("naming_pattern", "episode", "Episode"),
    ("naming_pattern", "season", "Season"),
    ("naming_pattern", "movie", "Movie"),
    ("duration_anomaly", "Episode unusually long", "Movie"),
    ("duration_anomaly", "Movie unusually short", "Episode"),
)


class MisclassificationAnalysis(BaseModel):
    item_id: str
    current_type: ItemType
    suggested_type: Optional[ItemType] = None
    score: float = Field(ge=0.0, le=1.0)
    reasons: List[Reason] = Field(default_factory=list)
    needs_review: bool

    @property
    def should_flag(self) -> bool:
        return self.needs_review or self.score > FLAG_THRESHOLD

    @property
    def highest_severity(self) -> Severity | None:
        return max_severity(self.reasons)


class MisclassifiedItem(BaseModel):
    id: str
    name: str
    type: ItemType
    path: Optional[str] = None
    library_id: Optional[str] = None
    library_name: Optional[str] = None
    parent_id: Optional[str] = None
    score: float
    priority: ReviewPriority = "low"
    reasons: List[Reason] = Field(default_factory=list)


class Pagination(BaseModel):
    limit: int
    offset: int
    has_more: bool


class MisclassifiedItemsPage(BaseModel):
    items: List[MisclassifiedItem] = Field(default_factory=list)
    pagination: Pagination


class ReviewAction(BaseModel):
    """Decision taken on a flagged item.

    ``correct_type`` needs ``new_type`` and ``update_metadata`` needs a
    non-empty ``metadata`` mapping. Every action clears the flag.
    """

    model_config = ConfigDict(extra="forbid")

    action: ReviewActionName
    new_type: Optional[ItemType] = Field(
        default=None, validation_alias=AliasChoices("new_type", "newType")
    )
    metadata: Optional[Dict[str, Any]] = None

    @field_validator("metadata")
    @classmethod
    def _check_metadata(cls, value: Dict[str, Any] | None) -> Dict[str, Any] | None:
        if value is None:
            return None
        unknown = sorted(set(value) - REVIEW_METADATA_FIELDS)
        if unknown:
            raise ValueError(f"unsupported metadata fields: {', '.join(unknown)}")
        validated = ItemMetadata.model_validate(value).model_dump(include=set(value))
        for field in _REVIEW_LIST_FIELDS & set(validated):
            if validated[field] is None:
                validated[field] = []
        return validated

    @model_validator(mode="after")
    def _check_arguments(self) -> "ReviewAction":
        if self.action == "correct_type" and self.new_type is None:
            raise ValueError("new_type is required for correct_type")
        if self.action == "update_metadata" and not self.metadata:
            raise ValueError("metadata is required for update_metadata")
        return self

    def patch(self) -> dict[str, Any]:
        patch: dict[str, Any] = dict(CLEARED_FLAGS)
        if self.action == "correct_type":
            patch["type"] = self.new_type
        elif self.action == "update_metadata":
            patch.update(self.metadata or {})
        return patch


class BulkReviewRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    item_ids: List[str] = Field(
        min_length=1, validation_alias=AliasChoices("item_ids", "itemIds")
    )
    action: ReviewAction


class BulkReviewError(BaseModel):
    item_id: str
    error: str


class BulkReviewResult(BaseModel):
    successful: int = 0
    failed: int = 0
    errors: List[BulkReviewError] = Field(default_factory=list)


class ReviewQueueStats(BaseModel):
    total_items: int = 0
    high_priority_items: int = 0
    medium_priority_items: int = 0
    low_priority_items: int = 0
    average_score: float = 0.0


def review_priority(score: float | None) -> ReviewPriority:
    score = score or 0.0
    if score >= HIGH_PRIORITY_SCORE:
        return "high"
    if score >= MEDIUM_PRIORITY_SCORE:
        return "medium"
    return "low"


def max_severity(reasons: Sequence[Reason]) -> Severity | None:
    if not reasons:
        return None
    return max(reasons, key=lambda reason: _SEVERITY_ORDER[reason.severity]).severity


def suggest_type(current_type: str, reasons: Sequence[Reason]) -> ItemType | None:
    """Pick a replacement type from the first matching suggestion rule."""

    for reason_type, marker, suggested in _SUGGESTION_RULES:
        if suggested == current_type:
            continue
        for reason in reasons:
            if reason.type == reason_type and marker in reason.description:
                return suggested
    return None


def analyze(
    context: ItemContext,
    detectors: Sequence[tuple[Detector, Severity]] = DETECTORS,
) -> MisclassificationAnalysis:
    """Run every detector over *context* and fold the findings into a score.

    The score is normalised by the maximum weight of each detector that
    fired, so an item with no findings scores zero.
    """

    reasons: list[Reason] = []
    total = 0.0
    max_score = 0.0
    for detector, class_severity in detectors:
        reason = detector(context)
        if reason is None:
            continue
        reasons.append(reason)
        total += reason.confidence * SEVERITY_WEIGHTS[reason.severity]
        max_score += SEVERITY_WEIGHTS[class_severity]

    score = min(total / max_score, 1.0) if max_score > 0 else 0.0
    item = context.item
    return MisclassificationAnalysis(
        item_id=item.id,
        current_type=item.type,
        suggested_type=suggest_type(item.type, reasons),
        score=score,
        reasons=reasons,
        needs_review=score > REVIEW_THRESHOLD
        or any(reason.severity == "high" for reason in reasons),
    )


async def load_context(item_store: ItemStore, item: Item) -> ItemContext:
    """Gather the children and parent of *item* for analysis."""

    children = await item_store.find(ItemFilter(parent_id=item.id))
    parent = await item_store.get(item.parent_id) if item.parent_id else None
    return ItemContext(
        item=item,
        children=tuple(ChildSummary.from_item(child) for child in children),
        parent=parent,
    )


class MisclassificationService:
    """Ad hoc analysis and review-queue queries over the item store."""

    def __init__(
        self, item_store: ItemStore, *, logger: logging.Logger | None = None
    ) -> None:
        self._item_store = item_store
        self._logger = logger or LOGGER

    @property
    def item_store(self) -> ItemStore:
        return self._item_store

    @property
    def logger(self) -> logging.Logger:
        return self._logger

    async def analyze_item(self, item_id: str) -> MisclassificationAnalysis:
        item = await self._item_store.get(item_id)
        if item is None:
            raise ItemNotFoundError(item_id)
        return analyze(await load_context(self._item_store, item))

    async def get_misclassified_items(
        self,
        *,
        library_id: str | None = None,
        severity: Severity | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> MisclassifiedItemsPage:
        """Return flagged items ordered by descending score.

        The severity filter applies to the fetched page, so a page may hold
        fewer than *limit* items even when ``has_more`` is true.
        """

        limit = clamp_limit(limit, default=50, maximum=500)
        offset = max(int(offset), 0)
        items = await self._item_store.find(
            ItemFilter(library_id=library_id, suspected_misclassification=True),
            offset=offset,
            limit=limit,
            order_by="misclassification_score",
            descending=True,
        )
        has_more = len(items) == limit

        library_names: dict[str, str | None] = {}
        results: list[MisclassifiedItem] = []
        for item in items:
            if severity is not None and max_severity(item.misclassification_reasons) != severity:
                continue
            library_name = None
            if item.library_id:
                if item.library_id not in library_names:
                    library = await self._item_store.get_library(item.library_id)
                    library_names[item.library_id] = library.name if library else None
                library_name = library_names[item.library_id]
            results.append(
                MisclassifiedItem(
                    id=item.id,
                    name=item.name,
                    type=item.type,
                    path=item.path,
                    library_id=item.library_id,
                    library_name=library_name,
                    parent_id=item.parent_id,
                    score=item.misclassification_score or 0.0,
                    priority=review_priority(item.misclassification_score),
                    reasons=list(item.misclassification_reasons),
                )
            )
        return MisclassifiedItemsPage(
            items=results,
            pagination=Pagination(limit=limit, offset=offset, has_more=has_more),
        )

    async def dismiss_misclassification(self, item_id: str) -> None:
        """Clear the flag on *item_id* after a human has reviewed it."""

        if await self._item_store.get(item_id) is None:
            raise ItemNotFoundError(item_id)
        await self._item_store.update(item_id, CLEARED_FLAGS)
        self._logger.info("Dismissed misclassification flag for item %s.", item_id)

    async def review_item(
        self, item_id: str, action: ReviewAction | Mapping[str, Any]
    ) -> Item:
        """Apply a review decision to *item_id* and clear its flag."""

        review = action if isinstance(action, ReviewAction) else ReviewAction.model_validate(action)
        if await self._item_store.get(item_id) is None:
            raise ItemNotFoundError(item_id)
        updated = await self._item_store.update(item_id, review.patch())
        self._logger.info("Reviewed item %s with action %s.", item_id, review.action)
        return updated

    async def bulk_review(
        self, item_ids: Sequence[str], action: ReviewAction | Mapping[str, Any]
    ) -> BulkReviewResult:
        """Review every item in *item_ids*, collecting per-item failures."""

        review = action if isinstance(action, ReviewAction) else ReviewAction.model_validate(action)
        result = BulkReviewResult()
        for item_id in item_ids:
            try:
                await self.review_item(item_id, review)
            except (MetafinError, ValueError) as exc:
                result.failed += 1
                message = exc.message if isinstance(exc, MetafinError) else str(exc)
                result.errors.append(BulkReviewError(item_id=item_id, error=message))
                self._logger.warning("Failed to review item %s: %s", item_id, message)
            else:
                result.successful += 1
        self._logger.info(
            "Bulk review completed: %d successful, %d failed.",
            result.successful,
            result.failed,
        )
        return result

    async def get_review_queue_stats(
        self, library_id: str | None = None
    ) -> ReviewQueueStats:
        """Count flagged items by priority band and average their scores."""

        stats = ReviewQueueStats()
        total_score = 0.0
        async for batch in self._item_store.iter_batches(
            ItemFilter(library_id=library_id, suspected_misclassification=True),
            batch_size=_STATS_BATCH_SIZE,
        ):
            for item in batch:
                stats.total_items += 1
                total_score += item.misclassification_score or 0.0
                priority = review_priority(item.misclassification_score)
                if priority == "high":
                    stats.high_priority_items += 1
                elif priority == "medium":
                    stats.medium_priority_items += 1
                else:
                    stats.low_priority_items += 1
        if stats.total_items:
            stats.average_score = total_score / stats.total_items
        return stats

    async def mark_all_as_reviewed(self, library_id: str | None = None) -> int:
        """Clear every flag, optionally within one library."""

        count = await self._item_store.update_many(
            ItemFilter(library_id=library_id, suspected_misclassification=True),
            CLEARED_FLAGS,
        )
        self._logger.info(
            "Marked %d item(s) as reviewed (library=%s).", count, library_id or "*"
        )
        return count


CLEARED_FLAGS: dict[str, object] = {
    "suspected_misclassification": False,
    "misclassification_score": None,
    "misclassification_reasons": [],
}


def flag_patch(analysis: MisclassificationAnalysis) -> dict[str, object]:
    return {
        "suspected_misclassification": True,
        "misclassification_score": analysis.score,
        "misclassification_reasons": [reason.model_dump() for reason in analysis.reasons],
    }


__all__ = [
    "CLEARED_FLAGS",
    "FLAG_THRESHOLD",
    "HIGH_PRIORITY_SCORE",
    "MEDIUM_PRIORITY_SCORE",
    "REVIEW_METADATA_FIELDS",
    "REVIEW_THRESHOLD",
    "BulkReviewError",
    "BulkReviewRequest",
    "BulkReviewResult",
    "MisclassificationAnalysis",
    "MisclassificationService",
    "MisclassifiedItem",
    "MisclassifiedItemsPage",
    "Pagination",
    "ReviewAction",
    "ReviewQueueStats",
    "analyze",
    "flag_patch",
    "load_context",
    "max_severity",
    "review_priority",
    "suggest_type",
]
