"""Misclassification review and provider lookup tools."""

from __future__ import annotations

from typing import Annotated, Any, TYPE_CHECKING

from pydantic import Field

from ...common.types import ItemType, Severity
from ...curation.misclassification import (
    BulkReviewResult,
    MisclassificationAnalysis,
    MisclassifiedItemsPage,
    ReviewAction,
    ReviewActionName,
    ReviewQueueStats,
)
from ...curation.scan import ScanResult
from ...providers import ProviderSearchResult

if TYPE_CHECKING:  # pragma: no cover - imported for type checking only
    from .. import MetafinServer


def register_curation_tools(server: "MetafinServer") -> dict[str, Any]:
    """Register misclassification tools on the provided server."""

    tools: dict[str, Any] = {}

    def _curation_tool(name: str, *, title: str, operation: str):
        decorator = server.tool(
            name,
            title=title,
            meta={"category": "curation", "operation": operation},
        )

        def _register(fn):
            tools[name] = decorator(fn)
            return tools[name]

        return _register

    @_curation_tool("scan-misclassifications", title="Scan for misclassified items", operation="scan")
    async def scan_misclassifications(
        library_id: Annotated[
            str | None,
            Field(description="Only scan items from this library"),
        ] = None,
        item_types: Annotated[
            list[ItemType] | None,
            Field(description="Only scan these item types", examples=[["Movie", "Episode"]]),
        ] = None,
    ) -> ScanResult:
        """Run the misclassification detectors and persist the resulting flags."""

        return await server.scanner.scan(library_id=library_id, item_types=item_types)

    @_curation_tool("list-misclassifications", title="List flagged items", operation="list")
    async def list_misclassifications(
        library_id: Annotated[str | None, Field(description="Only items from this library")] = None,
        severity: Annotated[
            Severity | None,
            Field(description="Only items whose strongest reason has this severity"),
        ] = None,
        limit: Annotated[
            int,
            Field(description="Page size", ge=1, le=500, examples=[50]),
        ] = 50,
        offset: Annotated[int, Field(description="Items to skip", ge=0)] = 0,
    ) -> MisclassifiedItemsPage:
        """Return flagged items ordered by descending score."""

        return await server.misclassification_service.get_misclassified_items(
            library_id=library_id, severity=severity, limit=limit, offset=offset
        )

    @_curation_tool("analyze-item", title="Analyze one item", operation="analyze")
    async def analyze_item(
        item_id: Annotated[str, Field(description="Local item identifier")],
    ) -> MisclassificationAnalysis:
        """Run the detectors against one item without persisting anything."""

        return await server.misclassification_service.analyze_item(item_id)

    @_curation_tool(
        "dismiss-misclassification", title="Dismiss a flag", operation="dismiss"
    )
    async def dismiss_misclassification(
        item_id: Annotated[str, Field(description="Local item identifier")],
    ) -> dict[str, Any]:
        """Clear the misclassification flag on an item after review."""

        await server.misclassification_service.dismiss_misclassification(item_id)
        return {"success": True, "message": "Misclassification dismissed"}

    def _review_action(
        action: ReviewActionName,
        new_type: ItemType | None,
        metadata: dict[str, Any] | None,
    ) -> ReviewAction:
        return ReviewAction(action=action, new_type=new_type, metadata=metadata)

    @_curation_tool("review-item", title="Review a flagged item", operation="review")
    async def review_item(
        item_id: Annotated[str, Field(description="Local item identifier")],
        action: Annotated[
            ReviewActionName,
            Field(description="Review decision", examples=["correct_type"]),
        ],
        new_type: Annotated[
            ItemType | None,
            Field(description="Replacement type for correct_type", examples=["Episode"]),
        ] = None,
        metadata: Annotated[
            dict[str, Any] | None,
            Field(
                description="Field values for update_metadata",
                examples=[{"name": "Pilot", "year": 2008}],
            ),
        ] = None,
    ) -> dict[str, Any]:
        """Resolve a flagged item and clear its misclassification flag."""

        item = await server.misclassification_service.review_item(
            item_id, _review_action(action, new_type, metadata)
        )
        return {"success": True, "message": "Item reviewed", "item_id": item.id, "type": item.type}

    @_curation_tool("bulk-review", title="Review several flagged items", operation="bulk-review")
    async def bulk_review(
        item_ids: Annotated[
            list[str],
            Field(description="Local item identifiers", min_length=1),
        ],
        action: Annotated[ReviewActionName, Field(description="Review decision")],
        new_type: Annotated[
            ItemType | None, Field(description="Replacement type for correct_type")
        ] = None,
        metadata: Annotated[
            dict[str, Any] | None, Field(description="Field values for update_metadata")
        ] = None,
    ) -> BulkReviewResult:
        """Apply one review decision to many items; failures are reported per item."""

        return await server.misclassification_service.bulk_review(
            item_ids, _review_action(action, new_type, metadata)
        )

    @_curation_tool("review-queue-stats", title="Review queue statistics", operation="stats")
    async def review_queue_stats(
        library_id: Annotated[str | None, Field(description="Only items from this library")] = None,
    ) -> ReviewQueueStats:
        """Count flagged items by priority and report their average score."""

        return await server.misclassification_service.get_review_queue_stats(library_id)

    @_curation_tool("clear-review-queue", title="Clear the review queue", operation="clear")
    async def clear_review_queue(
        library_id: Annotated[str | None, Field(description="Only items from this library")] = None,
    ) -> dict[str, Any]:
        """Clear every misclassification flag, optionally within one library."""

        count = await server.misclassification_service.mark_all_as_reviewed(library_id)
        return {"success": True, "items_cleared": count}

    @_curation_tool("search-providers", title="Search metadata providers", operation="search")
    async def search_providers(
        query: Annotated[
            str,
            Field(description="Series or movie title", min_length=1, examples=["Breaking Bad"]),
        ],
        year: Annotated[int | None, Field(description="Expected release year")] = None,
    ) -> list[ProviderSearchResult]:
        """Search every provider and rank matches by fuzzy name confidence."""

        return await server.provider_registry.search_ranked(query, year=year)

    return tools


__all__ = ["register_curation_tools"]
