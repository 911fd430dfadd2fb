"""Pure application of bulk operations to item snapshots."""

from __future__ import annotations

from typing import Any, Iterable

import pydantic

from ..common.errors import ValidationError
from ..common.types import Item, ItemMetadata
from .models import BulkOperationRequest

SUPPORTED_OPERATIONS = frozenset(
    {
        "update-metadata",
        "set-provider-ids",
        "add-to-collection",
        "remove-from-collection",
    }
)

_LIST_FIELDS = frozenset({"genres", "tags", "studios", "collections", "people"})
_MAPPING_FIELDS = frozenset({"provider_ids", "artwork"})


def ensure_supported(request: BulkOperationRequest) -> None:
    if request.operation not in SUPPORTED_OPERATIONS:
        raise ValidationError(
            f"Operation {request.operation} is not supported",
            details={"operation": request.operation},
        )


def apply_operation(item: Item, request: BulkOperationRequest) -> ItemMetadata:
    """Return the snapshot *item* would have after *request* is applied."""

    ensure_supported(request)
    current = ItemMetadata.from_item(item)
    data = current.model_dump()

    if request.operation == "update-metadata":
        data.update(request.changes or {})
    elif request.operation == "set-provider-ids":
        data["provider_ids"] = {**(current.provider_ids or {}), **(request.provider_ids or {})}
    elif request.operation == "add-to-collection":
        collections = list(current.collections or [])
        if request.collection_id not in collections:
            collections.append(request.collection_id)
        data["collections"] = collections
    elif request.operation == "remove-from-collection":
        data["collections"] = [
            collection
            for collection in current.collections or []
            if collection != request.collection_id
        ]

    # Episode/season numbering only exists on the matching item types.
    if item.type != "Episode":
        data["episode_number"] = current.episode_number
    if item.type not in ("Episode", "Season"):
        data["season_number"] = current.season_number

    try:
        proposed = ItemMetadata.model_validate(data)
    except pydantic.ValidationError as exc:
        raise ValidationError.from_pydantic(exc) from exc
    if not proposed.name:
        raise ValidationError("Item name cannot be cleared", details={"item_id": item.id})
    if proposed.type is None:
        raise ValidationError("Item type cannot be cleared", details={"item_id": item.id})
    return proposed


def metadata_patch(
    item: Item, proposed: ItemMetadata, fields: Iterable[str]
) -> dict[str, Any]:
    """Translate changed snapshot *fields* into an item store patch."""

    patch: dict[str, Any] = {}
    for field in fields:
        value = getattr(proposed, field)
        if field == "season_number":
            target = "parent_index_number" if item.type == "Episode" else "index_number"
            patch[target] = value
        elif field == "episode_number":
            patch["index_number"] = value
        elif value is None and field in _LIST_FIELDS:
            patch[field] = []
        elif value is None and field in _MAPPING_FIELDS:
            patch[field] = {}
        else:
            patch[field] = value
    return patch


__all__ = ["SUPPORTED_OPERATIONS", "apply_operation", "ensure_supported", "metadata_patch"]
