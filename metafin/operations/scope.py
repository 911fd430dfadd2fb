"""Resolve operation scopes to ordered item ids."""

from __future__ import annotations

from ..common.errors import ValidationError
from ..storage import ItemFilter, ItemStore
from .models import OperationScope


async def resolve_scope(item_store: ItemStore, scope: OperationScope) -> list[str]:
    """Return the ids selected by *scope* in a stable order.

    Explicit id lists keep their order with duplicates dropped, including ids
    the store does not know. Filter and search scopes are ordered by name.
    """

    types = [scope.item_type] if scope.item_type else None
    if scope.type == "specific-items":
        return list(dict.fromkeys(scope.item_ids or []))
    if scope.type == "library-filter":
        item_filter = ItemFilter(library_id=scope.library_id, types=types)
    elif scope.type == "search-query":
        item_filter = ItemFilter(
            text=(scope.search_query or "").strip(),
            library_id=scope.library_id,
            types=types,
        )
    else:
        raise ValidationError(f"Invalid scope type: {scope.type}")
    items = await item_store.find(item_filter, order_by="name")
    return [item.id for item in items]


__all__ = ["resolve_scope"]
