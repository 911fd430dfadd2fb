"""Persistence interfaces for library items and bulk-operation jobs."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, AsyncIterator, Iterable, Mapping, Protocol, Sequence

from ..common.types import Item, Job, Library, OperationLog

ORDERABLE_FIELDS = frozenset(
    {"id", "name", "type", "misclassification_score", "date_created", "year"}
)


@dataclass(frozen=True, slots=True)
class ItemFilter:
    """Predicate over items understood by every :class:`ItemStore`.

    Unset attributes do not constrain the result. ``text`` is a
    case-insensitive substring match against name, overview and path.
    """

    ids: Sequence[str] | None = None
    library_id: str | None = None
    parent_id: str | None = None
    types: Sequence[str] | None = None
    suspected_misclassification: bool | None = None
    text: str | None = None
    min_score: float | None = None

    def matches(self, item: Item) -> bool:
        if self.ids is not None and item.id not in self.ids:
            return False
        if self.library_id is not None and item.library_id != self.library_id:
            return False
        if self.parent_id is not None and item.parent_id != self.parent_id:
            return False
        if self.types is not None and item.type not in self.types:
            return False
        if (
            self.suspected_misclassification is not None
            and item.suspected_misclassification != self.suspected_misclassification
        ):
            return False
        if self.min_score is not None and (
            item.misclassification_score is None
            or item.misclassification_score < self.min_score
        ):
            return False
        if self.text:
            needle = self.text.lower()
            haystacks = (item.name, item.overview or "", item.path or "")
            if not any(needle in value.lower() for value in haystacks):
                return False
        return True


def sort_items(
    items: Iterable[Item], *, order_by: str = "id", descending: bool = False
) -> list[Item]:
    """Sort *items* by ``order_by`` with ``id`` as the tie breaker.

    Items without a value for ``order_by`` always sort last.
    """

    if order_by not in ORDERABLE_FIELDS:
        raise ValueError(f"Cannot order items by {order_by!r}")
    ordered = sorted(items, key=lambda item: item.id)
    present = [item for item in ordered if getattr(item, order_by) is not None]
    missing = [item for item in ordered if getattr(item, order_by) is None]
    present.sort(key=lambda item: getattr(item, order_by), reverse=descending)
    return present + missing


def apply_item_patch(item: Item, patch: Mapping[str, Any]) -> Item:
    """Return a validated copy of *item* with *patch* applied."""

    unknown = set(patch) - set(Item.model_fields)
    if unknown:
        raise ValueError(f"Unknown item fields: {', '.join(sorted(unknown))}")
    if "id" in patch and patch["id"] != item.id:
        raise ValueError("Item ids cannot be changed")
    data = item.model_dump()
    data.update(patch)
    return Item.model_validate(data)


class ItemStore(Protocol):
    async def get(self, item_id: str) -> Item | None:
        ...

    async def get_by_jellyfin_id(self, jellyfin_id: str) -> Item | None:
        ...

    async def find(
        self,
        item_filter: ItemFilter | None = None,
        *,
        offset: int = 0,
        limit: int | None = None,
        order_by: str = "id",
        descending: bool = False,
    ) -> list[Item]:
        ...

    async def count(self, item_filter: ItemFilter | None = None) -> int:
        ...

    def iter_batches(
        self, item_filter: ItemFilter | None = None, *, batch_size: int
    ) -> AsyncIterator[list[Item]]:
        """Yield every matching item in batches of at most *batch_size*.

        Batch order is store specific. Updating an item that was already
        yielded must not cause it to be yielded again.
        """
        ...

    async def update(self, item_id: str, patch: Mapping[str, Any]) -> Item:
        ...

    async def update_many(
        self, item_filter: ItemFilter, patch: Mapping[str, Any]
    ) -> int:
        ...

    async def upsert(self, item: Item) -> Item:
        ...

    async def upsert_library(self, library: Library) -> Library:
        ...

    async def get_library(self, library_id: str) -> Library | None:
        ...

    async def get_library_by_jellyfin_id(self, jellyfin_id: str) -> Library | None:
        ...

    async def list_libraries(self) -> list[Library]:
        ...


class JobStore(Protocol):
    async def create_job(self, job: Job) -> Job:
        ...

    async def update_job(self, job_id: str, patch: Mapping[str, Any]) -> Job:
        ...

    async def get_job(self, job_id: str) -> Job | None:
        ...

    async def list_jobs(
        self,
        *,
        limit: int = 20,
        job_type: str | None = None,
        status: str | None = None,
    ) -> list[Job]:
        ...

    async def append_log(self, entry: OperationLog) -> OperationLog:
        ...

    async def list_logs(
        self, job_id: str, *, limit: int = 100, descending: bool = True
    ) -> list[OperationLog]:
        ...


__all__ = [
    "ItemFilter",
    "ItemStore",
    "JobStore",
    "ORDERABLE_FIELDS",
    "apply_item_patch",
    "sort_items",
]
