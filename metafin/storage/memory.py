"""Process-local item and job stores."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, AsyncIterator, Callable, Mapping

from ..common.batching import chunk_sequence
from ..common.errors import ItemNotFoundError, JobNotFoundError
from ..common.types import Item, Job, Library, OperationLog
from . import ItemFilter, apply_item_patch, sort_items


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryItemStore:
    """Dictionary-backed :class:`~metafin.storage.ItemStore`."""

    def __init__(self, items: list[Item] | None = None) -> None:
        self._items: dict[str, Item] = {}
        self._libraries: dict[str, Library] = {}
        for item in items or []:
            self._items[item.id] = item

    async def get(self, item_id: str) -> Item | None:
        return self._items.get(item_id)

    async def get_by_jellyfin_id(self, jellyfin_id: str) -> Item | None:
        for item in self._items.values():
            if item.jellyfin_id == jellyfin_id:
                return item
        return None

    async def find(
        self,
        item_filter: ItemFilter | None = None,
        *,
        offset: int = 0,
        limit: int | None = None,
        order_by: str = "id",
        descending: bool = False,
    ) -> list[Item]:
        item_filter = item_filter or ItemFilter()
        matched = [item for item in self._items.values() if item_filter.matches(item)]
        ordered = sort_items(matched, order_by=order_by, descending=descending)
        end = None if limit is None else offset + limit
        return ordered[offset:end]

    async def count(self, item_filter: ItemFilter | None = None) -> int:
        item_filter = item_filter or ItemFilter()
        return sum(1 for item in self._items.values() if item_filter.matches(item))

    async def iter_batches(
        self, item_filter: ItemFilter | None = None, *, batch_size: int
    ) -> AsyncIterator[list[Item]]:
        item_filter = item_filter or ItemFilter()
        item_ids = sorted(
            item.id for item in self._items.values() if item_filter.matches(item)
        )
        for chunk in chunk_sequence(item_ids, batch_size):
            yield [self._items[item_id] for item_id in chunk if item_id in self._items]

    async def update(self, item_id: str, patch: Mapping[str, Any]) -> Item:
        current = self._items.get(item_id)
        if current is None:
            raise ItemNotFoundError(item_id)
        updated = apply_item_patch(current, patch)
        self._items[item_id] = updated
        return updated

    async def update_many(
        self, item_filter: ItemFilter, patch: Mapping[str, Any]
    ) -> int:
        targets = [item for item in self._items.values() if item_filter.matches(item)]
        updated = [apply_item_patch(item, patch) for item in targets]
        for item in updated:
            self._items[item.id] = item
        return len(updated)

    async def upsert(self, item: Item) -> Item:
        self._items[item.id] = item
        return item

    async def upsert_library(self, library: Library) -> Library:
        self._libraries[library.id] = library
        return library

    async def get_library(self, library_id: str) -> Library | None:
        return self._libraries.get(library_id)

    async def get_library_by_jellyfin_id(self, jellyfin_id: str) -> Library | None:
        for library in self._libraries.values():
            if library.jellyfin_id == jellyfin_id:
                return library
        return None

    async def list_libraries(self) -> list[Library]:
        return sorted(self._libraries.values(), key=lambda library: library.name)


class InMemoryJobStore:
    """Dictionary-backed :class:`~metafin.storage.JobStore`."""

    def __init__(self, *, clock: Callable[[], datetime] = utcnow) -> None:
        self._clock = clock
        self._jobs: dict[str, Job] = {}
        self._order: dict[str, int] = {}
        self._logs: dict[str, list[OperationLog]] = {}

    async def create_job(self, job: Job) -> Job:
        self._jobs[job.id] = job
        self._order[job.id] = len(self._order)
        return job

    async def update_job(self, job_id: str, patch: Mapping[str, Any]) -> Job:
        current = self._jobs.get(job_id)
        if current is None:
            raise JobNotFoundError(job_id)
        data = current.model_dump()
        data.update(patch)
        data["updated_at"] = self._clock()
        updated = Job.model_validate(data)
        self._jobs[job_id] = updated
        return updated

    async def get_job(self, job_id: str) -> Job | None:
        return self._jobs.get(job_id)

    async def list_jobs(
        self,
        *,
        limit: int = 20,
        job_type: str | None = None,
        status: str | None = None,
    ) -> list[Job]:
        jobs = [
            job
            for job in self._jobs.values()
            if (job_type is None or job.type == job_type)
            and (status is None or job.status == status)
        ]
        jobs.sort(key=lambda job: (job.created_at, self._order[job.id]), reverse=True)
        return jobs[:limit]

    async def append_log(self, entry: OperationLog) -> OperationLog:
        logs = self._logs.setdefault(entry.job_id, [])
        stored = entry.model_copy(update={"sequence": len(logs)})
        logs.append(stored)
        return stored

    async def list_logs(
        self, job_id: str, *, limit: int = 100, descending: bool = True
    ) -> list[OperationLog]:
        logs = sorted(
            self._logs.get(job_id, []),
            key=lambda entry: (entry.created_at, entry.sequence),
            reverse=descending,
        )
        return logs[:limit]


__all__ = ["InMemoryItemStore", "InMemoryJobStore", "utcnow"]
