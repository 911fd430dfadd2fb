"""Qdrant-backed item and job stores.

Records are kept as payload-only points in vectorless collections. Equality,
membership and range predicates are pushed down to Qdrant. Counts use
Qdrant's count API, batch walks follow the scroll cursor, and score-ordered
windows over flagged items use an ordered scroll. Other orderings and the
case-insensitive text predicate are applied to the scrolled records.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
import warnings
from datetime import datetime
from typing import Any, AsyncIterator, Callable, Iterable, Mapping

from qdrant_client import models
from qdrant_client.async_qdrant_client import AsyncQdrantClient

from ..common.errors import ItemNotFoundError, JobNotFoundError
from ..common.types import Item, Job, Library, OperationLog
from . import ItemFilter, apply_item_patch, sort_items
from .memory import utcnow

LOGGER = logging.getLogger("metafin.storage.qdrant")

DEFAULT_COLLECTION_PREFIX = "metafin"
_SCROLL_LIMIT = 256
_QDRANT_ORDERABLE_FIELDS = frozenset({"misclassification_score"})


def _is_local_qdrant(client: AsyncQdrantClient) -> bool:
    """Return ``True`` if *client* targets an in-process Qdrant instance."""

    inner = getattr(client, "_client", None)
    return bool(inner) and inner.__class__.__module__.startswith("qdrant_client.local")


def point_id_for(kind: str, record_id: str) -> str:
    """Map a metafin record id to a stable Qdrant point id."""

    return str(uuid.uuid5(uuid.NAMESPACE_URL, f"metafin:{kind}:{record_id}"))


async def _ensure_collection(
    client: AsyncQdrantClient,
    collection_name: str,
    *,
    keyword_fields: Iterable[str] = (),
    bool_fields: Iterable[str] = (),
    float_fields: Iterable[str] = (),
) -> None:
    """Create a payload-only collection and its indexes if missing."""

    if await client.collection_exists(collection_name):
        return
    await client.create_collection(collection_name=collection_name, vectors_config={})

    suppress_payload_warning = _is_local_qdrant(client)

    async def _create_index(
        field_name: str, field_schema: models.PayloadSchemaType
    ) -> None:
        if suppress_payload_warning:
            with warnings.catch_warnings():
                warnings.filterwarnings(
                    "ignore",
                    message="Payload indexes have no effect in the local Qdrant.*",
                    category=UserWarning,
                )
                await client.create_payload_index(
                    collection_name=collection_name,
                    field_name=field_name,
                    field_schema=field_schema,
                )
        else:
            await client.create_payload_index(
                collection_name=collection_name,
                field_name=field_name,
                field_schema=field_schema,
            )

    for field_name in keyword_fields:
        await _create_index(field_name, models.PayloadSchemaType.KEYWORD)
    for field_name in bool_fields:
        await _create_index(field_name, models.PayloadSchemaType.BOOL)
    for field_name in float_fields:
        await _create_index(field_name, models.PayloadSchemaType.FLOAT)
    LOGGER.info("Created Qdrant collection %s.", collection_name)


async def _scroll_pages(
    client: AsyncQdrantClient,
    collection_name: str,
    scroll_filter: models.Filter | None,
    *,
    scroll_limit: int = _SCROLL_LIMIT,
) -> AsyncIterator[list[models.Record]]:
    """Yield pages of records matching *scroll_filter* by following the cursor."""

    offset: Any = None
    while True:
        batch, next_offset = await client.scroll(
            collection_name=collection_name,
            scroll_filter=scroll_filter,
            limit=scroll_limit,
            offset=offset,
            with_payload=True,
            with_vectors=False,
        )
        if batch:
            yield list(batch)
        if next_offset is None or not batch:
            return
        offset = next_offset


async def _scroll_all(
    client: AsyncQdrantClient,
    collection_name: str,
    scroll_filter: models.Filter | None,
    *,
    scroll_limit: int = _SCROLL_LIMIT,
) -> list[models.Record]:
    """Return every record matching *scroll_filter*."""

    records: list[models.Record] = []
    async for batch in _scroll_pages(
        client, collection_name, scroll_filter, scroll_limit=scroll_limit
    ):
        records.extend(batch)
    return records


def _match(key: str, value: Any) -> models.FieldCondition:
    return models.FieldCondition(key=key, match=models.MatchValue(value=value))


def build_item_filter(item_filter: ItemFilter) -> models.Filter | None:
    """Translate the pushdown-capable parts of *item_filter* for Qdrant."""

    conditions: list[Any] = []
    if item_filter.ids is not None:
        conditions.append(
            models.HasIdCondition(
                has_id=[point_id_for("item", item_id) for item_id in item_filter.ids]
            )
        )
    if item_filter.library_id is not None:
        conditions.append(_match("library_id", item_filter.library_id))
    if item_filter.parent_id is not None:
        conditions.append(_match("parent_id", item_filter.parent_id))
    if item_filter.types is not None:
        conditions.append(
            models.FieldCondition(
                key="type", match=models.MatchAny(any=list(item_filter.types))
            )
        )
    if item_filter.suspected_misclassification is not None:
        conditions.append(
            _match("suspected_misclassification", item_filter.suspected_misclassification)
        )
    if item_filter.min_score is not None:
        conditions.append(
            models.FieldCondition(
                key="misclassification_score",
                range=models.Range(gte=item_filter.min_score),
            )
        )
    if not conditions:
        return None
    return models.Filter(must=conditions)


def _can_order_in_qdrant(item_filter: ItemFilter, order_by: str) -> bool:
    """Whether Qdrant can return the ordered window for *item_filter* directly.

    Ordered scrolls need a range index and skip points without the field, so
    they are only used when the filter already requires a score.
    """

    if order_by not in _QDRANT_ORDERABLE_FIELDS or item_filter.text:
        return False
    return bool(item_filter.suspected_misclassification) or item_filter.min_score is not None


class QdrantItemStore:
    """Item and library persistence on top of :class:`AsyncQdrantClient`."""

    def __init__(
        self,
        client: AsyncQdrantClient,
        *,
        collection_prefix: str = DEFAULT_COLLECTION_PREFIX,
    ) -> None:
        self._client = client
        self._items_collection = f"{collection_prefix}-items"
        self._libraries_collection = f"{collection_prefix}-libraries"
        self._ready = False
        self._ready_lock = asyncio.Lock()

    @property
    def client(self) -> AsyncQdrantClient:
        return self._client

    async def _ensure_ready(self) -> None:
        if self._ready:
            return
        async with self._ready_lock:
            if self._ready:
                return
            await _ensure_collection(
                self._client,
                self._items_collection,
                keyword_fields=("library_id", "parent_id", "type", "jellyfin_id"),
                bool_fields=("suspected_misclassification",),
                float_fields=("misclassification_score",),
            )
            await _ensure_collection(
                self._client,
                self._libraries_collection,
                keyword_fields=("jellyfin_id",),
            )
            self._ready = True

    async def _write_item(self, item: Item) -> None:
        await self._client.upsert(
            collection_name=self._items_collection,
            points=[
                models.PointStruct(
                    id=point_id_for("item", item.id),
                    vector={},
                    payload=item.model_dump(mode="json"),
                )
            ],
        )

    async def get(self, item_id: str) -> Item | None:
        await self._ensure_ready()
        records = await self._client.retrieve(
            self._items_collection,
            ids=[point_id_for("item", item_id)],
            with_payload=True,
        )
        if not records:
            return None
        return Item.model_validate(records[0].payload)

    async def get_by_jellyfin_id(self, jellyfin_id: str) -> Item | None:
        await self._ensure_ready()
        records, _ = await self._client.scroll(
            collection_name=self._items_collection,
            scroll_filter=models.Filter(must=[_match("jellyfin_id", jellyfin_id)]),
            limit=1,
            with_payload=True,
            with_vectors=False,
        )
        if not records:
            return None
        return Item.model_validate(records[0].payload)

    async def _matching(self, item_filter: ItemFilter | None) -> list[Item]:
        await self._ensure_ready()
        item_filter = item_filter or ItemFilter()
        records = await _scroll_all(
            self._client, self._items_collection, build_item_filter(item_filter)
        )
        items = [Item.model_validate(record.payload) for record in records]
        return [item for item in items if item_filter.matches(item)]

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
        if limit is not None and _can_order_in_qdrant(item_filter, order_by):
            return await self._find_ordered(
                item_filter,
                offset=offset,
                limit=limit,
                order_by=order_by,
                descending=descending,
            )
        ordered = sort_items(
            await self._matching(item_filter), order_by=order_by, descending=descending
        )
        end = None if limit is None else offset + limit
        return ordered[offset:end]

    async def _find_ordered(
        self,
        item_filter: ItemFilter,
        *,
        offset: int,
        limit: int,
        order_by: str,
        descending: bool,
    ) -> list[Item]:
        # Qdrant has no offset for ordered scrolls, so read through the window end.
        await self._ensure_ready()
        records, _ = await self._client.scroll(
            collection_name=self._items_collection,
            scroll_filter=build_item_filter(item_filter),
            limit=offset + limit,
            order_by=models.OrderBy(
                key=order_by,
                direction=models.Direction.DESC if descending else models.Direction.ASC,
            ),
            with_payload=True,
            with_vectors=False,
        )
        items = [Item.model_validate(record.payload) for record in records]
        ordered = sort_items(
            (item for item in items if item_filter.matches(item)),
            order_by=order_by,
            descending=descending,
        )
        return ordered[offset : offset + limit]

    async def count(self, item_filter: ItemFilter | None = None) -> int:
        item_filter = item_filter or ItemFilter()
        if item_filter.text:
            return len(await self._matching(item_filter))
        await self._ensure_ready()
        result = await self._client.count(
            collection_name=self._items_collection,
            count_filter=build_item_filter(item_filter),
            exact=True,
        )
        return result.count

    async def iter_batches(
        self, item_filter: ItemFilter | None = None, *, batch_size: int
    ) -> AsyncIterator[list[Item]]:
        """Yield matching items one scroll page at a time.

        Pages follow the point-id cursor, so rewriting an item that was
        already yielded does not move it into a later page.
        """

        await self._ensure_ready()
        item_filter = item_filter or ItemFilter()
        async for records in _scroll_pages(
            self._client,
            self._items_collection,
            build_item_filter(item_filter),
            scroll_limit=batch_size,
        ):
            items = [Item.model_validate(record.payload) for record in records]
            batch = [item for item in items if item_filter.matches(item)]
            if batch:
                yield batch

    async def update(self, item_id: str, patch: Mapping[str, Any]) -> Item:
        current = await self.get(item_id)
        if current is None:
            raise ItemNotFoundError(item_id)
        updated = apply_item_patch(current, patch)
        await self._write_item(updated)
        return updated

    async def update_many(
        self, item_filter: ItemFilter, patch: Mapping[str, Any]
    ) -> int:
        targets = await self._matching(item_filter)
        updated = [apply_item_patch(item, patch) for item in targets]
        for item in updated:
            await self._write_item(item)
        return len(updated)

    async def upsert(self, item: Item) -> Item:
        await self._ensure_ready()
        await self._write_item(item)
        return item

    async def upsert_library(self, library: Library) -> Library:
        await self._ensure_ready()
        await self._client.upsert(
            collection_name=self._libraries_collection,
            points=[
                models.PointStruct(
                    id=point_id_for("library", library.id),
                    vector={},
                    payload=library.model_dump(mode="json"),
                )
            ],
        )
        return library

    async def get_library(self, library_id: str) -> Library | None:
        await self._ensure_ready()
        records = await self._client.retrieve(
            self._libraries_collection,
            ids=[point_id_for("library", library_id)],
            with_payload=True,
        )
        if not records:
            return None
        return Library.model_validate(records[0].payload)

    async def get_library_by_jellyfin_id(self, jellyfin_id: str) -> Library | None:
        await self._ensure_ready()
        records, _ = await self._client.scroll(
            collection_name=self._libraries_collection,
            scroll_filter=models.Filter(must=[_match("jellyfin_id", jellyfin_id)]),
            limit=1,
            with_payload=True,
            with_vectors=False,
        )
        if not records:
            return None
        return Library.model_validate(records[0].payload)

    async def list_libraries(self) -> list[Library]:
        await self._ensure_ready()
        records = await _scroll_all(self._client, self._libraries_collection, None)
        libraries = [Library.model_validate(record.payload) for record in records]
        return sorted(libraries, key=lambda library: library.name)


class QdrantJobStore:
    """Job and operation-log persistence on top of :class:`AsyncQdrantClient`."""

    def __init__(
        self,
        client: AsyncQdrantClient,
        *,
        collection_prefix: str = DEFAULT_COLLECTION_PREFIX,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._client = client
        self._clock = clock
        self._jobs_collection = f"{collection_prefix}-jobs"
        self._logs_collection = f"{collection_prefix}-operation-logs"
        self._ready = False
        self._ready_lock = asyncio.Lock()
        self._log_lock = asyncio.Lock()

    async def _ensure_ready(self) -> None:
        if self._ready:
            return
        async with self._ready_lock:
            if self._ready:
                return
            await _ensure_collection(
                self._client, self._jobs_collection, keyword_fields=("type", "status")
            )
            await _ensure_collection(
                self._client, self._logs_collection, keyword_fields=("job_id",)
            )
            self._ready = True

    async def _write_job(self, job: Job) -> None:
        await self._client.upsert(
            collection_name=self._jobs_collection,
            points=[
                models.PointStruct(
                    id=point_id_for("job", job.id),
                    vector={},
                    payload=job.model_dump(mode="json"),
                )
            ],
        )

    async def create_job(self, job: Job) -> Job:
        await self._ensure_ready()
        await self._write_job(job)
        return job

    async def get_job(self, job_id: str) -> Job | None:
        await self._ensure_ready()
        records = await self._client.retrieve(
            self._jobs_collection,
            ids=[point_id_for("job", job_id)],
            with_payload=True,
        )
        if not records:
            return None
        return Job.model_validate(records[0].payload)

    async def update_job(self, job_id: str, patch: Mapping[str, Any]) -> Job:
        current = await self.get_job(job_id)
        if current is None:
            raise JobNotFoundError(job_id)
        data = current.model_dump()
        data.update(patch)
        data["updated_at"] = self._clock()
        updated = Job.model_validate(data)
        await self._write_job(updated)
        return updated

    async def list_jobs(
        self,
        *,
        limit: int = 20,
        job_type: str | None = None,
        status: str | None = None,
    ) -> list[Job]:
        await self._ensure_ready()
        conditions = []
        if job_type is not None:
            conditions.append(_match("type", job_type))
        if status is not None:
            conditions.append(_match("status", status))
        scroll_filter = models.Filter(must=conditions) if conditions else None
        records = await _scroll_all(self._client, self._jobs_collection, scroll_filter)
        jobs = [Job.model_validate(record.payload) for record in records]
        jobs.sort(key=lambda job: (job.created_at, job.id), reverse=True)
        return jobs[:limit]

    async def append_log(self, entry: OperationLog) -> OperationLog:
        await self._ensure_ready()
        async with self._log_lock:
            counted = await self._client.count(
                collection_name=self._logs_collection,
                count_filter=models.Filter(must=[_match("job_id", entry.job_id)]),
                exact=True,
            )
            stored = entry.model_copy(update={"sequence": counted.count})
            await self._client.upsert(
                collection_name=self._logs_collection,
                points=[
                    models.PointStruct(
                        id=point_id_for("log", stored.id),
                        vector={},
                        payload=stored.model_dump(mode="json"),
                    )
                ],
            )
        return stored

    async def list_logs(
        self, job_id: str, *, limit: int = 100, descending: bool = True
    ) -> list[OperationLog]:
        await self._ensure_ready()
        records = await _scroll_all(
            self._client,
            self._logs_collection,
            models.Filter(must=[_match("job_id", job_id)]),
        )
        logs = [OperationLog.model_validate(record.payload) for record in records]
        logs.sort(key=lambda entry: (entry.created_at, entry.sequence), reverse=descending)
        return logs[:limit]


__all__ = [
    "DEFAULT_COLLECTION_PREFIX",
    "QdrantItemStore",
    "QdrantJobStore",
    "build_item_filter",
    "point_id_for",
]
