"""Pull Jellyfin libraries and items into the local item store."""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Mapping, Sequence

from .common.errors import ConflictError
from .common.types import Library
from .common.validation import require_positive
from .jellyfin import (
    DEFAULT_PAGE_SIZE,
    JellyfinClient,
    item_from_payload,
    library_from_payload,
    supported_item_types,
)
from .storage import ItemStore
from .storage.memory import utcnow

LOGGER = logging.getLogger("metafin.sync")


def local_id_for(kind: str, jellyfin_id: str) -> str:
    """Derive a stable local id for a Jellyfin entity."""

    return uuid.uuid5(uuid.NAMESPACE_URL, f"metafin:{kind}:{jellyfin_id}").hex


@dataclass(slots=True)
class SyncProgress:
    """Mutable progress of the sync currently in flight."""

    started_at: datetime
    total_libraries: int = 0
    libraries_processed: int = 0
    total_items: int = 0
    processed_items: int = 0
    failed_items: int = 0
    current_library: str | None = None


@dataclass(slots=True)
class SyncResult:
    libraries: list[str] = field(default_factory=list)
    items_synced: int = 0
    items_skipped: int = 0
    items_failed: int = 0
    cancelled: bool = False
    duration: float = 0.0


class LibrarySync:
    """Mirror Jellyfin libraries into an :class:`~metafin.storage.ItemStore`.

    Only one sync runs at a time. :meth:`cancel` clears the shared progress
    handle; the running sync notices before its next library or page and
    stops, keeping whatever it already stored.
    """

    def __init__(
        self,
        jellyfin: JellyfinClient,
        item_store: ItemStore,
        *,
        page_size: int = DEFAULT_PAGE_SIZE,
        clock: Callable[[], datetime] = utcnow,
        logger: logging.Logger | None = None,
    ) -> None:
        self._jellyfin = jellyfin
        self._item_store = item_store
        self._page_size = require_positive(page_size, name="page_size")
        self._clock = clock
        self._logger = logger or LOGGER
        self._progress: SyncProgress | None = None
        self._running = False

    @property
    def progress(self) -> SyncProgress | None:
        return self._progress

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def logger(self) -> logging.Logger:
        return self._logger

    def cancel(self) -> bool:
        """Request cancellation of the running sync."""

        if self._progress is None:
            return False
        self._logger.info("Cancelling library sync.")
        self._progress = None
        return True

    async def run(self, library_ids: Sequence[str] | None = None) -> SyncResult:
        """Sync every Jellyfin library, or only those in *library_ids*.

        ``library_ids`` accepts Jellyfin library ids.
        """

        if self._running:
            raise ConflictError("A library sync is already running")
        self._running = True
        self._progress = SyncProgress(started_at=self._clock())
        result = SyncResult()
        start = time.perf_counter()
        try:
            payloads = await self._jellyfin.fetch_libraries()
            wanted = set(library_ids) if library_ids else None
            if wanted is not None:
                payloads = [
                    payload
                    for payload in payloads
                    if (payload.get("ItemId") or payload.get("Id")) in wanted
                ]
            if self._progress is not None:
                self._progress.total_libraries = len(payloads)

            for payload in payloads:
                progress = self._progress
                if progress is None:
                    result.cancelled = True
                    break
                jellyfin_id = payload.get("ItemId") or payload.get("Id")
                if not jellyfin_id:
                    self._logger.warning("Skipping library without an id: %s", payload.get("Name"))
                    continue
                progress.current_library = payload.get("Name")
                library = await self._sync_library(payload)
                result.libraries.append(library.name)
                cancelled = await self._sync_items(payload, library.id, result)
                if cancelled:
                    result.cancelled = True
                    break
                progress.libraries_processed += 1
        finally:
            self._running = False
            self._progress = None
            result.duration = time.perf_counter() - start

        self._logger.info(
            "Library sync %s: %d item(s) synced, %d skipped, %d failed in %.2fs.",
            "cancelled" if result.cancelled else "finished",
            result.items_synced,
            result.items_skipped,
            result.items_failed,
            result.duration,
        )
        return result

    async def _sync_library(self, payload: Mapping[str, Any]) -> Library:
        jellyfin_id = str(payload.get("ItemId") or payload.get("Id"))
        existing = await self._item_store.get_library_by_jellyfin_id(jellyfin_id)
        library_id = existing.id if existing else local_id_for("library", jellyfin_id)
        library = library_from_payload(payload, library_id=library_id, synced_at=self._clock())
        await self._item_store.upsert_library(library)
        self._logger.debug(
            "%s library %s.", "Updated" if existing else "Added", library.name
        )
        return library

    async def _sync_items(
        self, payload: Mapping[str, Any], library_id: str, result: SyncResult
    ) -> bool:
        jellyfin_library_id = str(payload.get("ItemId") or payload.get("Id"))
        item_types = supported_item_types(payload.get("CollectionType"))
        start_index = 0
        while True:
            progress = self._progress
            if progress is None:
                return True
            page = await self._jellyfin.fetch_items(
                jellyfin_library_id,
                item_types=item_types,
                start_index=start_index,
                limit=self._page_size,
            )
            if not page.items:
                return False
            if start_index == 0:
                progress.total_items += page.total
            for raw in page.items:
                try:
                    stored = await self._sync_item(raw, library_id, jellyfin_library_id)
                except Exception as exc:
                    result.items_failed += 1
                    progress.failed_items += 1
                    self._logger.warning(
                        "Failed to sync item %s: %s", raw.get("Name") or raw.get("Id"), exc
                    )
                    continue
                if stored:
                    result.items_synced += 1
                    progress.processed_items += 1
                else:
                    result.items_skipped += 1
            start_index += len(page.items)
            if start_index >= page.total:
                return False

    async def _sync_item(
        self, raw: Mapping[str, Any], library_id: str, jellyfin_library_id: str
    ) -> bool:
        jellyfin_id = str(raw["Id"])
        existing = await self._item_store.get_by_jellyfin_id(jellyfin_id)
        parent_id: str | None = None
        raw_parent = raw.get("ParentId")
        if raw_parent and raw_parent != jellyfin_library_id:
            parent = await self._item_store.get_by_jellyfin_id(str(raw_parent))
            parent_id = parent.id if parent else local_id_for("item", str(raw_parent))
        item = item_from_payload(
            raw,
            item_id=existing.id if existing else local_id_for("item", jellyfin_id),
            library_id=library_id,
            parent_id=parent_id,
            synced_at=self._clock(),
            existing=existing,
        )
        if item is None:
            self._logger.debug("Skipping unsupported item type %s.", raw.get("Type"))
            return False
        await self._item_store.upsert(item)
        return True


__all__ = ["LibrarySync", "SyncProgress", "SyncResult", "local_id_for"]
