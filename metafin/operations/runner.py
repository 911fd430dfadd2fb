"""Background execution of a previewed bulk operation."""

from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import datetime
from typing import Any, Callable, Mapping, Protocol, Sequence

from ..common.batching import chunk_sequence
from ..common.errors import ItemNotFoundError
from ..common.types import Item, ItemMetadata, Job, OperationLog
from ..common.validation import require_positive
from ..curation.diff import compute_diff
from ..storage import ItemStore, JobStore
from ..storage.memory import utcnow
from .apply import apply_operation, metadata_patch
from .models import BulkOperationRequest

LOGGER = logging.getLogger("metafin.operations.runner")

DEFAULT_BULK_BATCH_SIZE = 10
DEFAULT_BULK_BATCH_DELAY = 0.1


class MetadataSink(Protocol):
    async def write_item_metadata(
        self, jellyfin_id: str, patch: Mapping[str, Any]
    ) -> None:
        ...


def snapshot(item: Item) -> dict[str, Any]:
    return ItemMetadata.from_item(item).model_dump(mode="json")


class BulkOperationRunner:
    """Apply an operation item by item, recording progress and audit logs.

    Items are processed sequentially in scope order. A failing item is logged
    and counted without stopping the run; only an error escaping the batch
    loop fails the job.
    """

    def __init__(
        self,
        *,
        item_store: ItemStore,
        job_store: JobStore,
        sink: MetadataSink | None = None,
        batch_size: int = DEFAULT_BULK_BATCH_SIZE,
        batch_delay: float = DEFAULT_BULK_BATCH_DELAY,
        clock: Callable[[], datetime] = utcnow,
        logger: logging.Logger | None = None,
    ) -> None:
        if batch_delay < 0:
            raise ValueError("batch_delay must not be negative")
        self._item_store = item_store
        self._job_store = job_store
        self._sink = sink
        self._batch_size = require_positive(batch_size, name="batch_size")
        self._batch_delay = float(batch_delay)
        self._clock = clock
        self._logger = logger or LOGGER

    @property
    def logger(self) -> logging.Logger:
        return self._logger

    @property
    def sink(self) -> MetadataSink | None:
        return self._sink

    async def run(
        self, job_id: str, request: BulkOperationRequest, item_ids: Sequence[str]
    ) -> Job:
        total = len(item_ids)
        processed = 0
        failed = 0
        try:
            await self._job_store.update_job(
                job_id,
                {"status": "running", "start_time": self._clock(), "items_total": total},
            )
            for index, batch in enumerate(chunk_sequence(list(item_ids), self._batch_size)):
                if index and self._batch_delay:
                    await asyncio.sleep(self._batch_delay)
                for item_id in batch:
                    try:
                        await self._process_item(job_id, item_id, request)
                    except Exception as exc:
                        failed += 1
                        self._logger.warning(
                            "Job %s: %s failed for item %s: %s",
                            job_id,
                            request.operation,
                            item_id,
                            exc,
                        )
                        await self._append_log(
                            job_id, item_id, request, success=False, error=str(exc)
                        )
                    else:
                        processed += 1
                    await self._job_store.update_job(
                        job_id,
                        {
                            "progress": (processed + failed) / total if total else 1.0,
                            "items_processed": processed,
                            "items_failed": failed,
                        },
                    )
        except asyncio.CancelledError:
            self._logger.warning(
                "Job %s interrupted after %d item(s).", job_id, processed + failed
            )
            await self.mark_cancelled(job_id, "Job was interrupted before completion")
            raise
        except Exception as exc:
            self._logger.error("Job %s failed: %s", job_id, exc, exc_info=exc)
            return await self._job_store.update_job(
                job_id,
                {
                    "status": "failed",
                    "end_time": self._clock(),
                    "error_message": str(exc) or exc.__class__.__name__,
                },
            )

        self._logger.info(
            "Job %s completed: %d processed, %d failed.", job_id, processed, failed
        )
        return await self._job_store.update_job(
            job_id,
            {"status": "completed", "end_time": self._clock(), "progress": 1.0},
        )

    async def mark_cancelled(
        self, job_id: str, reason: str = "Job was cancelled before it started"
    ) -> Job:
        return await self._job_store.update_job(
            job_id,
            {"status": "cancelled", "end_time": self._clock(), "error_message": reason},
        )

    async def _process_item(
        self, job_id: str, item_id: str, request: BulkOperationRequest
    ) -> None:
        item = await self._item_store.get(item_id)
        if item is None:
            raise ItemNotFoundError(item_id)

        proposed = apply_operation(item, request)
        diff = compute_diff(ItemMetadata.from_item(item), proposed, item.id)
        patch = metadata_patch(item, proposed, (change.field for change in diff.changes))
        updated = await self._item_store.update(item.id, patch) if patch else item
        await self._append_log(
            job_id,
            item_id,
            request,
            success=True,
            before=snapshot(item),
            after=snapshot(updated),
        )

        if patch and self._sink is not None and item.jellyfin_id:
            try:
                await self._sink.write_item_metadata(item.jellyfin_id, patch)
            except Exception as exc:
                self._logger.warning(
                    "Job %s: failed to push item %s to Jellyfin: %s",
                    job_id,
                    item_id,
                    exc,
                    exc_info=exc,
                )

    async def _append_log(
        self,
        job_id: str,
        item_id: str,
        request: BulkOperationRequest,
        *,
        success: bool,
        error: str | None = None,
        before: dict[str, Any] | None = None,
        after: dict[str, Any] | None = None,
    ) -> None:
        await self._job_store.append_log(
            OperationLog(
                id=uuid.uuid4().hex,
                job_id=job_id,
                item_id=item_id,
                operation=request.operation,
                before=before,
                after=after,
                success=success,
                error_message=error,
                created_at=self._clock(),
            )
        )


__all__ = [
    "DEFAULT_BULK_BATCH_DELAY",
    "DEFAULT_BULK_BATCH_SIZE",
    "BulkOperationRunner",
    "MetadataSink",
    "snapshot",
]
