"""Preview/execute workflow for bulk metadata operations."""

from __future__ import annotations

import logging
import math
import uuid
from datetime import datetime
from typing import Any, Callable, Mapping

from ..common.errors import JobNotFoundError
from ..common.types import ItemMetadata, Job, JobStatus
from ..common.validation import clamp_limit
from ..curation.diff import DiffEntry, compute_bulk_diff, get_diff_summary
from ..storage import ItemFilter, ItemStore, JobStore
from ..storage.memory import utcnow
from .apply import apply_operation, ensure_supported
from .jobs import JobRunner
from .models import (
    BULK_OPERATION_JOB_TYPE,
    BulkOperationRequest,
    ExecuteOperationResponse,
    JobListResponse,
    JobStatusResponse,
    OperationLogEntry,
    OperationPreviewResponse,
    parse_request,
)
from .runner import BulkOperationRunner
from .scope import resolve_scope
from .tokens import PreviewTokenStore

LOGGER = logging.getLogger("metafin.operations")

DEFAULT_JOB_LIST_LIMIT = 20
MAX_JOB_LIST_LIMIT = 100
MAX_JOB_LOG_ENTRIES = 100


def estimate_duration(item_count: int) -> str:
    """Describe the expected runtime assuming roughly one second per item."""

    seconds = max(int(item_count), 0)
    if seconds < 60:
        return f"{seconds} seconds"
    if seconds < 3600:
        return f"{math.floor(seconds / 60 + 0.5)} minutes"
    return f"{math.floor(seconds / 3600 + 0.5)} hours"


class BulkOperationService:
    """Generate previews, execute them as jobs, and report on job progress."""

    def __init__(
        self,
        *,
        item_store: ItemStore,
        job_store: JobStore,
        token_store: PreviewTokenStore,
        runner: BulkOperationRunner,
        job_runner: JobRunner,
        clock: Callable[[], datetime] = utcnow,
        logger: logging.Logger | None = None,
    ) -> None:
        self._item_store = item_store
        self._job_store = job_store
        self._token_store = token_store
        self._runner = runner
        self._job_runner = job_runner
        self._clock = clock
        self._logger = logger or LOGGER

    @property
    def token_store(self) -> PreviewTokenStore:
        return self._token_store

    @property
    def job_runner(self) -> JobRunner:
        return self._job_runner

    @property
    def logger(self) -> logging.Logger:
        return self._logger

    async def generate_preview(
        self, payload: BulkOperationRequest | Mapping[str, Any]
    ) -> OperationPreviewResponse:
        """Compute the diffs *payload* would produce without writing anything."""

        request = parse_request(payload)
        ensure_supported(request)
        item_ids = await resolve_scope(self._item_store, request.scope)
        await self._token_store.purge_expired()
        if not item_ids:
            self._logger.info("Preview for %s matched no items.", request.operation)
            return OperationPreviewResponse()

        found = {
            item.id: item
            for item in await self._item_store.find(ItemFilter(ids=item_ids))
        }
        items = [found[item_id] for item_id in item_ids if item_id in found]
        diffs = compute_bulk_diff(
            DiffEntry(
                item_id=item.id,
                current=ItemMetadata.from_item(item),
                proposed=apply_operation(item, request),
                item_name=item.name,
            )
            for item in items
        )
        summary = get_diff_summary(diffs)
        token = await self._token_store.issue(request, item_ids)
        self._logger.info(
            "Generated %s preview for %d item(s), %d with changes.",
            request.operation,
            summary.total_items,
            summary.items_with_changes,
        )
        return OperationPreviewResponse(
            preview_token=token.token,
            total_items=len(items),
            estimated_api_calls=summary.items_with_changes,
            changes=diffs,
            summary=summary,
        )

    async def execute_operation(self, preview_token: str) -> ExecuteOperationResponse:
        """Consume *preview_token* and start the job it describes."""

        token = await self._token_store.consume(preview_token)
        now = self._clock()
        request = token.request
        job = await self._job_store.create_job(
            Job(
                id=uuid.uuid4().hex,
                type=BULK_OPERATION_JOB_TYPE,
                status="pending",
                items_total=len(token.item_ids),
                metadata={
                    "operation": request.operation,
                    "request": request.model_dump(mode="json"),
                    "item_ids": list(token.item_ids),
                },
                created_at=now,
                updated_at=now,
            )
        )
        item_ids = list(token.item_ids)
        self._job_runner.submit(
            job.id,
            lambda: self._runner.run(job.id, request, item_ids),
            on_cancel=lambda: self._runner.mark_cancelled(job.id),
        )
        self._logger.info(
            "Queued job %s for %s over %d item(s).",
            job.id,
            request.operation,
            len(item_ids),
        )
        return ExecuteOperationResponse(
            job_id=job.id,
            status=job.status,
            estimated_duration=estimate_duration(len(item_ids)),
        )

    async def get_job_status(
        self, job_id: str, *, include_details: bool = False
    ) -> JobStatusResponse:
        job = await self._job_store.get_job(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        if not include_details:
            return JobStatusResponse.from_job(job)

        logs = await self._job_store.list_logs(
            job_id, limit=MAX_JOB_LOG_ENTRIES, descending=True
        )
        names: dict[str, str] = {}
        if logs:
            items = await self._item_store.find(
                ItemFilter(ids=list({entry.item_id for entry in logs}))
            )
            names = {item.id: item.name for item in items}
        entries = [
            OperationLogEntry(
                id=entry.id,
                item_id=entry.item_id,
                item_name=names.get(entry.item_id),
                operation=entry.operation,
                before=entry.before,
                after=entry.after,
                success=entry.success,
                error_message=entry.error_message,
                created_at=entry.created_at,
            )
            for entry in logs
        ]
        return JobStatusResponse.from_job(job, entries)

    async def list_jobs(
        self,
        *,
        limit: int | str | None = DEFAULT_JOB_LIST_LIMIT,
        job_type: str | None = None,
        status: JobStatus | None = None,
    ) -> JobListResponse:
        limit = clamp_limit(limit, default=DEFAULT_JOB_LIST_LIMIT, maximum=MAX_JOB_LIST_LIMIT)
        jobs = await self._job_store.list_jobs(limit=limit, job_type=job_type, status=status)
        return JobListResponse(
            jobs=[JobStatusResponse.from_job(job) for job in jobs], limit=limit
        )


__all__ = [
    "BulkOperationService",
    "DEFAULT_JOB_LIST_LIMIT",
    "MAX_JOB_LIST_LIMIT",
    "estimate_duration",
]
