"""Bulk-operation tools for the metafin MCP server."""

from __future__ import annotations

from typing import Annotated, Any, TYPE_CHECKING

from pydantic import Field

from ...common.types import JobStatus
from ...operations.models import (
    ExecuteOperationResponse,
    JobListResponse,
    JobStatusResponse,
    OperationPreviewResponse,
    OperationType,
)

if TYPE_CHECKING:  # pragma: no cover - imported for type checking only
    from .. import MetafinServer


def register_operation_tools(server: "MetafinServer") -> dict[str, Any]:
    """Register preview/execute and job tools on the provided server."""

    tools: dict[str, Any] = {}

    def _operation_tool(name: str, *, title: str, operation: str):
        decorator = server.tool(
            name,
            title=title,
            meta={"category": "bulk-operations", "operation": operation},
        )

        def _register(fn):
            tools[name] = decorator(fn)
            return tools[name]

        return _register

    @_operation_tool("preview-operation", title="Preview bulk operation", operation="preview")
    async def preview_operation(
        operation: Annotated[
            OperationType,
            Field(
                description="Kind of bulk change to preview",
                examples=["update-metadata", "add-to-collection"],
            ),
        ],
        scope: Annotated[
            dict[str, Any],
            Field(
                description=(
                    "Items to change: {type: specific-items, item_ids}, "
                    "{type: library-filter, library_id, item_type?} or "
                    "{type: search-query, search_query}"
                ),
                examples=[{"type": "specific-items", "item_ids": ["item-1"]}],
            ),
        ],
        changes: Annotated[
            dict[str, Any] | None,
            Field(
                description="Metadata fields to set for update-metadata",
                examples=[{"genres": ["Drama"]}],
            ),
        ] = None,
        provider_ids: Annotated[
            dict[str, str] | None,
            Field(description="Provider ids to merge for set-provider-ids", examples=[{"Tvdb": "81189"}]),
        ] = None,
        collection_id: Annotated[
            str | None,
            Field(description="Collection for add/remove-from-collection", examples=["favourites"]),
        ] = None,
    ) -> OperationPreviewResponse:
        """Compute per-item diffs for a bulk change and issue a preview token."""

        payload: dict[str, Any] = {"operation": operation, "scope": scope}
        if changes is not None:
            payload["changes"] = changes
        if provider_ids is not None:
            payload["provider_ids"] = provider_ids
        if collection_id is not None:
            payload["collection_id"] = collection_id
        return await server.operation_service.generate_preview(payload)

    @_operation_tool("execute-operation", title="Execute previewed operation", operation="execute")
    async def execute_operation(
        preview_token: Annotated[
            str,
            Field(description="Token returned by preview-operation", min_length=1),
        ],
    ) -> ExecuteOperationResponse:
        """Start the job for a previously previewed bulk change."""

        return await server.operation_service.execute_operation(preview_token)

    @_operation_tool("get-job-status", title="Get job status", operation="status")
    async def get_job_status(
        job_id: Annotated[str, Field(description="Job identifier")],
        include_details: Annotated[
            bool,
            Field(description="Include up to 100 per-item audit logs, newest first"),
        ] = False,
    ) -> JobStatusResponse:
        """Report progress of a bulk-operation job."""

        return await server.operation_service.get_job_status(
            job_id, include_details=include_details
        )

    @_operation_tool("list-jobs", title="List jobs", operation="list")
    async def list_jobs(
        limit: Annotated[
            int,
            Field(description="Maximum number of jobs to return", ge=1, le=100, examples=[20]),
        ] = 20,
        job_type: Annotated[str | None, Field(description="Only jobs of this type")] = None,
        status: Annotated[JobStatus | None, Field(description="Only jobs in this status")] = None,
    ) -> JobListResponse:
        """List recent jobs, newest first."""

        return await server.operation_service.list_jobs(
            limit=limit, job_type=job_type, status=status
        )

    return tools


__all__ = ["register_operation_tools"]
