"""Request and response models for bulk metadata operations."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Literal, Mapping, Optional

import pydantic
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator

from ..common.errors import ValidationError
from ..common.types import ItemMetadata, ItemType, Job, JobStatus
from ..curation.diff import DiffSummary, ItemDiff

OperationType = Literal[
    "update-metadata",
    "set-provider-ids",
    "assign-artwork",
    "add-to-collection",
    "remove-from-collection",
]
ScopeType = Literal["specific-items", "library-filter", "search-query"]

BULK_OPERATION_JOB_TYPE = "bulk-operation"


class OperationScope(BaseModel):
    """Selection of items an operation applies to."""

    model_config = ConfigDict(extra="forbid")

    type: ScopeType
    item_ids: Optional[List[str]] = Field(
        default=None, validation_alias=AliasChoices("item_ids", "itemIds")
    )
    library_id: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("library_id", "libraryId")
    )
    item_type: Optional[ItemType] = Field(
        default=None, validation_alias=AliasChoices("item_type", "itemType")
    )
    search_query: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("search_query", "searchQuery")
    )

    @model_validator(mode="after")
    def _check_variant(self) -> "OperationScope":
        if self.type == "specific-items" and not self.item_ids:
            raise ValueError("specific-items scope requires item_ids")
        if self.type == "library-filter" and not self.library_id:
            raise ValueError("library-filter scope requires library_id")
        if self.type == "search-query" and not (self.search_query or "").strip():
            raise ValueError("search-query scope requires search_query")
        return self


class BulkOperationRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    operation: OperationType
    scope: OperationScope
    changes: Optional[Dict[str, Any]] = None
    provider_ids: Optional[Dict[str, str]] = Field(
        default=None, validation_alias=AliasChoices("provider_ids", "providerIds")
    )
    collection_id: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("collection_id", "collectionId")
    )

    @model_validator(mode="after")
    def _check_payload(self) -> "BulkOperationRequest":
        if self.operation == "update-metadata":
            if not self.changes:
                raise ValueError("update-metadata requires a non-empty changes object")
            unknown = set(self.changes) - set(ItemMetadata.model_fields)
            if unknown:
                raise ValueError(
                    "Unknown metadata fields: " + ", ".join(sorted(unknown))
                )
        elif self.operation == "set-provider-ids" and not self.provider_ids:
            raise ValueError("set-provider-ids requires provider_ids")
        elif (
            self.operation in ("add-to-collection", "remove-from-collection")
            and not self.collection_id
        ):
            raise ValueError(f"{self.operation} requires collection_id")
        return self


class ExecuteOperationRequest(BaseModel):
    preview_token: str = Field(
        min_length=1, validation_alias=AliasChoices("preview_token", "previewToken")
    )


class OperationPreviewResponse(BaseModel):
    preview_token: Optional[str] = None
    total_items: int = 0
    estimated_api_calls: int = 0
    changes: List[ItemDiff] = Field(default_factory=list)
    summary: DiffSummary = Field(default_factory=DiffSummary)


class ExecuteOperationResponse(BaseModel):
    job_id: str
    status: JobStatus
    estimated_duration: str


class OperationLogEntry(BaseModel):
    id: str
    item_id: str
    item_name: Optional[str] = None
    operation: str
    before: Optional[Dict[str, Any]] = None
    after: Optional[Dict[str, Any]] = None
    success: bool
    error_message: Optional[str] = None
    created_at: datetime


class JobStatusResponse(BaseModel):
    id: str
    type: str
    status: JobStatus
    progress: float
    items_total: int
    items_processed: int
    items_failed: int
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    error_message: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    updated_at: datetime
    operation_logs: Optional[List[OperationLogEntry]] = None

    @classmethod
    def from_job(
        cls, job: Job, logs: List[OperationLogEntry] | None = None
    ) -> "JobStatusResponse":
        return cls(**job.model_dump(), operation_logs=logs)


class JobListResponse(BaseModel):
    jobs: List[JobStatusResponse] = Field(default_factory=list)
    limit: int


def parse_request(
    payload: BulkOperationRequest | Mapping[str, Any],
) -> BulkOperationRequest:
    """Validate *payload*, raising :class:`ValidationError` on bad input."""

    if isinstance(payload, BulkOperationRequest):
        return payload
    try:
        return BulkOperationRequest.model_validate(payload)
    except pydantic.ValidationError as exc:
        raise ValidationError.from_pydantic(exc) from exc


__all__ = [
    "BULK_OPERATION_JOB_TYPE",
    "BulkOperationRequest",
    "ExecuteOperationRequest",
    "ExecuteOperationResponse",
    "JobListResponse",
    "JobStatusResponse",
    "OperationLogEntry",
    "OperationPreviewResponse",
    "OperationScope",
    "OperationType",
    "ScopeType",
    "parse_request",
]
