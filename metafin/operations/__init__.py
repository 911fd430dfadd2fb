"""Bulk metadata operations with a preview/execute handshake."""

from __future__ import annotations

from .jobs import JobRunner
from .models import (
    BulkOperationRequest,
    ExecuteOperationResponse,
    JobListResponse,
    JobStatusResponse,
    OperationPreviewResponse,
    OperationScope,
)
from .runner import BulkOperationRunner, MetadataSink
from .service import BulkOperationService, estimate_duration
from .tokens import PreviewToken, PreviewTokenStore

__all__ = [
    "BulkOperationRequest",
    "BulkOperationRunner",
    "BulkOperationService",
    "ExecuteOperationResponse",
    "JobListResponse",
    "JobRunner",
    "JobStatusResponse",
    "MetadataSink",
    "OperationPreviewResponse",
    "OperationScope",
    "PreviewToken",
    "PreviewTokenStore",
    "estimate_duration",
]
