"""Misclassification detection and metadata diffing."""

from __future__ import annotations

from .diff import (
    DiffEntry,
    DiffSummary,
    FieldChange,
    ItemDiff,
    compute_bulk_diff,
    compute_diff,
    get_diff_summary,
)
from .misclassification import (
    MisclassificationAnalysis,
    MisclassificationService,
    analyze,
)
from .scan import LibraryScanOrchestrator, ScanResult

__all__ = [
    "DiffEntry",
    "DiffSummary",
    "FieldChange",
    "ItemDiff",
    "LibraryScanOrchestrator",
    "MisclassificationAnalysis",
    "MisclassificationService",
    "ScanResult",
    "analyze",
    "compute_bulk_diff",
    "compute_diff",
    "get_diff_summary",
]
