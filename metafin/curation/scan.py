"""Batch misclassification scans over a library."""

from __future__ import annotations

import logging
import time
from typing import Sequence

from pydantic import BaseModel

from ..common.validation import require_positive
from ..storage import ItemFilter, ItemStore
from .misclassification import CLEARED_FLAGS, analyze, flag_patch, load_context

LOGGER = logging.getLogger("metafin.curation.scan")

DEFAULT_SCAN_BATCH_SIZE = 50


class ScanResult(BaseModel):
    total_items: int = 0
    items_scanned: int = 0
    items_failed: int = 0
    misclassified_items: int = 0
    high_confidence_issues: int = 0
    medium_confidence_issues: int = 0
    low_confidence_issues: int = 0
    duration: float = 0.0


class LibraryScanOrchestrator:
    """Analyze every item in scope and persist the resulting flags."""

    def __init__(
        self,
        item_store: ItemStore,
        *,
        batch_size: int = DEFAULT_SCAN_BATCH_SIZE,
        logger: logging.Logger | None = None,
    ) -> None:
        self._item_store = item_store
        self._batch_size = require_positive(batch_size, name="batch_size")
        self._logger = logger or LOGGER

    @property
    def batch_size(self) -> int:
        return self._batch_size

    @property
    def logger(self) -> logging.Logger:
        return self._logger

    async def scan(
        self,
        library_id: str | None = None,
        item_types: Sequence[str] | None = None,
    ) -> ScanResult:
        started = time.perf_counter()
        item_filter = ItemFilter(
            library_id=library_id,
            types=list(item_types) if item_types else None,
        )
        result = ScanResult(total_items=await self._item_store.count(item_filter))
        self._logger.info(
            "Starting misclassification scan of %d item(s) (library=%s, types=%s).",
            result.total_items,
            library_id or "*",
            ",".join(item_types) if item_types else "*",
        )

        batches = 0
        async for batch in self._item_store.iter_batches(
            item_filter, batch_size=self._batch_size
        ):
            batches += 1
            for item in batch:
                try:
                    analysis = analyze(await load_context(self._item_store, item))
                    if analysis.should_flag:
                        await self._item_store.update(item.id, flag_patch(analysis))
                    elif item.suspected_misclassification:
                        await self._item_store.update(item.id, CLEARED_FLAGS)
                except Exception as exc:
                    result.items_failed += 1
                    self._logger.warning(
                        "Failed to analyze item %s: %s", item.id, exc, exc_info=exc
                    )
                    continue

                result.items_scanned += 1
                if not analysis.should_flag:
                    continue
                result.misclassified_items += 1
                severity = analysis.highest_severity
                if severity == "high":
                    result.high_confidence_issues += 1
                elif severity == "medium":
                    result.medium_confidence_issues += 1
                else:
                    result.low_confidence_issues += 1
            self._logger.debug("Scanned batch %d (%d item(s)).", batches, len(batch))

        result.duration = round(time.perf_counter() - started, 3)
        self._logger.info(
            "Misclassification scan completed: %d/%d item(s) flagged in %.3fs.",
            result.misclassified_items,
            result.items_scanned,
            result.duration,
        )
        return result


__all__ = ["DEFAULT_SCAN_BATCH_SIZE", "LibraryScanOrchestrator", "ScanResult"]
