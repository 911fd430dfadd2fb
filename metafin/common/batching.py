"""Helpers for working through sequences in fixed-size batches."""

from __future__ import annotations

from typing import Iterable, Sequence, TypeVar

from .validation import require_positive

T = TypeVar("T")


def chunk_sequence(items: Sequence[T], size: int) -> Iterable[Sequence[T]]:
    """Yield ``items`` in chunks of at most ``size`` elements."""

    size = require_positive(int(size), name="size")
    for start in range(0, len(items), size):
        yield items[start : start + size]


__all__ = ["chunk_sequence"]
