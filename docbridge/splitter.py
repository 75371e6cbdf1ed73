"""Partitioning of fragment values into size-bounded translation batches."""

from __future__ import annotations

from typing import List, Optional, Sequence

from .errors import SplitterLimitError
from .structures import Batch, batch_size


def _check_limit(name: str, value: int) -> None:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise SplitterLimitError(
            f"Gateway declared an invalid {name} ({value!r}); expected a positive integer."
        )


def split_batches(
    items: Sequence[Optional[str]],
    max_items: int,
    max_request_size: int,
) -> List[Batch]:
    """Split ``items`` into contiguous, order-preserving batches.

    Each candidate batch starts with up to ``max_items`` items and drops its
    last item while its concatenated size reaches ``max_request_size``. A
    single item is always accepted, even when it alone is oversized.
    """

    _check_limit("max_items", max_items)
    _check_limit("max_request_size", max_request_size)

    batches: List[Batch] = []
    cursor = 0
    total = len(items)

    while cursor < total:
        candidate = list(items[cursor:cursor + max_items])
        size = batch_size(candidate)
        while size >= max_request_size and len(candidate) > 1:
            dropped = candidate.pop()
            size -= len(dropped) if dropped else 0
        batches.append(
            Batch(batch_index=len(batches), start=cursor, items=candidate)
        )
        cursor += len(candidate)

    return batches


class BatchSplitter:
    """Splits fragment values using the limits a gateway declares."""

    def __init__(self, max_items: int, max_request_size: int) -> None:
        _check_limit("max_items", max_items)
        _check_limit("max_request_size", max_request_size)
        self.max_items = max_items
        self.max_request_size = max_request_size

    def split(self, items: Sequence[Optional[str]]) -> List[Batch]:
        return split_batches(items, self.max_items, self.max_request_size)
