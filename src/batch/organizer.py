# src/batch/organizer.py — v1
"""Deterministic partitioning of work items into batches and mini-batches."""

from __future__ import annotations

from collections.abc import Sequence

from aiscan.batch.models import Batch, MiniBatch
from aiscan.core.models import WorkItem


def _chunks(items: Sequence[WorkItem], size: int) -> list[tuple[WorkItem, ...]]:
    return [tuple(items[i:i + size]) for i in range(0, len(items), size)]


def organize_batches(
    items: Sequence[WorkItem],
    batch_size: int,
    mini_batch_size: int,
) -> list[Batch]:
    """Split items into contiguous batches, each split into mini-batches.

    Order is preserved and numbering is 1-based. Only the last batch, and
    the last mini-batch of each batch, may be short.

    Args:
        items: Work items in input order.
        batch_size: Items per batch (>= 1).
        mini_batch_size: Items per mini-batch (>= 1).

    Returns:
        Batches in order; empty list for empty input.

    Raises:
        ValueError: If either size is not positive.
    """
    if batch_size < 1:
        raise ValueError(f"batch_size must be >= 1, got {batch_size}")
    if mini_batch_size < 1:
        raise ValueError(f"mini_batch_size must be >= 1, got {mini_batch_size}")

    batches: list[Batch] = []
    for batch_index, batch_items in enumerate(_chunks(items, batch_size), start=1):
        mini_batches = tuple(
            MiniBatch(mini_batch_number=mini_index, items=mini_items)
            for mini_index, mini_items in enumerate(
                _chunks(batch_items, mini_batch_size), start=1
            )
        )
        batches.append(
            Batch(batch_number=batch_index, items=batch_items, mini_batches=mini_batches)
        )
    return batches


def count_mini_batches(batches: Sequence[Batch]) -> int:
    return sum(len(batch.mini_batches) for batch in batches)
