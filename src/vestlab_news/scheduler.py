"""Time-derived batch rotation.

There is no persisted cursor: the active batch is a pure function of the
wall-clock minute, so a missed tick is healed by the next one computing
whichever batch is due for its own run index.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Generic, List, Sequence, Tuple, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class SourcePartition(Generic[T]):
    index: int
    members: Tuple[T, ...]

    def __len__(self) -> int:
        return len(self.members)


def epoch_minutes(now: datetime) -> int:
    """Whole minutes since the Unix epoch; naive datetimes are treated as UTC."""
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return int(now.timestamp() // 60)


def run_index(now: datetime | int, period_minutes: int) -> int:
    """floor(epoch_minutes / period); accepts a datetime or epoch minutes."""
    if period_minutes < 1:
        raise ValueError("period_minutes must be >= 1.")
    minutes = now if isinstance(now, int) else epoch_minutes(now)
    return minutes // period_minutes


def total_batches(registry_size: int, batch_size: int) -> int:
    """ceil(registry_size / batch_size); zero for an empty registry."""
    if batch_size < 1:
        raise ValueError("batch_size must be >= 1.")
    if registry_size <= 0:
        return 0
    return math.ceil(registry_size / batch_size)


def batch_index(run_idx: int, batches: int) -> int:
    if batches <= 0:
        return 0
    return run_idx % batches


def partition(items: Sequence[T], batch_size: int) -> List[SourcePartition[T]]:
    """Split *items* into contiguous, non-overlapping partitions in order."""
    count = total_batches(len(items), batch_size)
    return [
        SourcePartition(index=idx, members=tuple(items[idx * batch_size:(idx + 1) * batch_size]))
        for idx in range(count)
    ]


def select_batch(
    items: Sequence[T],
    batch_size: int,
    now: datetime | int,
    period_minutes: int,
) -> SourcePartition[T]:
    """Return the partition due for the run index derived from *now*."""
    batches = total_batches(len(items), batch_size)
    if batches == 0:
        return SourcePartition(index=0, members=())
    idx = batch_index(run_index(now, period_minutes), batches)
    start = idx * batch_size
    return SourcePartition(index=idx, members=tuple(items[start:start + batch_size]))
