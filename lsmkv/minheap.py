"""Priority queue used to merge segment files during compaction."""

from __future__ import annotations

import heapq
import itertools
from collections.abc import Iterable
from dataclasses import dataclass

from .kv_record import KVRecord
from .naming import segment_id_from_segment_path


@dataclass
class MinHeapRecord:
    """A record together with the segment file it was read from."""

    record: KVRecord
    segment_file_path: str


def _segment_id(path: str) -> int:
    try:
        return segment_id_from_segment_path(path)
    except ValueError:
        return 0


class MergeHeap:
    """Min-heap ordered by key; equal keys come newest segment first."""

    def __init__(self, records: Iterable[MinHeapRecord] = ()) -> None:
        self._items: list[tuple[bytes, int, int, MinHeapRecord]] = []
        self._counter = itertools.count()
        for record in records:
            self.push(record)

    def push(self, record: MinHeapRecord) -> None:
        """Add a record to the heap."""
        heapq.heappush(
            self._items,
            (
                bytes(record.record.key),
                -_segment_id(record.segment_file_path),
                next(self._counter),
                record,
            ),
        )

    def pop(self) -> MinHeapRecord:
        """Remove and return the smallest record; IndexError when empty."""
        if not self._items:
            raise IndexError("pop from an empty heap")
        return heapq.heappop(self._items)[-1]

    def peek(self) -> MinHeapRecord:
        """Return the smallest record without removing it; IndexError when empty."""
        if not self._items:
            raise IndexError("peek into an empty heap")
        return self._items[0][-1]

    def __len__(self) -> int:
        return len(self._items)