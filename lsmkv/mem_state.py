"""In-memory table of the latest values plus the sparse indexes of segments."""

from __future__ import annotations

import bisect
import logging
import os
import sys
from typing import TextIO

from .kv_record import kv_record_bytes
from .naming import segment_id_from_index_path, segment_id_from_segment_path
from .sparse_index import SparseIndexEntry, sparse_index_bytes

logger = logging.getLogger(__name__)


class MemState:
    """The memtable and the per-segment sparse indexes; not thread-safe."""

    def __init__(self) -> None:
        self.state: dict[bytes, bytes] = {}
        self.sparse_indexes: dict[int, list[SparseIndexEntry]] = {}

    def get(self, key: bytes) -> bytes:
        """Value stored for a key; raises KeyError when it is not in the memtable."""
        try:
            return self.state[bytes(key)]
        except KeyError:
            raise KeyError("key not found in memtable") from None

    def put(self, key: bytes, value: bytes) -> None:
        """Store or overwrite a value."""
        self.state[bytes(key)] = bytes(value)

    def sparse_index(self, segment_id: int) -> list[SparseIndexEntry]:
        """Sparse index of a segment; an empty list if there is none."""
        return self.sparse_indexes.get(segment_id, [])

    def remove_sparse_index(self, segment_id: int) -> None:
        """Forget the sparse index of a segment."""
        self.sparse_indexes.pop(segment_id, None)

    def set_sparse_index(self, segment_id: int, entries: list[SparseIndexEntry]) -> None:
        """Replace the sparse index of a segment."""
        self.sparse_indexes[segment_id] = list(entries)

    def add_sparse_index_entry(self, segment_id: int, key: bytes, offset: int) -> None:
        """Append one entry to the sparse index of a segment."""
        self.sparse_indexes.setdefault(segment_id, []).append(
            SparseIndexEntry(key=bytes(key), offset=offset)
        )

    def sorted_pairs(self) -> list[tuple[bytes, bytes]]:
        """Every key-value pair of the memtable, ordered by key."""
        return sorted(self.state.items())

    def find_offset(self, segment_id: int, key: bytes) -> int:
        """Offset to start scanning a segment for a key; -1 if the key cannot be there."""
        entries = self.sparse_indexes.get(segment_id, [])
        if not entries:
            return -1
        key = bytes(key)
        idx = bisect.bisect_left(entries, key, key=lambda entry: entry.key)
        if idx == len(entries):
            idx -= 1
        if key < entries[idx].key:
            if idx == 0:
                return -1
            idx -= 1
        return entries[idx].offset

    def segment_ids_descending(self) -> list[int]:
        """Ids of all indexed segments, newest first."""
        return sorted(self.sparse_indexes, reverse=True)

    def flush(self, file_path: str) -> tuple[bytes, bytes]:
        """Write the memtable to a segment file in key order.

        Every second record is added to the segment's sparse index.
        Returns the smallest and largest key written.
        """
        segment_id = segment_id_from_segment_path(file_path)
        entries = self.sorted_pairs()
        if not entries:
            raise ValueError("cannot flush an empty memtable")
        offset = 0
        with open(file_path, "ab") as segment_file:
            for idx, (key, value) in enumerate(entries):
                data = kv_record_bytes(key, value)
                segment_file.write(data)
                if idx % 2 == 0:
                    logger.debug(
                        "sparse index entry for segment %d at offset %d: %r",
                        segment_id, offset, key,
                    )
                    self.add_sparse_index_entry(segment_id, key, offset)
                offset += len(data)
            segment_file.flush()
            os.fsync(segment_file.fileno())
        return entries[0][0], entries[-1][0]

    def flush_sparse_index(self, file_path: str) -> None:
        """Append the sparse index of the segment named by the file to that file."""
        segment_id = segment_id_from_index_path(file_path)
        with open(file_path, "ab") as index_file:
            for entry in self.sparse_indexes.get(segment_id, []):
                index_file.write(sparse_index_bytes(segment_id, entry.key, entry.offset))
            index_file.flush()
            os.fsync(index_file.fileno())
        logger.info("flushed sparse index to %s", file_path)

    def dump(self, out: TextIO | None = None) -> None:
        """Print the memtable contents."""
        out = out if out is not None else sys.stdout
        print("========== MemState starts ==========", file=out)
        for key, value in self.state.items():
            print(
                f"{key.decode('utf-8', 'replace')}: {value.decode('utf-8', 'replace')}",
                file=out,
            )
        print("========== MemState ends ==========", file=out)