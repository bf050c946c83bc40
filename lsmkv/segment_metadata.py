"""Segment metadata and its manifest record format."""

from __future__ import annotations

import os
import struct
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import BinaryIO

from .errors import BadChecksumError, TruncatedRecordError
from .log_record import compute_checksum
from .naming import sparse_index_file_name
from .sparse_index import SparseIndexEntry

# checksum, id, level, min key size, max key size, file path size
_HEADER = struct.Struct("<IQIIII")
_BODY_HEADER = struct.Struct("<QIIII")
SEGMENT_METADATA_HEADER_SIZE = _HEADER.size  # 28 bytes


@dataclass
class SegmentMetadata:
    """Where a segment lives, which level it is on and which keys it covers."""

    id: int
    level: int = 0
    min_key: bytes | None = None
    max_key: bytes | None = None
    file_path: str = ""
    # Only filled in by compaction, to hand freshly built indexes to the store.
    sparse_index: list[SparseIndexEntry] = field(default_factory=list, repr=False)

    def sparse_index_file_name(self) -> str:
        """File name of this segment's sparse index."""
        return sparse_index_file_name(self.id)

    def has_overlapping_keys(self, other: SegmentMetadata) -> bool:
        """Whether the key ranges of two segments overlap (touching ends do not)."""
        if None in (self.min_key, self.max_key, other.min_key, other.max_key):
            raise ValueError("segment min or max key is missing")
        if self.max_key <= other.min_key:
            return False
        if other.max_key <= self.min_key:
            return False
        return True

    def to_bytes(self) -> bytes:
        """Encode as a checksummed manifest record."""
        min_key = bytes(self.min_key or b"")
        max_key = bytes(self.max_key or b"")
        path = self.file_path.encode("utf-8", "surrogateescape")
        body = (
            _BODY_HEADER.pack(self.id, self.level, len(min_key), len(max_key), len(path))
            + min_key
            + max_key
            + path
        )
        return struct.pack("<I", compute_checksum(body)) + body


def _read_exact(stream: BinaryIO, size: int, what: str) -> bytes:
    data = stream.read(size) if size else b""
    if len(data) != size:
        raise TruncatedRecordError(f"unexpected end of file while reading {what}")
    return data


def read_segment_metadata(stream: BinaryIO) -> SegmentMetadata | None:
    """Read the next manifest record; None at a clean end of file.

    Raises TruncatedRecordError for a partial record and BadChecksumError
    when the stored checksum does not match.
    """
    header = stream.read(SEGMENT_METADATA_HEADER_SIZE)
    if not header:
        return None
    if len(header) != SEGMENT_METADATA_HEADER_SIZE:
        raise TruncatedRecordError("unexpected end of file while reading segment metadata")
    checksum, segment_id, level, min_size, max_size, path_size = _HEADER.unpack(header)
    min_key = _read_exact(stream, min_size, "min key")
    max_key = _read_exact(stream, max_size, "max key")
    path = _read_exact(stream, path_size, "file path")
    if compute_checksum(header[4:] + min_key + max_key + path) != checksum:
        raise BadChecksumError()
    return SegmentMetadata(
        id=segment_id,
        level=level,
        min_key=min_key,
        max_key=max_key,
        file_path=path.decode("utf-8", "surrogateescape"),
    )


def write_manifest(
    path: str | os.PathLike[str], levels: Iterable[Iterable[SegmentMetadata]]
) -> None:
    """Append every segment of every level to a manifest file, syncing each."""
    with open(path, "ab") as manifest:
        for level in levels:
            for segment in level:
                manifest.write(segment.to_bytes())
                manifest.flush()
                os.fsync(manifest.fileno())