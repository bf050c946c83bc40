"""Sparse index entries and their on-disk record format (big-endian)."""

from __future__ import annotations

import struct
from dataclasses import dataclass
from typing import BinaryIO

from .errors import BadChecksumError, TruncatedRecordError
from .log_record import compute_checksum

_BODY_HEADER = struct.Struct(">QIq")  # segment id, key size, offset
_FULL_HEADER = struct.Struct(">IQIq")  # checksum + body header
SPARSE_INDEX_HEADER_SIZE = _FULL_HEADER.size  # 24 bytes


@dataclass
class SparseIndexEntry:
    """A key and the byte offset of its record in a segment file."""

    key: bytes
    offset: int


@dataclass
class SparseIndexRecord:
    """A sparse index entry as stored on disk, tagged with its segment."""

    checksum: int
    segment_id: int
    key_size: int
    offset: int
    key: bytes = b""


def _body(segment_id: int, key: bytes, offset: int) -> bytes:
    return _BODY_HEADER.pack(segment_id, len(key), offset) + bytes(key)


def new_sparse_index_record(segment_id: int, key: bytes, offset: int) -> SparseIndexRecord:
    """Build a record with its checksum computed."""
    return SparseIndexRecord(
        checksum=compute_checksum(_body(segment_id, key, offset)),
        segment_id=segment_id,
        key_size=len(key),
        offset=offset,
        key=bytes(key),
    )


def decode_sparse_index_header(header: bytes) -> SparseIndexRecord:
    """Decode the 24-byte header; the key is left empty."""
    if len(header) < SPARSE_INDEX_HEADER_SIZE:
        raise TruncatedRecordError("sparse index header too short")
    checksum, segment_id, key_size, offset = _FULL_HEADER.unpack_from(header)
    return SparseIndexRecord(
        checksum=checksum, segment_id=segment_id, key_size=key_size, offset=offset
    )


def sparse_index_bytes(segment_id: int, key: bytes, offset: int) -> bytes:
    """Encode a sparse index entry as checksum, header and key."""
    body = _body(segment_id, key, offset)
    return struct.pack(">I", compute_checksum(body)) + body


def read_sparse_index_record(stream: BinaryIO) -> SparseIndexRecord | None:
    """Read the next record from a stream; None at a clean end of file.

    Raises TruncatedRecordError for a partial record and BadChecksumError
    when the stored checksum does not match.
    """
    header = stream.read(SPARSE_INDEX_HEADER_SIZE)
    if not header:
        return None
    record = decode_sparse_index_header(header)
    key = stream.read(record.key_size)
    if len(key) != record.key_size:
        raise TruncatedRecordError("unexpected end of file while reading sparse index key")
    record.key = key
    if compute_checksum(header[4:] + key) != record.checksum:
        raise BadChecksumError()
    return record