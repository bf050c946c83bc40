"""Segment file record format: checksum, key and value sizes, payload."""

from __future__ import annotations

import struct
from dataclasses import dataclass
from typing import BinaryIO

from .errors import BadChecksumError, TruncatedRecordError
from .log_record import compute_checksum

_HEADER = struct.Struct("<III")
_SIZES = struct.Struct("<II")
KV_HEADER_SIZE = _HEADER.size  # 12 bytes


@dataclass
class KVRecord:
    """One key-value entry in a segment file."""

    checksum: int
    key_size: int
    value_size: int
    key: bytes
    value: bytes

    def size(self) -> int:
        """Encoded size in bytes according to the header sizes."""
        return KV_HEADER_SIZE + self.key_size + self.value_size

    def serialize(self) -> bytes:
        """Encode as header (little-endian) followed by key and value."""
        return (
            _HEADER.pack(self.checksum, self.key_size, self.value_size)
            + bytes(self.key)
            + bytes(self.value)
        )

    def compute_checksum_for_record(self) -> int:
        """Checksum of sizes and payload, zero-padded to the full record length."""
        body = _SIZES.pack(self.key_size, self.value_size) + bytes(self.key) + bytes(self.value)
        return compute_checksum(body + bytes(4))


def kv_record_bytes(key: bytes, value: bytes) -> bytes:
    """Encode a key and value as a checksummed segment record."""
    body = _SIZES.pack(len(key), len(value)) + bytes(key) + bytes(value)
    return struct.pack("<I", compute_checksum(body)) + body


def deserialize_kv_record(data: bytes) -> KVRecord:
    """Decode a segment record; raises TruncatedRecordError if data is too short."""
    if len(data) < KV_HEADER_SIZE:
        raise TruncatedRecordError("log record is too short")
    checksum, key_size, value_size = _HEADER.unpack_from(data)
    expected = KV_HEADER_SIZE + key_size + value_size
    if len(data) < expected:
        raise TruncatedRecordError(
            f"log record data too short: expected {expected} bytes, got {len(data)}"
        )
    key_end = KV_HEADER_SIZE + key_size
    return KVRecord(
        checksum=checksum,
        key_size=key_size,
        value_size=value_size,
        key=bytes(data[KV_HEADER_SIZE:key_end]),
        value=bytes(data[key_end:key_end + value_size]),
    )


def _read_exact(stream: BinaryIO, size: int, what: str) -> bytes:
    data = stream.read(size)
    if len(data) != size:
        raise TruncatedRecordError(f"unexpected end of file while reading {what}")
    return data


def read_kv_record(stream: BinaryIO) -> KVRecord | None:
    """Read the next record from a stream; None at a clean end of file.

    Raises TruncatedRecordError for a partial record and BadChecksumError
    when the stored checksum does not match.
    """
    checksum_bytes = stream.read(4)
    if not checksum_bytes:
        return None
    if len(checksum_bytes) != 4:
        raise TruncatedRecordError("unexpected end of file while reading checksum")
    (checksum,) = struct.unpack("<I", checksum_bytes)
    sizes = _read_exact(stream, _SIZES.size, "key and value sizes")
    key_size, value_size = _SIZES.unpack(sizes)
    payload = _read_exact(stream, key_size + value_size, "key and value")
    if compute_checksum(sizes + payload) != checksum:
        raise BadChecksumError()
    return KVRecord(
        checksum=checksum,
        key_size=key_size,
        value_size=value_size,
        key=payload[:key_size],
        value=payload[key_size:],
    )