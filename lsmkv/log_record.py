"""WAL record format: checksum, sequence number, key and value sizes, payload."""

from __future__ import annotations

import struct
import zlib
from dataclasses import dataclass

from .errors import TruncatedRecordError

_HEADER = struct.Struct("<IQII")
LOG_HEADER_SIZE = _HEADER.size  # 20 bytes


def compute_checksum(data: bytes) -> int:
    """CRC-32 (IEEE) of the given bytes."""
    return zlib.crc32(data) & 0xFFFFFFFF


@dataclass
class LogRecord:
    """One entry of the write-ahead log."""

    checksum: int
    sequence_num: int
    key_size: int
    value_size: int
    key: bytes
    value: bytes

    def size(self) -> int:
        """Encoded size in bytes according to the header sizes."""
        return LOG_HEADER_SIZE + self.key_size + self.value_size

    def serialize(self) -> bytes:
        """Encode as header (little-endian) followed by key and value."""
        return (
            _HEADER.pack(self.checksum, self.sequence_num, self.key_size, self.value_size)
            + bytes(self.key)
            + bytes(self.value)
        )

    def compute_checksum_for_record(self) -> int:
        """Checksum of every encoded field except the checksum itself."""
        return compute_checksum(self.serialize()[4:])


def deserialize_log_record(data: bytes) -> LogRecord:
    """Decode a log record; raises TruncatedRecordError if data is too short."""
    if len(data) < LOG_HEADER_SIZE:
        raise TruncatedRecordError("log record is too short")
    checksum, sequence_num, key_size, value_size = _HEADER.unpack_from(data)
    expected = LOG_HEADER_SIZE + key_size + value_size
    if len(data) < expected:
        raise TruncatedRecordError(
            f"log record data too short: expected {expected} bytes, got {len(data)}"
        )
    key_end = LOG_HEADER_SIZE + key_size
    return LogRecord(
        checksum=checksum,
        sequence_num=sequence_num,
        key_size=key_size,
        value_size=value_size,
        key=bytes(data[LOG_HEADER_SIZE:key_end]),
        value=bytes(data[key_end:key_end + value_size]),
    )