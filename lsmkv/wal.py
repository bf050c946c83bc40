"""The write-ahead log: append-only, checksummed, fsynced records."""

from __future__ import annotations

import logging
import os
import struct
import threading
from typing import BinaryIO

from .errors import BadChecksumError, TruncatedRecordError
from .log_record import LOG_HEADER_SIZE, LogRecord, compute_checksum

logger = logging.getLogger(__name__)

_HEADER = struct.Struct("<IQII")


def create_log_record(sequence_num: int, key: bytes, value: bytes) -> LogRecord:
    """Build a log record with its checksum filled in."""
    record = LogRecord(
        checksum=0,
        sequence_num=sequence_num,
        key_size=len(key),
        value_size=len(value),
        key=bytes(key),
        value=bytes(value),
    )
    record.checksum = record.compute_checksum_for_record()
    return record


def read_log_record(stream: BinaryIO) -> LogRecord | None:
    """Read the next log record; None at the end of the log.

    Raises TruncatedRecordError for a torn record and BadChecksumError
    when the stored checksum does not match.
    """
    header = stream.read(LOG_HEADER_SIZE)
    if not header:
        return None
    if len(header) != LOG_HEADER_SIZE:
        raise TruncatedRecordError("unexpected end of file while reading WAL header")
    checksum, sequence_num, key_size, value_size = _HEADER.unpack(header)
    payload_size = key_size + value_size
    payload = stream.read(payload_size) if payload_size else b""
    if payload_size and not payload:
        # A header with no payload at all after it is read as the end of the log.
        return None
    if len(payload) != payload_size:
        raise TruncatedRecordError("unexpected end of file while reading WAL payload")
    if compute_checksum(header[4:] + payload) != checksum:
        logger.error("checksum mismatch while reading WAL record")
        raise BadChecksumError()
    return LogRecord(
        checksum=checksum,
        sequence_num=sequence_num,
        key_size=key_size,
        value_size=value_size,
        key=payload[:key_size],
        value=payload[key_size:],
    )


class WAL:
    """An append-only log over one active segment file, safe across threads."""

    def __init__(
        self,
        directory: str,
        active_file: BinaryIO,
        segment_size: int,
        last_sequence_num: int = 0,
    ) -> None:
        self.directory = directory
        self.active_file = active_file
        self.segment_size = segment_size
        self.last_sequence_num = last_sequence_num
        self._lock = threading.Lock()

    def append(self, key: bytes, value: bytes) -> bool:
        """Write and fsync a record; True when the log is due for a checkpoint."""
        with self._lock:
            self.last_sequence_num += 1
            record = create_log_record(self.last_sequence_num, key, value)
            self.active_file.write(record.serialize())
            self.active_file.flush()
            os.fsync(self.active_file.fileno())
            size = os.fstat(self.active_file.fileno()).st_size
            if size >= self.segment_size:
                logger.info("WAL is ready to be checkpointed")
                return True
            return False

    def switch_file(self, new_file: BinaryIO) -> None:
        """Close the active file and continue in a new one from sequence 0."""
        with self._lock:
            self.active_file.close()
            self.active_file = new_file
            self.last_sequence_num = 0

    def close(self) -> None:
        """Close the active file."""
        with self._lock:
            self.active_file.close()