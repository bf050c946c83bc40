"""Locating the last checkpoint and rebuilding state from checkpoint files."""

from __future__ import annotations

import logging
import os
import struct

from .errors import (
    BadChecksumError,
    CheckpointCorruptedError,
    KVStoreError,
    SparseIndexCorruptedError,
    TruncatedRecordError,
)
from .kv_record import read_kv_record
from .log_record import compute_checksum
from .mem_state import MemState
from .naming import (
    CHECKPOINT,
    CHECKPOINT_DIR,
    CHECKPOINT_FILE,
    LOGS_DIR,
    SEGMENT_FILE_PREFIX,
    list_wal_files,
    segment_id_from_index_path,
    segment_id_from_segment_path,
    sort_wal_files,
    sparse_index_file_name,
)
from .sparse_index import read_sparse_index_record
from .wal import read_log_record

logger = logging.getLogger(__name__)


def _decode_path(data: bytes) -> str:
    return data.decode("utf-8", "surrogateescape")


def last_checkpoint(checkpoint_dir: str, wal_dir: str) -> str | None:
    """Path of the last checkpoint, from the CHECKPOINT file or else the WALs."""
    os.makedirs(checkpoint_dir, exist_ok=True)
    os.makedirs(wal_dir, exist_ok=True)
    try:
        path = last_checkpoint_from_file(checkpoint_dir)
    except (KVStoreError, OSError) as exc:
        logger.warning("cannot use checkpoint file: %s", exc)
        path = None
    if path:
        return path
    try:
        path = last_checkpoint_from_wal_files(wal_dir)
    except OSError as exc:
        logger.warning("cannot scan WAL files for a checkpoint: %s", exc)
        path = None
    return path or None


def last_checkpoint_from_file(checkpoint_dir: str) -> str | None:
    """Checkpoint path recorded in the CHECKPOINT file; None if there is no file."""
    path = os.path.join(checkpoint_dir, CHECKPOINT_FILE)
    try:
        with open(path, "rb") as checkpoint_file:
            data = checkpoint_file.read()
    except FileNotFoundError:
        return None
    if len(data) < 4:
        raise CheckpointCorruptedError()
    (checksum,) = struct.unpack("<I", data[:4])
    if checksum != compute_checksum(data[4:]):
        raise BadChecksumError()
    return _decode_path(data[4:])


def last_checkpoint_from_wal_file(wal_path: str) -> str | None:
    """Value of the last CHECKPOINT record in a WAL file; None if it has none."""
    last: str | None = None
    with open(wal_path, "rb") as wal_file:
        while True:
            try:
                record = read_log_record(wal_file)
            except KVStoreError as exc:
                logger.warning("stopped reading %s: %s", wal_path, exc)
                break
            if record is None:
                break
            if record.key == CHECKPOINT:
                logger.info("found CHECKPOINT record in %s", wal_path)
                last = _decode_path(record.value)
    return last


def last_checkpoint_from_wal_files(wal_dir: str) -> str | None:
    """Last checkpoint recorded in the newest WAL file that records one."""
    for name in reversed(sort_wal_files(list_wal_files(wal_dir))):
        try:
            path = last_checkpoint_from_wal_file(os.path.join(wal_dir, name))
        except OSError as exc:
            logger.warning("skipping WAL file %s: %s", name, exc)
            continue
        if path:
            return path
    return None


def list_segment_files(directory: str) -> list[str]:
    """Names of the segment files in a directory, in name order."""
    return sorted(
        name for name in os.listdir(directory) if name.startswith(SEGMENT_FILE_PREFIX)
    )


def recover_sparse_index(directory: str, mem_state: MemState) -> int:
    """Load the sparse index of the last checkpoint; returns its segment id (0 if none).

    A damaged sparse index file is truncated to its last good record before
    SparseIndexCorruptedError is raised.
    """
    checkpoint_path = last_checkpoint(
        os.path.join(directory, CHECKPOINT_DIR), os.path.join(directory, LOGS_DIR)
    )
    if not checkpoint_path:
        return 0
    try:
        segment_id = segment_id_from_segment_path(checkpoint_path)
    except ValueError as exc:
        raise CheckpointCorruptedError() from exc
    index_path = os.path.join(directory, CHECKPOINT_DIR, sparse_index_file_name(segment_id))
    try:
        recover_from_sparse_index_file(index_path, mem_state)
    except SparseIndexCorruptedError as exc:
        os.truncate(index_path, exc.offset)
        raise
    return segment_id


def recover_from_sparse_index_file(path: str, mem_state: MemState) -> int:
    """Add every entry of a sparse index file to the mem state.

    Returns the offset reached; raises SparseIndexCorruptedError carrying the
    last good offset when a record is damaged.
    """
    segment_id = segment_id_from_index_path(path)
    with open(path, "rb") as index_file:
        while True:
            offset = index_file.tell()
            try:
                record = read_sparse_index_record(index_file)
            except (BadChecksumError, TruncatedRecordError) as exc:
                raise SparseIndexCorruptedError(offset=offset) from exc
            if record is None:
                return offset
            mem_state.add_sparse_index_entry(segment_id, record.key, record.offset)


def recover_from_checkpoint(path: str) -> MemState:
    """Load a segment file into a new mem state, truncating a damaged tail."""
    mem_state = MemState()
    with open(path, "rb") as segment_file:
        while True:
            offset = segment_file.tell()
            try:
                record = read_kv_record(segment_file)
            except (BadChecksumError, TruncatedRecordError) as exc:
                logger.warning("truncating %s at %d: %s", path, offset, exc)
                os.truncate(path, offset)
                break
            if record is None:
                break
            mem_state.put(record.key, record.value)
    return mem_state