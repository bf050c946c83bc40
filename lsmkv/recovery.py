"""Rebuilding a store's state from the CURRENT file, manifests, indexes and WALs."""

from __future__ import annotations

import logging
import os
import struct
from collections.abc import Iterable
from typing import BinaryIO

from .config import Configuration
from .errors import (
    BadChecksumError,
    CheckpointCorruptedError,
    RecoveryError,
    TruncatedRecordError,
)
from .log_record import compute_checksum
from .mem_state import MemState
from .naming import (
    CHECKPOINT_DIR,
    LOGS_DIR,
    list_wal_files,
    segment_id_from_manifest_file_name,
    segment_id_from_wal_file_name,
    sort_wal_files,
    wal_file_name,
)
from .segment_metadata import SegmentMetadata, read_segment_metadata
from .sparse_index import read_sparse_index_record
from .wal import WAL, read_log_record

logger = logging.getLogger(__name__)


def create_directories(config: Configuration) -> None:
    """Create the base, logs and checkpoints directories if they are missing."""
    base = config.base_dir
    for path in (base, os.path.join(base, LOGS_DIR), os.path.join(base, CHECKPOINT_DIR)):
        os.makedirs(path, exist_ok=True)


def recover_from_current_file(path: str) -> tuple[list[list[SegmentMetadata]], int]:
    """Read the level layout named by a CURRENT file.

    Returns the levels (each sorted by segment id) and the segment id of the
    manifest. Raises FileNotFoundError when there is no CURRENT file,
    CheckpointCorruptedError when it is too short and BadChecksumError when
    its checksum does not match.
    """
    with open(path, "rb") as current:
        content = current.read()
    if len(content) < 4:
        raise CheckpointCorruptedError("CURRENT file is too short")
    (checksum,) = struct.unpack_from("<I", content)
    if checksum != compute_checksum(content[4:]):
        raise BadChecksumError()
    manifest_path = content[4:].decode("utf-8", "surrogateescape")
    segment_id = segment_id_from_manifest_file_name(os.path.basename(manifest_path))

    segments: list[SegmentMetadata] = []
    with open(manifest_path, "rb") as manifest:
        while (segment := read_segment_metadata(manifest)) is not None:
            segments.append(segment)
    segments.sort(key=lambda segment: (segment.level, segment.id))

    highest_level = segments[-1].level if segments else 0
    levels: list[list[SegmentMetadata]] = [[] for _ in range(highest_level + 1)]
    for segment in segments:
        levels[segment.level].append(segment)
    return levels, segment_id


def recover_mem_state_from_levels(
    index_dir: str,
    levels: Iterable[Iterable[SegmentMetadata]],
    mem_state: MemState,
) -> None:
    """Load the sparse index of every segment into the mem state.

    A damaged index of the last segment of a level is truncated to its last
    good record; damage anywhere else raises RecoveryError.
    """
    for level in levels:
        level = list(level)
        for idx, segment in enumerate(level):
            path = os.path.join(index_dir, segment.sparse_index_file_name())
            is_last = idx == len(level) - 1
            truncate_at: int | None = None
            with open(path, "rb") as index_file:
                while True:
                    offset = index_file.tell()
                    try:
                        record = read_sparse_index_record(index_file)
                    except (BadChecksumError, TruncatedRecordError) as exc:
                        if not is_last:
                            raise RecoveryError(
                                f"cannot recover damaged sparse index {path}: {exc}"
                            ) from exc
                        logger.warning("truncating sparse index %s at %d: %s", path, offset, exc)
                        truncate_at = offset
                        break
                    if record is None:
                        break
                    mem_state.add_sparse_index_entry(segment.id, record.key, record.offset)
            if truncate_at is not None:
                os.truncate(path, truncate_at)


def recover_from_wals(
    last_segment_id: int, wal_dir: str, mem_state: MemState, checkpoint_size: int
) -> WAL:
    """Replay every WAL newer than the last segment id into the mem state.

    The newest WAL stays open as the active log. When no WAL is left open,
    a log for the segment after the last one is opened fresh.
    """
    os.makedirs(wal_dir, exist_ok=True)
    names = sort_wal_files(list_wal_files(wal_dir))
    active: BinaryIO | None = None
    last_sequence_num = 0
    for idx, name in enumerate(names):
        try:
            segment_id = segment_id_from_wal_file_name(name)
        except ValueError as exc:
            logger.warning("skipping badly named WAL file %s: %s", name, exc)
            continue
        if segment_id <= last_segment_id:
            continue
        logger.info("recovering from WAL file %s", name)
        is_last = idx == len(names) - 1
        wal_file = open(os.path.join(wal_dir, name), "a+b")
        try:
            sequence_num = recover_from_wal_file(wal_file, mem_state, is_last)
        except BaseException:
            wal_file.close()
            raise
        if is_last:
            active = wal_file
            last_sequence_num = sequence_num
        else:
            wal_file.close()

    if active is None:
        logger.info("no WAL file left open, starting a new one")
        active = open(os.path.join(wal_dir, wal_file_name(last_segment_id + 1)), "a+b")
        last_sequence_num = 0
    return WAL(wal_dir, active, checkpoint_size, last_sequence_num)


def recover_from_wal_file(file: BinaryIO, mem_state: MemState, is_last: bool) -> int:
    """Replay one WAL file into the mem state and return its last sequence number.

    A torn record ends the replay of the last WAL, which is then truncated
    there and positioned for further appends; in any other WAL it raises
    RecoveryError.
    """
    name = getattr(file, "name", "<wal>")
    file.seek(0)
    last_sequence_num = 0
    while True:
        offset = file.tell()
        try:
            record = read_log_record(file)
        except (BadChecksumError, TruncatedRecordError) as exc:
            if not is_last:
                raise RecoveryError(f"damaged record in intermediate WAL file {name}") from exc
            logger.warning("torn record in %s at %d: %s", name, offset, exc)
            good_offset = offset
            break
        if record is None:
            logger.info("completed recovery of WAL file %s", name)
            good_offset = offset
            break
        last_sequence_num = record.sequence_num
        mem_state.put(record.key, record.value)

    if is_last:
        logger.info("truncating %s to %d", name, good_offset)
        file.truncate(good_offset)
        file.seek(good_offset)
    return last_sequence_num