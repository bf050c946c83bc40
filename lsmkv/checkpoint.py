"""Checkpointing: flushing the memtable to a segment and recording it."""

from __future__ import annotations

import logging
import os
import struct
import time

from .log_record import compute_checksum
from .naming import (
    CHECKPOINT,
    CHECKPOINT_DIR,
    CURRENT_FILE,
    LOGS_DIR,
    list_wal_files,
    manifest_file_name,
    segment_file_name,
    segment_id_from_wal_file_name,
    sparse_index_file_name,
    wal_file_name,
)
from .segment_metadata import SegmentMetadata

logger = logging.getLogger(__name__)


def _checkpoint_dir(store) -> str:
    return os.path.join(store.config.base_dir, CHECKPOINT_DIR)


def _wal_dir(store) -> str:
    return os.path.join(store.config.base_dir, LOGS_DIR)


def roll_to_new_segment(store) -> None:
    """Switch the store's WAL to a new file for the next segment id."""
    segment_id = store.active_segment_id + 1
    new_file = open(os.path.join(_wal_dir(store), wal_file_name(segment_id)), "ab")
    try:
        store.wal.switch_file(new_file)
    except BaseException:
        new_file.close()
        raise
    store.active_segment_id = segment_id


def do_checkpoint(store) -> None:
    """Flush the memtable to a new level-0 segment and make it durable.

    Rolls the WAL, records a CHECKPOINT entry, writes the segment, its
    sparse index and a manifest, points CURRENT at the manifest and removes
    the WAL files the segment now covers. The caller holds the store's lock.
    """
    os.makedirs(_checkpoint_dir(store), exist_ok=True)
    segment_id = store.active_segment_id
    roll_to_new_segment(store)

    segment_path = os.path.join(_checkpoint_dir(store), segment_file_name(segment_id))
    store.wal.append(CHECKPOINT, segment_path.encode("utf-8", "surrogateescape"))

    min_key, max_key = store.mem_state.flush(segment_path)
    if not store.levels:
        store.levels = [[]]
    store.levels[0].append(
        SegmentMetadata(
            id=segment_id,
            level=0,
            min_key=min_key,
            max_key=max_key,
            file_path=segment_path,
        )
    )

    index_path = os.path.join(_checkpoint_dir(store), sparse_index_file_name(segment_id))
    store.mem_state.flush_sparse_index(index_path)

    manifest_path = flush_manifest_file(store, segment_id)
    update_current_file(store, manifest_path)
    clean_up_wal_files(store, segment_id)


def clean_up_wal_files(store, last_segment_id: int) -> None:
    """Remove WAL files whose segment id is at most the given one.

    Badly named files and files that cannot be removed are left in place.
    """
    wal_dir = _wal_dir(store)
    for name in list_wal_files(wal_dir):
        try:
            segment_id = segment_id_from_wal_file_name(name)
        except ValueError as exc:
            logger.warning("skipping WAL file %s: %s", name, exc)
            continue
        if segment_id > last_segment_id:
            continue
        try:
            os.remove(os.path.join(wal_dir, name))
        except OSError as exc:
            logger.warning("cannot remove WAL file %s: %s", name, exc)
        else:
            logger.info("removed WAL file %s", name)


def update_current_file(store, manifest_path: str) -> None:
    """Atomically point the CURRENT file at a manifest."""
    checkpoint_dir = _checkpoint_dir(store)
    temp_path = os.path.join(checkpoint_dir, f"{CURRENT_FILE}.{int(time.time())}")
    path_bytes = manifest_path.encode("utf-8", "surrogateescape")
    with open(temp_path, "wb") as temp_file:
        temp_file.write(struct.pack("<I", compute_checksum(path_bytes)) + path_bytes)
        temp_file.flush()
        os.fsync(temp_file.fileno())
    os.replace(temp_path, os.path.join(checkpoint_dir, CURRENT_FILE))


def flush_manifest_file(store, segment_id: int) -> str:
    """Write the store's levels to the manifest for a segment id; returns its path."""
    path = os.path.join(_checkpoint_dir(store), manifest_file_name(segment_id))
    with open(path, "wb") as manifest:
        for level in store.levels:
            for segment in level:
                manifest.write(segment.to_bytes())
                manifest.flush()
                os.fsync(manifest.fileno())
    return path