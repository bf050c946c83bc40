"""File-name conventions, reserved keys and directory layout of a store."""

from __future__ import annotations

import os
from collections.abc import Iterable

CHECKPOINT_DIR = "checkpoints"
LOGS_DIR = "logs"
CHECKPOINT_FILE = "CHECKPOINT"
CURRENT_FILE = "CURRENT"
WAL_FILE_PREFIX = "wal-"
SEGMENT_FILE_PREFIX = "segment-"
MANIFEST_FILE_PREFIX = "MANIFEST-"
SPARSE_INDEX_FILE_PREFIX = "index-"
SEGMENT_THRESHOLD_L0 = 4

TOMBSTONE = b"__TOMBSTONE__"
CHECKPOINT = b"__CHECKPOINT__"

_MAX_UINT64 = (1 << 64) - 1


def _parse_uint(text: str) -> int:
    if not (text.isascii() and text.isdigit()):
        raise ValueError(f"invalid segment id: {text!r}")
    value = int(text)
    if value > _MAX_UINT64:
        raise ValueError(f"segment id out of range: {text!r}")
    return value


def wal_file_name(segment_id: int) -> str:
    """Name of the WAL file for a segment."""
    return f"{WAL_FILE_PREFIX}{segment_id:06d}"


def segment_file_name(segment_id: int) -> str:
    """Name of the segment (SSTable) file for a segment."""
    return f"{SEGMENT_FILE_PREFIX}{segment_id:06d}"


def sparse_index_file_name(segment_id: int) -> str:
    """Name of the sparse index file for a segment."""
    return f"{SPARSE_INDEX_FILE_PREFIX}{segment_id:06d}"


def manifest_file_name(segment_id: int) -> str:
    """Name of the manifest file written at a segment id."""
    return f"{MANIFEST_FILE_PREFIX}{segment_id:06d}"


def temp_segment_file_name(segment_id: int) -> str:
    """Name of a segment file while compaction is still writing it."""
    return f"{SEGMENT_FILE_PREFIX}tmp-{segment_id:06d}"


def temp_sparse_index_file_name(segment_id: int) -> str:
    """Name of a sparse index file while compaction is still writing it."""
    return f"{SPARSE_INDEX_FILE_PREFIX}tmp-{segment_id:06d}"


def segment_id_from_wal_file_name(name: str) -> int:
    """Parse the segment id out of a WAL file name; raises ValueError."""
    return _parse_uint(name.removeprefix(WAL_FILE_PREFIX))


def segment_id_from_segment_path(path: str) -> int:
    """Parse the segment id out of a segment file path; raises ValueError."""
    return _parse_uint(os.path.basename(path).removeprefix(SEGMENT_FILE_PREFIX))


def segment_id_from_index_path(path: str) -> int:
    """Parse the segment id out of a sparse index file path; raises ValueError."""
    return _parse_uint(os.path.basename(path).removeprefix(SPARSE_INDEX_FILE_PREFIX))


def segment_id_from_manifest_file_name(name: str) -> int:
    """Parse the segment id out of a manifest file name; raises ValueError."""
    return _parse_uint(name.removeprefix(MANIFEST_FILE_PREFIX))


def sort_wal_files(names: Iterable[str]) -> list[str]:
    """Sort WAL file names by segment id; badly named files go last."""

    def key(name: str) -> tuple[int, int]:
        try:
            return (0, segment_id_from_wal_file_name(name))
        except ValueError:
            return (1, 0)

    return sorted(names, key=key)


def list_wal_files(directory: str | os.PathLike[str]) -> list[str]:
    """Names of the WAL files in a directory, in name order."""
    return sorted(name for name in os.listdir(directory) if name.startswith(WAL_FILE_PREFIX))


def highest_segment_id(names: Iterable[str]) -> int:
    """Highest segment id among WAL file names, skipping bad names; 0 if none."""
    highest = 0
    for name in names:
        try:
            highest = max(highest, _parse_uint(name.removeprefix(WAL_FILE_PREFIX)))
        except ValueError:
            continue
    return highest