"""The key-value store: WAL, memtable, leveled segments and background compaction."""

from __future__ import annotations

import bisect
import logging
import os
import shutil
import threading

from .checkpoint import do_checkpoint
from .compaction import do_compaction
from .config import Configuration
from .errors import InvalidKeyOrValueError, KVStoreError
from .kv_record import read_kv_record
from .mem_state import MemState
from .naming import (
    CHECKPOINT,
    CHECKPOINT_DIR,
    CURRENT_FILE,
    LOGS_DIR,
    TOMBSTONE,
    manifest_file_name,
    segment_file_name,
    sparse_index_file_name,
    temp_segment_file_name,
    temp_sparse_index_file_name,
)
from .recovery import (
    create_directories,
    recover_from_current_file,
    recover_from_wals,
    recover_mem_state_from_levels,
)
from .segment_metadata import SegmentMetadata
from .wal import WAL

logger = logging.getLogger(__name__)


def _as_bytes(data: object, what: str) -> bytes:
    if data is None:
        raise InvalidKeyOrValueError(f"invalid {what}")
    if isinstance(data, str):
        return data.encode("utf-8")
    if isinstance(data, (bytes, bytearray, memoryview)):
        return bytes(data)
    raise TypeError(f"{what} must be bytes or str, not {type(data).__name__}")


class KVStore:
    """A durable key-value store backed by a WAL and leveled segment files."""

    def __init__(
        self,
        config: Configuration,
        wal: WAL,
        mem_state: MemState,
        active_segment_id: int,
        levels: list[list[SegmentMetadata]],
    ) -> None:
        self.config = config
        self.wal = wal
        self.mem_state = mem_state
        self.active_segment_id = active_segment_id
        # Outer list index is the level number.
        self.levels = levels
        self.lock = threading.RLock()
        self._shutdown = threading.Event()
        self._compactor: threading.Thread | None = None
        self._closed = False

    # ----- background compaction -----

    def _start_compaction(self) -> None:
        interval_ms = self.config.compaction_interval_ms
        if interval_ms <= 0:
            return
        self._compactor = threading.Thread(
            target=self._compaction_loop,
            args=(interval_ms / 1000.0,),
            name="lsmkv-compaction",
            daemon=True,
        )
        self._compactor.start()

    def _compaction_loop(self, interval: float) -> None:
        while not self._shutdown.wait(interval):
            logger.debug("background check for compaction work")
            try:
                do_compaction(self)
            except Exception:
                logger.exception("error during background compaction")
        logger.info("stopping compaction loop")

    def compact(self) -> list[SegmentMetadata]:
        """Run one compaction now if any level needs it; returns the new segments."""
        return do_compaction(self)

    # ----- segment ids -----

    def current_segment_id(self) -> int:
        """Id of the segment currently being written."""
        with self.lock:
            return self.active_segment_id

    def allocate_segment_id(self) -> int:
        """Reserve and return the next segment id."""
        with self.lock:
            self.active_segment_id += 1
            return self.active_segment_id

    def last_sequence_num(self) -> int:
        """Sequence number of the last record written to the active WAL."""
        return self.wal.last_sequence_num

    # ----- paths -----

    def wal_dir(self) -> str:
        """Directory holding the WAL files."""
        return os.path.join(self.config.base_dir, LOGS_DIR)

    def checkpoint_dir(self) -> str:
        """Directory holding segments, indexes and manifests."""
        return os.path.join(self.config.base_dir, CHECKPOINT_DIR)

    def segment_file_path(self, segment_id: int) -> str:
        """Path of the segment file for an id."""
        return os.path.join(self.checkpoint_dir(), segment_file_name(segment_id))

    def sparse_index_file_path(self, segment_id: int) -> str:
        """Path of the sparse index file for an id."""
        return os.path.join(self.checkpoint_dir(), sparse_index_file_name(segment_id))

    def manifest_file_path(self, segment_id: int) -> str:
        """Path of the manifest file for an id."""
        return os.path.join(self.checkpoint_dir(), manifest_file_name(segment_id))

    def temp_segment_file_path(self, segment_id: int) -> str:
        """Path of a segment file while compaction writes it."""
        return os.path.join(self.checkpoint_dir(), temp_segment_file_name(segment_id))

    def temp_sparse_index_file_path(self, segment_id: int) -> str:
        """Path of a sparse index file while compaction writes it."""
        return os.path.join(self.checkpoint_dir(), temp_sparse_index_file_name(segment_id))

    # ----- reads -----

    def get(self, key: bytes | str) -> bytes | None:
        """Value stored for a key; None if it is missing or deleted."""
        key = _as_bytes(key, "key")
        with self.lock:
            try:
                value: bytes | None = self.mem_state.get(key)
                logger.debug("found key %r in memtable", key)
            except KeyError:
                value = self._search_levels(key)
        if value is None:
            logger.debug("key not found: %r", key)
            return None
        if value == TOMBSTONE:
            logger.debug("key is a tombstone: %r", key)
            return None
        return value

    def _search_levels(self, key: bytes) -> bytes | None:
        value = self._find_in_level_zero(key)
        if value is not None:
            return value
        for number, level in enumerate(self.levels[1:], start=1):
            segment = self._find_segment(level, key)
            if segment is None:
                continue
            logger.debug("key %r may be in level %d, segment %d", key, number, segment.id)
            offset = self.mem_state.find_offset(segment.id, key)
            if offset == -1:
                continue
            value = self._search_segment(segment.file_path, offset, key)
            if value is not None:
                return value
        return None

    def _find_in_level_zero(self, key: bytes) -> bytes | None:
        if not self.levels:
            return None
        for segment in reversed(self.levels[0]):
            offset = self.mem_state.find_offset(segment.id, key)
            if offset == -1:
                continue
            value = self._search_segment(segment.file_path, offset, key)
            if value is not None:
                return value
        return None

    @staticmethod
    def _find_segment(level: list[SegmentMetadata], key: bytes) -> SegmentMetadata | None:
        idx = bisect.bisect_left(level, key, key=lambda segment: segment.max_key or b"")
        if idx < len(level) and (level[idx].min_key or b"") <= key:
            return level[idx]
        return None

    @staticmethod
    def _search_segment(path: str, offset: int, key: bytes) -> bytes | None:
        value: bytes | None = None
        with open(path, "rb") as segment_file:
            segment_file.seek(offset)
            while (record := read_kv_record(segment_file)) is not None:
                if record.key == key:
                    value = record.value
                elif record.key > key:
                    break
        return value

    # ----- writes -----

    def put(self, key: bytes | str, value: bytes | str) -> None:
        """Store a value; reserved keys and values raise InvalidKeyOrValueError."""
        if key is None or value is None:
            raise InvalidKeyOrValueError("invalid key or value")
        key = _as_bytes(key, "key")
        value = _as_bytes(value, "value")
        if key == CHECKPOINT or value == TOMBSTONE:
            raise InvalidKeyOrValueError("invalid key or value")
        self._put(key, value)

    def delete(self, key: bytes | str) -> None:
        """Delete a key by writing a tombstone for it."""
        key = _as_bytes(key, "key")
        if key == CHECKPOINT:
            raise InvalidKeyOrValueError("invalid key")
        self._put(key, TOMBSTONE)

    def _put(self, key: bytes, value: bytes) -> None:
        with self.lock:
            checkpoint_due = self.wal.append(key, value)
            self.mem_state.put(key, value)
            if checkpoint_due:
                do_checkpoint(self)

    # ----- lifecycle -----

    def close(self) -> None:
        """Stop background compaction and close the WAL."""
        if self._closed:
            return
        self._closed = True
        self._shutdown.set()
        if self._compactor is not None:
            self._compactor.join()
        self.wal.close()

    def close_and_clean_up(self) -> None:
        """Close the store and remove everything it stored on disk."""
        self.close()
        self.clean_up_directories()

    def clean_up_directories(self) -> None:
        """Remove the checkpoint, WAL and base directories."""
        for path in (self.checkpoint_dir(), self.wal_dir(), self.config.base_dir):
            if os.path.exists(path):
                shutil.rmtree(path)

    def dump(self) -> None:
        """Print the memtable contents."""
        logger.info("last sequence number: %d", self.last_sequence_num())
        self.mem_state.dump()

    def __enter__(self) -> KVStore:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


def open_store(config: Configuration) -> KVStore:
    """Open or create a store, recovering its state from disk."""
    create_directories(config)
    checkpoint_dir = os.path.join(config.base_dir, CHECKPOINT_DIR)
    try:
        levels, last_segment_id = recover_from_current_file(
            os.path.join(checkpoint_dir, CURRENT_FILE)
        )
    except FileNotFoundError:
        logger.info("no CURRENT file, starting without segments")
        levels, last_segment_id = [], 0
    except (KVStoreError, OSError, ValueError) as exc:
        logger.error("error recovering from CURRENT file: %s", exc)
        levels, last_segment_id = [], 0

    mem_state = MemState()
    recover_mem_state_from_levels(checkpoint_dir, levels, mem_state)
    wal = recover_from_wals(
        last_segment_id,
        os.path.join(config.base_dir, LOGS_DIR),
        mem_state,
        config.checkpoint_size,
    )
    store = KVStore(config, wal, mem_state, last_segment_id + 1, levels)
    store._start_compaction()
    return store