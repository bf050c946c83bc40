import os
import struct
from dataclasses import dataclass, field

import pytest

from lsmkv.checkpoint import (
    clean_up_wal_files,
    do_checkpoint,
    flush_manifest_file,
    roll_to_new_segment,
    update_current_file,
)
from lsmkv.checkpoint_discovery import last_checkpoint_from_wal_file
from lsmkv.config import Configuration
from lsmkv.kv_record import read_kv_record
from lsmkv.log_record import compute_checksum
from lsmkv.mem_state import MemState
from lsmkv.naming import (
    CHECKPOINT_DIR,
    CURRENT_FILE,
    LOGS_DIR,
    manifest_file_name,
    segment_file_name,
    sparse_index_file_name,
    wal_file_name,
)
from lsmkv.recovery import create_directories, recover_from_current_file
from lsmkv.segment_metadata import SegmentMetadata, read_segment_metadata
from lsmkv.sparse_index import read_sparse_index_record
from lsmkv.wal import WAL


@dataclass
class _Store:
    config: Configuration
    wal: WAL
    mem_state: MemState
    active_segment_id: int = 1
    levels: list = field(default_factory=list)


@pytest.fixture
def store(tmp_path):
    config = Configuration().with_base_dir(str(tmp_path / "db"))
    create_directories(config)
    wal_dir = os.path.join(config.base_dir, LOGS_DIR)
    active = open(os.path.join(wal_dir, wal_file_name(1)), "ab")
    s = _Store(config, WAL(wal_dir, active, config.checkpoint_size), MemState())
    yield s
    s.wal.active_file.close()


def _cp_dir(store):
    return os.path.join(store.config.base_dir, CHECKPOINT_DIR)


def _wal_dir(store):
    return os.path.join(store.config.base_dir, LOGS_DIR)


def test_roll_to_new_segment(store):
    old = store.wal.active_file
    store.wal.append(b"k", b"v")
    roll_to_new_segment(store)
    assert old.closed
    assert store.active_segment_id == 2
    assert store.wal.last_sequence_num == 0
    assert os.path.basename(store.wal.active_file.name) == wal_file_name(2)
    assert os.path.exists(os.path.join(_wal_dir(store), wal_file_name(2)))


def test_do_checkpoint(store):
    pairs = {b"b": b"2", b"a": b"1", b"c": b"3"}
    for key, value in pairs.items():
        store.wal.append(key, value)
        store.mem_state.put(key, value)

    do_checkpoint(store)

    segment_path = os.path.join(_cp_dir(store), segment_file_name(1))
    with open(segment_path, "rb") as f:
        written = []
        while (record := read_kv_record(f)) is not None:
            written.append((record.key, record.value))
    assert written == sorted(pairs.items())

    assert store.active_segment_id == 2
    assert len(store.levels[0]) == 1
    segment = store.levels[0][0]
    assert (segment.id, segment.level, segment.min_key, segment.max_key) == (1, 0, b"a", b"c")
    assert segment.file_path == segment_path

    assert [e.key for e in store.mem_state.sparse_index(1)] == [b"a", b"c"]
    with open(os.path.join(_cp_dir(store), sparse_index_file_name(1)), "rb") as f:
        keys = []
        while (entry := read_sparse_index_record(f)) is not None:
            keys.append(entry.key)
    assert keys == [b"a", b"c"]

    levels, manifest_id = recover_from_current_file(os.path.join(_cp_dir(store), CURRENT_FILE))
    assert manifest_id == 1
    assert levels == store.levels

    assert not os.path.exists(os.path.join(_wal_dir(store), wal_file_name(1)))
    new_wal = os.path.join(_wal_dir(store), wal_file_name(2))
    assert last_checkpoint_from_wal_file(new_wal) == segment_path


def test_do_checkpoint_empty_memtable(store):
    with pytest.raises(ValueError):
        do_checkpoint(store)


def test_clean_up_wal_files(store):
    for segment_id in (2, 3):
        open(os.path.join(_wal_dir(store), wal_file_name(segment_id)), "wb").close()
    open(os.path.join(_wal_dir(store), "wal-bad"), "wb").close()
    clean_up_wal_files(store, 2)
    assert sorted(os.listdir(_wal_dir(store))) == sorted([wal_file_name(3), "wal-bad"])


def test_update_current_file(store):
    manifest_path = os.path.join(_cp_dir(store), manifest_file_name(3))
    update_current_file(store, manifest_path)
    assert os.listdir(_cp_dir(store)) == [CURRENT_FILE]
    with open(os.path.join(_cp_dir(store), CURRENT_FILE), "rb") as f:
        data = f.read()
    assert data[4:] == manifest_path.encode()
    assert struct.unpack("<I", data[:4])[0] == compute_checksum(data[4:])


def test_flush_manifest_file(store):
    first = SegmentMetadata(id=1, level=0, min_key=b"a", max_key=b"b", file_path="segment1")
    second = SegmentMetadata(id=2, level=1, min_key=b"c", max_key=b"d", file_path="segment2")
    store.levels = [[first], [second]]

    path = flush_manifest_file(store, 5)
    path = flush_manifest_file(store, 5)
    assert path == os.path.join(_cp_dir(store), manifest_file_name(5))

    with open(path, "rb") as f:
        assert read_segment_metadata(f) == first
        assert read_segment_metadata(f) == second
        assert read_segment_metadata(f) is None