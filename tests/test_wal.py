import io

import pytest

from lsmkv.errors import BadChecksumError, TruncatedRecordError
from lsmkv.log_record import compute_checksum
from lsmkv.wal import WAL, create_log_record, read_log_record


@pytest.fixture
def wal_path(tmp_path):
    return tmp_path / "wal-000001"


def _open_wal(path, segment_size=1 << 20, last_sequence_num=0):
    return WAL(str(path.parent), open(path, "a+b"), segment_size, last_sequence_num)


def _read_all(path):
    records = []
    with open(path, "rb") as stream:
        while (record := read_log_record(stream)) is not None:
            records.append(record)
    return records


def test_create_log_record_checksum():
    record = create_log_record(5, b"key", b"value")
    assert record.sequence_num == 5
    assert (record.key_size, record.value_size) == (3, 5)
    assert record.checksum == compute_checksum(record.serialize()[4:])


def test_append_and_read_back(wal_path):
    wal = _open_wal(wal_path)
    pairs = [(f"key-{i}".encode(), f"value-{i}".encode()) for i in range(5)]
    for key, value in pairs:
        assert wal.append(key, value) is False
    assert wal.last_sequence_num == 5
    wal.close()

    records = _read_all(wal_path)
    assert [(r.key, r.value) for r in records] == pairs
    assert [r.sequence_num for r in records] == [1, 2, 3, 4, 5]


def test_append_continues_sequence(wal_path):
    wal = _open_wal(wal_path, last_sequence_num=41)
    wal.append(b"k", b"v")
    wal.close()
    assert [r.sequence_num for r in _read_all(wal_path)] == [42]


def test_append_signals_checkpoint_when_size_reached(wal_path):
    record_size = create_log_record(1, b"key", b"value").size()
    wal = _open_wal(wal_path, segment_size=2 * record_size)
    assert wal.append(b"key", b"value") is False
    assert wal.append(b"key", b"value") is True
    assert wal.append(b"key", b"value") is True
    wal.close()


def test_switch_file_resets_sequence(tmp_path, wal_path):
    wal = _open_wal(wal_path)
    wal.append(b"a", b"1")
    old_file = wal.active_file
    new_path = tmp_path / "wal-000002"
    wal.switch_file(open(new_path, "a+b"))
    assert old_file.closed
    assert wal.last_sequence_num == 0
    wal.append(b"b", b"2")
    wal.close()
    assert [(r.key, r.sequence_num) for r in _read_all(new_path)] == [(b"b", 1)]
    assert [r.key for r in _read_all(wal_path)] == [b"a"]


def test_close_closes_active_file(wal_path):
    wal = _open_wal(wal_path)
    wal.close()
    assert wal.active_file.closed


def test_read_empty_stream_returns_none():
    assert read_log_record(io.BytesIO(b"")) is None


def test_read_detects_bad_checksum():
    data = bytearray(create_log_record(1, b"key", b"value").serialize())
    data[-1] ^= 0xFF
    with pytest.raises(BadChecksumError):
        read_log_record(io.BytesIO(bytes(data)))


@pytest.mark.parametrize("cut", [1, 19, 22])
def test_read_detects_torn_record(cut):
    data = create_log_record(1, b"key", b"value").serialize()
    with pytest.raises(TruncatedRecordError):
        read_log_record(io.BytesIO(data[:cut]))


def test_read_round_trip_empty_key_and_value():
    data = create_log_record(9, b"", b"").serialize()
    record = read_log_record(io.BytesIO(data))
    assert (record.key, record.value, record.sequence_num) == (b"", b"", 9)