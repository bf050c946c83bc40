import pytest

from lsmkv import naming


def test_pinned_names():
    assert naming.wal_file_name(7) == "wal-000007"
    assert naming.segment_file_name(42) == "segment-000042"
    assert naming.manifest_file_name(3) == "MANIFEST-000003"


@pytest.mark.parametrize("segment_id", [0, 1, 999999, 1000000, 123456789])
def test_round_trips(segment_id):
    assert naming.segment_id_from_wal_file_name(naming.wal_file_name(segment_id)) == segment_id
    assert (
        naming.segment_id_from_segment_path(
            "/some/dir/" + naming.segment_file_name(segment_id)
        )
        == segment_id
    )
    assert (
        naming.segment_id_from_index_path(
            "/some/dir/" + naming.sparse_index_file_name(segment_id)
        )
        == segment_id
    )
    assert (
        naming.segment_id_from_manifest_file_name(naming.manifest_file_name(segment_id))
        == segment_id
    )


def test_temp_names_are_not_parsable_as_final_names():
    temp_segment = naming.temp_segment_file_name(5)
    temp_index = naming.temp_sparse_index_file_name(5)
    assert temp_segment.startswith(naming.SEGMENT_FILE_PREFIX)
    assert temp_index.startswith(naming.SPARSE_INDEX_FILE_PREFIX)
    with pytest.raises(ValueError):
        naming.segment_id_from_segment_path(temp_segment)
    with pytest.raises(ValueError):
        naming.segment_id_from_index_path(temp_index)


@pytest.mark.parametrize("name", ["wal-abc", "wal--1", "wal-+5", "wal- 5", "wal-", "wal-1_0"])
def test_bad_wal_names_raise(name):
    with pytest.raises(ValueError):
        naming.segment_id_from_wal_file_name(name)


def test_out_of_range_id_raises():
    with pytest.raises(ValueError):
        naming.segment_id_from_wal_file_name("wal-" + str(1 << 64))


def test_sort_wal_files_orders_numerically_and_puts_bad_names_last():
    names = [naming.wal_file_name(10), "wal-bad", naming.wal_file_name(2), naming.wal_file_name(7)]
    assert naming.sort_wal_files(names) == [
        naming.wal_file_name(2),
        naming.wal_file_name(7),
        naming.wal_file_name(10),
        "wal-bad",
    ]


def test_list_wal_files_filters_by_prefix(tmp_path):
    for name in [naming.wal_file_name(2), naming.wal_file_name(1), naming.segment_file_name(1), "other"]:
        (tmp_path / name).write_bytes(b"")
    assert naming.list_wal_files(tmp_path) == [naming.wal_file_name(1), naming.wal_file_name(2)]


def test_list_wal_files_missing_directory(tmp_path):
    with pytest.raises(FileNotFoundError):
        naming.list_wal_files(tmp_path / "missing")


def test_highest_segment_id():
    names = [naming.wal_file_name(3), "wal-bad", naming.wal_file_name(10), naming.wal_file_name(4)]
    assert naming.highest_segment_id(names) == 10
    assert naming.highest_segment_id([]) == 0
    assert naming.highest_segment_id(["wal-bad"]) == 0