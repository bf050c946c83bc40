import pytest

from lsmkv.kv_record import KVRecord
from lsmkv.minheap import MergeHeap, MinHeapRecord


def _record(key: bytes, value: bytes, path: str) -> MinHeapRecord:
    return MinHeapRecord(KVRecord(0, len(key), len(value), key, value), path)


SOURCE_RECORDS = [
    (b"apple", b"val-1", "segment-000001"),
    (b"apple", b"val-2", "segment-000002"),
    (b"apple", b"val-3", "segment-000003"),
    (b"banana", b"val-4", "segment-000004"),
]


def test_pop_order_matches_source():
    heap = MergeHeap()
    for key, value, path in SOURCE_RECORDS:
        heap.push(_record(key, value, path))
    results = []
    while len(heap) > 0:
        results.append(heap.pop())
    assert [r.record.key for r in results] == [b"apple", b"apple", b"apple", b"banana"]
    assert [r.record.value for r in results] == [b"val-3", b"val-2", b"val-1", b"val-4"]


def test_constructor_accepts_records():
    heap = MergeHeap(_record(k, v, p) for k, v, p in reversed(SOURCE_RECORDS))
    assert len(heap) == 4
    assert heap.pop().record.value == b"val-3"


def test_peek_does_not_remove():
    heap = MergeHeap()
    heap.push(_record(b"b", b"1", "segment-000001"))
    heap.push(_record(b"a", b"2", "segment-000002"))
    assert heap.peek().record.key == b"a"
    assert len(heap) == 2
    assert heap.pop().record.key == b"a"
    assert heap.peek().record.key == b"b"


def test_directories_in_paths_use_base_name():
    heap = MergeHeap()
    heap.push(_record(b"k", b"old", "/data/checkpoints/segment-000005"))
    heap.push(_record(b"k", b"new", "/data/checkpoints/segment-000009"))
    assert heap.pop().record.value == b"new"


def test_empty_heap_raises():
    heap = MergeHeap()
    with pytest.raises(IndexError):
        heap.pop()
    with pytest.raises(IndexError):
        heap.peek()