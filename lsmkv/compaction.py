"""Leveled compaction: choosing segments and merging them into the next level."""

from __future__ import annotations

import logging
import os
from contextlib import ExitStack
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, BinaryIO

from .checkpoint import update_current_file
from .kv_record import read_kv_record
from .minheap import MergeHeap, MinHeapRecord
from .naming import SEGMENT_THRESHOLD_L0, TOMBSTONE
from .segment_metadata import SegmentMetadata, write_manifest
from .sparse_index import SparseIndexEntry, sparse_index_bytes

if TYPE_CHECKING:
    from .store import KVStore

logger = logging.getLogger(__name__)

_TEMP_MANIFEST = "MANIFEST.tmp"


@dataclass
class CompactionPlan:
    """Segments of one level to merge, and the next-level segments they overlap."""

    base_segments: list[SegmentMetadata] = field(default_factory=list)
    overlapping_segments: list[SegmentMetadata] = field(default_factory=list)

    def all_segments(self) -> list[SegmentMetadata]:
        """Base segments followed by the overlapping ones."""
        return [*self.base_segments, *self.overlapping_segments]


def needs_compaction(store: KVStore, level: int) -> bool:
    """Whether a level is due for compaction.

    Level 0 is due once it holds enough segments; any level is due once the
    total size of its segment files reaches the configured threshold.
    """
    segments = store.levels[level]
    if level == 0 and len(segments) >= SEGMENT_THRESHOLD_L0:
        return True
    total = 0
    for segment in segments:
        try:
            total += os.stat(segment.file_path).st_size
        except OSError as exc:
            logger.warning("cannot stat segment file %s: %s", segment.file_path, exc)
            return False
    return total >= store.config.segment_file_size_threshold_lx


def compaction_plan(store: KVStore, level: int) -> CompactionPlan:
    """Plan the compaction of a level into the one below it.

    Level 0 is compacted whole; higher levels only their first segment.
    A missing next level is created empty.
    """
    base = list(store.levels[level])
    if level > 0 and base:
        base = base[:1]
    if level + 1 >= len(store.levels):
        store.levels.append([])
    overlapping: list[SegmentMetadata] = []
    seen: set[int] = set()
    for segment in base:
        for candidate in store.levels[level + 1]:
            if candidate.id not in seen and segment.has_overlapping_keys(candidate):
                seen.add(candidate.id)
                overlapping.append(candidate)
    return CompactionPlan(base_segments=base, overlapping_segments=overlapping)


def next_compaction_plan(store: KVStore) -> CompactionPlan | None:
    """The plan for the first level that needs compaction; None if none does."""
    for level in range(len(store.levels)):
        if not needs_compaction(store, level):
            continue
        plan = compaction_plan(store, level)
        if plan.base_segments:
            return plan
    return None


def _sync(file: BinaryIO) -> None:
    file.flush()
    os.fsync(file.fileno())


def _open_outputs(store: KVStore, segment_id: int, stack: ExitStack) -> tuple[BinaryIO, BinaryIO]:
    segment_file = stack.enter_context(open(store.temp_segment_file_path(segment_id), "ab"))
    index_file = stack.enter_context(open(store.temp_sparse_index_file_path(segment_id), "ab"))
    return segment_file, index_file


def perform_merge(store: KVStore, plan: CompactionPlan) -> list[SegmentMetadata]:
    """Merge the planned segments into new temporary segment and index files.

    The newest value of each key is kept and tombstones are dropped. Output
    is split into several segments when it would exceed the size threshold.
    Returns the metadata of the new segments, each carrying its sparse index.
    """
    threshold = store.config.segment_file_size_threshold_lx
    level = plan.base_segments[0].level + 1
    merged: list[SegmentMetadata] = []

    with ExitStack() as stack:
        temp_id = store.allocate_segment_id()
        segment_out, index_out = _open_outputs(store, temp_id, stack)

        heap = MergeHeap()
        sources: dict[str, BinaryIO] = {}
        for segment in plan.all_segments():
            if segment.file_path in sources:
                continue
            source = stack.enter_context(open(segment.file_path, "rb"))
            sources[segment.file_path] = source
            record = read_kv_record(source)
            if record is not None:
                heap.push(MinHeapRecord(record, segment.file_path))

        offset = 0
        entries: list[SparseIndexEntry] = []
        prev_key: bytes | None = None
        min_key: bytes | None = None

        while heap:
            item = heap.pop()
            record = item.record
            if min_key is None:
                min_key = record.key
            if prev_key is None or record.key != prev_key:
                if record.value != TOMBSTONE:
                    if offset > 0 and offset + record.size() > threshold:
                        _sync(segment_out)
                        _sync(index_out)
                        merged.append(
                            SegmentMetadata(
                                id=temp_id,
                                level=level,
                                min_key=min_key,
                                max_key=prev_key,
                                file_path=store.segment_file_path(temp_id),
                                sparse_index=entries,
                            )
                        )
                        temp_id = store.allocate_segment_id()
                        segment_out, index_out = _open_outputs(store, temp_id, stack)
                        offset = 0
                        entries = []
                        min_key = record.key
                    segment_out.write(record.serialize())
                    entries.append(SparseIndexEntry(key=record.key, offset=offset))
                    index_out.write(sparse_index_bytes(temp_id, record.key, offset))
                    offset += record.size()
            prev_key = record.key

            following = read_kv_record(sources[item.segment_file_path])
            if following is not None:
                heap.push(MinHeapRecord(following, item.segment_file_path))

        _sync(segment_out)
        _sync(index_out)
        merged.append(
            SegmentMetadata(
                id=temp_id,
                level=level,
                min_key=min_key,
                max_key=prev_key,
                file_path=store.segment_file_path(temp_id),
                sparse_index=entries,
            )
        )
    logger.info("merge completed into %d segment(s)", len(merged))
    return merged


def new_levels(
    plan: CompactionPlan,
    old_levels: list[list[SegmentMetadata]],
    merged: list[SegmentMetadata],
) -> list[list[SegmentMetadata]]:
    """The level layout after replacing the planned segments with merged ones."""
    levels: list[list[SegmentMetadata]] = [[] for _ in old_levels]
    replaced = {segment.id for segment in plan.all_segments()}
    for level in old_levels:
        for segment in level:
            if segment.id not in replaced:
                levels[segment.level].append(segment)
    for segment in merged:
        while segment.level >= len(levels):
            levels.append([])
        levels[segment.level].append(segment)
    return levels


def delete_old_segments(store: KVStore, plan: CompactionPlan) -> None:
    """Remove the segment and sparse index files of every planned segment."""
    for segment in plan.all_segments():
        os.remove(segment.file_path)
        os.remove(store.sparse_index_file_path(segment.id))


def do_compaction(store: KVStore) -> list[SegmentMetadata]:
    """Run one compaction if any level needs it; returns the new segments.

    The merge runs without the store's lock; installing the result (manifest,
    CURRENT file, renames, in-memory levels and indexes) runs under it.
    """
    with store.lock:
        plan = next_compaction_plan(store)
    if plan is None:
        return []

    merged = perform_merge(store, plan)

    with store.lock:
        levels = new_levels(plan, store.levels, merged)

        temp_manifest = os.path.join(store.checkpoint_dir(), _TEMP_MANIFEST)
        if os.path.exists(temp_manifest):
            os.remove(temp_manifest)
        write_manifest(temp_manifest, levels)

        store.active_segment_id += 1
        manifest_path = store.manifest_file_path(store.active_segment_id)
        os.replace(temp_manifest, manifest_path)
        update_current_file(store, manifest_path)

        for segment in merged:
            os.replace(store.temp_segment_file_path(segment.id), segment.file_path)
            os.replace(
                store.temp_sparse_index_file_path(segment.id),
                store.sparse_index_file_path(segment.id),
            )

        store.levels = levels
        for segment in plan.all_segments():
            store.mem_state.remove_sparse_index(segment.id)
        for segment in merged:
            store.mem_state.set_sparse_index(segment.id, segment.sparse_index)

        delete_old_segments(store, plan)
    return merged