# lsmkv

A small embedded key-value store built as a log-structured merge tree.

Every write first goes to a write-ahead log (WAL), is fsynced, and is then
applied to an in-memory table. When the active WAL file grows to the
configured checkpoint size, the store rolls to a new WAL file, flushes the
in-memory table to a sorted level-0 segment file with a sparse index, writes
a manifest describing all segments, and atomically points a `CURRENT` file
at that manifest. WAL files covered by the new segment are then removed.

A background thread periodically merges segments into the next level
(leveled compaction). Level 0 is compacted once it holds four segments or
its files reach the size threshold; higher levels are compacted one segment
at a time once their files reach the threshold. Merging keeps the newest
value of each key, drops deleted keys and splits the output into several
segments when it would grow past the threshold.

On open, the store reads the level layout from `CURRENT` and its manifest,
reloads the sparse indexes, and replays every WAL file written after the
last checkpoint. A torn or damaged record at the end of the newest WAL is
truncated away; damage in an older WAL raises `RecoveryError`.

## Installation

```
pip install .
```

The package has no runtime dependencies.

## Using the library

```python
from lsmkv.config import Configuration
from lsmkv.store import open_store

config = (
    Configuration()
    .with_base_dir("./data")
    .with_checkpoint_size(4096)
    .with_compaction_interval_ms(20)
)

with open_store(config) as store:
    store.put(b"color", b"blue")
    print(store.get(b"color"))   # b'blue'
    store.delete(b"color")
    print(store.get(b"color"))   # None
```

Keys and values are `bytes`; a `str` is accepted and encoded as UTF-8.
`get` returns `None` for a key that is missing or deleted. `put` raises
`InvalidKeyOrValueError` (from `lsmkv.errors`) for a `None` key or value,
for the reserved key `b"__CHECKPOINT__"` and for the reserved value
`b"__TOMBSTONE__"`; `delete` raises it for the reserved key.

`KVStore` is a context manager; leaving the `with` block calls `close()`,
which stops background compaction and closes the WAL.
`close_and_clean_up()` also removes the store's directories.

Configuration options (each `with_*` method updates the configuration in
place and returns it):

| Method | Default | Meaning |
| --- | --- | --- |
| `with_base_dir` | `./db` | Directory holding `logs/` and `checkpoints/` |
| `with_checkpoint_size` | 1024 | WAL file size in bytes that triggers a checkpoint |
| `with_segment_file_size_threshold_lx` | 1024 | Size limit in bytes for compaction and merged segments |
| `with_compaction_interval_ms` | 20 | Background compaction interval; 0 turns it off |
| `with_no_log` | | Silence the package's log output |

A compaction pass can also be run directly with `store.compact()`, which
returns the metadata of the segments it created (an empty list when no
level needed compaction).

The store logs through the standard `logging` module under the `lsmkv`
logger.

## Command line

```
lsmkv DIRECTORY CHECKPOINT_SIZE
```

Opens the store in `DIRECTORY` with the given checkpoint size, prints the
in-memory table, then looks up the keys `key-0` to `key-99` and prints each
value (empty when the key is missing). The command only reads; it does not
write any keys.

## On-disk layout

```
DIRECTORY/
  logs/         wal-000001, wal-000002, ...
  checkpoints/  segment-NNNNNN, index-NNNNNN, MANIFEST-NNNNNN, CURRENT
```

WAL, segment, sparse index and manifest records, as well as the `CURRENT`
file, carry a CRC-32 checksum that is checked on read.

## What it does not do

- It is an embedded library for one process; there is no server or network
  access, and no locking between processes sharing a directory.
- There are no range scans or iteration over keys; only `get`, `put` and
  `delete`.
- Closing the store does not take a checkpoint; writes since the last
  checkpoint are recovered from the WAL on the next open.

## Running the tests

```
pip install .[test]
pytest
```