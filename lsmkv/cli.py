"""Command that opens a store, prints its memtable and reads sample keys."""

from __future__ import annotations

import logging
import re
import sys

from .config import Configuration
from .errors import KVStoreError
from .store import open_store

logger = logging.getLogger(__name__)

_INT64_MIN = -(1 << 63)
_INT64_MAX = (1 << 63) - 1


def _parse_int64(text: str) -> int | None:
    if not re.fullmatch(r"[+-]?[0-9]+", text):
        return None
    value = int(text)
    if not _INT64_MIN <= value <= _INT64_MAX:
        return None
    return value


def main(argv: list[str] | None = None) -> int:
    """Open the store in a directory and print the values of key-0 to key-99."""
    args = list(sys.argv[1:] if argv is None else argv)
    if len(args) < 2:
        print("Please specify the root directory for WAL and checkpoints.")
        return 0
    directory = args[0]
    checkpoint_size = _parse_int64(args[1])
    if checkpoint_size is None:
        print("Please specify the checkpoint size as an integer.")
        return 0

    config = Configuration().with_base_dir(directory).with_checkpoint_size(checkpoint_size)
    try:
        store = open_store(config)
    except (KVStoreError, OSError) as exc:
        logger.error("Error creating KVStore: %s", exc)
        return 0

    with store:
        store.dump()
        for i in range(100):
            key = f"key-{i}"
            try:
                value = store.get(key.encode())
            except (KVStoreError, OSError) as exc:
                logger.error("Error getting %s: %s", key, exc)
                value = None
            text = (value or b"").decode("utf-8", "replace")
            print(f'kv.Get("{key}"): {text}')
    return 0


if __name__ == "__main__":
    raise SystemExit(main())