"""An embedded log-structured merge-tree key-value store with a write-ahead log, checkpoints and leveled compaction."""

__version__ = "0.1.0"