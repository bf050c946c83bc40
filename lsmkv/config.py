"""Tunable settings of a store."""

from __future__ import annotations

import logging
from dataclasses import dataclass

_PACKAGE_LOGGER = __name__.partition(".")[0]


@dataclass
class Configuration:
    """Settings for a store; the ``with_*`` methods update in place and chain."""

    checkpoint_size: int = 1024
    base_dir: str = "./db"
    segment_file_size_threshold_lx: int = 1024
    compaction_interval_ms: int = 20

    def with_no_log(self) -> Configuration:
        """Silence every log message the package emits."""
        logging.getLogger(_PACKAGE_LOGGER).setLevel(logging.CRITICAL + 1)
        return self

    def with_base_dir(self, directory: str) -> Configuration:
        """Set the directory that holds the logs and checkpoints."""
        self.base_dir = str(directory)
        return self

    def with_compaction_interval_ms(self, interval_ms: int) -> Configuration:
        """Set how often background compaction runs; 0 disables it."""
        self.compaction_interval_ms = interval_ms
        return self

    def with_segment_file_size_threshold_lx(self, size: int) -> Configuration:
        """Set the size limit for segment files on level 1 and above."""
        self.segment_file_size_threshold_lx = size
        return self

    def with_checkpoint_size(self, size: int) -> Configuration:
        """Set the WAL size at which a checkpoint is taken."""
        self.checkpoint_size = size
        return self