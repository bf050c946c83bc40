"""Exceptions raised by the key-value store."""


class KVStoreError(Exception):
    """Base class for every error raised by the store."""


class BadChecksumError(KVStoreError):
    """The checksum stored with a record does not match its contents."""

    def __init__(self, message: str = "checksum mismatch") -> None:
        super().__init__(message)


class CheckpointCorruptedError(KVStoreError):
    """The checkpoint file is damaged (edited in the middle or bit-flipped)."""

    def __init__(self, message: str = "checkpoint corrupted") -> None:
        super().__init__(message)


class SparseIndexCorruptedError(KVStoreError):
    """A sparse index file is damaged and can only be trusted up to an offset."""

    def __init__(self, message: str = "sparse index corrupted", offset: int = 0) -> None:
        super().__init__(message)
        self.offset = offset


class TruncatedRecordError(KVStoreError):
    """A record ended before all of its declared bytes were present."""


class RecoveryError(KVStoreError):
    """State on disk cannot be recovered safely."""


class InvalidKeyOrValueError(KVStoreError, ValueError):
    """A key or value is reserved or missing and cannot be stored."""