"""Exception taxonomy shared by the store, repositories and sync engine."""

from typing import Iterable, Optional


class ChunkSyncError(Exception):
    """
    Base exception class for all chunksync errors.
    """
    pass


class TransientError(ChunkSyncError):
    """
    Raised for caller-retryable conditions (network failure, rate limiting,
    temporary disk trouble).
    """
    pass


class NotFoundError(ChunkSyncError):
    """
    Raised when a chunk, stream or tree is definitively absent.
    """
    pass


class HashMismatchError(ChunkSyncError):
    """
    Raised when bytes do not hash to the key they are stored or sent under.
    """

    def __init__(self, expected: str, actual: str, message: Optional[str] = None):
        self.expected = expected
        self.actual = actual
        super().__init__(message or f"hash mismatch: expected {expected}, got {actual}")


class IncompleteStreamError(ChunkSyncError):
    """
    Raised when a manifest commit references chunks (or streams) that are
    not present.
    """

    def __init__(self, manifest_id: str, missing: Iterable[str]):
        self.manifest_id = manifest_id
        self.missing = sorted(set(missing))
        preview = ", ".join(h[:12] for h in self.missing[:5])
        super().__init__(
            f"manifest {manifest_id} references {len(self.missing)} missing entries: {preview}"
        )


class ImmutableConflictError(ChunkSyncError):
    """
    Raised when a manifest ID already exists with different content.
    """
    pass


class EmptyInputError(ChunkSyncError):
    """
    Raised when building a stream from an empty source while empty
    streams are disallowed.
    """
    pass


class ManifestFormatError(ChunkSyncError):
    """
    Raised when a serialized manifest cannot be decoded or uses an
    unsupported format version.
    """
    pass


class SyncCancelledError(ChunkSyncError):
    """
    Raised when a push or pull is cancelled cooperatively.
    """
    pass


class SyncFailedError(ChunkSyncError):
    """
    Raised when a sync escalates after exhausting transient retries.
    """

    def __init__(self, message: str, report=None):
        super().__init__(message)
        self.report = report
