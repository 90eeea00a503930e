"""Shared data type definitions (Chunk, StreamMetadata, Stream, Tree)."""

from dataclasses import dataclass, field
from typing import Optional, Tuple

from common.constants import CHUNK_SIZE_BYTES, DEFAULT_HASH_ALGORITHM


@dataclass(frozen=True)
class Chunk:
    """
    Immutable, content-addressed unit of file data (at most 4 MiB).
    """
    hash: str
    data: bytes = field(repr=False)

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass(frozen=True)
class StreamMetadata:
    """
    File-level metadata carried by a stream manifest.

    Attributes:
        size: Original file size in bytes
        mode: Permission bits (st_mode & 0o7777)
        mtime: Modification time in whole seconds
        path: Optional path relative to the pushed root
        digest: Digest of the whole file content
    """
    size: int
    mode: int = 0o644
    mtime: int = 0
    path: Optional[str] = None
    digest: str = ""


@dataclass(frozen=True)
class Stream:
    """
    Ordered chunk hashes plus metadata; reconstructs one file.
    """
    stream_id: str
    chunks: Tuple[str, ...]
    metadata: StreamMetadata
    algorithm: str = DEFAULT_HASH_ALGORITHM
    chunk_size: int = CHUNK_SIZE_BYTES

    @property
    def size(self) -> int:
        return self.metadata.size

    def unique_chunks(self) -> list[str]:
        """Distinct chunk hashes in first-occurrence order."""
        return list(dict.fromkeys(self.chunks))


@dataclass(frozen=True)
class Symlink:
    """A symbolic link recorded inside a tree."""
    name: str
    target: str


@dataclass(frozen=True)
class Tree:
    """
    Content-addressed directory manifest.

    Files and subdirectories are referenced by name and ID, sorted by name.
    """
    tree_id: str
    mode: int
    streams: Tuple[Tuple[str, str], ...] = ()
    subtrees: Tuple[Tuple[str, str], ...] = ()
    symlinks: Tuple[Symlink, ...] = ()
    algorithm: str = DEFAULT_HASH_ALGORITHM


@dataclass(frozen=True)
class StoreStats:
    """Summary of local store contents."""
    chunk_count: int
    stored_bytes: int
    stream_count: int
    tree_count: int
