"""Builds Stream manifests from chunker output and file metadata."""

import os
import stat
from dataclasses import replace
from pathlib import Path
from typing import Callable, Optional, Union

from common.exceptions import EmptyInputError
from common.logging_config import get_logger
from common.types import Chunk, Stream, StreamMetadata
from streams.chunker import Chunker, ChunkSequence
from streams.manifest import new_stream

logger = get_logger(__name__)

ChunkCallback = Callable[[Chunk], None]


def metadata_from_path(path: Union[str, os.PathLike], relative_to=None) -> StreamMetadata:
    """
    Read file metadata (mode, mtime, relative path) from the filesystem.

    Args:
        path: File on disk
        relative_to: Root the recorded path is made relative to; None records no path

    Returns:
        StreamMetadata with size and digest still to be filled by the builder
    """
    st = os.stat(path)
    recorded_path = None
    if relative_to is not None:
        recorded_path = Path(path).resolve().relative_to(Path(relative_to).resolve()).as_posix()
    return StreamMetadata(
        size=st.st_size,
        mode=stat.S_IMODE(st.st_mode),
        mtime=int(st.st_mtime),
        path=recorded_path,
    )


class StreamBuilder:
    """
    Consumes a chunk sequence plus metadata and produces a Stream.

    Empty sources produce a zero-chunk stream of size 0 unless
    allow_empty is False, in which case EmptyInputError is raised.
    """

    def __init__(self, chunker: Optional[Chunker] = None, allow_empty: bool = True):
        self.chunker = chunker or Chunker()
        self.allow_empty = allow_empty

    def build(
        self,
        chunks: ChunkSequence,
        metadata: StreamMetadata,
        on_chunk: Optional[ChunkCallback] = None,
    ) -> Stream:
        """
        Build a stream from one full pass over chunks.

        Args:
            chunks: Sequence produced by Chunker.split()
            metadata: Caller-supplied metadata; size and digest are replaced
                by the values observed while chunking
            on_chunk: Called with every chunk as it is produced

        Returns:
            Stream with derived stream ID
        """
        hashes = []
        for chunk in chunks:
            if on_chunk is not None:
                on_chunk(chunk)
            hashes.append(chunk.hash)

        if chunks.size == 0 and not self.allow_empty:
            raise EmptyInputError("Refusing to build a stream from an empty source")

        metadata = replace(metadata, size=chunks.size, digest=chunks.digest)
        stream = new_stream(hashes, metadata, chunks.algorithm, chunks.chunk_size)
        logger.debug(
            f"Built stream {stream.stream_id[:16]} [chunks={len(hashes)}, size={metadata.size}]"
        )
        return stream

    def build_from_bytes(self, data: bytes, metadata: Optional[StreamMetadata] = None,
                         on_chunk: Optional[ChunkCallback] = None) -> Stream:
        """Build a stream from in-memory bytes."""
        return self.build(self.chunker.split(data), metadata or StreamMetadata(size=len(data)), on_chunk)

    def build_from_file(
        self,
        path: Union[str, os.PathLike],
        relative_to=None,
        on_chunk: Optional[ChunkCallback] = None,
    ) -> Stream:
        """
        Build a stream for a file on disk.

        Args:
            path: File to chunk
            relative_to: Root for the recorded relative path (None records no path)
            on_chunk: Called with every chunk as it is produced
        """
        metadata = metadata_from_path(path, relative_to)
        return self.build(self.chunker.split(path), metadata, on_chunk)
