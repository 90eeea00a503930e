"""Fixed-size chunker: splits a byte source into content-addressed chunks."""

import contextlib
import io
import os
from typing import BinaryIO, Callable, ContextManager, Iterator, Optional, Union

from common.constants import CHUNK_SIZE_BYTES, DEFAULT_HASH_ALGORITHM, READ_PIECE_SIZE
from common.hashing import IncrementalDigestCalculator, new_hasher
from common.types import Chunk

Opener = Callable[[], ContextManager[BinaryIO]]
Source = Union[str, os.PathLike, bytes, bytearray, memoryview, BinaryIO, Opener]


def _resolve_opener(source: Source) -> Opener:
    """Turn any supported source into a zero-argument opener."""
    if isinstance(source, (str, os.PathLike)):
        path = os.fspath(source)
        return lambda: open(path, 'rb')
    if isinstance(source, (bytes, bytearray, memoryview)):
        data = bytes(source)
        return lambda: io.BytesIO(data)
    if hasattr(source, 'read'):
        if not source.seekable():
            raise ValueError("File object sources must be seekable to be restartable")
        start = source.tell()

        def reopen():
            source.seek(start)
            return contextlib.nullcontext(source)

        return reopen
    if callable(source):
        return source
    raise TypeError(f"Unsupported chunk source: {type(source).__name__}")


class ChunkSequence:
    """
    Lazy, restartable sequence of chunks over one source.

    Every iteration reopens the source from the start. After a complete pass,
    `size` and `digest` describe the whole source content.
    """

    def __init__(self, opener: Opener, chunk_size: int, algorithm: str):
        self._opener = opener
        self.chunk_size = chunk_size
        self.algorithm = algorithm
        self.size: Optional[int] = None
        self.digest: Optional[str] = None

    def __iter__(self) -> Iterator[Chunk]:
        whole = IncrementalDigestCalculator(self.algorithm)
        with self._opener() as f:
            while True:
                chunk = self._read_chunk(f, whole)
                if chunk is None:
                    break
                yield chunk
        self.size = whole.length
        self.digest = whole.finalize()

    def _read_chunk(self, f: BinaryIO, whole: IncrementalDigestCalculator) -> Optional[Chunk]:
        hasher = new_hasher(self.algorithm)
        buf = bytearray()
        while len(buf) < self.chunk_size:
            piece = f.read(min(READ_PIECE_SIZE, self.chunk_size - len(buf)))
            if not piece:
                break
            hasher.update(piece)
            whole.update(piece)
            buf.extend(piece)
        if not buf:
            return None
        return Chunk(hash=hasher.hexdigest(), data=bytes(buf))


class Chunker:
    """
    Splits byte sources on fixed chunk_size boundaries.

    Boundaries are not content-defined: an insertion near the start of a file
    shifts every later boundary and changes every later chunk hash.
    """

    def __init__(self, chunk_size: int = CHUNK_SIZE_BYTES, algorithm: str = DEFAULT_HASH_ALGORITHM):
        if not 0 < chunk_size <= CHUNK_SIZE_BYTES:
            raise ValueError(f"chunk_size must be in 1..{CHUNK_SIZE_BYTES}, got {chunk_size}")
        new_hasher(algorithm)
        self.chunk_size = chunk_size
        self.algorithm = algorithm

    def split(self, source: Source) -> ChunkSequence:
        """
        Split a source into chunks.

        Args:
            source: File path, bytes, seekable binary file, or an opener
                returning a binary file context manager

        Returns:
            ChunkSequence that can be iterated any number of times
        """
        return ChunkSequence(_resolve_opener(source), self.chunk_size, self.algorithm)
