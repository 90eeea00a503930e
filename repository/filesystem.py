"""Repository backed by a plain directory, optionally compressing chunks at rest."""

import os
import threading
from pathlib import Path
from typing import Union

from common.constants import DEFAULT_HASH_ALGORITHM, STORE_CHUNKS_DIR, STORE_STREAMS_DIR, STORE_TREES_DIR
from common.compression import CompressionKind, compress, decompress
from common.exceptions import (
    HashMismatchError,
    ImmutableConflictError,
    IncompleteStreamError,
    ManifestFormatError,
    NotFoundError,
    TransientError,
)
from common.hashing import compute_digest
from common.logging_config import get_logger
from common.types import Stream, Tree
from store.chunk_storage import BlobStorage
from streams.manifest import decode_stream, decode_tree, encode_stream, encode_tree

logger = get_logger(__name__)


class FilesystemRepository:
    """
    Reference Repository over a directory.

    Layout:
        <root>/chunks/<hash[:2]>/<hash>[.zstd|.lz4|.xz]
        <root>/streams/<hash[:2]>/<id>.json
        <root>/trees/<hash[:2]>/<id>.json

    Digests are re-verified when chunks are received and again when read.
    """

    def __init__(
        self,
        root: Union[str, os.PathLike],
        compression: Union[str, CompressionKind] = CompressionKind.NONE,
        algorithm: str = DEFAULT_HASH_ALGORITHM,
    ):
        self.root = Path(root)
        self.compression = CompressionKind.parse(compression)
        self.algorithm = algorithm
        self._chunks = BlobStorage(self.root / STORE_CHUNKS_DIR, self.compression.extension)
        self._streams = BlobStorage(self.root / STORE_STREAMS_DIR, ".json")
        self._trees = BlobStorage(self.root / STORE_TREES_DIR, ".json")
        self._manifest_lock = threading.Lock()

        for blobs in (self._chunks, self._streams, self._trees):
            blobs.ensure_directory()
        logger.info(f"Opened filesystem repository at {self.root} [compression={self.compression.value}]")

    def __repr__(self) -> str:
        return f"FilesystemRepository({str(self.root)!r})"

    def has_chunk(self, chunk_hash: str) -> bool:
        return self._chunks.exists(chunk_hash)

    def fetch_chunk(self, chunk_hash: str) -> bytes:
        """
        Read, decompress and verify a chunk.

        Raises:
            NotFoundError: If the chunk is absent
            HashMismatchError: If the stored chunk is corrupt
            TransientError: On other I/O failures
        """
        try:
            data = decompress(self._chunks.read(chunk_hash), self.compression)
        except FileNotFoundError:
            raise NotFoundError(f"Chunk {chunk_hash} not found in repository")
        except OSError as e:
            raise TransientError(f"Failed to read chunk {chunk_hash}: {e}") from e

        actual = compute_digest(data, self.algorithm)
        if actual != chunk_hash:
            logger.error(f"Repository chunk is corrupt [hash={chunk_hash}, actual={actual}]")
            raise HashMismatchError(chunk_hash, actual, f"repository chunk {chunk_hash} is corrupt")
        return data

    def put_chunk(self, chunk_hash: str, data: bytes) -> bool:
        """
        Store a chunk after verifying it hashes to chunk_hash.

        Returns:
            True if written, False if it was already present
        """
        actual = compute_digest(data, self.algorithm)
        if actual != chunk_hash:
            raise HashMismatchError(chunk_hash, actual)
        if self._chunks.exists(chunk_hash):
            return False
        try:
            self._chunks.write(chunk_hash, compress(data, self.compression))
        except OSError as e:
            raise TransientError(f"Failed to write chunk {chunk_hash}: {e}") from e
        logger.debug(f"Received chunk [hash={chunk_hash[:16]}, size={len(data)}]")
        return True

    def has_stream(self, stream_id: str) -> bool:
        return self._streams.exists(stream_id)

    def fetch_stream(self, stream_id: str) -> Stream:
        try:
            data = self._streams.read(stream_id)
        except FileNotFoundError:
            raise NotFoundError(f"Stream {stream_id} not found in repository")
        return decode_stream(data, expected_id=stream_id)

    def put_stream(self, stream: Stream) -> bool:
        """
        Publish a stream manifest once all its chunks are present.

        Raises:
            IncompleteStreamError: If any chunk is missing
            ManifestFormatError: If the manifest uses another digest algorithm
            ImmutableConflictError: If a different manifest exists under the ID
        """
        self._check_algorithm(stream.algorithm, stream.stream_id)
        missing = [h for h in stream.unique_chunks() if not self._chunks.exists(h)]
        if missing:
            raise IncompleteStreamError(stream.stream_id, missing)
        created = self._put_manifest(self._streams, stream.stream_id, encode_stream(stream))
        if created:
            logger.info(f"Published stream [stream_id={stream.stream_id}, chunks={len(stream.chunks)}]")
        return created

    def has_tree(self, tree_id: str) -> bool:
        return self._trees.exists(tree_id)

    def fetch_tree(self, tree_id: str) -> Tree:
        try:
            data = self._trees.read(tree_id)
        except FileNotFoundError:
            raise NotFoundError(f"Tree {tree_id} not found in repository")
        return decode_tree(data, expected_id=tree_id)

    def put_tree(self, tree: Tree) -> bool:
        self._check_algorithm(tree.algorithm, tree.tree_id)
        missing = [sid for _, sid in tree.streams if not self._streams.exists(sid)]
        missing += [tid for _, tid in tree.subtrees if not self._trees.exists(tid)]
        if missing:
            raise IncompleteStreamError(tree.tree_id, missing)
        created = self._put_manifest(self._trees, tree.tree_id, encode_tree(tree))
        if created:
            logger.info(f"Published tree [tree_id={tree.tree_id}]")
        return created

    def close(self) -> None:
        pass

    def _check_algorithm(self, algorithm: str, manifest_id: str) -> None:
        if algorithm != self.algorithm:
            raise ManifestFormatError(
                f"Manifest {manifest_id} uses {algorithm} digests, repository uses {self.algorithm}"
            )

    def _put_manifest(self, blobs: BlobStorage, manifest_id: str, data: bytes) -> bool:
        with self._manifest_lock:
            try:
                existing = blobs.read(manifest_id)
            except FileNotFoundError:
                blobs.write(manifest_id, data)
                return True
        if existing != data:
            raise ImmutableConflictError(f"Manifest {manifest_id} already exists with different content")
        return False
