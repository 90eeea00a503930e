"""
Local content store.

Chunks, stream manifests and tree manifests live on disk under one root,
addressed by digest. A SQLite reference index maps chunks to the committed
streams that use them; committing a stream updates that index in the same
transaction (and under the same lock) that garbage collection uses.
"""

import os
import tempfile
import threading
from pathlib import Path
from typing import Iterable, Iterator, Optional, Union

from common.constants import (
    CHUNK_SIZE_BYTES,
    DEFAULT_HASH_ALGORITHM,
    LOCK_STRIPES,
    STORE_CHUNKS_DIR,
    STORE_EXPORTS_DIR,
    STORE_INDEX_FILE,
    STORE_STREAMS_DIR,
    STORE_TREES_DIR,
)
from common.exceptions import (
    HashMismatchError,
    ImmutableConflictError,
    IncompleteStreamError,
    ManifestFormatError,
    NotFoundError,
    TransientError,
)
from common.hashing import IncrementalDigestCalculator, compute_digest
from common.logging_config import get_logger
from common.types import StoreStats, Stream, Tree
from store.chunk_storage import BlobStorage
from store.ref_index import ReferenceIndex
from streams.manifest import decode_stream, decode_tree, encode_stream, encode_tree

logger = get_logger(__name__)


class ChunkLease:
    """
    In-flight references on chunk hashes, released on exit.

    While a lease holds a hash, gc() will not reclaim that chunk even if no
    committed stream references it yet.
    """

    def __init__(self, store: "ContentStore", hashes: Iterable[str] = ()):
        self._store = store
        self._held: list[str] = []
        self._released = False
        self.add(*hashes)

    def add(self, *hashes: str) -> None:
        """Pin more hashes under this lease."""
        if self._released:
            raise RuntimeError("Lease already released")
        fresh = [h for h in hashes if h not in self._held]
        self._store._index.pin(fresh)
        self._held.extend(fresh)

    @property
    def hashes(self) -> list[str]:
        return list(self._held)

    def release(self) -> None:
        if self._released:
            return
        self._store._index.unpin(self._held)
        self._released = True

    def __enter__(self) -> "ChunkLease":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.release()


class ContentStore:
    """
    Durable, deduplicated local storage of chunks and manifests.

    Usage:
        with ContentStore(path) as store:
            store.put_chunk(chunk.hash, chunk.data)
            store.put_stream(stream)
    """

    def __init__(self, root: Union[str, os.PathLike], algorithm: str = DEFAULT_HASH_ALGORITHM):
        self.root = Path(root)
        self.algorithm = algorithm
        self._chunks = BlobStorage(self.root / STORE_CHUNKS_DIR)
        self._streams = BlobStorage(self.root / STORE_STREAMS_DIR, ".json")
        self._trees = BlobStorage(self.root / STORE_TREES_DIR, ".json")
        self._exports = BlobStorage(self.root / STORE_EXPORTS_DIR)
        self._index = ReferenceIndex(self.root / STORE_INDEX_FILE)
        self._key_locks = [threading.Lock() for _ in range(LOCK_STRIPES)]
        self._index_lock = threading.RLock()
        self._opened = False

    def open(self) -> "ContentStore":
        """Create the store layout if needed and reconcile the index with disk."""
        if self._opened:
            return self
        for blobs in (self._chunks, self._streams, self._trees, self._exports):
            blobs.ensure_directory()
        self._index.init()
        self._opened = True
        self.recover()
        logger.info(f"Opened content store at {self.root}")
        return self

    def close(self) -> None:
        if self._opened:
            logger.debug(f"Closed content store at {self.root}")
        self._opened = False

    def __enter__(self) -> "ContentStore":
        return self.open()

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def _require_open(self) -> None:
        if not self._opened:
            raise RuntimeError(f"Content store at {self.root} is not open")

    def _key_lock(self, key: str) -> threading.Lock:
        return self._key_locks[hash(key) % LOCK_STRIPES]

    # Chunks

    def put_chunk(self, chunk_hash: str, data: bytes) -> bool:
        """
        Store a chunk under its content hash.

        Args:
            chunk_hash: Expected digest of data
            data: Chunk bytes (1..CHUNK_SIZE_BYTES)

        Returns:
            True if the chunk was written, False if it was already present

        Raises:
            HashMismatchError: If data does not hash to chunk_hash
            ValueError: If data is empty or larger than one chunk
        """
        self._require_open()
        if not 0 < len(data) <= CHUNK_SIZE_BYTES:
            raise ValueError(f"Chunk size {len(data)} outside 1..{CHUNK_SIZE_BYTES}")

        actual = compute_digest(data, self.algorithm)
        if actual != chunk_hash:
            logger.warning(f"Rejected chunk with mismatched hash [expected={chunk_hash}, actual={actual}]")
            raise HashMismatchError(chunk_hash, actual)

        with self._key_lock(chunk_hash):
            if self._chunks.exists(chunk_hash):
                logger.debug(f"Chunk already stored, skipping [hash={chunk_hash[:16]}]")
                return False
            try:
                self._chunks.write(chunk_hash, data)
            except OSError as e:
                raise TransientError(f"Failed to write chunk {chunk_hash}: {e}") from e
            self._index.record_chunk(chunk_hash, len(data))

        logger.debug(f"Stored chunk [hash={chunk_hash[:16]}, size={len(data)}]")
        return True

    def get_chunk(self, chunk_hash: str) -> bytes:
        """
        Read a chunk and re-verify its digest.

        Raises:
            NotFoundError: If the chunk is not stored
            HashMismatchError: If the stored bytes are corrupt
        """
        self._require_open()
        try:
            data = self._chunks.read(chunk_hash)
        except FileNotFoundError:
            raise NotFoundError(f"Chunk {chunk_hash} not found in store")
        except OSError as e:
            raise TransientError(f"Failed to read chunk {chunk_hash}: {e}") from e

        actual = compute_digest(data, self.algorithm)
        if actual != chunk_hash:
            logger.error(f"Stored chunk is corrupt [hash={chunk_hash}, actual={actual}]")
            raise HashMismatchError(chunk_hash, actual, f"stored chunk {chunk_hash} is corrupt")
        return data

    def has_chunk(self, chunk_hash: str) -> bool:
        self._require_open()
        return self._chunks.exists(chunk_hash)

    def pin(self, hashes: Iterable[str] = ()) -> ChunkLease:
        """
        Hold in-flight references on chunks so gc() leaves them alone.

        Returns:
            ChunkLease usable as a context manager
        """
        self._require_open()
        return ChunkLease(self, hashes)

    # Streams

    def put_stream(self, stream: Stream) -> bool:
        """
        Commit a stream manifest.

        Every listed chunk must already be stored. The manifest write and the
        reference-index update happen in one transaction under the index lock.

        Returns:
            True if newly committed, False if the identical stream was already committed

        Raises:
            IncompleteStreamError: If any listed chunk is missing
            ImmutableConflictError: If a different manifest exists under this ID
        """
        self._require_open()
        self._check_algorithm(stream.algorithm)
        data = encode_stream(stream)

        with self._index_lock:
            missing = [h for h in stream.unique_chunks() if not self._chunks.exists(h)]
            if missing:
                logger.error(
                    f"Refusing to commit incomplete stream [stream_id={stream.stream_id}, missing={len(missing)}]"
                )
                raise IncompleteStreamError(stream.stream_id, missing)

            existing = self._read_manifest(self._streams, stream.stream_id)
            if existing is not None:
                if existing != data:
                    raise ImmutableConflictError(
                        f"Stream {stream.stream_id} already committed with different content"
                    )
                if self._index.has_stream(stream.stream_id):
                    return False

            with self._index.connection() as conn:
                self._index.add_stream(conn, stream)
                self._streams.write(stream.stream_id, data)
                conn.commit()

        logger.info(
            f"Committed stream [stream_id={stream.stream_id}, chunks={len(stream.chunks)}, size={stream.size}]"
        )
        return True

    def get_stream(self, stream_id: str) -> Stream:
        """
        Load a committed stream manifest.

        Raises:
            NotFoundError: If no such stream is committed
        """
        self._require_open()
        data = self._read_manifest(self._streams, stream_id)
        if data is None:
            raise NotFoundError(f"Stream {stream_id} not found in store")
        return decode_stream(data, expected_id=stream_id)

    def has_stream(self, stream_id: str) -> bool:
        self._require_open()
        return self._streams.exists(stream_id)

    def list_streams(self) -> list[str]:
        self._require_open()
        return sorted(self._streams.list_keys())

    def delete_stream(self, stream_id: str) -> bool:
        """
        Drop a stream manifest and its references; its chunks become
        reclaimable by gc() unless another stream references them.

        Returns:
            True if the stream existed
        """
        self._require_open()
        with self._index_lock:
            with self._index.connection() as conn:
                self._index.remove_stream(conn, stream_id)
                existed = self._streams.delete(stream_id)
                conn.commit()
            self._exports.delete(stream_id)
        if existed:
            logger.info(f"Deleted stream [stream_id={stream_id}]")
        return existed

    def referencing_streams(self, chunk_hash: str) -> set[str]:
        self._require_open()
        return self._index.referencing_streams(chunk_hash)

    # Trees

    def put_tree(self, tree: Tree) -> bool:
        """
        Commit a tree manifest once every referenced stream and subtree is committed.

        Raises:
            IncompleteStreamError: If a referenced stream or subtree is missing
            ImmutableConflictError: If a different manifest exists under this ID
        """
        self._require_open()
        self._check_algorithm(tree.algorithm)
        data = encode_tree(tree)

        with self._index_lock:
            missing = [sid for _, sid in tree.streams if not self._streams.exists(sid)]
            missing += [tid for _, tid in tree.subtrees if not self._trees.exists(tid)]
            if missing:
                raise IncompleteStreamError(tree.tree_id, missing)

            existing = self._read_manifest(self._trees, tree.tree_id)
            if existing is not None:
                if existing != data:
                    raise ImmutableConflictError(f"Tree {tree.tree_id} already committed with different content")
                return False
            self._trees.write(tree.tree_id, data)

        logger.info(f"Committed tree [tree_id={tree.tree_id}, files={len(tree.streams)}]")
        return True

    def get_tree(self, tree_id: str) -> Tree:
        self._require_open()
        data = self._read_manifest(self._trees, tree_id)
        if data is None:
            raise NotFoundError(f"Tree {tree_id} not found in store")
        return decode_tree(data, expected_id=tree_id)

    def has_tree(self, tree_id: str) -> bool:
        self._require_open()
        return self._trees.exists(tree_id)

    def list_trees(self) -> list[str]:
        self._require_open()
        return sorted(self._trees.list_keys())

    # Maintenance

    def gc(self) -> int:
        """
        Reclaim every chunk that no committed stream references and no
        lease pins.

        Holds the index lock for the whole pass, so no stream commit can
        interleave with the reference snapshot. Each reclaimed chunk is
        forgotten in its own short transaction taken under its key lock;
        no index write stays open while waiting on another key.

        Returns:
            Number of chunks reclaimed
        """
        self._require_open()
        reclaimed = 0
        with self._index_lock:
            pinned = self._index.pinned()
            with self._index.connection() as conn:
                candidates = [h for h in self._index.unreferenced_chunks(conn) if h not in pinned]

            for chunk_hash in candidates:
                with self._key_lock(chunk_hash):
                    if self._index.is_pinned(chunk_hash):
                        continue
                    self._chunks.delete(chunk_hash)
                    with self._index.connection() as conn:
                        self._index.forget_chunk(conn, chunk_hash)
                        conn.commit()
                    reclaimed += 1

        logger.info(f"Garbage collection reclaimed {reclaimed} chunks [pinned={len(pinned)}]")
        return reclaimed

    def verify(self) -> list[str]:
        """
        Re-hash every stored chunk.

        Returns:
            Hashes whose stored bytes no longer match their key
        """
        self._require_open()
        corrupt = []
        for chunk_hash in self._chunks.list_keys():
            calculator = IncrementalDigestCalculator(self.algorithm)
            try:
                for piece in self._chunks.read_streaming(chunk_hash):
                    calculator.update(piece)
            except FileNotFoundError:
                continue
            if calculator.finalize() != chunk_hash:
                corrupt.append(chunk_hash)

        if corrupt:
            logger.error(f"Verification found {len(corrupt)} corrupt chunks")
        else:
            logger.info("Verification found no corrupt chunks")
        return sorted(corrupt)

    def stats(self) -> StoreStats:
        self._require_open()
        chunk_count, stored_bytes, stream_count = self._index.totals()
        return StoreStats(
            chunk_count=chunk_count,
            stored_bytes=stored_bytes,
            stream_count=stream_count,
            tree_count=len(self._trees.list_keys()),
        )

    def recover(self) -> None:
        """
        Reconcile the reference index with the files on disk after a crash.

        Chunk blobs missing from the index are re-recorded; index rows whose
        blobs are gone are dropped; manifests committed without index rows get
        their references restored, or are removed if their chunks are missing.
        """
        with self._index_lock:
            on_disk = set(self._chunks.list_keys())
            indexed = self._index.known_chunks()
            for chunk_hash in on_disk - indexed:
                self._index.record_chunk(chunk_hash, self._chunks.size(chunk_hash) or 0)

            manifests = set(self._streams.list_keys())
            committed = self._index.known_streams()
            with self._index.connection() as conn:
                for chunk_hash in indexed - on_disk:
                    self._index.forget_chunk(conn, chunk_hash)
                for stream_id in committed - manifests:
                    self._index.remove_stream(conn, stream_id)
                for stream_id in manifests - committed:
                    try:
                        stream = decode_stream(self._streams.read(stream_id), expected_id=stream_id)
                    except (ManifestFormatError, HashMismatchError) as e:
                        logger.warning(f"Removing unreadable manifest {stream_id}: {e}")
                        self._streams.delete(stream_id)
                        continue
                    if all(h in on_disk for h in stream.unique_chunks()):
                        self._index.add_stream(conn, stream)
                    else:
                        logger.warning(f"Removing dangling manifest {stream_id}")
                        self._streams.delete(stream_id)
                conn.commit()

    # Reconstruction

    def read_stream(self, stream: Stream) -> Iterator[bytes]:
        """Yield the verified chunk bytes of a stream in manifest order."""
        for chunk_hash in stream.chunks:
            yield self.get_chunk(chunk_hash)

    def export_stream(self, stream: Stream, dest: Union[str, os.PathLike], read_only: bool = True) -> Path:
        """
        Reconstruct a stream's file at dest.

        The file is written to a temp file beside dest, checked against the
        manifest's size and whole-content digest, given the recorded mode and
        mtime, then renamed into place.

        Raises:
            HashMismatchError: If the reconstructed content does not match
        """
        dest = Path(dest)
        dest.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=dest.parent, prefix=f".{dest.name}.", suffix=".tmp")
        calculator = IncrementalDigestCalculator(stream.algorithm)
        try:
            with os.fdopen(fd, 'wb') as f:
                for data in self.read_stream(stream):
                    f.write(data)
                    calculator.update(data)
                f.flush()
                os.fsync(f.fileno())

            digest = calculator.finalize()
            if calculator.length != stream.size:
                raise HashMismatchError(
                    str(stream.size), str(calculator.length), f"stream {stream.stream_id} size mismatch"
                )
            if stream.metadata.digest and digest != stream.metadata.digest:
                raise HashMismatchError(stream.metadata.digest, digest, f"stream {stream.stream_id} content mismatch")

            mode = stream.metadata.mode & ~0o222 if read_only else stream.metadata.mode
            os.chmod(tmp_name, mode)
            os.utime(tmp_name, (stream.metadata.mtime, stream.metadata.mtime))
            os.replace(tmp_name, dest)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

        logger.debug(f"Exported stream {stream.stream_id[:16]} to {dest}")
        return dest

    def cached_export(self, stream: Stream) -> Path:
        """
        Return a read-only reconstruction of stream inside the store's export
        cache, exporting it first if needed. Deployments hard-link from here.
        """
        self._require_open()
        path = self._exports.get_path(stream.stream_id)
        if not path.is_file():
            self.export_stream(stream, path, read_only=True)
        return path

    def _read_manifest(self, blobs: BlobStorage, key: str) -> Optional[bytes]:
        try:
            return blobs.read(key)
        except FileNotFoundError:
            return None

    def _check_algorithm(self, algorithm: str) -> None:
        if algorithm != self.algorithm:
            raise ValueError(f"Store uses {self.algorithm} digests, manifest uses {algorithm}")
