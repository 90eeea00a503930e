"""
Sync engine: moves streams and trees between the local store and a repository.

Every sync walks PLANNING -> TRANSFERRING -> VERIFYING -> COMMITTING -> DONE.
Chunk queries and transfers run in a bounded thread pool with no ordering
between chunks; the only ordering is that every chunk is confirmed at the
destination before the manifest is committed there (and every stream before
its tree). Chunks involved in a sync are pinned in the local store for its
duration so garbage collection cannot reclaim them mid-transfer.
"""

import os
import shutil
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import Callable, Iterable, Optional, Union

from common.constants import DEFAULT_MAX_RETRIES, DEFAULT_RETRY_BACKOFF_SECONDS, DEFAULT_WORKERS
from common.exceptions import (
    EmptyInputError,
    HashMismatchError,
    ImmutableConflictError,
    IncompleteStreamError,
    ManifestFormatError,
    NotFoundError,
    SyncCancelledError,
    SyncFailedError,
    TransientError,
)
from common.hashing import compute_digest
from common.logging_config import get_logger
from common.types import Chunk, Stream, Tree
from engine.cancellation import CancellationToken
from engine.retry import RetryPolicy
from engine.state import FailureKind, StreamStatus, SyncReport, SyncState
from repository.base import Repository
from store.content_store import ContentStore
from streams.builder import StreamBuilder
from streams.chunker import Chunker
from streams.tree import build_tree, deploy_tree, iter_tree_streams

logger = get_logger(__name__)

_FAILURE_KINDS = (
    (SyncCancelledError, FailureKind.CANCELLED),
    (SyncFailedError, FailureKind.TRANSIENT_EXHAUSTED),
    (TransientError, FailureKind.TRANSIENT_EXHAUSTED),
    (HashMismatchError, FailureKind.HASH_MISMATCH),
    (NotFoundError, FailureKind.NOT_FOUND),
    (ImmutableConflictError, FailureKind.IMMUTABLE_CONFLICT),
    (IncompleteStreamError, FailureKind.INCOMPLETE),
    (EmptyInputError, FailureKind.EMPTY_INPUT),
    (ManifestFormatError, FailureKind.MANIFEST_FORMAT),
)


def _failure_kind(exc: BaseException) -> FailureKind:
    for exc_type, kind in _FAILURE_KINDS:
        if isinstance(exc, exc_type):
            return kind
    return FailureKind.ERROR


class SyncEngine:
    """
    Push and pull streams and trees between a ContentStore and a Repository.

    Usage:
        with ContentStore(path) as store:
            engine = SyncEngine(store, open_repository(url))
            report = engine.push_file("data.bin")
    """

    def __init__(
        self,
        store: ContentStore,
        repository: Repository,
        workers: int = DEFAULT_WORKERS,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_backoff: float = DEFAULT_RETRY_BACKOFF_SECONDS,
        cancel_token: Optional[CancellationToken] = None,
        builder: Optional[StreamBuilder] = None,
    ):
        """
        Initialize sync engine.

        Args:
            store: Open local content store
            repository: Remote repository
            workers: Size of the chunk transfer pool
            max_retries: Retries per transient failure before escalating
            retry_backoff: Base delay; attempt n waits retry_backoff * 2**n seconds
            cancel_token: Token a caller can set to stop in-flight syncs
            builder: Stream builder (defaults to 4 MiB chunks in the store's algorithm)
        """
        if workers < 1:
            raise ValueError("workers must be >= 1")
        self.store = store
        self.repository = repository
        self.workers = workers
        self.cancel_token = cancel_token or CancellationToken()
        self.retry = RetryPolicy(max_retries, retry_backoff, self.cancel_token)
        self.builder = builder or StreamBuilder(Chunker(algorithm=store.algorithm))

    # Local import

    def import_file(self, path: Union[str, os.PathLike], relative_to=None) -> Stream:
        """
        Chunk a file into the local store and commit its stream.

        Each chunk is pinned before it is written, so a concurrent gc() cannot
        reclaim it before the stream commit references it.

        Args:
            path: File to import
            relative_to: Root the manifest's recorded path is relative to (None records no path)

        Returns:
            Committed Stream
        """
        self.cancel_token.raise_if_cancelled()
        with self.store.pin() as lease:
            def store_chunk(chunk: Chunk) -> None:
                self.cancel_token.raise_if_cancelled()
                lease.add(chunk.hash)
                self.store.put_chunk(chunk.hash, chunk.data)

            stream = self.builder.build_from_file(path, relative_to=relative_to, on_chunk=store_chunk)
            self.cancel_token.raise_if_cancelled()
            self.store.put_stream(stream)

        logger.info(f"Imported {path} [stream_id={stream.stream_id}, chunks={len(stream.chunks)}]")
        return stream

    def import_tree(self, path: Union[str, os.PathLike]) -> Tree:
        """Import a directory recursively and commit its tree manifests locally."""
        tree = build_tree(
            Path(path),
            import_file=self.import_file,
            commit_tree=self.store.put_tree,
            algorithm=self.store.algorithm,
        )
        logger.info(f"Imported directory {path} [tree_id={tree.tree_id}]")
        return tree

    # Streams

    def push(self, stream_or_id: Union[Stream, str]) -> SyncReport:
        """
        Publish a locally committed stream to the repository.

        Returns:
            SyncReport ending in DONE

        Raises:
            SyncFailedError: Transient failures exhausted their retries
            SyncCancelledError: The cancel token was set
            ChunkSyncError: Any non-retryable failure; exc.report holds the FAILED report
        """
        stream_id = stream_or_id.stream_id if isinstance(stream_or_id, Stream) else stream_or_id
        report = SyncReport("push", stream_id)
        logger.info(f"Push started [stream_id={stream_id}]")

        try:
            stream = stream_or_id if isinstance(stream_or_id, Stream) else self.store.get_stream(stream_id)
            hashes = stream.unique_chunks()
            with self.store.pin(hashes):
                present = self._parallel(
                    hashes, lambda h: self.retry.call(self.repository.has_chunk, h, description=f"has_chunk {h[:12]}")
                )
                missing = [h for h in hashes if not present[h]]
                report.skipped = [h for h in hashes if present[h]]

                report.advance(SyncState.TRANSFERRING)
                self._parallel(
                    missing,
                    lambda h: self.retry.call(self._upload_chunk, h, description=f"upload {h[:12]}"),
                    on_done=lambda h, _: report.transferred.append(h),
                    report=report,
                )

                report.advance(SyncState.VERIFYING)
                confirmed = set(report.skipped) | set(report.transferred)
                unconfirmed = [h for h in hashes if h not in confirmed]
                if unconfirmed:
                    raise IncompleteStreamError(stream_id, unconfirmed)

                report.advance(SyncState.COMMITTING)
                self.cancel_token.raise_if_cancelled()
                report.created = self.retry.call(
                    self.repository.put_stream, stream, description=f"put_stream {stream_id[:12]}"
                )
                report.advance(SyncState.DONE)
        except Exception as e:
            failure = self._failure(report, e)
            if failure is e:
                raise
            raise failure from e

        logger.info(
            f"Push completed [stream_id={stream_id}, transferred={len(report.transferred)}, "
            f"skipped={len(report.skipped)}, created={report.created}]"
        )
        return report

    def push_file(self, path: Union[str, os.PathLike], relative_to=None) -> SyncReport:
        """Import a file locally, then push its stream."""
        return self.push(self.import_file(path, relative_to=relative_to))

    def pull(self, stream_id: str, dest: Optional[Union[str, os.PathLike]] = None) -> SyncReport:
        """
        Fetch a stream from the repository, commit it locally and optionally
        reconstruct its file at dest.

        A missing manifest is terminal (NotFoundError is not retried).
        """
        report = SyncReport("pull", stream_id)
        logger.info(f"Pull started [stream_id={stream_id}]")

        try:
            stream = self.retry.call(self.repository.fetch_stream, stream_id, description=f"fetch_stream {stream_id[:12]}")
            if stream.algorithm != self.store.algorithm:
                raise ValueError(f"Stream {stream_id} uses {stream.algorithm}, store uses {self.store.algorithm}")

            hashes = stream.unique_chunks()
            with self.store.pin(hashes):
                missing = [h for h in hashes if not self.store.has_chunk(h)]
                report.skipped = [h for h in hashes if h not in missing]

                report.advance(SyncState.TRANSFERRING)
                self._parallel(
                    missing,
                    lambda h: self.retry.call(self._download_chunk, h, description=f"download {h[:12]}"),
                    on_done=lambda h, _: report.transferred.append(h),
                    report=report,
                )

                report.advance(SyncState.VERIFYING)
                absent = [h for h in hashes if not self.store.has_chunk(h)]
                if absent:
                    raise IncompleteStreamError(stream_id, absent)

                report.advance(SyncState.COMMITTING)
                self.cancel_token.raise_if_cancelled()
                report.created = self.store.put_stream(stream)
                if dest is not None:
                    self.store.export_stream(stream, dest)
                report.advance(SyncState.DONE)
        except Exception as e:
            failure = self._failure(report, e)
            if failure is e:
                raise
            raise failure from e

        logger.info(
            f"Pull completed [stream_id={stream_id}, transferred={len(report.transferred)}, "
            f"skipped={len(report.skipped)}]"
        )
        return report

    def status(self, stream_or_id: Union[Stream, str]) -> StreamStatus:
        """
        Report which of a stream's chunks the repository lacks and whether
        its manifest is published.
        """
        stream = stream_or_id if isinstance(stream_or_id, Stream) else self.store.get_stream(stream_or_id)
        hashes = stream.unique_chunks()
        present = self._parallel(
            hashes, lambda h: self.retry.call(self.repository.has_chunk, h, description=f"has_chunk {h[:12]}")
        )
        published = self.retry.call(self.repository.has_stream, stream.stream_id)
        return StreamStatus(
            stream_id=stream.stream_id,
            total_chunks=len(hashes),
            missing_chunks=tuple(h for h in hashes if not present[h]),
            published=published,
        )

    # Trees

    def push_tree(self, tree_or_id: Union[Tree, str]) -> SyncReport:
        """
        Publish a locally committed tree: every stream and subtree first,
        then the tree manifest.
        """
        tree_id = tree_or_id.tree_id if isinstance(tree_or_id, Tree) else tree_or_id
        report = SyncReport("push", tree_id)
        logger.info(f"Tree push started [tree_id={tree_id}]")

        try:
            tree = tree_or_id if isinstance(tree_or_id, Tree) else self.store.get_tree(tree_id)
            published = self.retry.call(self.repository.has_tree, tree_id, description=f"has_tree {tree_id[:12]}")

            report.advance(SyncState.TRANSFERRING)
            if not published:
                self._publish_tree_contents(tree, report, set())

            report.advance(SyncState.VERIFYING)
            report.advance(SyncState.COMMITTING)
            self.cancel_token.raise_if_cancelled()
            if not published:
                report.created = self.retry.call(
                    self.repository.put_tree, tree, description=f"put_tree {tree_id[:12]}"
                )
            report.advance(SyncState.DONE)
        except Exception as e:
            failure = self._failure(report, e)
            if failure is e:
                raise
            raise failure from e

        logger.info(f"Tree push completed [tree_id={tree_id}, streams_pushed={len(report.children)}]")
        return report

    def pull_tree(self, tree_id: str, dest: Optional[Union[str, os.PathLike]] = None) -> SyncReport:
        """
        Fetch a tree, its subtrees and streams; commit them locally and
        optionally deploy the directory at dest.
        """
        report = SyncReport("pull", tree_id)
        logger.info(f"Tree pull started [tree_id={tree_id}]")

        try:
            tree = self.retry.call(self.repository.fetch_tree, tree_id, description=f"fetch_tree {tree_id[:12]}")

            report.advance(SyncState.TRANSFERRING)
            self._fetch_tree_contents(tree, report, set())

            report.advance(SyncState.VERIFYING)
            absent = [sid for sid in iter_tree_streams(tree, self.store.get_tree) if not self.store.has_stream(sid)]
            if absent:
                raise IncompleteStreamError(tree_id, absent)

            report.advance(SyncState.COMMITTING)
            self.cancel_token.raise_if_cancelled()
            report.created = self.store.put_tree(tree)
            if dest is not None:
                self.deploy_tree(tree, dest)
            report.advance(SyncState.DONE)
        except Exception as e:
            failure = self._failure(report, e)
            if failure is e:
                raise
            raise failure from e

        logger.info(f"Tree pull completed [tree_id={tree_id}, streams_pulled={len(report.children)}]")
        return report

    def deploy_tree(self, tree_or_id: Union[Tree, str], dest: Union[str, os.PathLike]) -> Path:
        """
        Recreate a locally committed tree at dest.

        Files are hard-linked from the store's export cache when possible and
        copied otherwise; symlinks are recreated.
        """
        tree = tree_or_id if isinstance(tree_or_id, Tree) else self.store.get_tree(tree_or_id)
        deploy_tree(tree, Path(dest), self.store.get_tree, self._materialize)
        logger.info(f"Deployed tree {tree.tree_id[:16]} to {dest}")
        return Path(dest)

    # Internals

    def _upload_chunk(self, chunk_hash: str) -> bool:
        self.cancel_token.raise_if_cancelled()
        data = self.store.get_chunk(chunk_hash)
        return self.repository.put_chunk(chunk_hash, data)

    def _download_chunk(self, chunk_hash: str) -> bool:
        self.cancel_token.raise_if_cancelled()
        data = self.repository.fetch_chunk(chunk_hash)
        actual = compute_digest(data, self.store.algorithm)
        if actual != chunk_hash:
            logger.error(f"Downloaded chunk failed verification [hash={chunk_hash}, actual={actual}]")
            raise HashMismatchError(chunk_hash, actual)
        return self.store.put_chunk(chunk_hash, data)

    def _parallel(
        self,
        hashes: Iterable[str],
        func: Callable[[str], object],
        on_done: Optional[Callable[[str, object], None]] = None,
        report: Optional[SyncReport] = None,
    ) -> dict:
        """
        Run func over hashes in the worker pool.

        The first failure cancels pending work and propagates; the failing
        hash is recorded on report.

        Returns:
            Mapping of hash to func's result
        """
        hashes = list(hashes)
        results = {}
        if not hashes:
            return results

        pool = ThreadPoolExecutor(max_workers=self.workers, thread_name_prefix="chunksync")
        try:
            futures = {pool.submit(func, h): h for h in hashes}
            for future in as_completed(futures):
                chunk_hash = futures[future]
                try:
                    results[chunk_hash] = future.result()
                except Exception:
                    if report is not None:
                        report.failure_ids = [chunk_hash]
                    raise
                if on_done is not None:
                    on_done(chunk_hash, results[chunk_hash])
        except BaseException:
            pool.shutdown(wait=True, cancel_futures=True)
            raise
        pool.shutdown(wait=True)
        return results

    def _publish_tree_contents(self, tree: Tree, report: SyncReport, seen: set) -> None:
        for _, stream_id in tree.streams:
            if stream_id in seen:
                continue
            seen.add(stream_id)
            if self.retry.call(self.repository.has_stream, stream_id, description=f"has_stream {stream_id[:12]}"):
                continue
            report.children.append(self.push(stream_id))

        for _, subtree_id in tree.subtrees:
            if subtree_id in seen:
                continue
            seen.add(subtree_id)
            if self.retry.call(self.repository.has_tree, subtree_id, description=f"has_tree {subtree_id[:12]}"):
                continue
            subtree = self.store.get_tree(subtree_id)
            self._publish_tree_contents(subtree, report, seen)
            self.cancel_token.raise_if_cancelled()
            self.retry.call(self.repository.put_tree, subtree, description=f"put_tree {subtree_id[:12]}")

    def _fetch_tree_contents(self, tree: Tree, report: SyncReport, seen: set) -> None:
        for _, stream_id in tree.streams:
            if stream_id in seen or self.store.has_stream(stream_id):
                continue
            seen.add(stream_id)
            report.children.append(self.pull(stream_id))

        for _, subtree_id in tree.subtrees:
            if subtree_id in seen or self.store.has_tree(subtree_id):
                continue
            seen.add(subtree_id)
            subtree = self.retry.call(self.repository.fetch_tree, subtree_id, description=f"fetch_tree {subtree_id[:12]}")
            self._fetch_tree_contents(subtree, report, seen)
            self.cancel_token.raise_if_cancelled()
            self.store.put_tree(subtree)

    def _materialize(self, stream_id: str, path: Path) -> None:
        cached = self.store.cached_export(self.store.get_stream(stream_id))
        try:
            os.link(cached, path)
        except FileExistsError:
            raise
        except OSError as e:
            logger.debug(f"Hard link unavailable for {path} ({e}), copying")
            shutil.copy2(cached, path)

    def _failure(self, report: SyncReport, exc: Exception) -> Exception:
        """
        Mark report FAILED and return the exception the caller should see,
        with the report attached as .report.
        """
        child = getattr(exc, "report", None)
        if isinstance(child, SyncReport) and child is not report and child not in report.children:
            report.children.append(child)

        ids = report.failure_ids
        if not ids and isinstance(child, SyncReport) and child is not report:
            ids = child.failure_ids
        if not ids:
            if isinstance(exc, HashMismatchError):
                ids = [exc.expected]
            elif isinstance(exc, IncompleteStreamError):
                ids = exc.missing
            else:
                ids = [report.target_id]

        kind = _failure_kind(exc)
        report.fail(kind, exc, ids)
        logger.error(
            f"{report.direction.capitalize()} failed [target={report.target_id}, kind={kind.value}, "
            f"ids={','.join(i[:16] for i in report.failure_ids if i)}]: {exc}"
        )

        if isinstance(exc, (TransientError, SyncFailedError)):
            return SyncFailedError(
                f"{report.direction} of {report.target_id} failed after {self.retry.max_retries} retries: {exc}",
                report,
            )
        exc.report = report
        return exc
