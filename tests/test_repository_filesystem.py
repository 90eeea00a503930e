"""Tests for the directory-backed repository and repository location parsing."""

from dataclasses import replace

import pytest

from common.compression import CompressionKind
from common.exceptions import (
    HashMismatchError,
    ImmutableConflictError,
    IncompleteStreamError,
    ManifestFormatError,
    NotFoundError,
)
from common.hashing import compute_digest
from common.types import StreamMetadata
from repository.base import Repository
from repository.factory import open_repository
from repository.filesystem import FilesystemRepository
from repository.http_client import HttpRepository
from streams.manifest import new_stream, new_tree
from conftest import random_bytes


def publish_chunks(repository, stream_data, builder):
    return builder.build_from_bytes(stream_data, on_chunk=lambda c: repository.put_chunk(c.hash, c.data))


def test_satisfies_repository_protocol(fs_repository):
    assert isinstance(fs_repository, Repository)


@pytest.mark.parametrize("kind", list(CompressionKind))
def test_chunks_survive_compression(tmp_path, kind):
    """Test each at-rest codec returns the original bytes."""
    repository = FilesystemRepository(tmp_path / "repo", compression=kind)
    data = b"compressible " * 500
    key = compute_digest(data)

    assert repository.put_chunk(key, data) is True
    assert repository.put_chunk(key, data) is False
    assert repository.has_chunk(key)
    assert repository.fetch_chunk(key) == data
    assert (tmp_path / "repo" / "chunks" / key[:2] / f"{key}{kind.extension}").is_file()


def test_zstd_shrinks_repetitive_chunks(tmp_path):
    repository = FilesystemRepository(tmp_path / "repo", compression="zstd")
    data = b"a" * 100_000
    key = compute_digest(data)
    repository.put_chunk(key, data)

    assert (tmp_path / "repo" / "chunks" / key[:2] / f"{key}.zstd").stat().st_size < len(data)


def test_unknown_compression_rejected(tmp_path):
    with pytest.raises(ValueError):
        FilesystemRepository(tmp_path / "repo", compression="brotli")


def test_put_chunk_verifies_hash(fs_repository):
    with pytest.raises(HashMismatchError) as exc_info:
        fs_repository.put_chunk(compute_digest(b"claimed"), b"actual")

    assert exc_info.value.actual == compute_digest(b"actual")
    assert not fs_repository.has_chunk(compute_digest(b"claimed"))


def test_fetch_missing_chunk(fs_repository):
    with pytest.raises(NotFoundError):
        fs_repository.fetch_chunk(compute_digest(b"absent"))


def test_fetch_detects_corruption(fs_repository, tmp_path):
    key = compute_digest(b"payload")
    fs_repository.put_chunk(key, b"payload")
    (tmp_path / "repository" / "chunks" / key[:2] / key).write_bytes(b"bit rot")

    with pytest.raises(HashMismatchError):
        fs_repository.fetch_chunk(key)


class TestStreams:
    """Publishing stream manifests."""

    def test_stream_requires_all_chunks(self, fs_repository, small_builder):
        stream = small_builder.build_from_bytes(random_bytes(3000))

        with pytest.raises(IncompleteStreamError) as exc_info:
            fs_repository.put_stream(stream)

        assert exc_info.value.manifest_id == stream.stream_id
        assert len(exc_info.value.missing) == 3
        assert not fs_repository.has_stream(stream.stream_id)

    def test_publish_and_fetch(self, fs_repository, small_builder):
        stream = publish_chunks(fs_repository, random_bytes(3000), small_builder)

        assert fs_repository.put_stream(stream) is True
        assert fs_repository.put_stream(stream) is False
        assert fs_repository.fetch_stream(stream.stream_id) == stream

    def test_conflicting_manifest(self, fs_repository, small_builder):
        stream = publish_chunks(fs_repository, random_bytes(3000), small_builder)
        fs_repository.put_stream(stream)

        with pytest.raises(ImmutableConflictError):
            fs_repository.put_stream(replace(stream, metadata=replace(stream.metadata, mode=0o600)))

    def test_fetch_missing_stream(self, fs_repository):
        with pytest.raises(NotFoundError):
            fs_repository.fetch_stream(compute_digest(b"nope"))

    def test_other_algorithm_rejected(self, fs_repository):
        """Test an empty blake3 stream is refused by a sha256 repository."""
        stream = new_stream([], StreamMetadata(size=0), algorithm="blake3")

        with pytest.raises(ManifestFormatError):
            fs_repository.put_stream(stream)
        assert not fs_repository.has_stream(stream.stream_id)


class TestTrees:
    """Publishing tree manifests."""

    def test_tree_requires_streams_and_subtrees(self, fs_repository, small_builder):
        stream = publish_chunks(fs_repository, b"content", small_builder)
        child = new_tree(0o755, streams=[("inner", stream.stream_id)])
        parent = new_tree(0o755, subtrees=[("child", child.tree_id)])

        with pytest.raises(IncompleteStreamError):
            fs_repository.put_tree(child)
        fs_repository.put_stream(stream)

        with pytest.raises(IncompleteStreamError):
            fs_repository.put_tree(parent)
        assert fs_repository.put_tree(child) is True
        assert fs_repository.put_tree(parent) is True
        assert fs_repository.fetch_tree(parent.tree_id) == parent
        assert fs_repository.has_tree(child.tree_id)

    def test_fetch_missing_tree(self, fs_repository):
        with pytest.raises(NotFoundError):
            fs_repository.fetch_tree(compute_digest(b"nope"))

    def test_other_algorithm_rejected(self, fs_repository):
        tree = new_tree(0o755, algorithm="blake2b")

        with pytest.raises(ManifestFormatError):
            fs_repository.put_tree(tree)
        assert not fs_repository.has_tree(tree.tree_id)


class TestOpenRepository:
    """Resolving repository locations."""

    def test_plain_path(self, tmp_path):
        repository = open_repository(str(tmp_path / "plain"))

        assert isinstance(repository, FilesystemRepository)
        assert repository.root == tmp_path / "plain"

    def test_file_url(self, tmp_path):
        repository = open_repository(f"file://{tmp_path}/via-url", compression="lz4")

        assert isinstance(repository, FilesystemRepository)
        assert repository.root == tmp_path / "via-url"
        assert repository.compression is CompressionKind.LZ4

    def test_http_url(self):
        repository = open_repository("http://localhost:8700", timeout=5)
        try:
            assert isinstance(repository, HttpRepository)
        finally:
            repository.close()

    @pytest.mark.parametrize("location", ["", "s3://bucket/prefix"])
    def test_rejected_locations(self, location):
        with pytest.raises(ValueError):
            open_repository(location)
