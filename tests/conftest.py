"""Shared pytest fixtures for all tests."""

import os
import random
import threading
from collections import Counter
from pathlib import Path

import pytest

from cli.config import Config
from common.exceptions import TransientError
from repository.filesystem import FilesystemRepository
from store.content_store import ContentStore
from streams.builder import StreamBuilder
from streams.chunker import Chunker

SMALL_CHUNK = 1024


class RecordingRepository:
    """
    Repository wrapper that records every call in order and can inject
    TransientError failures.

    Attributes:
        calls: List of (method, key) tuples, including failed attempts
        on_call: Optional callable(method, key) run before each call
        should_fail: Optional predicate(method, key) forcing a TransientError
    """

    def __init__(self, inner):
        self.inner = inner
        self.calls = []
        self.on_call = None
        self.should_fail = None
        self._failures = Counter()
        self._lock = threading.Lock()

    def fail_next(self, method: str, times: int = 1) -> None:
        """Make the next `times` calls to method raise TransientError."""
        self._failures[method] += times

    def calls_to(self, method: str) -> list:
        return [key for name, key in self.calls if name == method]

    def _record(self, method: str, key: str) -> None:
        with self._lock:
            self.calls.append((method, key))
            injected = self._failures[method] > 0
            if injected:
                self._failures[method] -= 1
        if self.on_call is not None:
            self.on_call(method, key)
        if injected or (self.should_fail is not None and self.should_fail(method, key)):
            raise TransientError(f"injected failure in {method}({key[:12]})")

    def has_chunk(self, chunk_hash):
        self._record("has_chunk", chunk_hash)
        return self.inner.has_chunk(chunk_hash)

    def fetch_chunk(self, chunk_hash):
        self._record("fetch_chunk", chunk_hash)
        return self.inner.fetch_chunk(chunk_hash)

    def put_chunk(self, chunk_hash, data):
        self._record("put_chunk", chunk_hash)
        return self.inner.put_chunk(chunk_hash, data)

    def has_stream(self, stream_id):
        self._record("has_stream", stream_id)
        return self.inner.has_stream(stream_id)

    def fetch_stream(self, stream_id):
        self._record("fetch_stream", stream_id)
        return self.inner.fetch_stream(stream_id)

    def put_stream(self, stream):
        self._record("put_stream", stream.stream_id)
        return self.inner.put_stream(stream)

    def has_tree(self, tree_id):
        self._record("has_tree", tree_id)
        return self.inner.has_tree(tree_id)

    def fetch_tree(self, tree_id):
        self._record("fetch_tree", tree_id)
        return self.inner.fetch_tree(tree_id)

    def put_tree(self, tree):
        self._record("put_tree", tree.tree_id)
        return self.inner.put_tree(tree)

    def close(self):
        self.inner.close()


def random_bytes(size: int, seed: int = 0) -> bytes:
    """Deterministic incompressible test data."""
    return random.Random(seed).randbytes(size)


@pytest.fixture
def store(tmp_path):
    """
    Open a ContentStore in a temporary directory.

    Args:
        tmp_path: pytest tmp_path fixture

    Yields:
        Open ContentStore
    """
    with ContentStore(tmp_path / 'store') as content_store:
        yield content_store


@pytest.fixture
def other_store(tmp_path):
    """Second, independent ContentStore (the pulling side)."""
    with ContentStore(tmp_path / 'other-store') as content_store:
        yield content_store


@pytest.fixture
def fs_repository(tmp_path):
    """FilesystemRepository in a temporary directory."""
    return FilesystemRepository(tmp_path / 'repository')


@pytest.fixture
def recording(fs_repository):
    """RecordingRepository wrapping the filesystem repository."""
    return RecordingRepository(fs_repository)


@pytest.fixture
def small_builder():
    """StreamBuilder with 1 KiB chunks so tests can span many chunks cheaply."""
    return StreamBuilder(Chunker(chunk_size=SMALL_CHUNK))


@pytest.fixture
def files_dir(tmp_path):
    """Directory for test input files."""
    path = tmp_path / 'files'
    path.mkdir()
    return path


@pytest.fixture
def make_file(files_dir):
    """
    Factory writing a file under files_dir.

    Returns:
        Callable(name, data, mode=None) -> Path
    """
    def _make(name: str, data: bytes, mode: int = None) -> Path:
        path = files_dir / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        if mode is not None:
            os.chmod(path, mode)
        return path

    return _make


@pytest.fixture
def temp_config_dir(tmp_path):
    """
    Create temporary config directory.

    Args:
        tmp_path: pytest tmp_path fixture

    Returns:
        Path to temporary .chunksync directory
    """
    config_dir = tmp_path / '.chunksync'
    config_dir.mkdir()
    return config_dir


@pytest.fixture
def temp_config(temp_config_dir, monkeypatch):
    """
    Create temporary config instance (environment overrides cleared).

    Args:
        temp_config_dir: Temporary config directory fixture

    Returns:
        Config instance with temp config file
    """
    monkeypatch.delenv('CHUNKSYNC_STORE_PATH', raising=False)
    monkeypatch.delenv('CHUNKSYNC_REPOSITORY', raising=False)
    return Config(temp_config_dir / 'config.json')
