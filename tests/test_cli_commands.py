"""Tests for CLI command handlers."""

from unittest.mock import Mock

import pytest

from common.exceptions import SyncFailedError
from common.hashing import compute_digest
from cli.commands import (
    handle_gc,
    handle_pull,
    handle_push,
    handle_serve,
    handle_status,
    handle_verify,
)
from cli.constants import EXIT_FAILED, EXIT_OK, EXIT_USAGE
from cli.main import run_command
from cli.models import (
    GcCommand,
    PullCommand,
    PushCommand,
    ServeCommand,
    StatusCommand,
    VerifyCommand,
)
from cli.repl import dispatch_command
from engine.state import FailureKind, SyncReport
from engine.sync_engine import SyncEngine
from conftest import random_bytes


@pytest.fixture
def engine(store, fs_repository, small_builder):
    return SyncEngine(store, fs_repository, workers=2, retry_backoff=0, builder=small_builder)


@pytest.fixture
def puller(other_store, fs_repository, small_builder):
    return SyncEngine(other_store, fs_repository, workers=2, retry_backoff=0, builder=small_builder)


def test_handle_push_file(engine, make_file):
    """Test push of a single file reports its stream ID."""
    path = make_file("report.bin", random_bytes(3000))

    result = handle_push(PushCommand(path=str(path)), engine=engine)

    assert result.exit_code == EXIT_OK
    assert "Pushed stream" in result.message
    assert "chunks transferred: 3" in result.message
    assert engine.store.list_streams()[0] in result.message


def test_handle_push_directory(engine, make_file, files_dir):
    make_file("a.txt", b"a")
    make_file("nested/b.txt", b"b")

    result = handle_push(PushCommand(path=str(files_dir)), engine=engine)

    assert result.exit_code == EXIT_OK
    assert "Pushed tree" in result.message
    assert len(engine.store.list_trees()) == 2
    assert any(tree_id in result.message for tree_id in engine.store.list_trees())


def test_handle_push_twice_is_up_to_date(engine, make_file):
    path = make_file("f.bin", b"same")
    handle_push(PushCommand(path=str(path)), engine=engine)

    result = handle_push(PushCommand(path=str(path)), engine=engine)

    assert "already up to date" in result.message


def test_handle_push_missing_path(tmp_path):
    """Test a nonexistent path is a usage error, before any engine is needed."""
    result = handle_push(PushCommand(path=str(tmp_path / "nope")))
    assert result.exit_code == EXIT_USAGE


def test_handle_push_failure_lists_ids(make_file):
    """Test failed syncs exit 1 and name the IDs involved."""
    report = SyncReport("push", "f" * 64)
    report.fail(FailureKind.TRANSIENT_EXHAUSTED, Exception("unreachable"), ["c" * 64])
    mock_engine = Mock(spec=SyncEngine)
    mock_engine.push_file.side_effect = SyncFailedError("push failed", report)

    result = handle_push(PushCommand(path=str(make_file("f.bin", b"x"))), engine=mock_engine)

    assert result.exit_code == EXIT_FAILED
    assert "transient_exhausted" in result.message
    assert "c" * 64 in result.message


def test_handle_pull_stream_to_file(engine, puller, make_file, tmp_path):
    data = random_bytes(2500)
    pushed = engine.push_file(make_file("f.bin", data))
    dest = tmp_path / "restored.bin"

    result = handle_pull(PullCommand(object_id=pushed.target_id, dest=str(dest)), engine=puller)

    assert result.exit_code == EXIT_OK
    assert dest.read_bytes() == data
    assert str(dest) in result.message


def test_handle_pull_stream_into_directory(engine, puller, make_file, tmp_path):
    pushed = engine.push_file(make_file("f.bin", b"payload"))
    dest = tmp_path / "downloads"
    dest.mkdir()

    handle_pull(PullCommand(object_id=pushed.target_id, dest=str(dest)), engine=puller)

    assert (dest / pushed.target_id).read_bytes() == b"payload"


def test_handle_pull_tree(engine, puller, make_file, files_dir, tmp_path):
    make_file("a.txt", b"alpha")
    make_file("sub/b.txt", b"beta")
    pushed = engine.push_tree(engine.import_tree(files_dir))
    dest = tmp_path / "deployed"

    result = handle_pull(PullCommand(object_id=pushed.target_id, dest=str(dest)), engine=puller)

    assert result.exit_code == EXIT_OK
    assert "Pulled tree" in result.message
    assert (dest / "sub" / "b.txt").read_bytes() == b"beta"


def test_handle_pull_unknown_id(puller, tmp_path):
    missing = compute_digest(b"unknown")

    result = handle_pull(PullCommand(object_id=missing, dest=str(tmp_path / "x")), engine=puller)

    assert result.exit_code == EXIT_FAILED
    assert "not_found" in result.message


def test_handle_status_file(engine, make_file):
    path = make_file("f.bin", random_bytes(3000))

    before = handle_status(StatusCommand(path=str(path)), engine=engine)
    engine.push_file(path)
    after = handle_status(StatusCommand(path=str(path)), engine=engine)

    assert "3/3 chunks missing" in before.message
    assert "not published" in before.message
    assert "up to date" in after.message


def test_handle_status_does_not_write_to_store(engine, make_file):
    handle_status(StatusCommand(path=str(make_file("f.bin", b"data"))), engine=engine)
    assert engine.store.stats().chunk_count == 0


def test_handle_status_directory(engine, make_file, files_dir):
    make_file("a.txt", b"alpha")
    make_file("sub/b.txt", b"beta")

    before = handle_status(StatusCommand(path=str(files_dir)), engine=engine)
    engine.push_tree(engine.import_tree(files_dir))
    after = handle_status(StatusCommand(path=str(files_dir)), engine=engine)

    assert "not published" in before.message.splitlines()[0]
    assert "sub/b.txt" in before.message
    assert "not published" not in after.message.splitlines()[0]


def test_handle_gc(store):
    store.put_chunk(compute_digest(b"orphan"), b"orphan")

    result = handle_gc(GcCommand(), store=store)

    assert "Reclaimed 1 chunks" in result.message
    assert result.exit_code == EXIT_OK


def test_handle_verify(store, tmp_path):
    key = compute_digest(b"chunk")
    store.put_chunk(key, b"chunk")
    assert handle_verify(VerifyCommand(), store=store).exit_code == EXIT_OK

    (tmp_path / "store" / "chunks" / key[:2] / key).write_bytes(b"rot")
    result = handle_verify(VerifyCommand(), store=store)

    assert result.exit_code == EXIT_FAILED
    assert key in result.message


def test_handle_serve_uses_config_defaults(temp_config, monkeypatch):
    calls = []
    monkeypatch.setattr('cli.commands.serve', lambda **kwargs: calls.append(kwargs))

    handle_serve(ServeCommand(root="/srv/repo", port=9100), config=temp_config)

    assert calls == [{
        'root': '/srv/repo',
        'host': '0.0.0.0',
        'port': 9100,
        'compression': 'none',
        'algorithm': 'sha256',
    }]


def test_dispatch_without_repository_is_usage_error(temp_config, make_file, monkeypatch):
    """Test a missing repository location is reported, not raised."""
    monkeypatch.setattr('cli.commands._config', temp_config)
    monkeypatch.setattr('cli.commands._engine', None)

    result = dispatch_command(PushCommand(path=str(make_file("f.bin", b"x"))))

    assert result.exit_code == EXIT_USAGE
    assert "No repository configured" in result.message


def test_run_command_parse_error(capsys):
    assert run_command(["push"]) == EXIT_USAGE
    assert "push requires" in capsys.readouterr().err


def test_run_command_help(capsys):
    assert run_command(["--help"]) == EXIT_OK
    assert "push" in capsys.readouterr().out
