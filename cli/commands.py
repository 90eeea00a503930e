"""Command handler functions for CLI operations."""

from pathlib import Path
from typing import Optional

from common.exceptions import ChunkSyncError
from common.logging_config import get_logger
from common.types import Stream
from cli.config import Config
from cli.constants import EXIT_FAILED, EXIT_USAGE, GREEN, RED, RESET
from cli.models import (
    CommandResult,
    GcCommand,
    PullCommand,
    PushCommand,
    ServeCommand,
    StatusCommand,
    VerifyCommand,
)
from cli.utils import format_failure, format_file_size, format_report, format_status, short_id
from engine.sync_engine import SyncEngine
from repository.factory import open_repository
from repository.main import serve
from store.content_store import ContentStore
from streams.tree import build_tree

logger = get_logger(__name__)


_config: Optional[Config] = None
_store: Optional[ContentStore] = None
_engine: Optional[SyncEngine] = None


def get_config() -> Config:
    global _config
    if _config is None:
        _config = Config()
    return _config


def get_store() -> ContentStore:
    """
    Get or open the global local ContentStore.

    Returns:
        Open ContentStore instance
    """
    global _store
    if _store is None:
        config = get_config()
        logger.debug(f"Opening content store at {config.get_store_path()}")
        _store = ContentStore(config.get_store_path(), config.get_hash_algorithm()).open()
    return _store


def get_engine() -> SyncEngine:
    """
    Get or create global SyncEngine instance.

    Returns:
        SyncEngine bound to the configured store and repository

    Raises:
        ValueError: If no repository is configured
    """
    global _engine
    if _engine is None:
        config = get_config()
        location = config.get_repository()
        if not location:
            raise ValueError(
                "No repository configured: set CHUNKSYNC_REPOSITORY or 'repository' in "
                f"{config.config_path}"
            )
        repository = open_repository(
            location,
            compression=config.get_compression(),
            algorithm=config.get_hash_algorithm(),
            timeout=config.get_timeout(),
        )
        retry_config = config.get_retry_config()
        _engine = SyncEngine(
            get_store(),
            repository,
            workers=config.get_workers(),
            max_retries=retry_config['max_retries'],
            retry_backoff=retry_config['retry_backoff'],
        )
        logger.debug(f"Created SyncEngine [repository={repository!r}]")
    return _engine


def close_session() -> None:
    """Close the global engine's repository and the local store."""
    global _store, _engine
    if _engine is not None:
        _engine.repository.close()
        _engine = None
    if _store is not None:
        _store.close()
        _store = None


def _stream_file_name(stream: Stream) -> str:
    if stream.metadata.path:
        return Path(stream.metadata.path).name
    return stream.stream_id


def handle_push(cmd: PushCommand, engine: Optional[SyncEngine] = None) -> CommandResult:
    """
    Handle 'push' command.

    Args:
        cmd: PushCommand with a file or directory path
        engine: Optional SyncEngine for dependency injection (testing)

    Returns:
        CommandResult with the pushed stream or tree ID
    """
    path = Path(cmd.path).expanduser()
    if not path.exists():
        return CommandResult(f"Error: {cmd.path} does not exist", EXIT_USAGE)

    logger.info(f"Executing push command: path={path}")
    if engine is None:
        engine = get_engine()

    try:
        if path.is_dir():
            tree = engine.import_tree(path)
            report = engine.push_tree(tree)
            label = "tree"
        else:
            report = engine.push_file(path)
            label = "stream"
    except (ChunkSyncError, OSError) as e:
        logger.debug(f"Push command failed: {e}")
        return CommandResult(format_failure(getattr(e, 'report', None), e), EXIT_FAILED)

    return CommandResult(format_report(report, label))


def handle_pull(cmd: PullCommand, engine: Optional[SyncEngine] = None) -> CommandResult:
    """
    Handle 'pull' command.

    The ID is looked up as a tree first and as a stream otherwise. A stream
    pulled into an existing directory is written under its recorded file name.

    Args:
        cmd: PullCommand with object ID and destination
        engine: Optional SyncEngine for dependency injection (testing)

    Returns:
        CommandResult describing where the content was written
    """
    logger.info(f"Executing pull command: id={cmd.object_id} dest={cmd.dest}")
    if engine is None:
        engine = get_engine()

    dest = Path(cmd.dest).expanduser()
    try:
        if engine.repository.has_tree(cmd.object_id):
            report = engine.pull_tree(cmd.object_id, dest)
            target = dest
            label = "tree"
        else:
            report = engine.pull(cmd.object_id)
            stream = engine.store.get_stream(cmd.object_id)
            target = dest / _stream_file_name(stream) if dest.is_dir() else dest
            engine.store.export_stream(stream, target)
            label = "stream"
    except (ChunkSyncError, OSError) as e:
        logger.debug(f"Pull command failed: {e}")
        return CommandResult(format_failure(getattr(e, 'report', None), e), EXIT_FAILED)

    return CommandResult(f"{format_report(report, label)}\n  written to: {target}")


def handle_status(cmd: StatusCommand, engine: Optional[SyncEngine] = None) -> CommandResult:
    """
    Handle 'status' command.

    Chunks the path in memory (nothing is written to the store) and asks
    the repository which chunks and manifests it lacks.

    Args:
        cmd: StatusCommand with a file or directory path
        engine: Optional SyncEngine for dependency injection (testing)

    Returns:
        CommandResult with one line per file
    """
    path = Path(cmd.path).expanduser()
    if not path.exists():
        return CommandResult(f"Error: {cmd.path} does not exist", EXIT_USAGE)
    if engine is None:
        engine = get_engine()

    try:
        if not path.is_dir():
            stream = engine.builder.build_from_file(path)
            return CommandResult(format_status(engine.status(stream), path.name))

        lines = []

        def check_file(file_path: Path) -> Stream:
            stream = engine.builder.build_from_file(file_path)
            lines.append(format_status(engine.status(stream), file_path.relative_to(path).as_posix()))
            return stream

        tree = build_tree(path, check_file, lambda _: None, engine.store.algorithm)
        published = engine.repository.has_tree(tree.tree_id)
    except (ChunkSyncError, OSError) as e:
        return CommandResult(format_failure(None, e), EXIT_FAILED)

    state = f"{GREEN}published{RESET}" if published else "not published"
    header = f"tree {short_id(tree.tree_id)}: {state}"
    return CommandResult("\n".join([header] + lines))


def handle_gc(cmd: GcCommand, store: Optional[ContentStore] = None) -> CommandResult:
    """
    Handle 'gc' command.

    Args:
        cmd: GcCommand
        store: Optional ContentStore for dependency injection (testing)

    Returns:
        CommandResult with reclaimed chunk count
    """
    logger.info("Executing gc command")
    if store is None:
        store = get_store()
    reclaimed = store.gc()
    stats = store.stats()
    return CommandResult(
        f"{GREEN}✓{RESET} Reclaimed {reclaimed} chunks; store holds {stats.chunk_count} chunks "
        f"({format_file_size(stats.stored_bytes)}) in {stats.stream_count} streams"
    )


def handle_verify(cmd: VerifyCommand, store: Optional[ContentStore] = None) -> CommandResult:
    """
    Handle 'verify' command.

    Returns:
        CommandResult listing corrupt chunks (exit code 1 if any)
    """
    logger.info("Executing verify command")
    if store is None:
        store = get_store()
    corrupt = store.verify()
    if not corrupt:
        return CommandResult(f"{GREEN}✓{RESET} All chunks verified")
    lines = [f"{RED}✗{RESET} {len(corrupt)} corrupt chunks:"]
    lines.extend(f"  {chunk_hash}" for chunk_hash in corrupt)
    return CommandResult("\n".join(lines), EXIT_FAILED)


def handle_serve(cmd: ServeCommand, config: Optional[Config] = None) -> CommandResult:
    """
    Handle 'serve' command. Blocks until the server stops.

    Args:
        cmd: ServeCommand with optional host, port and repository directory
        config: Optional Config for dependency injection (testing)
    """
    if config is None:
        config = get_config()
    host, port = config.get_server_address()
    serve(
        root=cmd.root,
        host=cmd.host or host,
        port=cmd.port or port,
        compression=config.get_compression(),
        algorithm=config.get_hash_algorithm(),
    )
    return CommandResult("Server stopped")
