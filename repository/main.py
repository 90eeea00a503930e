"""Entry point for the HTTP repository server."""

from typing import Optional

import uvicorn

from common.logging_config import setup_logging
from repository.config import (
    REPOSITORY_COMPRESSION,
    REPOSITORY_HASH_ALGORITHM,
    REPOSITORY_ROOT,
    SERVER_HOST,
    SERVER_PORT,
)
from repository.filesystem import FilesystemRepository
from repository.server import create_app


def serve(
    root: Optional[str] = None,
    host: Optional[str] = None,
    port: Optional[int] = None,
    compression: Optional[str] = None,
    algorithm: Optional[str] = None,
    log_level: Optional[str] = None,
) -> None:
    """
    Serve a directory repository over HTTP until interrupted.

    Args:
        root: Repository directory (CHUNKSYNC_REPOSITORY_ROOT if None)
        host: Bind address (CHUNKSYNC_SERVER_HOST if None)
        port: Bind port (CHUNKSYNC_SERVER_PORT if None)
        compression: At-rest chunk compression
        algorithm: Digest algorithm chunks are keyed by
        log_level: Logging level name
    """
    logger = setup_logging('repository', log_level)

    repository = FilesystemRepository(
        root or REPOSITORY_ROOT,
        compression=compression or REPOSITORY_COMPRESSION,
        algorithm=algorithm or REPOSITORY_HASH_ALGORITHM,
    )
    app = create_app(repository)

    host = host or SERVER_HOST
    port = port or SERVER_PORT
    logger.info(f"Repository server starting on {host}:{port} [root={repository.root}]")
    uvicorn.run(app, host=host, port=port, log_level=(log_level or "info").lower())


def main() -> None:
    """
    Start the repository server with settings from the environment.
    """
    serve()


if __name__ == "__main__":
    main()
