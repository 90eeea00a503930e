"""Configuration settings for the HTTP repository server."""

import os

from common.constants import DEFAULT_HASH_ALGORITHM, DEFAULT_SERVER_HOST, DEFAULT_SERVER_PORT


REPOSITORY_ROOT = os.environ.get("CHUNKSYNC_REPOSITORY_ROOT", "./chunksync-repository")

SERVER_HOST = os.environ.get("CHUNKSYNC_SERVER_HOST", DEFAULT_SERVER_HOST)

SERVER_PORT = int(os.environ.get("CHUNKSYNC_SERVER_PORT", str(DEFAULT_SERVER_PORT)))

REPOSITORY_COMPRESSION = os.environ.get("CHUNKSYNC_REPOSITORY_COMPRESSION", "none")

REPOSITORY_HASH_ALGORITHM = os.environ.get("CHUNKSYNC_HASH_ALGORITHM", DEFAULT_HASH_ALGORITHM)
