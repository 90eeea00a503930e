"""Project-wide constants (chunk size, store layout, protocol versions)."""

CHUNK_SIZE_BYTES: int = 4 * 1024 * 1024  # 4 MiB fixed chunk size
READ_PIECE_SIZE: int = 64 * 1024

DEFAULT_HASH_ALGORITHM: str = "sha256"
MANIFEST_FORMAT_VERSION: int = 1

STORE_CHUNKS_DIR: str = "chunks"
STORE_STREAMS_DIR: str = "streams"
STORE_TREES_DIR: str = "trees"
STORE_EXPORTS_DIR: str = "exports"
STORE_INDEX_FILE: str = "index.db"
SHARD_PREFIX_LENGTH: int = 2
LOCK_STRIPES: int = 64

DEFAULT_WORKERS: int = 4
DEFAULT_MAX_RETRIES: int = 3
DEFAULT_RETRY_BACKOFF_SECONDS: float = 0.5

DEFAULT_SERVER_HOST: str = "0.0.0.0"
DEFAULT_SERVER_PORT: int = 8700
