"""Resolve a repository location string into a Repository instance."""

from pathlib import Path
from urllib.parse import unquote, urlparse

from common.constants import DEFAULT_HASH_ALGORITHM
from repository.base import Repository
from repository.filesystem import FilesystemRepository
from repository.http_client import DEFAULT_TIMEOUT, HttpRepository


def open_repository(
    location: str,
    compression: str = "none",
    algorithm: str = DEFAULT_HASH_ALGORITHM,
    timeout: float = DEFAULT_TIMEOUT,
) -> Repository:
    """
    Open the repository a location names.

    Args:
        location: http(s):// URL, file:// URL or plain directory path
        compression: At-rest chunk compression for directory repositories
        algorithm: Digest algorithm for directory repositories
        timeout: Request timeout for HTTP repositories

    Returns:
        HttpRepository or FilesystemRepository

    Raises:
        ValueError: If the location is empty or uses an unsupported scheme
    """
    if not location:
        raise ValueError("No repository location configured")

    parsed = urlparse(location)
    if parsed.scheme in ("http", "https"):
        return HttpRepository(location, timeout=timeout)
    if parsed.scheme == "file":
        return FilesystemRepository(Path(unquote(parsed.path)), compression=compression, algorithm=algorithm)
    if parsed.scheme and len(parsed.scheme) > 1:
        raise ValueError(f"Unsupported repository scheme: {parsed.scheme}")
    return FilesystemRepository(Path(location).expanduser(), compression=compression, algorithm=algorithm)
