"""Manages content-addressed blob files on disk: sharded paths, atomic writes, reads."""

import os
import tempfile
from pathlib import Path
from typing import Iterator, Optional

from common.constants import READ_PIECE_SIZE, SHARD_PREFIX_LENGTH


class BlobStorage:
    """
    Blob files addressed by hex key, sharded by key prefix to bound
    directory fan-out: <root>/<key[:2]>/<key><suffix>.
    """

    def __init__(self, root: Path, suffix: str = ""):
        self.root = Path(root)
        self.suffix = suffix

    def ensure_directory(self) -> None:
        """Ensure the blob root exists."""
        self.root.mkdir(parents=True, exist_ok=True)

    def get_path(self, key: str) -> Path:
        """
        Get file path for a blob.

        Args:
            key: Hex content key

        Returns:
            Path object for blob file
        """
        return self.root / key[:SHARD_PREFIX_LENGTH] / f"{key}{self.suffix}"

    def write(self, key: str, data: bytes) -> Path:
        """
        Write blob data atomically (temp file in the shard, fsync, rename).

        Args:
            key: Hex content key
            data: Raw blob bytes

        Returns:
            Path to written file

        Raises:
            OSError: If write operation fails
        """
        path = self.get_path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{key[:8]}.", suffix=".tmp")
        try:
            with os.fdopen(fd, 'wb') as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise
        return path

    def read(self, key: str) -> bytes:
        """
        Read entire blob from disk.

        Raises:
            FileNotFoundError: If blob does not exist
        """
        return self.get_path(key).read_bytes()

    def read_streaming(self, key: str, piece_size: int = READ_PIECE_SIZE) -> Iterator[bytes]:
        """
        Stream blob data in pieces.

        Args:
            key: Hex content key
            piece_size: Size of each piece in bytes (default 64KB)

        Yields:
            Blob data pieces
        """
        with open(self.get_path(key), 'rb') as f:
            while True:
                piece = f.read(piece_size)
                if not piece:
                    break
                yield piece

    def delete(self, key: str) -> bool:
        """
        Delete blob file from disk.

        Returns:
            True if file was deleted, False if it didn't exist
        """
        try:
            self.get_path(key).unlink()
            return True
        except FileNotFoundError:
            return False

    def exists(self, key: str) -> bool:
        return self.get_path(key).is_file()

    def size(self, key: str) -> Optional[int]:
        """
        Get size of blob file in bytes.

        Returns:
            Size in bytes, or None if blob doesn't exist
        """
        try:
            return self.get_path(key).stat().st_size
        except FileNotFoundError:
            return None

    def list_keys(self) -> list[str]:
        """
        List all blob keys in storage.

        Returns:
            List of keys (without suffix)
        """
        if not self.root.exists():
            return []

        keys = []
        for filepath in self.root.glob(f"*/*{self.suffix}"):
            if filepath.name.startswith('.'):
                continue
            name = filepath.name
            keys.append(name[:len(name) - len(self.suffix)] if self.suffix else name)
        return keys
