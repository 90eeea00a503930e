"""At-rest chunk compression codecs (zstd, lz4, xz or none)."""

import lzma
from enum import Enum

import lz4.frame
import zstandard


class CompressionKind(Enum):
    """Compression algorithm selection."""

    NONE = "none"
    ZSTD = "zstd"
    LZ4 = "lz4"
    XZ = "xz"

    @classmethod
    def parse(cls, value) -> "CompressionKind":
        """
        Resolve a config value into a CompressionKind.

        Args:
            value: CompressionKind, name string or None

        Returns:
            Matching CompressionKind (NONE for None/empty)

        Raises:
            ValueError: If the name is unknown
        """
        if isinstance(value, cls):
            return value
        if not value:
            return cls.NONE
        try:
            return cls(str(value).lower())
        except ValueError:
            raise ValueError(f"Unknown compression kind: {value}")

    @property
    def extension(self) -> str:
        """File extension including the dot, empty for NONE."""
        return "" if self is CompressionKind.NONE else f".{self.value}"


ZSTD_LEVEL = 3


def compress(data: bytes, kind: CompressionKind) -> bytes:
    """Compress data with the selected codec."""
    if kind is CompressionKind.ZSTD:
        return zstandard.ZstdCompressor(level=ZSTD_LEVEL).compress(data)
    if kind is CompressionKind.LZ4:
        return lz4.frame.compress(data)
    if kind is CompressionKind.XZ:
        return lzma.compress(data, format=lzma.FORMAT_XZ)
    return data


def decompress(data: bytes, kind: CompressionKind) -> bytes:
    """Decompress data produced by compress() with the same codec."""
    if kind is CompressionKind.ZSTD:
        return zstandard.ZstdDecompressor().decompress(data)
    if kind is CompressionKind.LZ4:
        return lz4.frame.decompress(data)
    if kind is CompressionKind.XZ:
        return lzma.decompress(data, format=lzma.FORMAT_XZ)
    return data
