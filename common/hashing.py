"""Content digest calculation and verification helpers."""

import hashlib
import blake3

from common.constants import DEFAULT_HASH_ALGORITHM

SUPPORTED_ALGORITHMS = ("sha256", "blake2b", "blake3")


def new_hasher(algorithm: str = DEFAULT_HASH_ALGORITHM):
    """
    Create a fresh hash object for the given algorithm.

    Args:
        algorithm: One of SUPPORTED_ALGORITHMS

    Returns:
        Object with update() and hexdigest()

    Raises:
        ValueError: If the algorithm is not supported
    """
    name = algorithm.lower()
    if name == "sha256":
        return hashlib.sha256()
    if name == "blake2b":
        return hashlib.blake2b(digest_size=32)
    if name == "blake3":
        return blake3.blake3()
    raise ValueError(f"Unsupported hash algorithm: {algorithm}")


def compute_digest(data: bytes, algorithm: str = DEFAULT_HASH_ALGORITHM) -> str:
    """
    Compute the hex digest for given data.

    Args:
        data: Bytes to hash
        algorithm: Digest algorithm name

    Returns:
        Hexadecimal digest string
    """
    hasher = new_hasher(algorithm)
    hasher.update(data)
    return hasher.hexdigest()


def is_valid_digest(value: str) -> bool:
    """Check that value looks like a 256-bit lowercase hex digest (every supported algorithm)."""
    if len(value) != 64:
        return False
    return all(c in "0123456789abcdef" for c in value)


class IncrementalDigestCalculator:
    """
    Calculate a digest incrementally for streaming data.

    Usage:
        calculator = IncrementalDigestCalculator()
        calculator.update(piece1)
        calculator.update(piece2)
        digest = calculator.finalize()
    """

    def __init__(self, algorithm: str = DEFAULT_HASH_ALGORITHM):
        self.algorithm = algorithm
        self._hasher = new_hasher(algorithm)
        self._finalized = False
        self._length = 0

    @property
    def length(self) -> int:
        """Number of bytes fed so far."""
        return self._length

    def update(self, data: bytes) -> None:
        """
        Update digest with new data.

        Args:
            data: Bytes to add to digest calculation
        """
        if self._finalized:
            raise ValueError("Cannot update after finalization")
        self._hasher.update(data)
        self._length += len(data)

    def finalize(self) -> str:
        """
        Finalize digest calculation and return result.

        Returns:
            Hexadecimal digest string
        """
        self._finalized = True
        return self._hasher.hexdigest()

