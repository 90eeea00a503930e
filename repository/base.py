"""Repository capability set shared by every remote variant."""

from typing import Protocol, runtime_checkable

from common.types import Stream, Tree


@runtime_checkable
class Repository(Protocol):
    """
    Remote content store that a SyncEngine pushes to and pulls from.

    Implementations must be safe to call concurrently from engine workers.
    Every put is idempotent: putting content that is already present is a
    no-op rather than an error. Puts return True when the content was new.

    Errors:
        TransientError: Retryable failure (network, rate limiting, server trouble)
        NotFoundError: The requested chunk or manifest is absent
        HashMismatchError: Received bytes do not match their key
        IncompleteStreamError: A manifest references content the repository lacks
        ImmutableConflictError: A different manifest already exists under the ID
    """

    def has_chunk(self, chunk_hash: str) -> bool:
        ...

    def fetch_chunk(self, chunk_hash: str) -> bytes:
        ...

    def put_chunk(self, chunk_hash: str, data: bytes) -> bool:
        ...

    def has_stream(self, stream_id: str) -> bool:
        ...

    def fetch_stream(self, stream_id: str) -> Stream:
        ...

    def put_stream(self, stream: Stream) -> bool:
        ...

    def has_tree(self, tree_id: str) -> bool:
        ...

    def fetch_tree(self, tree_id: str) -> Tree:
        ...

    def put_tree(self, tree: Tree) -> bool:
        ...

    def close(self) -> None:
        ...
