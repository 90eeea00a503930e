"""Sync state machine, failure taxonomy and per-sync reports."""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple


class SyncState(Enum):
    """Lifecycle of one push or pull."""

    PLANNING = "planning"
    TRANSFERRING = "transferring"
    VERIFYING = "verifying"
    COMMITTING = "committing"
    DONE = "done"
    FAILED = "failed"


class FailureKind(Enum):
    """Why a sync ended in FAILED."""

    TRANSIENT_EXHAUSTED = "transient_exhausted"
    HASH_MISMATCH = "hash_mismatch"
    NOT_FOUND = "not_found"
    IMMUTABLE_CONFLICT = "immutable_conflict"
    INCOMPLETE = "incomplete"
    EMPTY_INPUT = "empty_input"
    MANIFEST_FORMAT = "manifest_format"
    CANCELLED = "cancelled"
    ERROR = "error"


_TRANSITIONS = {
    SyncState.PLANNING: {SyncState.TRANSFERRING, SyncState.FAILED},
    SyncState.TRANSFERRING: {SyncState.VERIFYING, SyncState.FAILED},
    SyncState.VERIFYING: {SyncState.COMMITTING, SyncState.FAILED},
    SyncState.COMMITTING: {SyncState.DONE, SyncState.FAILED},
    SyncState.DONE: set(),
    SyncState.FAILED: set(),
}


@dataclass
class SyncReport:
    """
    Outcome of one push or pull.

    Attributes:
        direction: "push" or "pull"
        target_id: Stream or tree ID being synced
        states: Every state entered, in order
        transferred: Chunk hashes actually sent or received
        skipped: Chunk hashes the destination already held
        failure_kind: Set when the sync ended in FAILED
        failure_ids: Chunk or manifest IDs implicated in the failure
        error: Message of the exception that failed the sync
        created: False when the manifest was already committed at the destination
        children: Reports of the stream syncs a tree sync performed
    """
    direction: str
    target_id: Optional[str] = None
    states: List[SyncState] = field(default_factory=lambda: [SyncState.PLANNING])
    transferred: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    failure_kind: Optional[FailureKind] = None
    failure_ids: List[str] = field(default_factory=list)
    error: Optional[str] = None
    created: bool = False
    children: List["SyncReport"] = field(default_factory=list)

    @property
    def state(self) -> SyncState:
        return self.states[-1]

    @property
    def succeeded(self) -> bool:
        return self.state is SyncState.DONE

    @property
    def total_transferred(self) -> int:
        """Number of chunks moved by this sync and any child syncs."""
        return len(self.transferred) + sum(child.total_transferred for child in self.children)

    def advance(self, state: SyncState) -> None:
        """
        Enter the next state.

        Raises:
            ValueError: If the transition is not allowed
        """
        if state not in _TRANSITIONS[self.state]:
            raise ValueError(f"Illegal sync transition {self.state.value} -> {state.value}")
        self.states.append(state)

    def fail(self, kind: FailureKind, error: BaseException, ids=()) -> None:
        """Mark the sync FAILED (terminal)."""
        if self.state is not SyncState.FAILED:
            self.states.append(SyncState.FAILED)
        self.failure_kind = kind
        self.error = str(error)
        self.failure_ids = list(ids)


@dataclass(frozen=True)
class StreamStatus:
    """
    Remote status of a local stream.

    Attributes:
        stream_id: Stream ID
        total_chunks: Distinct chunks the stream references
        missing_chunks: Distinct chunks the repository does not hold
        published: Whether the repository already holds the manifest
    """
    stream_id: str
    total_chunks: int
    missing_chunks: Tuple[str, ...]
    published: bool

    @property
    def in_sync(self) -> bool:
        return self.published and not self.missing_chunks
