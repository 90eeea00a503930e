"""Command request and result data types for CLI."""

from dataclasses import dataclass
from typing import Literal, Optional


@dataclass(frozen=True)
class PushCommand:
    """Import a file or directory and publish it."""

    path: str
    command: Literal["push"] = "push"


@dataclass(frozen=True)
class PullCommand:
    """Fetch a stream or tree and write it to dest."""

    object_id: str
    dest: str
    command: Literal["pull"] = "pull"


@dataclass(frozen=True)
class StatusCommand:
    """Compare a local file or directory with the repository."""

    path: str
    command: Literal["status"] = "status"


@dataclass(frozen=True)
class GcCommand:
    """Garbage-collect the local store."""

    command: Literal["gc"] = "gc"


@dataclass(frozen=True)
class VerifyCommand:
    """Re-hash every chunk in the local store."""

    command: Literal["verify"] = "verify"


@dataclass(frozen=True)
class ServeCommand:
    """Serve a directory repository over HTTP."""

    root: Optional[str] = None
    host: Optional[str] = None
    port: Optional[int] = None
    command: Literal["serve"] = "serve"


@dataclass(frozen=True)
class CommandResult:
    """Printable outcome of a command plus its process exit code."""

    message: str
    exit_code: int = 0


CommandRequest = (
    PushCommand
    | PullCommand
    | StatusCommand
    | GcCommand
    | VerifyCommand
    | ServeCommand
)
