"""Command parser for CLI input."""

import shlex
from typing import Optional

from cli.models import (
    CommandRequest,
    GcCommand,
    PullCommand,
    PushCommand,
    ServeCommand,
    StatusCommand,
    VerifyCommand,
)


class ParseError(Exception):
    """Raised when command parsing fails."""

    pass


def parse_command(input_line: str) -> CommandRequest:
    """Parse user input into a CommandRequest object.

    Args:
        input_line: Raw user input from REPL

    Returns:
        CommandRequest object (one of Push/Pull/Status/Gc/Verify/Serve)

    Raises:
        ParseError: If command syntax is invalid
    """
    if not input_line.strip():
        raise ParseError("Empty command")

    try:
        tokens = shlex.split(input_line)
    except ValueError as e:
        raise ParseError(f"Invalid syntax: {e}")

    return parse_tokens(tokens)


def parse_tokens(tokens: list[str]) -> CommandRequest:
    """Parse an already split argument list (e.g. sys.argv[1:])."""
    if not tokens:
        raise ParseError("Empty command")

    command_name = tokens[0]

    if command_name == "push":
        return _parse_push(tokens[1:])
    elif command_name == "pull":
        return _parse_pull(tokens[1:])
    elif command_name == "status":
        return _parse_status(tokens[1:])
    elif command_name == "gc":
        _expect_no_args("gc", tokens[1:])
        return GcCommand()
    elif command_name == "verify":
        _expect_no_args("verify", tokens[1:])
        return VerifyCommand()
    elif command_name == "serve":
        return _parse_serve(tokens[1:])
    else:
        raise ParseError(f"Unknown command: {command_name}")


def _parse_push(args: list[str]) -> PushCommand:
    """Parse 'push <path>' command."""
    if len(args) != 1:
        raise ParseError("push requires exactly 1 argument: <path>")
    return PushCommand(path=args[0])


def _parse_pull(args: list[str]) -> PullCommand:
    """Parse 'pull <id> <dest>' command."""
    if len(args) != 2:
        raise ParseError("pull requires exactly 2 arguments: <id> <dest>")
    object_id, dest = args
    return PullCommand(object_id=object_id.lower(), dest=dest)


def _parse_status(args: list[str]) -> StatusCommand:
    """Parse 'status <path>' command."""
    if len(args) != 1:
        raise ParseError("status requires exactly 1 argument: <path>")
    return StatusCommand(path=args[0])


def _expect_no_args(command_name: str, args: list[str]) -> None:
    if args:
        raise ParseError(f"{command_name} takes no arguments")


def _parse_serve(args: list[str]) -> ServeCommand:
    """Parse 'serve [--host H] [--port P] [<repo-dir>]' command."""
    host: Optional[str] = None
    port: Optional[int] = None
    root: Optional[str] = None

    remaining = list(args)
    while remaining:
        arg = remaining.pop(0)
        if arg in ("--host", "--port"):
            if not remaining:
                raise ParseError(f"{arg} requires a value")
            value = remaining.pop(0)
            if arg == "--host":
                host = value
            else:
                port = _parse_port(value)
        elif arg.startswith("--"):
            raise ParseError(f"Unknown option for serve: {arg}")
        elif root is None:
            root = arg
        else:
            raise ParseError("serve accepts at most one repository directory")

    return ServeCommand(root=root, host=host, port=port)


def _parse_port(value: str) -> int:
    try:
        port = int(value)
    except ValueError:
        raise ParseError(f"Invalid port: {value}")
    if not 0 < port < 65536:
        raise ParseError(f"Port out of range: {port}")
    return port
