"""Interactive chunksync shell built on prompt_toolkit."""

import os
import sys

from prompt_toolkit import PromptSession
from prompt_toolkit.history import InMemoryHistory

from common.logging_config import get_logger
from cli.commands import (
    handle_gc,
    handle_pull,
    handle_push,
    handle_serve,
    handle_status,
    handle_verify,
)
from cli.completer import ChunkSyncCompleter
from cli.constants import (
    EXIT_USAGE,
    HELP_TEXT,
    LOGO,
    PROMPT_TEXT,
    STYLE,
    WELCOME_HELP,
    WELCOME_TITLE,
)
from cli.models import (
    CommandResult,
    GcCommand,
    PullCommand,
    PushCommand,
    ServeCommand,
    StatusCommand,
    VerifyCommand,
)
from cli.parser import ParseError, parse_command

logger = get_logger(__name__)

HANDLERS = {
    PushCommand: handle_push,
    PullCommand: handle_pull,
    StatusCommand: handle_status,
    GcCommand: handle_gc,
    VerifyCommand: handle_verify,
    ServeCommand: handle_serve,
}


def clear_screen() -> None:
    """Clear the terminal screen (cross-platform)."""
    os.system("cls" if sys.platform == "win32" else "clear")


def show_welcome() -> None:
    print(LOGO)
    print(WELCOME_TITLE)
    print(WELCOME_HELP)


def dispatch_command(cmd_obj) -> CommandResult:
    """
    Run the handler for a parsed command.

    Configuration problems (ValueError) become usage errors rather than
    tracebacks.
    """
    handler = HANDLERS.get(type(cmd_obj))
    if handler is None:
        return CommandResult(f"Unknown command type: {type(cmd_obj)}", EXIT_USAGE)
    try:
        return handler(cmd_obj)
    except ValueError as e:
        logger.debug(f"Command rejected: {e}")
        return CommandResult(f"Error: {e}", EXIT_USAGE)


def repl_loop() -> None:
    """Read commands until 'exit' or end of input."""
    session: PromptSession = PromptSession(
        completer=ChunkSyncCompleter(), history=InMemoryHistory(), style=STYLE
    )

    clear_screen()
    show_welcome()

    while True:
        try:
            line = session.prompt([("class:prompt", PROMPT_TEXT)]).strip()
        except KeyboardInterrupt:
            continue
        except EOFError:
            print("\nGoodbye!")
            break

        if not line:
            continue
        if line == "exit":
            print("Goodbye!")
            break
        if line == "help":
            print(HELP_TEXT)
            continue
        if line == "clear":
            clear_screen()
            show_welcome()
            continue

        try:
            result = dispatch_command(parse_command(line))
        except ParseError as e:
            print(f"Error: {e}")
            continue
        except KeyboardInterrupt:
            print("Interrupted")
            continue
        print(result.message)
