"""CLI entry point."""

import sys
import os

from common.logging_config import setup_logging
from cli.commands import close_session
from cli.constants import EXIT_OK, EXIT_USAGE, HELP_TEXT
from cli.parser import ParseError, parse_tokens
from cli.repl import dispatch_command, repl_loop


def run_command(argv: list[str]) -> int:
    """
    Run one command given on the command line.

    Args:
        argv: Arguments after the program name, without --debug

    Returns:
        Process exit code (0 ok, 1 failed sync, 2 usage error)
    """
    if argv[0] in ("help", "--help", "-h"):
        print(HELP_TEXT)
        return EXIT_OK

    try:
        cmd_obj = parse_tokens(argv)
    except ParseError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_USAGE

    result = dispatch_command(cmd_obj)
    print(result.message, file=sys.stdout if result.exit_code == 0 else sys.stderr)
    return result.exit_code


def main() -> None:
    """Entry point for CLI."""
    debug = '--debug' in sys.argv
    log_level = 'DEBUG' if debug else os.getenv('LOG_LEVEL', 'WARNING')

    logger = setup_logging('cli', log_level=log_level)

    if debug:
        logger.info("Debug logging enabled")
    argv = [arg for arg in sys.argv[1:] if arg != '--debug']

    logger.info("CLI starting...")
    exit_code = 0
    try:
        if argv:
            exit_code = run_command(argv)
        else:
            repl_loop()
    except Exception as e:
        logger.error(f"CLI error: {e}", exc_info=True)
        raise
    finally:
        close_session()
        logger.info("CLI exiting")
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
