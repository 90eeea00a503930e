"""CLI constants and configuration."""

from prompt_toolkit.styles import Style

COMMANDS = ["push", "pull", "status", "gc", "verify", "serve", "clear", "exit", "help"]

PATH_COMMANDS = ("push", "status")

STYLE = Style.from_dict(
    {
        "prompt": "#2FA4A9 bold",
        "command": "#0088ff bold",
    }
)

TEAL = "\033[38;2;47;164;169m"
GREEN = "\033[32m"
YELLOW = "\033[33m"
RED = "\033[31m"
RESET = "\033[0m"

CONFIG_DIR_NAME = ".chunksync"
CONFIG_FILE_NAME = "config.json"

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_USAGE = 2

LOGO = f"""{TEAL}
       _                 _
   ___| |__  _   _ _ __ | | _____ _   _ _ __   ___
  / __| '_ \\| | | | '_ \\| |/ / __| | | | '_ \\ / __|
 | (__| | | | |_| | | | |   <\\__ \\ |_| | | | | (__
  \\___|_| |_|\\__,_|_| |_|_|\\_\\___/\\__, |_| |_|\\___|
                                  |___/
{RESET}"""

WELCOME_TITLE = "chunksync - content-addressed file sync"
WELCOME_HELP = "Type 'help' for commands or 'exit' to quit.\n"

PROMPT_TEXT = "chunksync> "

HELP_TEXT = """Available commands:
  push <path>                         Chunk a file (or directory) locally and publish it
  pull <id> <dest>                    Fetch a stream or tree by ID and write it to dest
  status <path>                       Show which chunks/manifests the repository is missing
  gc                                  Reclaim unreferenced chunks in the local store
  verify                              Re-hash every chunk in the local store
  serve [--host H] [--port P] [dir]   Serve a directory repository over HTTP
  clear                               Clear screen and redisplay welcome message
  help                                Show this help
  exit                                Exit REPL

Examples:
  push data/report.pdf
  push photos/
  status data/report.pdf
  pull 3f2a...e9 restored/report.pdf
  serve --port 8700 /srv/chunksync"""
