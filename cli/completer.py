"""Custom completer for the chunksync shell with local path completion."""

from typing import Iterable

from prompt_toolkit.completion import Completer, Completion, PathCompleter
from prompt_toolkit.document import Document

from cli.constants import COMMANDS, PATH_COMMANDS


class ChunkSyncCompleter(Completer):
    """
    Custom completer that provides:
    - Command name completion for the first token
    - Local path completion for 'push'/'status' and for the destination of 'pull'
    - Directory completion for 'serve'
    """

    def __init__(self):
        self._paths = PathCompleter(expanduser=True)
        self._dirs = PathCompleter(expanduser=True, only_directories=True)

    def get_completions(
        self, document: Document, complete_event
    ) -> Iterable[Completion]:
        """
        Generate completions based on cursor position and context.
        """
        text = document.text_before_cursor
        tokens = text.split()

        is_typing_new_token = text.endswith(" ") or not tokens

        if not tokens or (len(tokens) == 1 and not is_typing_new_token):
            yield from self._complete_commands(tokens[0] if tokens else "")
            return

        command = tokens[0].lower()
        arg_index = len(tokens) - (0 if is_typing_new_token else 1)
        current_word = "" if is_typing_new_token else tokens[-1]

        if command in PATH_COMMANDS and arg_index == 1:
            yield from self._complete_path(self._paths, current_word, complete_event)
        elif command == "pull" and arg_index == 2:
            yield from self._complete_path(self._paths, current_word, complete_event)
        elif command == "serve" and not current_word.startswith("--"):
            previous = tokens[-1] if is_typing_new_token else (tokens[-2] if len(tokens) > 1 else "")
            if previous not in ("--host", "--port"):
                yield from self._complete_path(self._dirs, current_word, complete_event)

    def _complete_commands(self, partial: str) -> Iterable[Completion]:
        """Complete command names matching the partial input."""
        partial_lower = partial.lower()
        for cmd in COMMANDS:
            if cmd.startswith(partial_lower):
                yield Completion(cmd, start_position=-len(partial))

    def _complete_path(self, completer: PathCompleter, partial: str, complete_event) -> Iterable[Completion]:
        """Delegate to a PathCompleter on the word under the cursor."""
        sub_document = Document(partial, cursor_position=len(partial))
        yield from completer.get_completions(sub_document, complete_event)
