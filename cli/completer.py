"""Custom completer for Chunkup CLI with file path autocompletion."""

from pathlib import Path
from typing import Iterable

from prompt_toolkit.completion import Completer, Completion
from prompt_toolkit.document import Document

from cli.constants import COMMANDS


class ChunkupCompleter(Completer):
    """
    Custom completer that provides:
    - Command name completion for the first token
    - Local file path completion for the 'upload' command
    """

    def get_completions(
        self, document: Document, complete_event
    ) -> Iterable[Completion]:
        """
        Generate completions based on cursor position and context.

        For the first token, completes command names.
        For the path argument of 'upload', completes entries of the typed directory.
        """
        text = document.text_before_cursor
        tokens = text.split()

        is_typing_new_token = text.endswith(" ") or not tokens

        if not tokens or (len(tokens) == 1 and not is_typing_new_token):
            yield from self._complete_commands(tokens[0] if tokens else "")
            return

        command = tokens[0].lower()
        if command != "upload":
            return

        current_word = "" if is_typing_new_token else tokens[-1]
        previous = tokens[-1] if is_typing_new_token else (tokens[-2] if len(tokens) > 1 else "")
        if previous == "--resume" or current_word.startswith("-"):
            return

        yield from self._complete_paths(current_word)

    def _complete_commands(self, partial: str) -> Iterable[Completion]:
        """Complete command names matching the partial input."""
        partial_lower = partial.lower()
        for cmd in COMMANDS:
            if cmd.startswith(partial_lower):
                yield Completion(cmd, start_position=-len(partial))

    def _complete_paths(self, partial: str) -> Iterable[Completion]:
        """
        Complete file and directory names relative to the working directory.

        Directories are suggested with a trailing slash so completion can
        continue into them; hidden entries are listed only when the partial
        name starts with a dot.
        """
        directory, _, prefix = partial.rpartition("/")
        base = Path(directory).expanduser() if directory else Path.cwd()
        if directory and not partial.startswith("/") and not directory.startswith("~"):
            base = Path.cwd() / directory

        if not base.is_dir():
            return

        try:
            entries = sorted(base.iterdir())
        except OSError:
            return

        for entry in entries:
            name = entry.name
            if name.startswith(".") and not prefix.startswith("."):
                continue
            if not name.startswith(prefix):
                continue
            suffix = "/" if entry.is_dir() else ""
            candidate = f"{directory}/{name}{suffix}" if directory else f"{name}{suffix}"
            yield Completion(candidate, start_position=-len(partial), display=f"{name}{suffix}")
