"""Command parser for CLI input."""

import shlex

from cli.models import (
    CancelCommand,
    ClearCommand,
    CommandRequest,
    PauseCommand,
    ResumeCommand,
    SessionsCommand,
    StatusCommand,
    UploadCommand,
)


class ParseError(Exception):
    """Raised when command parsing fails."""

    pass


_NO_ARG_COMMANDS = {
    "pause": PauseCommand,
    "resume": ResumeCommand,
    "cancel": CancelCommand,
    "status": StatusCommand,
    "sessions": SessionsCommand,
}


def parse_command(input_line: str) -> CommandRequest:
    """Parse user input into a CommandRequest object.

    Args:
        input_line: Raw user input from REPL

    Returns:
        CommandRequest object (one of Upload/Pause/Resume/Cancel/Status/Sessions/Clear)

    Raises:
        ParseError: If command syntax is invalid
    """
    if not input_line.strip():
        raise ParseError("Empty command")

    try:
        tokens = shlex.split(input_line)
    except ValueError as e:
        raise ParseError(f"Invalid syntax: {e}")

    if not tokens:
        raise ParseError("Empty command")

    command_name = tokens[0]

    if command_name == "upload":
        return _parse_upload(tokens[1:])
    elif command_name == "clear":
        return _parse_clear(tokens[1:])
    elif command_name in _NO_ARG_COMMANDS:
        if len(tokens) > 1:
            raise ParseError(f"{command_name} takes no arguments")
        return _NO_ARG_COMMANDS[command_name]()
    else:
        raise ParseError(f"Unknown command: {command_name}")


def _parse_upload(args: list[str]) -> UploadCommand:
    """Parse 'upload <path> [--resume <session_id>]' command."""
    if not args:
        raise ParseError("upload requires a file path")

    path = None
    session_id = None
    i = 0
    while i < len(args):
        arg = args[i]
        if arg == "--resume":
            if i + 1 >= len(args):
                raise ParseError("--resume requires a session id")
            session_id = args[i + 1]
            i += 2
            continue
        if path is not None:
            raise ParseError(f"upload accepts a single file, got extra argument: {arg}")
        path = arg
        i += 1

    if path is None:
        raise ParseError("upload requires a file path")

    return UploadCommand(path=path, session_id=session_id)


def _parse_clear(args: list[str]) -> ClearCommand:
    """Parse 'clear <session_id>' command."""
    if len(args) != 1:
        raise ParseError("clear requires exactly 1 argument: <session_id>")

    return ClearCommand(session_id=args[0])
