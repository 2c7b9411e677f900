"""Command request data types for CLI."""

from dataclasses import dataclass
from typing import Literal


@dataclass(frozen=True)
class UploadCommand:
    """Upload a file, optionally resuming a stored session."""

    path: str
    session_id: str | None = None
    command: Literal["upload"] = "upload"


@dataclass(frozen=True)
class PauseCommand:
    command: Literal["pause"] = "pause"


@dataclass(frozen=True)
class ResumeCommand:
    command: Literal["resume"] = "resume"


@dataclass(frozen=True)
class CancelCommand:
    command: Literal["cancel"] = "cancel"


@dataclass(frozen=True)
class StatusCommand:
    """Show progress of the running upload."""

    command: Literal["status"] = "status"


@dataclass(frozen=True)
class SessionsCommand:
    """List stored upload sessions."""

    command: Literal["sessions"] = "sessions"


@dataclass(frozen=True)
class ClearCommand:
    """Delete a stored session and its chunk records."""

    session_id: str
    command: Literal["clear"] = "clear"


CommandRequest = (
    UploadCommand
    | PauseCommand
    | ResumeCommand
    | CancelCommand
    | StatusCommand
    | SessionsCommand
    | ClearCommand
)
