"""Utility functions for CLI operations."""

import sys
from typing import Optional, TextIO

from cli.constants import GREEN, RESET, STATUS_COLORS
from common.types import UploadProgress, UploadSession


class ProgressPrinter:
    """Progress callback that redraws a single status line."""

    def __init__(self, filename: str, stream: Optional[TextIO] = None):
        """
        Initialize the progress printer.

        Args:
            filename: Display name for the file
            stream: Output stream (defaults to stdout)
        """
        self.filename = filename
        self.stream = stream or sys.stdout
        self._finished = False

    def __call__(self, progress: UploadProgress) -> None:
        if self._finished:
            return
        self.stream.write(f"\r{format_progress(self.filename, progress)}")
        self.stream.flush()
        if progress.completed_chunks >= progress.total_chunks:
            self.finish()

    def finish(self) -> None:
        """Finalize progress display with newline."""
        if self._finished:
            return
        self._finished = True
        self.stream.write('\n')
        self.stream.flush()


def format_progress(filename: str, progress: UploadProgress) -> str:
    """
    Render an UploadProgress as a one-line summary.

    Args:
        filename: Display name for the file
        progress: Snapshot reported by the scheduler

    Returns:
        e.g. "Uploading a.bin: 2.00 MiB / 5.00 MiB (40.0%) [1/3 chunks]"
    """
    percent = progress.total_progress * 100
    uploaded_str = format_file_size(progress.uploaded_bytes)
    total_str = format_file_size(progress.total_bytes)
    return (
        f"Uploading {filename}: {uploaded_str} / {total_str} ({GREEN}{percent:.1f}%{RESET}) "
        f"[{progress.completed_chunks}/{progress.total_chunks} chunks]"
    )


def format_session(session: UploadSession) -> str:
    """Format one stored session as a listing line."""
    color = STATUS_COLORS.get(session.status.value, "")
    status = f"{color}{session.status.value}{RESET}" if color else session.status.value
    line = (
        f"{session.id}  {session.file_name}  {format_file_size(session.file_size)}  "
        f"{session.uploaded_chunks}/{session.total_chunks} chunks  {status}"
    )
    if session.last_error:
        line += f"  ({session.last_error})"
    return line


def format_file_size(size_bytes: int) -> str:
    """
    Format file size in bytes to human-readable format with appropriate unit.

    Uses binary units (1024-based) and automatically selects the most
    appropriate unit (B, KiB, MiB, GiB, TiB).

    Args:
        size_bytes: File size in bytes

    Returns:
        Formatted string with size and unit (e.g., "1.50 MiB", "512 B")
    """
    if size_bytes < 1024:
        return f"{size_bytes} B"

    units = ['KiB', 'MiB', 'GiB', 'TiB']
    size = size_bytes / 1024.0

    for unit in units:
        if size < 1024.0:
            return f"{size:.2f} {unit}"
        size /= 1024.0

    return f"{size:.2f} PiB"
