"""Tests for the REPL command parser."""

import pytest

from cli.models import (
    CancelCommand,
    ClearCommand,
    PauseCommand,
    ResumeCommand,
    SessionsCommand,
    StatusCommand,
    UploadCommand,
)
from cli.parser import ParseError, parse_command


def test_parse_upload():
    assert parse_command("upload videos/a.mp4") == UploadCommand(path="videos/a.mp4")


def test_parse_upload_with_resume_after_path():
    cmd = parse_command("upload a.bin --resume a.bin-10-1")
    assert cmd == UploadCommand(path="a.bin", session_id="a.bin-10-1")


def test_parse_upload_with_resume_before_path():
    cmd = parse_command("upload --resume a.bin-10-1 a.bin")
    assert cmd == UploadCommand(path="a.bin", session_id="a.bin-10-1")


def test_parse_upload_quoted_path():
    cmd = parse_command('upload "my files/report 2026.pdf"')
    assert cmd.path == "my files/report 2026.pdf"


@pytest.mark.parametrize("line", ["upload", "upload --resume", "upload a.bin b.bin", "upload --resume id"])
def test_parse_upload_errors(line):
    with pytest.raises(ParseError):
        parse_command(line)


@pytest.mark.parametrize(
    "line,expected",
    [
        ("pause", PauseCommand()),
        ("resume", ResumeCommand()),
        ("cancel", CancelCommand()),
        ("status", StatusCommand()),
        ("sessions", SessionsCommand()),
    ],
)
def test_parse_commands_without_arguments(line, expected):
    assert parse_command(line) == expected


def test_commands_without_arguments_reject_extras():
    with pytest.raises(ParseError):
        parse_command("pause now")


def test_parse_clear():
    assert parse_command("clear a.bin-10-1") == ClearCommand(session_id="a.bin-10-1")


def test_parse_clear_requires_one_session():
    with pytest.raises(ParseError):
        parse_command("clear a b")


@pytest.mark.parametrize("line", ["", "   ", "download x", 'upload "unterminated'])
def test_parse_invalid_input(line):
    with pytest.raises(ParseError):
        parse_command(line)
