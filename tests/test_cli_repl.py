"""Tests for the REPL loop error handling."""

import contextlib
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from cli.repl import repl_loop
from uploader.exceptions import StoreError


def make_prompt_session(*lines):
    """PromptSession stand-in that replays *lines* and then sends EOF."""
    session = MagicMock()
    session.prompt_async = AsyncMock(side_effect=[*lines, EOFError()])
    return session


@pytest.fixture
def quiet_terminal():
    with patch('cli.repl.clear_screen'), patch('cli.repl.patch_stdout', contextlib.nullcontext):
        yield


@pytest.mark.asyncio
async def test_upload_error_keeps_repl_running(quiet_terminal, capsys):
    manager = MagicMock()
    manager.dispatch = AsyncMock(side_effect=[StoreError("database is locked"), "No sessions recorded"])
    manager.close = AsyncMock()

    with patch('cli.repl.PromptSession', return_value=make_prompt_session("sessions", "sessions")):
        await repl_loop(manager)

    out = capsys.readouterr().out
    assert "Error: database is locked" in out
    assert "No sessions recorded" in out
    manager.close.assert_awaited_once()


@pytest.mark.asyncio
async def test_unexpected_error_is_reported(quiet_terminal, capsys):
    manager = MagicMock()
    manager.dispatch = AsyncMock(side_effect=RuntimeError("boom"))
    manager.close = AsyncMock()

    with patch('cli.repl.PromptSession', return_value=make_prompt_session("status")):
        await repl_loop(manager)

    out = capsys.readouterr().out
    assert "Unexpected error: boom" in out
    assert "Goodbye!" in out


@pytest.mark.asyncio
async def test_parse_error_is_reported(quiet_terminal, capsys):
    manager = MagicMock()
    manager.dispatch = AsyncMock()
    manager.close = AsyncMock()

    with patch('cli.repl.PromptSession', return_value=make_prompt_session("frobnicate")):
        await repl_loop(manager)

    assert "Error:" in capsys.readouterr().out
    manager.dispatch.assert_not_awaited()
