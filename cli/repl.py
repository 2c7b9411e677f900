"""REPL with prompt_toolkit for user interaction."""

import os
import sys
from pathlib import Path
from typing import Optional

from prompt_toolkit import PromptSession
from prompt_toolkit.history import InMemoryHistory
from prompt_toolkit.patch_stdout import patch_stdout

from cli.commands import UploadManager
from cli.completer import ChunkupCompleter
from cli.config import Config
from cli.constants import (
    HELP_TEXT,
    LOGO,
    PROMPT_TEXT,
    STYLE,
    WELCOME_HELP,
    WELCOME_TITLE,
)
from cli.parser import ParseError, parse_command
from common.logging_config import get_logger
from uploader.exceptions import UploadError

logger = get_logger(__name__)


def clear_screen() -> None:
    """Clear the terminal screen (cross-platform)."""
    if sys.platform == "win32":
        os.system("cls")
    else:
        os.system("clear")


def show_welcome() -> None:
    """Display Chunkup logo and welcome text."""
    print(LOGO)
    print(WELCOME_TITLE)
    print(WELCOME_HELP)


async def repl_loop(manager: Optional[UploadManager] = None) -> None:
    """Start interactive REPL with prompt_toolkit."""
    if manager is None:
        manager = UploadManager(Config(Path.home() / '.chunkup' / 'config.json'))

    history = InMemoryHistory()
    session: PromptSession = PromptSession(
        completer=ChunkupCompleter(), history=history, style=STYLE
    )

    clear_screen()
    show_welcome()

    try:
        with patch_stdout():
            while True:
                try:
                    user_input = await session.prompt_async([("class:prompt", PROMPT_TEXT)])
                    stripped = user_input.strip()

                    if not stripped:
                        continue

                    if stripped == "exit":
                        print("Goodbye!")
                        break

                    if stripped == "help":
                        print(HELP_TEXT)
                        continue

                    if stripped == "clear":
                        clear_screen()
                        show_welcome()
                        continue

                    cmd_obj = parse_command(user_input)
                    result = await manager.dispatch(cmd_obj)
                    print(result)

                except (ParseError, UploadError) as e:
                    print(f"Error: {e}")
                except KeyboardInterrupt:
                    continue
                except EOFError:
                    print("\nGoodbye!")
                    break
                except Exception as e:
                    logger.error(f"Command failed: {e}", exc_info=True)
                    print(f"Unexpected error: {e}")
    finally:
        await manager.close()
