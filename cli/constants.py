"""CLI constants and configuration."""

from prompt_toolkit.styles import Style

COMMANDS = ["upload", "pause", "resume", "cancel", "status", "sessions", "clear", "exit", "help"]

STYLE = Style.from_dict(
    {
        "prompt": "#2E9AFE bold",
        "command": "#0088ff bold",
    }
)

BLUE = "\033[38;2;46;154;254m"
GREEN = "\033[32m"
YELLOW = "\033[33m"
RESET = "\033[0m"

LOGO = f"""{BLUE}
  ██████╗██╗  ██╗██╗   ██╗███╗   ██╗██╗  ██╗██╗   ██╗██████╗
 ██╔════╝██║  ██║██║   ██║████╗  ██║██║ ██╔╝██║   ██║██╔══██╗
 ██║     ███████║██║   ██║██╔██╗ ██║█████╔╝ ██║   ██║██████╔╝
 ██║     ██╔══██║██║   ██║██║╚██╗██║██╔═██╗ ██║   ██║██╔═══╝
 ╚██████╗██║  ██║╚██████╔╝██║ ╚████║██║  ██╗╚██████╔╝██║
  ╚═════╝╚═╝  ╚═╝ ╚═════╝ ╚═╝  ╚═══╝╚═╝  ╚═╝ ╚═════╝ ╚═╝
{RESET}"""

WELCOME_TITLE = "Chunkup CLI - Resumable Chunked Uploads"
WELCOME_HELP = "Type 'help' for commands or 'exit' to quit.\n"

PROMPT_TEXT = "chunkup> "

HELP_TEXT = """Available commands:
  upload <path> [--resume <session_id>]   Upload a file in chunks (resume an interrupted session)
  pause                                   Stop scheduling new chunks of the running upload
  resume                                  Continue a paused upload
  cancel                                  Abort the running upload and delete its records
  status                                  Show progress of the running upload
  sessions                                List recorded upload sessions
  clear [session_id]                      Clear screen, or delete a stored session
  help                                    Show this help
  exit                                    Exit REPL

Only one upload runs at a time. Interrupted uploads keep their session id;
pass it to --resume to upload only the chunks the server has not acknowledged.
Examples:
  upload videos/holiday.mp4
  pause
  resume
  sessions
  upload videos/holiday.mp4 --resume holiday.mp4-52428800-1760871234567
  clear holiday.mp4-52428800-1760871234567"""

STATUS_COLORS = {
    "completed": GREEN,
    "failed": "\033[31m",
    "canceled": YELLOW,
}
