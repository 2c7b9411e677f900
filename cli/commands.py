"""Command handlers for CLI operations."""

import asyncio
from pathlib import Path
from typing import Callable, Optional

from common.logging_config import get_logger, set_session_id
from cli.config import Config
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
from cli.utils import ProgressPrinter, format_file_size, format_session
from uploader.exceptions import CancellationError, UploadError
from uploader.hash_worker import HashWorker
from uploader.session import ChunkedUpload
from uploader.state_store import SQLiteStateStore, StateStore
from uploader.transport import HttpTransport, UploadTransport

logger = get_logger(__name__)


class UploadManager:
    """
    Runs at most one ChunkedUpload in the background on behalf of the REPL.

    Handlers return the message to print; the outcome of a background upload
    is reported through *output* once it settles.
    """

    def __init__(
        self,
        config: Config,
        store: Optional[StateStore] = None,
        transport: Optional[UploadTransport] = None,
        hash_worker: Optional[HashWorker] = None,
        output: Callable[[str], None] = print,
        show_progress: bool = True,
    ):
        """
        Initialize the manager.

        Args:
            config: CLI configuration
            store: State store (defaults to SQLite at the configured path)
            transport: Upload transport (defaults to HTTP against the configured server)
            hash_worker: Shared digest worker for every upload of this manager
            output: Sink for messages produced by background uploads
            show_progress: Render a progress line while uploading
        """
        self.config = config
        self.store = store or SQLiteStateStore(str(config.get_database_path()))
        self.transport = transport or HttpTransport(
            base_url=config.get_base_url(),
            timeout=config.get_timeout(),
            api_key=config.get_api_key(),
        )
        self.hash_worker = hash_worker or HashWorker()
        self.output = output
        self.show_progress = show_progress

        self.current: Optional[ChunkedUpload] = None
        self.task: Optional[asyncio.Task] = None
        self._printer: Optional[ProgressPrinter] = None

    @property
    def is_running(self) -> bool:
        return self.task is not None and not self.task.done()

    async def dispatch(self, cmd: CommandRequest) -> str:
        """Dispatch parsed command to appropriate handler."""
        if isinstance(cmd, UploadCommand):
            return await self.handle_upload(cmd)
        elif isinstance(cmd, PauseCommand):
            return self.handle_pause(cmd)
        elif isinstance(cmd, ResumeCommand):
            return await self.handle_resume(cmd)
        elif isinstance(cmd, CancelCommand):
            return await self.handle_cancel(cmd)
        elif isinstance(cmd, StatusCommand):
            return await self.handle_status(cmd)
        elif isinstance(cmd, SessionsCommand):
            return await self.handle_sessions(cmd)
        elif isinstance(cmd, ClearCommand):
            return await self.handle_clear(cmd)
        else:
            return f"Unknown command type: {type(cmd)}"

    async def handle_upload(self, cmd: UploadCommand) -> str:
        """
        Handle 'upload' command.

        Args:
            cmd: UploadCommand with path and optional session id

        Returns:
            Confirmation with the session id, or an error message
        """
        if self.is_running:
            return f"Error: upload {self.current.session_id} is still running (pause or cancel it first)"

        path = Path(cmd.path).expanduser()
        if not path.is_file():
            return f"Error: File not found: {cmd.path}"

        upload_config = self.config.get_upload_config()
        logger.info(f"Executing upload command: {path} [resume={cmd.session_id}]")
        upload = ChunkedUpload(
            path,
            self.store,
            self.transport,
            self.hash_worker,
            session_id=cmd.session_id,
            chunk_size=upload_config['chunk_size'],
            concurrency=upload_config['concurrency'],
            max_retries=upload_config['max_retries'],
        )
        if self.show_progress:
            self._printer = ProgressPrinter(upload.file_name)
            upload.on_progress(self._printer)

        self.current = upload
        set_session_id(get_logger('uploader'), upload.session_id)
        self.task = asyncio.create_task(self._run(upload), name=f"cli-{upload.session_id}")
        verb = "Resuming" if cmd.session_id else "Uploading"
        return f"{verb} {upload.file_name} ({format_file_size(upload.file_size)}) [session {upload.session_id}]"

    async def _run(self, upload: ChunkedUpload) -> None:
        try:
            result = await upload.start()
            self._finish_progress()
            self.output(f"Upload completed: {upload.file_name} [session {upload.session_id}]")
            if result is not None:
                self.output(f"Server response: {result}")
        except CancellationError:
            self._finish_progress()
            self.output(f"Upload canceled: {upload.file_name}")
        except UploadError as e:
            self._finish_progress()
            self.output(f"Error: {e}")
            self.output(f"Run 'upload {upload.source} --resume {upload.session_id}' to retry")
        except Exception as e:
            self._finish_progress()
            logger.error(f"Upload crashed [session_id={upload.session_id}]: {e}", exc_info=True)
            self.output(f"Error: unexpected failure: {e}")

    def _finish_progress(self) -> None:
        if self._printer is not None:
            self._printer.finish()
            self._printer = None

    def handle_pause(self, cmd: PauseCommand) -> str:
        if not self.is_running:
            return "No upload running"
        self.current.pause()
        return f"Paused {self.current.file_name}; in-flight chunks will finish"

    async def handle_resume(self, cmd: ResumeCommand) -> str:
        if not self.is_running:
            return "No upload running"
        if not self.current.is_paused:
            return f"{self.current.file_name} is not paused"
        await self.current.resume()
        return f"Resumed {self.current.file_name}"

    async def handle_cancel(self, cmd: CancelCommand) -> str:
        if not self.is_running:
            return "No upload running"
        upload = self.current
        await upload.cancel()
        await asyncio.gather(self.task, return_exceptions=True)
        return f"Canceled {upload.file_name}; session {upload.session_id} deleted"

    async def handle_status(self, cmd: StatusCommand) -> str:
        """
        Handle 'status' command.

        Returns:
            Stored state of the current (or last) upload
        """
        if self.current is None:
            return "No upload running"
        session = await self.current.get_session()
        if session is None:
            return f"Session {self.current.session_id} has no stored state"
        lines = [format_session(session)]
        in_flight = sorted(self.current.uploading_chunks)
        if in_flight:
            lines.append(f"In flight: {', '.join(str(i) for i in in_flight)}")
        if self.current.is_paused and self.is_running:
            lines.append("Paused")
        return "\n".join(lines)

    async def handle_sessions(self, cmd: SessionsCommand) -> str:
        sessions = await self.store.list_sessions()
        if not sessions:
            return "No sessions recorded"
        return "\n".join(format_session(session) for session in sessions)

    async def handle_clear(self, cmd: ClearCommand) -> str:
        """
        Handle 'clear <session_id>' command.

        Args:
            cmd: ClearCommand with the session to delete

        Returns:
            Success or error message
        """
        if self.is_running and self.current.session_id == cmd.session_id:
            return "Error: session is in use, cancel the upload instead"
        if await self.store.get_session(cmd.session_id) is None:
            return f"Error: Session not found: {cmd.session_id}"
        deleted = await self.store.delete_session_and_chunks(cmd.session_id)
        return f"Deleted session {cmd.session_id} ({deleted} chunk records)"

    async def close(self) -> None:
        """Pause the running upload, let in-flight chunks land, then release resources."""
        if self.is_running:
            logger.info(f"Pausing upload before exit [session_id={self.current.session_id}]")
            self.current.pause()
            await self.current.wait_idle()
            self.task.cancel()
            await asyncio.gather(self.task, return_exceptions=True)
        self.hash_worker.close()
        await self.transport.close()
        await self.store.close()
