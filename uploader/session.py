"""Public upload session controller: start/pause/resume/cancel and the session state machine."""

import asyncio
import json
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional, Sequence, Union

from common.constants import (
    DEFAULT_PREPARE_CONCURRENCY,
    MAX_CONCURRENCY,
    MIN_CONCURRENCY,
    RETRY_DELAYS_SECONDS,
)
from common.logging_config import get_logger
from common.types import ChunkRecord, ChunkStatus, SessionStatus, UploadSession, chunk_id
from uploader import config
from uploader.exceptions import (
    CancellationError,
    HashError,
    PlanningError,
    RecordNotFoundError,
    StoreError,
    TransportError,
    UploadError,
)
from uploader.hash_worker import HashWorker
from uploader.models import MergeRequest
from uploader.planner import ChunkPlan, plan_chunks, read_chunk
from uploader.scheduler import ProgressCallback, UploadScheduler
from uploader.state_store import StateStore
from uploader.transport import UploadTransport

logger = get_logger(__name__)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def make_session_id(file_name: str, file_size: int) -> str:
    """Build a session id from file identity and the current time in milliseconds."""
    return f"{file_name}-{file_size}-{int(time.time() * 1000)}"


def clamp_concurrency(concurrency: int) -> int:
    """Bound the number of parallel transfers to [MIN_CONCURRENCY, MAX_CONCURRENCY]."""
    bounded = max(MIN_CONCURRENCY, min(MAX_CONCURRENCY, concurrency))
    if bounded != concurrency:
        logger.warning(f"Concurrency {concurrency} clamped to {bounded}")
    return bounded


class ChunkedUpload:
    """
    Resumable chunked upload of a single file.

    The store, transport and hash worker are injected. A session is
    identified by ``session_id``; constructing a new ChunkedUpload with the
    id of an interrupted session and calling start() resumes it, uploading
    only the chunks the store does not list as completed.

    Usage:
        upload = ChunkedUpload(path, store, transport).on_progress(print)
        result = await upload.start()
    """

    def __init__(
        self,
        source: Union[str, Path],
        store: StateStore,
        transport: UploadTransport,
        hash_worker: Optional[HashWorker] = None,
        *,
        session_id: Optional[str] = None,
        chunk_size: Optional[int] = None,
        concurrency: Optional[int] = None,
        max_retries: Optional[int] = None,
        retry_delays: Sequence[float] = RETRY_DELAYS_SECONDS,
        prepare_concurrency: int = DEFAULT_PREPARE_CONCURRENCY,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Initialize an upload.

        Args:
            source: Path of the file to upload
            store: Durable state store
            transport: Chunk and merge transport
            hash_worker: Digest worker; one is created (and owned) when omitted
            session_id: Id of the session to create or resume
            chunk_size: Bytes per chunk for new sessions (defaults to config.CHUNK_SIZE)
            concurrency: Parallel chunk transfers, clamped to [2, 6]
            max_retries: Retries per chunk after the first attempt
            retry_delays: Backoff delays in seconds, indexed by retry count
            prepare_concurrency: Chunks read and hashed in parallel during preparation
            sleep: Coroutine used for backoff delays
        """
        self.source = Path(source)
        self.store = store
        self.transport = transport
        self._owns_hash_worker = hash_worker is None
        self.hash_worker = hash_worker or HashWorker()

        self.file_name = self.source.name
        self.file_size = self.source.stat().st_size
        self.session_id = session_id or make_session_id(self.file_name, self.file_size)
        self.chunk_size = chunk_size if chunk_size is not None else config.CHUNK_SIZE
        self.concurrency = clamp_concurrency(
            concurrency if concurrency is not None else config.CONCURRENCY
        )
        self.max_retries = max_retries if max_retries is not None else config.MAX_CHUNK_RETRIES
        self.retry_delays = tuple(retry_delays)
        self.prepare_concurrency = max(1, prepare_concurrency)
        self._sleep = sleep

        self._progress_callback: Optional[ProgressCallback] = None
        self._paused = False
        self._canceled = False
        self._outcome: Optional[asyncio.Future] = None
        self._runner: Optional[asyncio.Task] = None
        self._scheduler: Optional[UploadScheduler] = None

    # ----- Public API ---------------------------------------------------------

    def on_progress(self, callback: ProgressCallback) -> "ChunkedUpload":
        """Register the progress callback; returns self for chaining."""
        if callable(callback):
            self._progress_callback = callback
            if self._scheduler is not None:
                self._scheduler.on_progress = callback
        return self

    @property
    def uploading_chunks(self) -> frozenset[int]:
        """Indices of chunks currently in flight or waiting for a retry."""
        if self._scheduler is None:
            return frozenset()
        return self._scheduler.active_chunks

    @property
    def is_paused(self) -> bool:
        return self._paused

    async def get_session(self) -> Optional[UploadSession]:
        """Current persisted state of this session."""
        return await self.store.get_session(self.session_id)

    async def start(self) -> Any:
        """
        Start or resume the upload and wait for its outcome.

        A pause() issued earlier stays in effect: chunks are prepared but no
        transfer starts until resume(). Restarting after a failure first
        waits for the transfers the failed run left in flight.

        Returns:
            The merge endpoint's reply (None for an empty file)

        Raises:
            PlanningError, HashError, StoreError, TransportError, CancellationError
        """
        if self._canceled:
            if self._outcome is None:
                raise CancellationError(f"Upload {self.session_id} was canceled")
            return await asyncio.shield(self._outcome)

        if self._outcome is not None and self._outcome.done():
            if self._outcome.exception() is None:
                return self._outcome.result()
            # A failed run is re-entered through the resume path.
            self._outcome = None

        if self._outcome is None:
            self._outcome = asyncio.get_running_loop().create_future()
            previous, self._scheduler = self._scheduler, None
            if self._owns_hash_worker and self.hash_worker.closed:
                self.hash_worker = HashWorker()
            self._runner = asyncio.create_task(self._run(previous), name=f"upload-{self.session_id}")
            logger.info(f"Upload started [session_id={self.session_id}, file={self.source}]")
        return await asyncio.shield(self._outcome)

    def pause(self) -> None:
        """Stop scheduling new transfers; in-flight ones finish naturally."""
        if self._paused:
            return
        self._paused = True
        if self._scheduler is not None:
            self._scheduler.pause()
        logger.info(f"Upload paused [session_id={self.session_id}]")

    async def resume(self) -> None:
        """Clear the pause flag and refill free transfer slots."""
        if self._canceled or not self._paused:
            return
        self._paused = False
        logger.info(f"Upload resumed [session_id={self.session_id}]")
        if self._scheduler is not None:
            await self._scheduler.resume()

    async def cancel(self) -> None:
        """Abandon the upload, delete its records and reject the outcome."""
        if self._canceled:
            return
        self._canceled = True
        self._paused = True
        logger.info(f"Upload canceled [session_id={self.session_id}]")

        if self._scheduler is not None:
            self._scheduler.cancel()
        if self._runner is not None and not self._runner.done():
            self._runner.cancel()
            await asyncio.gather(self._runner, return_exceptions=True)
        if self._owns_hash_worker:
            self.hash_worker.close()

        try:
            await self.store.delete_session_and_chunks(self.session_id)
        finally:
            self._reject(CancellationError(f"Upload {self.session_id} was canceled"))

    async def wait_idle(self) -> None:
        """Wait for background chunk transfers, including ones left after cancel."""
        if self._scheduler is not None:
            await self._scheduler.wait_idle()

    # ----- Outcome ------------------------------------------------------------

    def _resolve(self, result: Any) -> None:
        if self._outcome is not None and not self._outcome.done():
            self._outcome.set_result(result)

    def _reject(self, error: BaseException) -> None:
        if self._outcome is not None and not self._outcome.done():
            self._outcome.set_exception(error)
            # Mark retrieved so an unobserved failure does not warn at shutdown.
            self._outcome.exception()

    async def _fail(self, error: Exception) -> None:
        """Record a fatal error on the session and reject the outcome."""
        if self._canceled:
            return
        logger.error(f"Upload failed [session_id={self.session_id}]: {error}")
        try:
            await self.store.update_session(
                self.session_id, status=SessionStatus.FAILED, last_error=str(error)
            )
        except StoreError as e:
            logger.error(f"Could not record failure [session_id={self.session_id}]: {e}")
        finally:
            if self._owns_hash_worker:
                self.hash_worker.close()
            self._reject(error)

    # ----- State machine ------------------------------------------------------

    async def _run(self, previous: Optional[UploadScheduler] = None) -> None:
        try:
            if previous is not None:
                # Transfers of a failed run are not aborted; let them settle in the store first.
                await previous.wait_idle()
            session = await self._prepare()
            if session is None:
                return
            await self._begin_upload(session)
        except asyncio.CancelledError:
            logger.debug(f"Preparation abandoned [session_id={self.session_id}]")
        except UploadError as e:
            await self._fail(e)
        except Exception as e:
            logger.error(f"Unexpected error [session_id={self.session_id}]: {e}", exc_info=True)
            await self._fail(e)

    async def _prepare(self) -> Optional[UploadSession]:
        """
        Make sure every chunk has a persisted hash and payload.

        Returns:
            The prepared session, or None when the outcome is already settled.
        """
        session = await self.store.get_session(self.session_id)

        if session is not None and session.status == SessionStatus.COMPLETED:
            logger.info(f"Session already completed [session_id={self.session_id}]")
            self._resolve(json.loads(session.server_response) if session.server_response else None)
            return None

        if session is not None:
            if session.file_size != self.file_size:
                raise PlanningError(
                    f"{self.source} changed size since session {self.session_id} was created "
                    f"({session.file_size} -> {self.file_size} bytes)"
                )
            if session.chunk_size != self.chunk_size:
                logger.warning(
                    f"Using stored chunk size {session.chunk_size} instead of {self.chunk_size} "
                    f"[session_id={self.session_id}]"
                )
                self.chunk_size = session.chunk_size
            if session.total_chunks > 0 and session.prepared_chunks == session.total_chunks:
                logger.info(f"Session already prepared, skipping hashing [session_id={self.session_id}]")
                return session

        plan = plan_chunks(self.file_size, self.chunk_size)

        if plan.total_chunks == 0:
            now = _now()
            await self.store.put_session(UploadSession(
                id=self.session_id,
                file_name=self.file_name,
                file_size=0,
                chunk_size=self.chunk_size,
                total_chunks=0,
                status=SessionStatus.COMPLETED,
                created_at=now,
                completed_at=now,
            ))
            logger.info(f"Empty file, nothing to upload [session_id={self.session_id}]")
            self._resolve(None)
            return None

        await self.store.put_session(UploadSession(
            id=self.session_id,
            file_name=self.file_name,
            file_size=self.file_size,
            chunk_size=self.chunk_size,
            total_chunks=plan.total_chunks,
            status=SessionStatus.PREPARING,
            created_at=session.created_at if session is not None else None,
        ))
        await self._hash_chunks(plan)
        prepared = await self.store.update_session(
            self.session_id, prepared_chunks=plan.total_chunks, status=SessionStatus.PREPARED
        )
        logger.info(f"Prepared {plan.total_chunks} chunks [session_id={self.session_id}]")
        return prepared

    async def _hash_chunks(self, plan: ChunkPlan) -> None:
        """Read, hash and persist every chunk not yet recorded, with bounded parallelism."""
        semaphore = asyncio.Semaphore(self.prepare_concurrency)

        async def prepare_one(chunk_range) -> None:
            async with semaphore:
                record_id = chunk_id(self.session_id, chunk_range.index)
                try:
                    existing = await self.store.get_chunk(record_id)
                    if existing.hash is not None:
                        return
                except RecordNotFoundError:
                    pass
                try:
                    data = await asyncio.to_thread(read_chunk, self.source, chunk_range)
                except OSError as e:
                    raise PlanningError(f"Cannot read {self.source}: {e}") from e
                result = await self.hash_worker.digest(chunk_range.index, data)
                await self.store.put_chunk(ChunkRecord(
                    session_id=self.session_id,
                    index=chunk_range.index,
                    size=chunk_range.size,
                    hash=result.hash,
                    data=data,
                ))

        tasks = {asyncio.create_task(prepare_one(chunk_range)): chunk_range.index for chunk_range in plan}
        try:
            done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
            for task in done:
                # A closed executor cancels queued digests without cancelling this task.
                if task.cancelled():
                    raise HashError(tasks[task], "hash worker stopped")
                if task.exception() is not None:
                    raise task.exception()
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _begin_upload(self, session: UploadSession) -> None:
        # Chunks left "uploading" by a crashed process are not in flight any more.
        stale = await self.store.query_chunks_by_status(self.session_id, [ChunkStatus.UPLOADING])
        for record in stale:
            await self.store.update_chunk(record.id, status=ChunkStatus.PENDING)
        if stale:
            logger.info(f"Re-queued {len(stale)} interrupted chunks [session_id={self.session_id}]")

        # Also covers a crash between a chunk's final failure and the session's.
        exhausted = [
            record
            for record in await self.store.query_chunks_by_status(self.session_id, [ChunkStatus.FAILED])
            if record.retries > self.max_retries
        ]
        for record in exhausted:
            await self.store.update_chunk(record.id, retries=0)
        if exhausted:
            logger.info(f"Reset retry budget of {len(exhausted)} chunks [session_id={self.session_id}]")

        patch = {"status": SessionStatus.UPLOADING, "last_error": None}
        completed = await self.store.query_chunks_by_status(self.session_id, [ChunkStatus.COMPLETED])
        if len(completed) > session.uploaded_chunks:
            # The process stopped between marking a chunk completed and counting it.
            logger.warning(
                f"Reconciling uploaded count {session.uploaded_chunks} -> {len(completed)} "
                f"[session_id={self.session_id}]"
            )
            patch["uploaded_chunks"] = len(completed)
        session = await self.store.update_session(self.session_id, **patch)

        if session.uploaded_chunks >= session.total_chunks:
            await self._merge(session)
            return

        self._scheduler = UploadScheduler(
            session,
            self.store,
            self.transport,
            concurrency=self.concurrency,
            on_all_uploaded=self._on_all_uploaded,
            on_fatal=self._fail,
            on_progress=self._progress_callback,
            max_retries=self.max_retries,
            retry_delays=self.retry_delays,
            sleep=self._sleep,
        )
        if self._paused:
            self._scheduler.pause()
        await self._scheduler.start()

    async def _on_all_uploaded(self) -> None:
        if self._canceled:
            return
        session = await self.store.get_session(self.session_id)
        if session is None:
            raise RecordNotFoundError(f"Upload session {self.session_id} not found")
        await self._merge(session)

    async def _merge(self, session: UploadSession) -> None:
        """Ask the server to assemble the chunks; exactly one attempt per run."""
        await self.store.update_session(self.session_id, status=SessionStatus.MERGING)
        request = MergeRequest(
            filename=session.file_name,
            session_id=session.id,
            total_chunks=session.total_chunks,
            total_size=session.file_size,
        )
        try:
            result = await self.transport.merge(request)
        except TransportError as e:
            await self._fail(e)
            return

        if self._canceled:
            return
        await self.store.update_session(
            self.session_id,
            status=SessionStatus.COMPLETED,
            server_response=json.dumps(result, default=str),
            completed_at=_now(),
        )
        logger.info(f"Upload completed [session_id={self.session_id}]")
        if self._owns_hash_worker:
            self.hash_worker.close()
        self._resolve(result)
