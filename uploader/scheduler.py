"""Bounded-concurrency chunk transfer scheduler with retry and progress tracking."""

import asyncio
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional, Sequence

from common.constants import MAX_RETRIES, RETRY_DELAYS_SECONDS
from common.logging_config import get_logger
from common.types import ChunkRecord, ChunkStatus, UploadProgress, UploadSession, chunk_id
from uploader.exceptions import RecordNotFoundError, StoreError, TransportError
from uploader.models import ChunkUploadMeta
from uploader.state_store import StateStore
from uploader.transport import UploadTransport

logger = get_logger(__name__)

ProgressCallback = Callable[[UploadProgress], None]
SleepFunction = Callable[[float], Awaitable[None]]

READY_STATUSES = (ChunkStatus.PENDING, ChunkStatus.FAILED)


class UploadScheduler:
    """
    Keeps up to ``concurrency`` chunks of one session in flight.

    The store is the source of truth: chunks to transfer are pulled from
    its pending/failed queue in ascending index order, and every status
    change is written back before the next decision. The in-memory active
    set only prevents scheduling a chunk twice within this process.

    A chunk waiting for its retry backoff keeps its slot, so retries never
    push the number of active chunks above the limit.
    """

    def __init__(
        self,
        session: UploadSession,
        store: StateStore,
        transport: UploadTransport,
        *,
        concurrency: int,
        on_all_uploaded: Callable[[], Awaitable[None]],
        on_fatal: Callable[[Exception], Awaitable[None]],
        on_progress: Optional[ProgressCallback] = None,
        max_retries: int = MAX_RETRIES,
        retry_delays: Sequence[float] = RETRY_DELAYS_SECONDS,
        sleep: SleepFunction = asyncio.sleep,
    ):
        self.session_id = session.id
        self.file_name = session.file_name
        self.total_chunks = session.total_chunks
        self.total_bytes = session.file_size
        self.store = store
        self.transport = transport
        self.concurrency = concurrency
        self.max_retries = max_retries
        self.retry_delays = tuple(retry_delays) or (0.0,)
        self.on_progress = on_progress

        self._on_all_uploaded = on_all_uploaded
        self._on_fatal = on_fatal
        self._sleep = sleep

        self._paused = False
        self._canceled = False
        self._failed = False
        self._merge_started = False

        self._active: set[int] = set()
        self._done: set[int] = set()
        self._progress: dict[int, tuple[int, int]] = {}
        self._tasks: set[asyncio.Task] = set()
        self._fill_lock = asyncio.Lock()

        self._completed_chunks = session.uploaded_chunks
        self._completed_bytes = 0

    # ----- Public controls ----------------------------------------------------

    @property
    def active_chunks(self) -> frozenset[int]:
        """Indices currently transferring or waiting for a retry."""
        return frozenset(self._active)

    @property
    def completed_chunks(self) -> int:
        return self._completed_chunks

    async def start(self) -> None:
        """Load counters from the store and fill every free slot."""
        completed = await self.store.query_chunks_by_status(
            self.session_id, [ChunkStatus.COMPLETED]
        )
        self._done.update(record.index for record in completed)
        self._completed_bytes = sum(record.size for record in completed)
        logger.info(
            f"Scheduler starting [session_id={self.session_id}, completed={len(completed)}/{self.total_chunks}, "
            f"concurrency={self.concurrency}]"
        )
        await self.fill()

    def pause(self) -> None:
        self._paused = True

    async def resume(self) -> None:
        self._paused = False
        await self.fill()

    def cancel(self) -> None:
        """Stop scheduling and forget in-flight bookkeeping; transfers are not aborted."""
        self._canceled = True
        self._paused = True
        self._active.clear()
        self._progress.clear()

    async def wait_idle(self) -> None:
        """Wait until every chunk task spawned so far has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _can_schedule(self) -> bool:
        return not (self._paused or self._canceled or self._failed or self._merge_started)

    # ----- Scheduling ---------------------------------------------------------

    async def fill(self) -> None:
        """Start ready chunks until the concurrency limit is reached."""
        if not self._can_schedule():
            return

        async with self._fill_lock:
            if not self._can_schedule():
                return
            if len(self._active) >= self.concurrency:
                return

            try:
                ready = await self.store.query_chunks_by_status(self.session_id, READY_STATUSES)
            except StoreError as e:
                await self._fail(e)
                return

            for record in ready:
                if not self._can_schedule() or len(self._active) >= self.concurrency:
                    break
                if record.index in self._active or record.index in self._done:
                    continue
                if record.status == ChunkStatus.FAILED and record.retries > self.max_retries:
                    continue
                self._spawn(record.index)

            if self._can_schedule() and not self._active and self._completed_chunks < self.total_chunks:
                await self._fail(StoreError(
                    f"No chunk left to upload but only {self._completed_chunks}/{self.total_chunks} "
                    f"were acknowledged"
                ))

    def _spawn(self, index: int) -> None:
        self._active.add(index)
        task = asyncio.create_task(self._run_chunk(index), name=f"chunk-{self.session_id}-{index}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run_chunk(self, index: int) -> None:
        completed_session: Optional[UploadSession] = None
        try:
            delay = None
            while True:
                if delay is not None:
                    await self._sleep(delay)
                    if not self._can_schedule():
                        logger.info(
                            f"Dropping scheduled retry, session paused or stopped "
                            f"[session_id={self.session_id}, chunk={index}]"
                        )
                        return
                completed_session, delay = await self._attempt(index)
                if delay is None:
                    break
        except RecordNotFoundError as e:
            if self._canceled:
                logger.debug(f"Ignoring late result for canceled session [chunk={index}]: {e}")
                return
            await self._fail(e)
            return
        except Exception as e:
            if self._canceled:
                logger.debug(f"Ignoring error for canceled session [chunk={index}]: {e}")
                return
            logger.error(f"Chunk {index} aborted [session_id={self.session_id}]: {e}", exc_info=True)
            await self._fail(e)
            return
        finally:
            self._active.discard(index)
            self._progress.pop(index, None)

        if completed_session is None or self._canceled:
            return
        try:
            if completed_session.uploaded_chunks >= completed_session.total_chunks:
                if not (self._merge_started or self._failed):
                    self._merge_started = True
                    logger.info(f"All {self.total_chunks} chunks uploaded [session_id={self.session_id}]")
                    await self._on_all_uploaded()
            else:
                await self.fill()
        except Exception as e:
            if not self._canceled:
                await self._fail(e)

    async def _attempt(self, index: int) -> tuple[Optional[UploadSession], Optional[float]]:
        """
        Run one transfer attempt of chunk *index*.

        Returns:
            (session, None) once the chunk is acknowledged, (None, delay) when a
            retry should follow after *delay* seconds, (None, None) when the
            chunk needs no further work from this task.
        """
        record = await self.store.get_chunk(chunk_id(self.session_id, index))
        if record.status == ChunkStatus.COMPLETED:
            self._done.add(index)
            return None, None
        if record.hash is None or record.data is None:
            raise StoreError(f"Chunk {index} has no persisted hash or data")

        await self.store.update_chunk(record.id, status=ChunkStatus.UPLOADING)
        meta = ChunkUploadMeta(
            index=index,
            filename=self.file_name,
            session_id=self.session_id,
            total_chunks=self.total_chunks,
            hash=record.hash,
        )
        logger.debug(
            f"Uploading chunk [session_id={self.session_id}, chunk={index}, attempt={record.retries + 1}]"
        )

        try:
            await self.transport.upload_chunk(
                record.data, meta, on_progress=lambda loaded, total: self._on_chunk_progress(index, loaded, total)
            )
        except TransportError as e:
            return None, await self._handle_failure(record, e)

        if self._canceled:
            return None, None

        current = await self.store.get_chunk(record.id)
        if current.status == ChunkStatus.COMPLETED:
            # Another transfer of the same chunk was acknowledged and counted first.
            logger.info(f"Chunk already completed [session_id={self.session_id}, chunk={index}]")
            self._done.add(index)
            session = await self.store.get_session(self.session_id)
            if session is None:
                raise RecordNotFoundError(f"Upload session {self.session_id} not found")
            self._completed_chunks = session.uploaded_chunks
            return session, None

        await self.store.update_chunk(
            record.id,
            status=ChunkStatus.COMPLETED,
            data=None,
            completed_at=datetime.now(timezone.utc).isoformat(),
        )
        self._done.add(index)
        self._progress.pop(index, None)
        session = await self.store.increment_uploaded_chunks(self.session_id)
        self._completed_chunks = session.uploaded_chunks
        self._completed_bytes += record.size
        logger.info(
            f"Chunk uploaded [session_id={self.session_id}, chunk={index}, "
            f"progress={session.uploaded_chunks}/{session.total_chunks}]"
        )
        self._report_progress()
        return session, None

    async def _handle_failure(self, record: ChunkRecord, error: TransportError) -> Optional[float]:
        """Record a failed attempt; return the backoff delay if a retry is due."""
        retries = record.retries
        await self.store.update_chunk(
            record.id,
            status=ChunkStatus.FAILED,
            retries=retries + 1,
            last_error=str(error),
        )
        self._progress.pop(record.index, None)

        if self._canceled:
            return None

        if retries >= self.max_retries:
            logger.error(
                f"Chunk failed after {retries + 1} attempts [session_id={self.session_id}, "
                f"chunk={record.index}]: {error}"
            )
            await self._fail(error)
            return None

        if self._paused:
            logger.info(
                f"Chunk failed while paused, retry deferred to resume "
                f"[session_id={self.session_id}, chunk={record.index}]"
            )
            return None

        delay = self.retry_delays[min(retries, len(self.retry_delays) - 1)]
        logger.warning(
            f"Chunk upload failed (attempt {retries + 1}/{self.max_retries + 1}), retrying in {delay}s "
            f"[session_id={self.session_id}, chunk={record.index}]: {error}"
        )
        return delay

    async def _fail(self, error: Exception) -> None:
        if self._failed or self._canceled:
            return
        self._failed = True
        await self._on_fatal(error)

    # ----- Progress -----------------------------------------------------------

    def _on_chunk_progress(self, index: int, loaded: int, total: int) -> None:
        if self._canceled or index not in self._active:
            return
        self._progress[index] = (loaded, total)
        self._report_progress()

    def snapshot(self) -> UploadProgress:
        """Current overall progress; advisory only."""
        fraction = sum(loaded / total for loaded, total in self._progress.values() if total)
        in_flight_bytes = sum(loaded for loaded, _ in self._progress.values())
        if self.total_chunks:
            total_progress = min(1.0, (self._completed_chunks + fraction) / self.total_chunks)
        else:
            total_progress = 1.0
        return UploadProgress(
            total_progress=total_progress,
            completed_chunks=self._completed_chunks,
            total_chunks=self.total_chunks,
            uploaded_bytes=min(self.total_bytes, self._completed_bytes + in_flight_bytes),
            total_bytes=self.total_bytes,
        )

    def _report_progress(self) -> None:
        if self.on_progress is None:
            return
        try:
            self.on_progress(self.snapshot())
        except Exception as e:
            logger.warning(f"Progress callback raised [session_id={self.session_id}]: {e}")
