"""Durable chunk and session state for resumable uploads."""

import asyncio
import functools
import sqlite3
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterable, List, Optional

from common.logging_config import get_logger
from common.types import (
    ChunkRecord,
    ChunkStatus,
    SessionStatus,
    UploadSession,
    can_transition,
)
from uploader import config
from uploader.database import get_db_connection, init_database
from uploader.exceptions import RecordNotFoundError, StoreError

logger = get_logger(__name__)

CHUNK_PATCH_FIELDS = frozenset({"status", "retries", "last_error", "data", "completed_at", "hash"})
SESSION_PATCH_FIELDS = frozenset(
    {"status", "last_error", "server_response", "prepared_chunks", "uploaded_chunks", "completed_at"}
)

_CHUNK_COLUMNS = "id, session_id, chunk_index, hash, size, status, retries, last_error, completed_at"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _db_value(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    return value


def _check_patch(patch: dict, allowed: frozenset) -> None:
    unknown = set(patch) - allowed
    if unknown:
        raise ValueError(f"Unsupported fields in patch: {sorted(unknown)}")


class StateStore(ABC):
    """
    Persistence contract consumed by the upload engine.

    Every operation is atomic with respect to a single record. Failures
    surface as StoreError; missing records as RecordNotFoundError.
    """

    @abstractmethod
    async def put_chunk(self, record: ChunkRecord) -> None: ...

    @abstractmethod
    async def get_chunk(self, chunk_id: str) -> ChunkRecord: ...

    @abstractmethod
    async def update_chunk(self, chunk_id: str, **patch: Any) -> None: ...

    @abstractmethod
    async def put_session(self, session: UploadSession) -> None: ...

    @abstractmethod
    async def get_session(self, session_id: str) -> Optional[UploadSession]: ...

    @abstractmethod
    async def update_session(self, session_id: str, **patch: Any) -> UploadSession: ...

    @abstractmethod
    async def increment_uploaded_chunks(self, session_id: str) -> UploadSession: ...

    @abstractmethod
    async def query_chunks_by_status(
        self, session_id: str, statuses: Iterable[ChunkStatus]
    ) -> List[ChunkRecord]: ...

    @abstractmethod
    async def delete_session_and_chunks(self, session_id: str) -> int: ...

    @abstractmethod
    async def list_sessions(self) -> List[UploadSession]: ...

    async def close(self) -> None:
        """Release resources held by the store."""


class SQLiteStateStore(StateStore):
    """
    SQLite-backed state store.

    All operations run on one dedicated worker thread, so they execute in
    the order they were submitted and never block the event loop. Each
    operation opens its own connection and commits a single transaction.
    """

    def __init__(self, db_path: Optional[str] = None):
        """
        Initialize the store and create the schema if needed.

        Args:
            db_path: SQLite database file (defaults to config.DATABASE_PATH)
        """
        self.db_path = str(db_path or config.DATABASE_PATH)
        init_database(self.db_path)
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="state-store")
        logger.info(f"Opened state store [db_path={self.db_path}]")

    async def _run(self, func, *args, **kwargs):
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(
                self._executor, functools.partial(func, *args, **kwargs)
            )
        except sqlite3.Error as e:
            logger.error(f"State store operation {func.__name__} failed: {e}", exc_info=True)
            raise StoreError(f"State store unavailable: {e}") from e
        except RuntimeError as e:
            raise StoreError(f"State store is closed: {e}") from e

    @staticmethod
    def _row_to_chunk(row: sqlite3.Row) -> ChunkRecord:
        keys = row.keys()
        return ChunkRecord(
            session_id=row["session_id"],
            index=row["chunk_index"],
            size=row["size"],
            hash=row["hash"],
            status=ChunkStatus(row["status"]),
            retries=row["retries"],
            last_error=row["last_error"],
            data=bytes(row["data"]) if "data" in keys and row["data"] is not None else None,
            completed_at=row["completed_at"],
        )

    @staticmethod
    def _row_to_session(row: sqlite3.Row) -> UploadSession:
        return UploadSession(
            id=row["id"],
            file_name=row["file_name"],
            file_size=row["file_size"],
            chunk_size=row["chunk_size"],
            total_chunks=row["total_chunks"],
            uploaded_chunks=row["uploaded_chunks"],
            prepared_chunks=row["prepared_chunks"],
            status=SessionStatus(row["status"]),
            last_error=row["last_error"],
            server_response=row["server_response"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            completed_at=row["completed_at"],
        )

    # ----- Chunks -------------------------------------------------------------

    def _put_chunk(self, record: ChunkRecord) -> None:
        with get_db_connection(self.db_path) as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO chunks
                    (id, session_id, chunk_index, hash, size, status, retries, last_error, data, completed_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    record.id,
                    record.session_id,
                    record.index,
                    record.hash,
                    record.size,
                    _db_value(record.status),
                    record.retries,
                    record.last_error,
                    record.data,
                    record.completed_at,
                ),
            )
            conn.commit()

    async def put_chunk(self, record: ChunkRecord) -> None:
        await self._run(self._put_chunk, record)

    def _get_chunk(self, chunk_id: str) -> ChunkRecord:
        with get_db_connection(self.db_path) as conn:
            row = conn.execute(
                f"SELECT {_CHUNK_COLUMNS}, data FROM chunks WHERE id = ?", (chunk_id,)
            ).fetchone()
        if row is None:
            raise RecordNotFoundError(f"Chunk {chunk_id} not found")
        return self._row_to_chunk(row)

    async def get_chunk(self, chunk_id: str) -> ChunkRecord:
        return await self._run(self._get_chunk, chunk_id)

    def _update_chunk(self, chunk_id: str, patch: dict) -> None:
        with get_db_connection(self.db_path) as conn:
            row = conn.execute(
                "SELECT status, hash FROM chunks WHERE id = ?", (chunk_id,)
            ).fetchone()
            if row is None:
                raise RecordNotFoundError(f"Chunk {chunk_id} not found")

            if "status" in patch:
                current = ChunkStatus(row["status"])
                new = ChunkStatus(patch["status"])
                if not can_transition(current, new):
                    raise StoreError(
                        f"Illegal status transition {current.value} -> {new.value} for chunk {chunk_id}"
                    )
            if "hash" in patch and row["hash"] is not None and patch["hash"] != row["hash"]:
                raise StoreError(f"Hash of chunk {chunk_id} is immutable")

            columns = sorted(patch)
            assignments = ", ".join(f"{column} = ?" for column in columns)
            values = [_db_value(patch[column]) for column in columns]
            conn.execute(f"UPDATE chunks SET {assignments} WHERE id = ?", (*values, chunk_id))
            conn.commit()

    async def update_chunk(self, chunk_id: str, **patch: Any) -> None:
        _check_patch(patch, CHUNK_PATCH_FIELDS)
        if not patch:
            return
        await self._run(self._update_chunk, chunk_id, patch)

    def _query_chunks_by_status(self, session_id: str, statuses: List[str]) -> List[ChunkRecord]:
        placeholders = ", ".join("?" for _ in statuses)
        with get_db_connection(self.db_path) as conn:
            rows = conn.execute(
                f"""
                SELECT {_CHUNK_COLUMNS}
                FROM chunks
                WHERE session_id = ? AND status IN ({placeholders})
                ORDER BY chunk_index
                """,
                (session_id, *statuses),
            ).fetchall()
        return [self._row_to_chunk(row) for row in rows]

    async def query_chunks_by_status(
        self, session_id: str, statuses: Iterable[ChunkStatus]
    ) -> List[ChunkRecord]:
        values = [_db_value(status) for status in statuses]
        if not values:
            return []
        return await self._run(self._query_chunks_by_status, session_id, values)

    # ----- Sessions -----------------------------------------------------------

    def _put_session(self, session: UploadSession) -> None:
        now = _now()
        with get_db_connection(self.db_path) as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO upload_status
                    (id, session_id, file_name, file_size, chunk_size, total_chunks,
                     uploaded_chunks, prepared_chunks, status, last_error, server_response,
                     created_at, updated_at, completed_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    session.id,
                    session.id,
                    session.file_name,
                    session.file_size,
                    session.chunk_size,
                    session.total_chunks,
                    session.uploaded_chunks,
                    session.prepared_chunks,
                    _db_value(session.status),
                    session.last_error,
                    session.server_response,
                    session.created_at or now,
                    now,
                    session.completed_at,
                ),
            )
            conn.commit()

    async def put_session(self, session: UploadSession) -> None:
        await self._run(self._put_session, session)

    def _get_session(self, session_id: str) -> Optional[UploadSession]:
        with get_db_connection(self.db_path) as conn:
            row = conn.execute(
                "SELECT * FROM upload_status WHERE id = ?", (session_id,)
            ).fetchone()
        return self._row_to_session(row) if row is not None else None

    async def get_session(self, session_id: str) -> Optional[UploadSession]:
        return await self._run(self._get_session, session_id)

    def _update_session(self, session_id: str, patch: dict) -> UploadSession:
        patch = {**patch, "updated_at": _now()}
        columns = sorted(patch)
        assignments = ", ".join(f"{column} = ?" for column in columns)
        values = [_db_value(patch[column]) for column in columns]
        with get_db_connection(self.db_path) as conn:
            cursor = conn.execute(
                f"UPDATE upload_status SET {assignments} WHERE id = ?", (*values, session_id)
            )
            if cursor.rowcount == 0:
                raise RecordNotFoundError(f"Upload session {session_id} not found")
            conn.commit()
            row = conn.execute(
                "SELECT * FROM upload_status WHERE id = ?", (session_id,)
            ).fetchone()
        return self._row_to_session(row)

    async def update_session(self, session_id: str, **patch: Any) -> UploadSession:
        _check_patch(patch, SESSION_PATCH_FIELDS)
        return await self._run(self._update_session, session_id, patch)

    def _increment_uploaded_chunks(self, session_id: str) -> UploadSession:
        with get_db_connection(self.db_path) as conn:
            cursor = conn.execute(
                """
                UPDATE upload_status
                SET uploaded_chunks = uploaded_chunks + 1, updated_at = ?
                WHERE id = ?
                """,
                (_now(), session_id),
            )
            if cursor.rowcount == 0:
                raise RecordNotFoundError(f"Upload session {session_id} not found")
            conn.commit()
            row = conn.execute(
                "SELECT * FROM upload_status WHERE id = ?", (session_id,)
            ).fetchone()
        return self._row_to_session(row)

    async def increment_uploaded_chunks(self, session_id: str) -> UploadSession:
        return await self._run(self._increment_uploaded_chunks, session_id)

    def _delete_session_and_chunks(self, session_id: str) -> int:
        with get_db_connection(self.db_path) as conn:
            cursor = conn.execute("DELETE FROM chunks WHERE session_id = ?", (session_id,))
            deleted = cursor.rowcount
            conn.execute("DELETE FROM upload_status WHERE id = ?", (session_id,))
            conn.commit()
        return deleted

    async def delete_session_and_chunks(self, session_id: str) -> int:
        deleted = await self._run(self._delete_session_and_chunks, session_id)
        logger.info(f"Deleted session and {deleted} chunks [session_id={session_id}]")
        return deleted

    def _list_sessions(self) -> List[UploadSession]:
        with get_db_connection(self.db_path) as conn:
            rows = conn.execute(
                "SELECT * FROM upload_status ORDER BY created_at DESC"
            ).fetchall()
        return [self._row_to_session(row) for row in rows]

    async def list_sessions(self) -> List[UploadSession]:
        return await self._run(self._list_sessions)

    async def close(self) -> None:
        """Wait for queued operations and stop the worker thread."""
        self._executor.shutdown(wait=True)
