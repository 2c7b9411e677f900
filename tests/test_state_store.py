"""Integration tests for the SQLite state store."""

import asyncio
import sqlite3

import pytest

from common.types import ChunkRecord, ChunkStatus, SessionStatus, UploadSession, chunk_id
from uploader.database import get_db_connection
from uploader.exceptions import RecordNotFoundError, StoreError
from uploader.state_store import SQLiteStateStore


def make_session(session_id: str = "a.bin-10-1", total_chunks: int = 3, **kwargs) -> UploadSession:
    return UploadSession(
        id=session_id,
        file_name="a.bin",
        file_size=10,
        chunk_size=4,
        total_chunks=total_chunks,
        **kwargs,
    )


def make_chunk(session_id: str = "a.bin-10-1", index: int = 0, **kwargs) -> ChunkRecord:
    defaults = {"size": 4, "hash": f"hash-{index}", "data": b"abcd"}
    defaults.update(kwargs)
    return ChunkRecord(session_id=session_id, index=index, **defaults)


class TestDatabaseHelpers:
    """Test database helper functions."""

    def test_schema_created(self, store):
        with get_db_connection(store.db_path) as conn:
            tables = {
                row["name"]
                for row in conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'")
            }
        assert {"upload_status", "chunks"} <= tables


class TestChunkRecords:
    """Chunk CRUD and status transitions."""

    @pytest.mark.asyncio
    async def test_put_and_get_chunk(self, store):
        await store.put_chunk(make_chunk(index=1))

        record = await store.get_chunk(chunk_id("a.bin-10-1", 1))

        assert record.index == 1
        assert record.status == ChunkStatus.PENDING
        assert record.hash == "hash-1"
        assert record.data == b"abcd"
        assert record.retries == 0

    @pytest.mark.asyncio
    async def test_get_missing_chunk_raises(self, store):
        with pytest.raises(RecordNotFoundError):
            await store.get_chunk("nope:0")

    @pytest.mark.asyncio
    async def test_update_missing_chunk_raises(self, store):
        with pytest.raises(RecordNotFoundError):
            await store.update_chunk("nope:0", status=ChunkStatus.UPLOADING)

    @pytest.mark.asyncio
    async def test_legal_lifecycle(self, store):
        await store.put_chunk(make_chunk())
        cid = chunk_id("a.bin-10-1", 0)

        await store.update_chunk(cid, status=ChunkStatus.UPLOADING)
        await store.update_chunk(cid, status=ChunkStatus.FAILED, retries=1, last_error="boom")
        await store.update_chunk(cid, status=ChunkStatus.UPLOADING)
        await store.update_chunk(cid, status=ChunkStatus.COMPLETED, data=None)

        record = await store.get_chunk(cid)
        assert record.status == ChunkStatus.COMPLETED
        assert record.retries == 1
        assert record.last_error == "boom"
        assert record.data is None

    @pytest.mark.asyncio
    async def test_completed_is_terminal(self, store):
        await store.put_chunk(make_chunk(status=ChunkStatus.COMPLETED))
        cid = chunk_id("a.bin-10-1", 0)

        with pytest.raises(StoreError):
            await store.update_chunk(cid, status=ChunkStatus.UPLOADING)

    @pytest.mark.asyncio
    async def test_pending_cannot_skip_to_completed(self, store):
        await store.put_chunk(make_chunk())

        with pytest.raises(StoreError):
            await store.update_chunk(chunk_id("a.bin-10-1", 0), status=ChunkStatus.COMPLETED)

    @pytest.mark.asyncio
    async def test_hash_is_immutable(self, store):
        await store.put_chunk(make_chunk())
        cid = chunk_id("a.bin-10-1", 0)

        await store.update_chunk(cid, hash="hash-0")
        with pytest.raises(StoreError):
            await store.update_chunk(cid, hash="different")

    @pytest.mark.asyncio
    async def test_unknown_patch_field(self, store):
        await store.put_chunk(make_chunk())
        with pytest.raises(ValueError):
            await store.update_chunk(chunk_id("a.bin-10-1", 0), size=99)

    @pytest.mark.asyncio
    async def test_query_by_status_is_ordered_and_omits_payload(self, store):
        for index in (2, 0, 1):
            await store.put_chunk(make_chunk(index=index))
        await store.put_chunk(make_chunk(index=3, status=ChunkStatus.FAILED))
        await store.put_chunk(make_chunk(index=4, status=ChunkStatus.COMPLETED, data=None))
        await store.put_chunk(make_chunk(session_id="other", index=0))

        records = await store.query_chunks_by_status(
            "a.bin-10-1", [ChunkStatus.PENDING, ChunkStatus.FAILED]
        )

        assert [r.index for r in records] == [0, 1, 2, 3]
        assert all(r.data is None for r in records)
        assert await store.query_chunks_by_status("a.bin-10-1", []) == []


class TestSessionRecords:
    """Session CRUD and counters."""

    @pytest.mark.asyncio
    async def test_put_and_get_session(self, store):
        await store.put_session(make_session())

        session = await store.get_session("a.bin-10-1")

        assert session.file_name == "a.bin"
        assert session.status == SessionStatus.PREPARING
        assert session.created_at is not None
        assert session.updated_at is not None

    @pytest.mark.asyncio
    async def test_get_missing_session_returns_none(self, store):
        assert await store.get_session("missing") is None

    @pytest.mark.asyncio
    async def test_update_session(self, store):
        await store.put_session(make_session())

        session = await store.update_session(
            "a.bin-10-1", status=SessionStatus.FAILED, last_error="network down"
        )

        assert session.status == SessionStatus.FAILED
        assert session.last_error == "network down"

    @pytest.mark.asyncio
    async def test_update_missing_session_raises(self, store):
        with pytest.raises(RecordNotFoundError):
            await store.update_session("missing", status=SessionStatus.FAILED)

    @pytest.mark.asyncio
    async def test_increment_uploaded_chunks_is_atomic(self, store):
        await store.put_session(make_session(total_chunks=20))

        await asyncio.gather(*(store.increment_uploaded_chunks("a.bin-10-1") for _ in range(20)))

        session = await store.get_session("a.bin-10-1")
        assert session.uploaded_chunks == 20

    @pytest.mark.asyncio
    async def test_uploaded_chunks_cannot_exceed_total(self, store):
        await store.put_session(make_session(total_chunks=1, uploaded_chunks=1))

        with pytest.raises(StoreError):
            await store.increment_uploaded_chunks("a.bin-10-1")

    @pytest.mark.asyncio
    async def test_delete_session_and_chunks(self, store):
        await store.put_session(make_session())
        for index in range(3):
            await store.put_chunk(make_chunk(index=index))
        await store.put_chunk(make_chunk(session_id="other", index=0))

        deleted = await store.delete_session_and_chunks("a.bin-10-1")

        assert deleted == 3
        assert await store.get_session("a.bin-10-1") is None
        with pytest.raises(RecordNotFoundError):
            await store.get_chunk(chunk_id("a.bin-10-1", 0))
        assert (await store.get_chunk(chunk_id("other", 0))).index == 0

    @pytest.mark.asyncio
    async def test_list_sessions_newest_first(self, store):
        await store.put_session(make_session("old", created_at="2026-01-01T00:00:00+00:00"))
        await store.put_session(make_session("new", created_at="2026-02-01T00:00:00+00:00"))

        sessions = await store.list_sessions()

        assert [s.id for s in sessions] == ["new", "old"]


class TestStoreFailures:
    """Errors surface as StoreError."""

    @pytest.mark.asyncio
    async def test_closed_store_raises_store_error(self, tmp_path):
        closed = SQLiteStateStore(str(tmp_path / 'closed.db'))
        await closed.close()

        with pytest.raises(StoreError):
            await closed.get_session("a")

    @pytest.mark.asyncio
    async def test_sqlite_errors_are_wrapped(self, store):
        with get_db_connection(store.db_path) as conn:
            conn.execute("DROP TABLE chunks")
            conn.commit()

        with pytest.raises(StoreError) as exc_info:
            await store.get_chunk("a:0")
        assert not isinstance(exc_info.value, RecordNotFoundError)
        assert isinstance(exc_info.value.__cause__, sqlite3.Error)
