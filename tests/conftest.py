"""Shared pytest fixtures for all tests."""

import asyncio
from pathlib import Path
from typing import Any, Optional

import pytest

from cli.config import Config
from uploader.exceptions import TransportError
from uploader.hash_worker import HashWorker
from uploader.models import ChunkUploadMeta, MergeRequest
from uploader.state_store import SQLiteStateStore
from uploader.transport import UploadTransport

MIB = 1024 * 1024


class FakeTransport(UploadTransport):
    """
    In-memory transport with scripted failures.

    Attributes:
        failures: chunk index -> number of attempts that should fail
        attempts: chunk indices in the order their attempts started
        uploaded: chunk index -> bytes of the accepted upload
        metas: chunk index -> metadata of the accepted upload
        merge_calls: every merge request received
        gate: when set, uploads block until the event is set
        holds: chunk index -> event that blocks only that chunk's uploads
    """

    def __init__(
        self,
        failures: Optional[dict] = None,
        merge_result: Any = None,
        merge_error: Optional[TransportError] = None,
    ):
        self.failures = dict(failures or {})
        self.merge_result = merge_result if merge_result is not None else {"url": "/files/merged"}
        self.merge_error = merge_error
        self.attempts: list[int] = []
        self.uploaded: dict[int, bytes] = {}
        self.metas: dict[int, ChunkUploadMeta] = {}
        self.merge_calls: list[MergeRequest] = []
        self.gate: Optional[asyncio.Event] = None
        self.holds: dict[int, asyncio.Event] = {}
        self.in_flight = 0
        self.max_in_flight = 0
        self.closed = False

    async def upload_chunk(self, data, meta, on_progress=None):
        self.attempts.append(meta.index)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if on_progress:
                on_progress(len(data) // 2, len(data))
            await asyncio.sleep(0)
            if self.gate is not None:
                await self.gate.wait()
            if meta.index in self.holds:
                await self.holds[meta.index].wait()
            if self.failures.get(meta.index, 0) > 0:
                self.failures[meta.index] -= 1
                raise TransportError(f"Chunk {meta.index} rejected", status_code=500)
            if on_progress:
                on_progress(len(data), len(data))
            self.uploaded[meta.index] = data
            self.metas[meta.index] = meta
            return {"index": meta.index}
        finally:
            self.in_flight -= 1

    async def merge(self, request):
        self.merge_calls.append(request)
        if self.merge_error is not None:
            raise self.merge_error
        return self.merge_result

    async def close(self):
        self.closed = True


class RecordingSleep:
    """Backoff sleep that returns immediately and remembers requested delays."""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await asyncio.sleep(0)


async def wait_for(predicate, timeout: float = 5.0) -> None:
    """Poll *predicate* until it holds or fail the test after *timeout* seconds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            pytest.fail("condition not reached in time")
        await asyncio.sleep(0.01)


def write_pattern_file(path: Path, size: int) -> Path:
    """Write *size* bytes of a repeating byte pattern to *path*."""
    pattern = bytes(range(256))
    repeats, remainder = divmod(size, len(pattern))
    path.write_bytes(pattern * repeats + pattern[:remainder])
    return path


@pytest.fixture
def temp_config_dir(tmp_path):
    """
    Create temporary config directory.

    Args:
        tmp_path: pytest tmp_path fixture

    Returns:
        Path to temporary .chunkup directory
    """
    config_dir = tmp_path / '.chunkup'
    config_dir.mkdir()
    return config_dir


@pytest.fixture
def temp_config(temp_config_dir):
    """
    Create temporary config instance.

    Args:
        temp_config_dir: Temporary config directory fixture

    Returns:
        Config instance with temp config file
    """
    return Config(temp_config_dir / 'config.json')


@pytest.fixture
def store(tmp_path):
    """SQLite state store in a temporary directory."""
    state_store = SQLiteStateStore(str(tmp_path / 'state.db'))
    yield state_store
    asyncio.run(state_store.close())


@pytest.fixture
def hash_worker():
    """Thread-backed hash worker, closed after the test."""
    worker = HashWorker(use_processes=False)
    yield worker
    worker.close()


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def recording_sleep():
    return RecordingSleep()


@pytest.fixture
def sample_file(tmp_path):
    """
    Create a 5 MiB file, three chunks at the default 2 MiB chunk size.

    Returns:
        Path to the sample file
    """
    return write_pattern_file(tmp_path / 'sample.bin', 5 * MIB)


@pytest.fixture
def small_file(tmp_path):
    """
    Create a small text file for transport and CLI tests.

    Returns:
        Path to sample text file
    """
    file_path = tmp_path / 'test.txt'
    file_path.write_text('Sample content for testing')
    return file_path


@pytest.fixture
def empty_file(tmp_path):
    file_path = tmp_path / 'empty.bin'
    file_path.write_bytes(b'')
    return file_path
