"""Resumable chunked upload engine."""

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
from uploader.planner import ChunkPlan, plan_chunks
from uploader.session import ChunkedUpload
from uploader.state_store import SQLiteStateStore, StateStore
from uploader.transport import HttpTransport, UploadTransport

__all__ = [
    "ChunkedUpload",
    "ChunkPlan",
    "plan_chunks",
    "HashWorker",
    "StateStore",
    "SQLiteStateStore",
    "UploadTransport",
    "HttpTransport",
    "UploadError",
    "PlanningError",
    "HashError",
    "StoreError",
    "RecordNotFoundError",
    "TransportError",
    "CancellationError",
]
