"""Shared data type definitions (UploadSession, ChunkRecord, ChunkRange, UploadProgress)."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class SessionStatus(str, Enum):
    PREPARING = "preparing"
    PREPARED = "prepared"
    UPLOADING = "uploading"
    MERGING = "merging"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELED = "canceled"


class ChunkStatus(str, Enum):
    PENDING = "pending"
    UPLOADING = "uploading"
    COMPLETED = "completed"
    FAILED = "failed"


# uploading -> pending only happens when a crashed run is recovered.
CHUNK_TRANSITIONS: dict[ChunkStatus, frozenset[ChunkStatus]] = {
    ChunkStatus.PENDING: frozenset({ChunkStatus.UPLOADING}),
    ChunkStatus.UPLOADING: frozenset(
        {ChunkStatus.COMPLETED, ChunkStatus.FAILED, ChunkStatus.PENDING}
    ),
    ChunkStatus.FAILED: frozenset({ChunkStatus.UPLOADING, ChunkStatus.FAILED}),
    ChunkStatus.COMPLETED: frozenset(),
}


def can_transition(current: ChunkStatus, new: ChunkStatus) -> bool:
    """Return True if a chunk may move from *current* to *new*."""
    if current == new and current != ChunkStatus.COMPLETED:
        return True
    return new in CHUNK_TRANSITIONS[current]


def chunk_id(session_id: str, index: int) -> str:
    """Composite key of a chunk record."""
    return f"{session_id}:{index}"


@dataclass(frozen=True)
class ChunkRange:
    """
    Half-open byte range [start, end) of one chunk.
    """
    index: int
    start: int
    end: int

    @property
    def size(self) -> int:
        return self.end - self.start


@dataclass(frozen=True)
class UploadSession:
    """
    Persistent state of one resumable upload.
    """
    id: str
    file_name: str
    file_size: int
    chunk_size: int
    total_chunks: int
    uploaded_chunks: int = 0
    prepared_chunks: int = 0
    status: SessionStatus = SessionStatus.PREPARING
    last_error: Optional[str] = None
    server_response: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    completed_at: Optional[str] = None


@dataclass(frozen=True)
class ChunkRecord:
    """
    Persistent state of a single chunk within a session.
    """
    session_id: str
    index: int
    size: int
    hash: Optional[str] = None
    status: ChunkStatus = ChunkStatus.PENDING
    retries: int = 0
    last_error: Optional[str] = None
    data: Optional[bytes] = field(default=None, repr=False)
    completed_at: Optional[str] = None

    @property
    def id(self) -> str:
        return chunk_id(self.session_id, self.index)


@dataclass(frozen=True)
class UploadProgress:
    """
    Snapshot handed to progress callbacks.
    """
    total_progress: float
    completed_chunks: int
    total_chunks: int
    uploaded_bytes: int
    total_bytes: int
