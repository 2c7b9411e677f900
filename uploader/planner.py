"""Chunk planning utilities.

Splits a file of known size into ordered, contiguous, non-overlapping
byte ranges and reads individual ranges back from disk.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Iterator

from common.types import ChunkRange
from uploader.exceptions import PlanningError


@dataclass(frozen=True)
class ChunkPlan:
    """
    Chunk layout of a file, fully determined by (file_size, chunk_size).

    Attributes:
        file_size: Total file size in bytes.
        chunk_size: Maximum number of bytes per chunk.
    """

    file_size: int
    chunk_size: int

    @property
    def total_chunks(self) -> int:
        """Number of chunks, ``ceil(file_size / chunk_size)``."""
        return -(-self.file_size // self.chunk_size)

    def byte_range(self, index: int) -> ChunkRange:
        """Return the half-open byte range of chunk *index*.

        Args:
            index: Zero-based chunk index.

        Returns:
            ChunkRange covering ``[index * chunk_size, min((index + 1) * chunk_size, file_size))``.

        Raises:
            IndexError: If *index* is outside ``[0, total_chunks)``.
        """
        if not 0 <= index < self.total_chunks:
            raise IndexError(
                f"chunk index {index} out of range for {self.total_chunks} chunks"
            )
        start = index * self.chunk_size
        end = min(start + self.chunk_size, self.file_size)
        return ChunkRange(index=index, start=start, end=end)

    def __iter__(self) -> Iterator[ChunkRange]:
        for index in range(self.total_chunks):
            yield self.byte_range(index)

    def __len__(self) -> int:
        return self.total_chunks


def plan_chunks(file_size: int, chunk_size: int) -> ChunkPlan:
    """Validate sizes and build a :class:`ChunkPlan`.

    Args:
        file_size: Total file size in bytes (zero yields an empty plan).
        chunk_size: Maximum number of bytes per chunk, must be positive.

    Returns:
        The chunk plan.

    Raises:
        PlanningError: If either size is invalid.
    """
    if isinstance(chunk_size, bool) or not isinstance(chunk_size, int) or chunk_size <= 0:
        raise PlanningError(f"chunk size must be a positive integer, got {chunk_size!r}")
    if isinstance(file_size, bool) or not isinstance(file_size, int) or file_size < 0:
        raise PlanningError(f"file size must be a non-negative integer, got {file_size!r}")
    return ChunkPlan(file_size=file_size, chunk_size=chunk_size)


def read_chunk(path: Path, chunk_range: ChunkRange) -> bytes:
    """Read a single chunk from a file by its byte range.

    Seeks directly to the range start, so only the requested chunk is
    loaded into memory.

    Args:
        path: Path to the source file.
        chunk_range: Range to read.

    Returns:
        Raw bytes of the chunk.

    Raises:
        PlanningError: If the file ends before the range does.
    """
    with Path(path).open("rb") as f:
        f.seek(chunk_range.start)
        data = f.read(chunk_range.size)
    if len(data) != chunk_range.size:
        raise PlanningError(
            f"{path} is shorter than planned: chunk {chunk_range.index} "
            f"expected {chunk_range.size} bytes, read {len(data)}"
        )
    return data
