"""Off-loop chunk digest computation.

Digests run in an executor (a process pool by default) that is reached
only through message passing: each request carries the chunk index and
its bytes, and each response comes back tagged with the same index.
"""

import asyncio
import hashlib
from concurrent.futures import Executor, ProcessPoolExecutor, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Optional

from common.constants import DEFAULT_HASH_WORKERS
from common.logging_config import get_logger
from uploader.exceptions import HashError

logger = get_logger(__name__)

DigestFunction = Callable[[bytes], str]


def compute_checksum(data: bytes) -> str:
    """
    Compute SHA-256 checksum for given data.

    Args:
        data: Bytes to compute checksum for

    Returns:
        Hexadecimal string representation of SHA-256 hash
    """
    return hashlib.sha256(data).hexdigest()


def _hash_job(digest: DigestFunction, index: int, data: bytes) -> tuple[int, Optional[str], Optional[str]]:
    """Executor entry point. Never raises, errors travel back in the reply."""
    try:
        return index, digest(data), None
    except Exception as e:
        return index, None, f"{type(e).__name__}: {e}"


@dataclass(frozen=True)
class HashResult:
    index: int
    hash: str


class HashWorker:
    """
    Pool of isolated digest workers addressed by chunk index.

    Usage:
        worker = HashWorker()
        result = await worker.digest(0, chunk_bytes)
        worker.close()
    """

    def __init__(
        self,
        digest: DigestFunction = compute_checksum,
        max_workers: int = DEFAULT_HASH_WORKERS,
        use_processes: bool = True,
    ):
        """
        Initialize the worker with a lazily created executor.

        Args:
            digest: Picklable digest function (module-level when use_processes is True)
            max_workers: Number of concurrent digest workers
            use_processes: Run digests in a process pool instead of a thread pool
        """
        self._digest = digest
        self._max_workers = max_workers
        self._use_processes = use_processes
        self._executor: Optional[Executor] = None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def _ensure_executor(self) -> Executor:
        if self._closed:
            raise RuntimeError("HashWorker is closed")
        if self._executor is None:
            if self._use_processes:
                self._executor = ProcessPoolExecutor(max_workers=self._max_workers)
            else:
                self._executor = ThreadPoolExecutor(
                    max_workers=self._max_workers, thread_name_prefix="hash-worker"
                )
            logger.debug(
                f"Started hash executor [workers={self._max_workers}, processes={self._use_processes}]"
            )
        return self._executor

    async def digest(self, index: int, data: bytes) -> HashResult:
        """
        Compute the digest of one chunk.

        Args:
            index: Chunk index used to tag the request and its reply
            data: Chunk bytes

        Returns:
            HashResult for *index*

        Raises:
            HashError: If the digest failed or the reply is tagged with another index
        """
        try:
            executor = self._ensure_executor()
            loop = asyncio.get_running_loop()
            reply_index, digest, error = await loop.run_in_executor(
                executor, _hash_job, self._digest, index, data
            )
        except Exception as e:
            raise HashError(index, f"worker unavailable: {e}") from e

        if reply_index != index:
            raise HashError(index, f"reply tagged with chunk {reply_index}")
        if error is not None:
            raise HashError(index, error)
        return HashResult(index=index, hash=digest)

    def close(self) -> None:
        """Stop the executor without waiting and drop queued requests."""
        self._closed = True
        if self._executor is not None:
            self._executor.shutdown(wait=False, cancel_futures=True)
            self._executor = None
            logger.debug("Hash executor shut down")
