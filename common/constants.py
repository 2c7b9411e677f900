"""Project-wide constants (chunk sizing, scheduling limits, retry policy)."""

DEFAULT_CHUNK_SIZE_BYTES: int = 2 * 1024 * 1024  # 2 MiB default chunk size

DEFAULT_CONCURRENCY: int = 3
MIN_CONCURRENCY: int = 2
MAX_CONCURRENCY: int = 6

MAX_RETRIES: int = 3
RETRY_DELAYS_SECONDS: tuple[float, ...] = (1.0, 2.0, 3.0)

# Granularity of byte-level progress reports while streaming a chunk body.
STREAM_PIECE_SIZE_BYTES: int = 64 * 1024

DEFAULT_HASH_WORKERS: int = 2
DEFAULT_PREPARE_CONCURRENCY: int = 4

HTTP_TIMEOUT_SECONDS: float = 30.0
UPLOAD_ENDPOINT: str = "/upload"
MERGE_ENDPOINT: str = "/merge"
