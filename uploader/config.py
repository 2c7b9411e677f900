"""Configuration settings for the upload engine."""

import os
from pathlib import Path

from common.constants import (
    DEFAULT_CHUNK_SIZE_BYTES,
    DEFAULT_CONCURRENCY,
    HTTP_TIMEOUT_SECONDS,
    MAX_RETRIES,
)


DATABASE_PATH = os.environ.get(
    "CHUNKUP_DATABASE_PATH", str(Path.home() / ".chunkup" / "state.db")
)

SERVER_URL = os.environ.get("CHUNKUP_SERVER_URL", "http://localhost:8000")

CHUNK_SIZE = int(os.environ.get("CHUNKUP_CHUNK_SIZE", str(DEFAULT_CHUNK_SIZE_BYTES)))

CONCURRENCY = int(os.environ.get("CHUNKUP_CONCURRENCY", str(DEFAULT_CONCURRENCY)))

MAX_CHUNK_RETRIES = int(os.environ.get("CHUNKUP_MAX_RETRIES", str(MAX_RETRIES)))

HTTP_TIMEOUT = float(os.environ.get("CHUNKUP_HTTP_TIMEOUT", str(HTTP_TIMEOUT_SECONDS)))
