"""Transport abstraction for sending chunks and requesting the server-side merge."""

from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Callable, Optional

import httpx

from common.constants import MERGE_ENDPOINT, STREAM_PIECE_SIZE_BYTES, UPLOAD_ENDPOINT
from common.logging_config import get_logger
from uploader import config
from uploader.exceptions import TransportError
from uploader.models import ChunkUploadMeta, MergeRequest

logger = get_logger(__name__)

ProgressHook = Callable[[int, int], None]


class UploadTransport(ABC):
    """
    "Send bytes, get ack or error" primitive used by the scheduler.

    Implementations raise TransportError for every network or server failure.
    """

    @abstractmethod
    async def upload_chunk(
        self,
        data: bytes,
        meta: ChunkUploadMeta,
        on_progress: Optional[ProgressHook] = None,
    ) -> Any:
        """Send one chunk; *on_progress* receives (loaded, total) byte counts."""

    @abstractmethod
    async def merge(self, request: MergeRequest) -> Any:
        """Ask the server to assemble all chunks; returns the final reference."""

    async def close(self) -> None:
        """Release connections held by the transport."""


class HttpTransport(UploadTransport):
    """HTTP transport on top of httpx.AsyncClient."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        api_key: Optional[str] = None,
        upload_path: str = UPLOAD_ENDPOINT,
        merge_path: str = MERGE_ENDPOINT,
        piece_size: int = STREAM_PIECE_SIZE_BYTES,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Initialize the transport.

        Args:
            base_url: Server base URL (defaults to config.SERVER_URL)
            timeout: Per-request timeout in seconds (defaults to config.HTTP_TIMEOUT)
            api_key: Optional bearer token sent with every request
            upload_path: Endpoint receiving chunk bodies
            merge_path: Endpoint triggering the merge
            piece_size: Body streaming granularity, drives progress reports
            client: Preconfigured client (tests inject one with a MockTransport)
        """
        self._client = client or httpx.AsyncClient(
            base_url=base_url or config.SERVER_URL,
            timeout=timeout if timeout is not None else config.HTTP_TIMEOUT,
        )
        if api_key:
            self._client.headers['Authorization'] = f'Bearer {api_key}'
        self.upload_path = upload_path
        self.merge_path = merge_path
        self.piece_size = piece_size
        logger.info(f"Initialized HttpTransport [base_url={self._client.base_url}]")

    async def _stream_body(
        self, data: bytes, on_progress: Optional[ProgressHook]
    ) -> AsyncIterator[bytes]:
        total = len(data)
        loaded = 0
        if total == 0 and on_progress:
            on_progress(0, 0)
        for offset in range(0, total, self.piece_size):
            piece = data[offset:offset + self.piece_size]
            yield piece
            loaded += len(piece)
            if on_progress:
                on_progress(loaded, total)

    @staticmethod
    def _parse_reply(response: httpx.Response) -> Any:
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return response.text

    def _raise_for_status(self, response: httpx.Response, action: str) -> None:
        if 200 <= response.status_code < 300:
            return
        try:
            detail = response.json().get('detail', response.reason_phrase)
        except (ValueError, AttributeError):
            detail = response.text or response.reason_phrase
        raise TransportError(
            f"{action} failed: {response.status_code} {detail}",
            status_code=response.status_code,
        )

    async def upload_chunk(
        self,
        data: bytes,
        meta: ChunkUploadMeta,
        on_progress: Optional[ProgressHook] = None,
    ) -> Any:
        logger.debug(
            f"POST {self.upload_path} [session_id={meta.session_id}, chunk={meta.index}, size={len(data)}]"
        )
        try:
            response = await self._client.post(
                self.upload_path,
                content=self._stream_body(data, on_progress),
                params=meta.to_wire(),
                headers={
                    'X-Upload-Id': meta.session_id,
                    'Content-Type': 'application/octet-stream',
                    'Content-Length': str(len(data)),
                },
            )
        except httpx.HTTPError as e:
            raise TransportError(f"Chunk {meta.index} upload failed: {type(e).__name__}: {e}") from e

        self._raise_for_status(response, f"Chunk {meta.index} upload")
        return self._parse_reply(response)

    async def merge(self, request: MergeRequest) -> Any:
        logger.info(
            f"POST {self.merge_path} [session_id={request.session_id}, total_chunks={request.total_chunks}]"
        )
        try:
            response = await self._client.post(self.merge_path, json=request.to_wire())
        except httpx.HTTPError as e:
            raise TransportError(f"Merge failed: {type(e).__name__}: {e}") from e

        self._raise_for_status(response, "Merge")
        return self._parse_reply(response)

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()
