"""Custom exception classes for the upload engine."""

from typing import Optional


class UploadError(Exception):
    """
    Base exception class for all upload-related errors.
    """
    pass


class PlanningError(UploadError):
    """
    Raised when a file or chunk size cannot be planned into chunks.
    """
    pass


class HashError(UploadError):
    """
    Raised when the digest of a chunk could not be computed.
    """

    def __init__(self, index: int, message: str):
        super().__init__(f"Hash computation failed for chunk {index}: {message}")
        self.index = index


class StoreError(UploadError):
    """
    Raised when the state store is unavailable or rejects an operation.
    """
    pass


class RecordNotFoundError(StoreError):
    """
    Raised when a chunk or session record does not exist.
    """
    pass


class TransportError(UploadError):
    """
    Raised when a chunk upload or merge request fails.
    """

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class CancellationError(UploadError):
    """
    Raised when an upload session was canceled by the user.
    """
    pass
