"""Exceptions raised by the express uploader."""
from typing import Optional


class ExpressError(Exception):
    """Base class for uploader errors."""


class InvalidOrderError(ExpressError):
    """Directory is not an order (missing directory or descriptor)."""


class ArchiveBuildError(ExpressError):
    """A file listed for the upload archive could not be read."""

    def __init__(self, message: str, relative_path: Optional[str] = None):
        super().__init__(message)
        self.relative_path = relative_path


class ExpressAPIError(ExpressError):
    """
    Raised when an Express call fails at transport or server level.

    Carries the endpoint and status code so the batch output can show
    what failed for which order.
    """

    def __init__(
        self,
        message: str,
        *,
        endpoint: Optional[str] = None,
        status_code: Optional[int] = None,
        detail: Optional[str] = None,
    ):
        super().__init__(message)
        self.endpoint = endpoint
        self.status_code = status_code
        self.detail = detail


class UploadCancelledError(ExpressError):
    """Upload stopped because the cancellation signal fired."""

    def __init__(self, archive_name: str):
        super().__init__(f"Upload of {archive_name} cancelled")
        self.archive_name = archive_name
