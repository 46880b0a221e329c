"""
Exception taxonomy for the console backend.

Routes translate these into HTTP responses; the ingestion loop turns
per-event failures into skips.
"""

from typing import Optional


class ConsoleError(Exception):
    """Base class for all console errors."""


class AuthenticityError(ConsoleError):
    """Webhook signature missing or invalid."""


class MissingSignatureError(AuthenticityError):
    pass


class InvalidSignatureError(AuthenticityError):
    pass


class PayloadValidationError(ConsoleError):
    """A required field is missing or malformed. No side effects were attempted."""


class UpstreamError(ConsoleError):
    """A collaborator outside this service (LINE, object storage) failed."""


class LineApiError(UpstreamError):
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ObjectStorageError(UpstreamError):
    pass


class MediaRelayError(UpstreamError):
    pass


class StorageError(ConsoleError):
    """The message database is unavailable or rejected a write."""
