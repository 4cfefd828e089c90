"""Custom exception classes for MetaVector."""

from typing import Optional


class MetaVectorError(RuntimeError):
    """Base class for every error raised by the memory core and its collaborators."""


class ValidationError(MetaVectorError):
    """Input has the wrong shape: missing text or vectors, bad id, bad setting."""


class NotFoundError(MetaVectorError):
    """Operation referenced a record id that does not exist."""

    def __init__(self, message: str, record_id: Optional[int] = None):
        super().__init__(message)
        self.record_id = record_id


class AuthError(MetaVectorError):
    """Provider credential is missing or was rejected."""


class ProviderError(MetaVectorError):
    """Upstream provider failed or returned a malformed payload.

    Attributes:
        message: Error message
        status_code: HTTP status reported by the provider (if available)
    """

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class StorageError(MetaVectorError):
    """Persistence backend failed; the operation was rolled back."""


class CancelledError(MetaVectorError):
    """Operation aborted by a caller-issued cancellation.

    Not a failure of the system, and distinct from asyncio.CancelledError,
    which still means the surrounding task itself is being torn down.
    """
