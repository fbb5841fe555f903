"""Error taxonomy shared by the store, the evaluation workflow and the API."""

from __future__ import annotations


class PrepMintError(Exception):
    """Base class for every error surfaced to callers."""

    status_code = 500
    retryable = False

    def __init__(self, message: str, *, source: str | None = None, record_id: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.source = source
        self.record_id = record_id


class ConfigurationError(PrepMintError):
    """Malformed query or settings; a caller bug, raised before any network call."""

    status_code = 400


class ValidationError(PrepMintError):
    """Input data rejected, e.g. a missing required field or an invalid upload."""

    status_code = 422


class NotFoundError(PrepMintError):
    status_code = 404


class PermissionDeniedError(PrepMintError):
    """The backend refused a read or write."""

    status_code = 403


class TransientError(PrepMintError):
    """Network or backend hiccup. Callers may retry manually; nothing retries automatically."""

    status_code = 503
    retryable = True


__all__ = [
    "PrepMintError",
    "ConfigurationError",
    "ValidationError",
    "NotFoundError",
    "PermissionDeniedError",
    "TransientError",
]
