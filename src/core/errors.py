"""
Error taxonomy for the study engine.

Every failure the engine reports to a caller is one of these types. The
``retryable`` flag tells callers whether repeating the operation can help:

- ValidationError: malformed input, never retried
- NotFound: unknown exam/question/card, never retried
- Conflict: concurrent card update lost an optimistic-lock race
- StorageUnavailable / StorageTimeout: transient storage failure, retry with backoff
- UnsupportedFormat: snapshot format version not accepted
- OperationCancelled: caller cancelled a long scan
"""

from __future__ import annotations

from typing import Any


class StudyEngineError(Exception):
    """Base class for all engine errors."""

    code = "ENGINE_ERROR"
    retryable = False

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Render as the API error envelope body."""
        body: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(StudyEngineError):
    """Raised when caller input is malformed."""

    code = "VALIDATION_ERROR"


class NotFound(StudyEngineError):
    """Raised when an exam, question or card does not exist."""

    code = "NOT_FOUND"


class Conflict(StudyEngineError):
    """Raised when a concurrent write won the race for the same card."""

    code = "CONFLICT"
    retryable = True


class StorageUnavailable(StudyEngineError):
    """Raised when the store cannot be reached or rejects the connection."""

    code = "STORAGE_UNAVAILABLE"
    retryable = True


class StorageTimeout(StorageUnavailable):
    """Raised when a storage call exceeds its timeout or lock wait."""

    code = "STORAGE_TIMEOUT"


class UnsupportedFormat(StudyEngineError):
    """Raised when a snapshot carries a version this build cannot import."""

    code = "UNSUPPORTED_FORMAT"


class OperationCancelled(StudyEngineError):
    """Raised when a cancellation token fires during a scan."""

    code = "CANCELLED"
