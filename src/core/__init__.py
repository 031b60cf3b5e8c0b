"""
Core Module - Shared error taxonomy, cancellation and clock helpers.

Components:
- errors: ValidationError, NotFound, Conflict, StorageUnavailable, UnsupportedFormat, ...
- cancellation: CancellationToken for long scans
- clock: UTC helpers and half-up rounding
- retry: caller-side backoff for transient storage failures

Design Principle:
Engine modules (src/study/, src/bank/, src/progress/) raise only the errors
defined here; the API and CLI layers translate them for their users.
"""

from src.core.cancellation import CancellationToken, check_cancelled
from src.core.clock import ensure_utc, round_half_up, utcnow
from src.core.errors import (
    Conflict,
    NotFound,
    OperationCancelled,
    StorageTimeout,
    StorageUnavailable,
    StudyEngineError,
    UnsupportedFormat,
    ValidationError,
)
from src.core.retry import retry_transient

__all__ = [
    # Errors
    "StudyEngineError",
    "ValidationError",
    "NotFound",
    "Conflict",
    "StorageUnavailable",
    "StorageTimeout",
    "UnsupportedFormat",
    "OperationCancelled",
    # Cancellation
    "CancellationToken",
    "check_cancelled",
    # Clock
    "utcnow",
    "ensure_utc",
    "round_half_up",
    # Retry
    "retry_transient",
]
