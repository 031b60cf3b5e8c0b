"""
Unit tests for the shared core helpers: retry, cancellation, clock, errors.
"""

from datetime import datetime, timedelta, timezone

import pytest

from src.core.cancellation import CancellationToken, check_cancelled
from src.core.clock import ensure_utc, round_half_up
from src.core.errors import (
    Conflict,
    NotFound,
    OperationCancelled,
    StorageTimeout,
    StorageUnavailable,
    ValidationError,
)
from src.core.retry import retry_transient


class TestRetryTransient:
    def test_retries_until_success_with_backoff(self):
        delays = []
        outcomes = [StorageUnavailable("down"), StorageTimeout("slow"), "ok"]

        def flaky():
            outcome = outcomes.pop(0)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome

        assert retry_transient(flaky, attempts=3, base_delay=0.1, sleep=delays.append) == "ok"
        assert delays == [0.1, 0.2]

    def test_gives_up_after_attempts(self):
        calls = []

        def down():
            calls.append(1)
            raise StorageUnavailable("down")

        with pytest.raises(StorageUnavailable):
            retry_transient(down, attempts=2, base_delay=0, sleep=lambda _: None)

        assert len(calls) == 2

    def test_validation_errors_are_not_retried(self):
        calls = []

        def invalid():
            calls.append(1)
            raise ValidationError("bad grade")

        with pytest.raises(ValidationError):
            retry_transient(invalid, attempts=5, sleep=lambda _: None)

        assert len(calls) == 1


class TestCancellation:
    def test_token_lifecycle(self):
        token = CancellationToken()
        assert not token.cancelled
        token.raise_if_cancelled()

        token.cancel("shutdown")

        assert token.cancelled
        with pytest.raises(OperationCancelled, match="shutdown"):
            token.raise_if_cancelled()

    def test_missing_token_never_cancels(self):
        check_cancelled(None)


class TestClock:
    def test_naive_is_treated_as_utc(self):
        assert ensure_utc(datetime(2026, 1, 1, 8)) == datetime(2026, 1, 1, 8, tzinfo=timezone.utc)

    def test_aware_is_converted(self):
        value = datetime(2026, 1, 1, 8, tzinfo=timezone(timedelta(hours=2)))

        assert ensure_utc(value).hour == 6

    @pytest.mark.parametrize(
        "value,ndigits,expected",
        [(2.5, 0, 3), (3.5, 0, 4), (12.5, 0, 13), (66.66666, 1, 66.7), (0.05, 1, 0.1)],
    )
    def test_round_half_up(self, value, ndigits, expected):
        assert round_half_up(value, ndigits) == expected


class TestErrors:
    def test_envelope(self):
        error = NotFound("Exam not found", {"examId": "x"})

        assert error.to_dict() == {
            "code": "NOT_FOUND",
            "message": "Exam not found",
            "details": {"examId": "x"},
        }

    def test_retryable_flags(self):
        assert Conflict("c").retryable
        assert StorageUnavailable("s").retryable
        assert StorageTimeout("t").retryable
        assert not ValidationError("v").retryable
