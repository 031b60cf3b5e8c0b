"""Caller-side backoff for transient storage failures."""

from __future__ import annotations

import time
from collections.abc import Callable
from typing import TypeVar

from loguru import logger

from src.core.errors import StorageUnavailable

T = TypeVar("T")


def retry_transient(
    fn: Callable[[], T],
    attempts: int = 3,
    base_delay: float = 0.2,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Call fn, retrying StorageUnavailable with exponential backoff.

    Any other error propagates immediately. The last StorageUnavailable is
    re-raised once attempts are exhausted.
    """
    delay = base_delay
    for attempt in range(1, attempts + 1):
        try:
            return fn()
        except StorageUnavailable as e:
            if attempt == attempts:
                raise
            logger.warning(
                f"Transient storage failure (attempt {attempt}/{attempts}): {e}; "
                f"retrying in {delay:.2f}s"
            )
            sleep(delay)
            delay *= 2
    raise AssertionError("unreachable")
