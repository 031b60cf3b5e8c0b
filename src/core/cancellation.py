"""Cooperative cancellation for long scans (stats, export, import)."""

from __future__ import annotations

import threading

from src.core.errors import OperationCancelled


class CancellationToken:
    """Thread-safe flag polled by scanning loops."""

    def __init__(self) -> None:
        self._event = threading.Event()
        self.reason: str | None = None

    def cancel(self, reason: str = "cancelled by caller") -> None:
        self.reason = reason
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise OperationCancelled(self.reason or "cancelled by caller")


def check_cancelled(token: CancellationToken | None) -> None:
    """Poll an optional token."""
    if token is not None:
        token.raise_if_cancelled()
