"""Time and rounding helpers shared by the scheduler, stats and snapshot code."""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes, convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def round_half_up(value: float, ndigits: int = 0) -> float | int:
    """
    Round halves away from zero (2.5 -> 3), unlike built-in round().

    Returns an int when ndigits is 0.
    """
    quantum = Decimal(1).scaleb(-ndigits)
    rounded = Decimal(repr(value)).quantize(quantum, rounding=ROUND_HALF_UP)
    if ndigits == 0:
        return int(rounded)
    return float(rounded)
