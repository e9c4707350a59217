"""
Domain time utilities (pure).

Centralized timestamp validation and minute arithmetic used by the quote
lifecycle, the ledger and the repositories.

Behavior and error messages must remain consistent across the domain model.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""

    return datetime.now(timezone.utc)


def require_utc_timestamp(name: str, value: datetime) -> None:
    """
    Enforces that timestamps are UTC.

    Invariants:
    - Timestamps must be timezone-aware.
    - Timestamps must have UTC offset 0.
    """

    if value.tzinfo is None or value.utcoffset() is None:
        raise ValueError(f"{name} must be timezone-aware (UTC)")
    if value.utcoffset() != timedelta(0):
        raise ValueError(f"{name} must be a UTC timestamp (offset 0)")


def whole_minutes_between(start: datetime, end: datetime) -> int:
    """
    Whole minutes from start to end, floored, clamped at zero.

    remaining = max(0, floor((end - start) / 1 minute))
    """

    require_utc_timestamp("start", start)
    require_utc_timestamp("end", end)

    delta = end - start
    if delta <= timedelta(0):
        return 0
    return int(delta // timedelta(minutes=1))
