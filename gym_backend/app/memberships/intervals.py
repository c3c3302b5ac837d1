"""Validity window rules shared by subscriptions and access grants.

Windows are closed intervals ``[start, end]``. A missing ``end`` means the
window never closes.
"""
from __future__ import annotations

from datetime import date, timedelta
from typing import Optional, Tuple

from .errors import InvalidWindowError


def is_active_at(start: date, end: Optional[date], at: date) -> bool:
    """Return ``True`` when ``at`` falls inside ``[start, end]``."""

    if at < start:
        return False
    return end is None or at <= end


def overlaps(
    start_a: date,
    end_a: Optional[date],
    start_b: date,
    end_b: Optional[date],
) -> bool:
    """Return ``True`` when the two windows share at least one instant."""

    if end_a is not None and end_a < start_b:
        return False
    if end_b is not None and end_b < start_a:
        return False
    return True


def validate_window(start: date, end: Optional[date]) -> None:
    """Raise :class:`InvalidWindowError` unless ``end`` is absent or after ``start``."""

    if end is not None and end <= start:
        raise InvalidWindowError(
            "End date must be later than start date",
            detail={"start": start.isoformat(), "end": end.isoformat()},
        )


def validate_partial_update(
    current_start: date,
    current_end: Optional[date],
    new_start: Optional[date] = None,
    new_end: Optional[date] = None,
) -> Tuple[date, Optional[date]]:
    """Resolve the window produced by a partial update and validate it."""

    start = new_start if new_start is not None else current_start
    end = new_end if new_end is not None else current_end
    validate_window(start, end)
    return start, end


def add_days(day: date, days: int) -> date:
    return day + timedelta(days=days)


__all__ = [
    "add_days",
    "is_active_at",
    "overlaps",
    "validate_partial_update",
    "validate_window",
]
