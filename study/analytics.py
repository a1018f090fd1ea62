"""Deck statistics helpers: day windows, averages, retention and streaks."""

from datetime import date, datetime, time, timedelta, timezone
from typing import Iterable, Optional, Set, Tuple

STREAK_MAX_DAYS = 365


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes (as returned by SQLite) as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def day_window(day: date) -> Tuple[datetime, datetime]:
    """Half-open UTC window [start, end) covering one calendar day."""
    start = datetime.combine(day, time.min, tzinfo=timezone.utc)
    return start, start + timedelta(days=1)


def average_difficulty(difficulties: Iterable[Optional[float]]) -> float:
    """Mean of the non-null ease factors, 0 when there are none."""
    values = [d for d in difficulties if d is not None]
    if not values:
        return 0.0
    return round(sum(values) / len(values), 2)


def retention_rate(lapses: Iterable[Optional[int]]) -> float:
    """
    Fraction of reviewed records that never lapsed.

    Takes the lapse counts of records that have been reviewed at least once.
    """
    counts = [n or 0 for n in lapses]
    if not counts:
        return 0.0
    kept = sum(1 for n in counts if n == 0)
    return round(kept / len(counts), 2)


def compute_streak(
    review_days: Set[date],
    today: date,
    max_days: int = STREAK_MAX_DAYS,
) -> int:
    """
    Count consecutive days with at least one review, ending today.

    Walks backward from today and stops at the first day without a review,
    so a missing review today means a streak of 0.
    """
    streak = 0
    day = today
    while streak < max_days and day in review_days:
        streak += 1
        day -= timedelta(days=1)
    return streak
