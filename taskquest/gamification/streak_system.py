"""
Streak Tracking System

Derives a user's consecutive-day completion streak from completion history.

Rules:
- Days are UTC calendar days; every timestamp is normalized to its UTC date
- Several completions on the same day count once
- The streak is always recomputed from history, never patched in place
- A streak ending yesterday is still alive today (today is not over yet);
  a streak whose last day is older than yesterday is 0
"""

from typing import Iterable, Set
from datetime import date, datetime, timedelta, timezone
import logging

logger = logging.getLogger(__name__)

WEEKLY_COVERAGE_DAYS = 7


def to_utc_date(timestamp: datetime) -> date:
    """UTC calendar date of a timestamp (naive timestamps are taken as UTC)"""
    if timestamp.tzinfo is None:
        return timestamp.date()
    return timestamp.astimezone(timezone.utc).date()


def completion_dates(completion_times: Iterable[datetime]) -> Set[date]:
    """Unique UTC dates on which at least one task was completed"""
    return {to_utc_date(ts) for ts in completion_times if ts is not None}


def calculate_streak(
    completion_times: Iterable[datetime],
    today: date,
    credit_today: bool = False
) -> int:
    """
    Current streak length as of `today`

    Args:
        completion_times: Timestamps of all currently-completed tasks
        today: The UTC date to evaluate against
        credit_today: Count today even if no completion is recorded yet
            (used while a completion for today is being granted)

    Returns:
        Number of consecutive days ending today, or ending yesterday when
        today has no completion yet; 0 otherwise

    Example:
        completions on D, D+1, D+2 with today=D+2 -> 3
        completions on D, D+2 with today=D+2      -> 1
    """
    days = {d for d in completion_dates(completion_times) if d <= today}
    if credit_today:
        days.add(today)

    if today in days:
        cursor = today
    elif today - timedelta(days=1) in days:
        cursor = today - timedelta(days=1)
    else:
        return 0

    streak = 0
    while cursor in days:
        streak += 1
        cursor -= timedelta(days=1)

    return streak


def count_completions_on(completion_times: Iterable[datetime], day: date) -> int:
    """Number of completions (not distinct days) on a UTC date"""
    return sum(1 for ts in completion_times if ts is not None and to_utc_date(ts) == day)


def has_weekly_coverage(
    completion_times: Iterable[datetime],
    today: date,
    days: int = WEEKLY_COVERAGE_DAYS
) -> bool:
    """True when every one of the last `days` UTC days, ending today, has a completion"""
    covered = completion_dates(completion_times)
    return all(today - timedelta(days=offset) in covered for offset in range(days))
