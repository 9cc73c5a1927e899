"""
Recurrence Scheduler

Weekly reminder math: a fixed time of day repeated on a set of weekdays
(0=Sunday..6=Saturday). Everything here is a pure function of its arguments;
the timers that act on these results live in services.reminders.
"""
from datetime import datetime, timedelta, time
from typing import Iterable, Optional, Sequence, Union
import logging

from core.config import settings
from schemas import WorkoutRecord
from services.calendar_utils import (
    DAY_NAMES,
    at_time_of_day,
    day_index,
    format_clock,
    start_of_day,
)

logger = logging.getLogger(__name__)

NOTHING_SCHEDULED = "No workouts scheduled"

TimeOfDay = Union[str, time]


def _grace_window(grace: Optional[timedelta]) -> timedelta:
    if grace is None:
        return timedelta(hours=settings.DUE_GRACE_WINDOW_HOURS)
    return grace


def next_occurrence(
    time_of_day: TimeOfDay,
    active_days: Iterable[int],
    now: datetime,
) -> Optional[datetime]:
    """
    The next scheduled instant strictly after now.

    Today counts only if it is active and the time hasn't passed yet. Returns
    None only when no weekday is active.
    """
    days = set(active_days)
    if not days:
        return None

    today = at_time_of_day(now, time_of_day)
    if day_index(today) in days and today > now:
        return today

    for offset in range(1, 8):
        candidate = today + timedelta(days=offset)
        if day_index(candidate) in days:
            return candidate

    return None


def previous_occurrence(
    time_of_day: TimeOfDay,
    active_days: Iterable[int],
    now: datetime,
    grace: Optional[timedelta] = None,
) -> Optional[datetime]:
    """The latest scheduled instant whose grace window has fully closed."""
    days = set(active_days)
    if not days:
        return None

    window = _grace_window(grace)
    today = at_time_of_day(now, time_of_day)
    for offset in range(0, 8):
        candidate = today - timedelta(days=offset)
        if day_index(candidate) in days and candidate + window <= now:
            return candidate

    return None


def is_due_now(
    time_of_day: TimeOfDay,
    active_days: Iterable[int],
    now: datetime,
    grace: Optional[timedelta] = None,
) -> bool:
    """True during [scheduled, scheduled + grace) on an active day."""
    if day_index(now) not in set(active_days):
        return False

    scheduled = at_time_of_day(now, time_of_day)
    return scheduled <= now < scheduled + _grace_window(grace)


def describe_next(
    time_of_day: TimeOfDay,
    active_days: Iterable[int],
    now: datetime,
) -> str:
    """Human label for the next occurrence, e.g. "Tomorrow at 09:00"."""
    upcoming = next_occurrence(time_of_day, active_days, now)
    if upcoming is None:
        return NOTHING_SCHEDULED

    diff = upcoming - now
    hours = diff // timedelta(hours=1)
    minutes = (diff % timedelta(hours=1)) // timedelta(minutes=1)
    clock = format_clock(upcoming)

    if hours < 1:
        return f"Today at {clock} (in {minutes}m)"
    if hours < 24:
        return f"Today at {clock} (in {hours}h {minutes}m)"
    if hours < 48:
        return f"Tomorrow at {clock}"
    return f"{DAY_NAMES[day_index(upcoming)]} at {clock}"


def follow_up_at(fired_at: datetime, delay: Optional[timedelta] = None) -> datetime:
    """When the one-shot check-in fires after a reminder."""
    if delay is None:
        delay = timedelta(minutes=settings.FOLLOW_UP_DELAY_MINUTES)
    return fired_at + delay


def find_missed_occurrence(
    time_of_day: TimeOfDay,
    active_days: Iterable[int],
    history: Sequence[WorkoutRecord],
    now: datetime,
    grace: Optional[timedelta] = None,
) -> Optional[datetime]:
    """
    The latest closed occurrence nothing was logged for, if any.

    history is newest-first. Anything logged on or after the occurrence's day
    counts as acknowledging it. An empty log never reports a miss, so a fresh
    install doesn't open with a scolding.
    """
    if not history:
        return None

    previous = previous_occurrence(time_of_day, active_days, now, grace)
    if previous is None:
        return None

    if history[0].date >= start_of_day(previous):
        return None

    logger.debug(f"Unacknowledged occurrence at {previous.isoformat()}")
    return previous
