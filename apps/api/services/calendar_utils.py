"""
Calendar helpers for the accountability engine.

Every instant handled here is a naive datetime in the local clock. Mixing
UTC and local values would shift midnight and produce off-by-one streaks,
so aware datetimes are converted to local time and stripped of tzinfo first.
"""
import re
from datetime import datetime, time, timedelta
from typing import Union

from core.exceptions import InvalidTimeOfDay

DAY_NAMES = ["Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday"]

_TIME_OF_DAY = re.compile(r"^(\d{1,2}):(\d{2})$")


def to_local(instant: datetime) -> datetime:
    """Return a naive local datetime."""
    if instant.tzinfo is not None:
        return instant.astimezone().replace(tzinfo=None)
    return instant


def start_of_day(instant: datetime) -> datetime:
    """Truncate to local midnight."""
    return to_local(instant).replace(hour=0, minute=0, second=0, microsecond=0)


def day_index(instant: datetime) -> int:
    """Weekday index with 0=Sunday .. 6=Saturday."""
    return (to_local(instant).weekday() + 1) % 7


def days_between(a: datetime, b: datetime) -> int:
    """
    Whole days from b to a, floored.

    Sign is preserved: days_between(later, earlier) > 0, and a gap of
    -1 hour floors to -1.
    """
    delta = to_local(a) - to_local(b)
    return delta // timedelta(days=1)


def parse_time_of_day(value: Union[str, time]) -> time:
    """Parse an "HH:MM" string."""
    if isinstance(value, time):
        return value.replace(second=0, microsecond=0)
    match = _TIME_OF_DAY.match(value.strip()) if isinstance(value, str) else None
    if not match:
        raise InvalidTimeOfDay(value)
    hours, minutes = int(match.group(1)), int(match.group(2))
    if hours > 23 or minutes > 59:
        raise InvalidTimeOfDay(value)
    return time(hours, minutes)


def at_time_of_day(day: datetime, time_of_day: Union[str, time]) -> datetime:
    """The instant on day's calendar date at the given time of day."""
    t = parse_time_of_day(time_of_day)
    return start_of_day(day).replace(hour=t.hour, minute=t.minute)


def format_clock(instant: datetime) -> str:
    return to_local(instant).strftime("%H:%M")
