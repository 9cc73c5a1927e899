"""
Streak Calculator

"You just have to do the thing."

Derives the current consecutive-day streak from the workout log. Nothing here
is stored: the streak is recomputed from the full history every time, so it
can never drift away from what was actually logged.
"""

from typing import Optional, Sequence, Dict, Any
from dataclasses import dataclass
from datetime import datetime
import logging

from core.config import settings
from schemas import WorkoutRecord, WorkoutStatus
from services.calendar_utils import days_between, start_of_day

logger = logging.getLogger(__name__)

# days_since_last when nothing has ever been logged
NEVER: Optional[int] = None


@dataclass(frozen=True)
class StreakState:
    """Derived streak state"""
    current_streak: int
    days_since_last: Optional[int]  # NEVER when the log is empty
    # True when the run reaches the oldest completion given, so older
    # history could still extend it
    run_open: bool = False

    @property
    def has_history(self) -> bool:
        return self.days_since_last is not NEVER


def compute_streak(
    history: Sequence[WorkoutRecord],
    now: datetime,
    break_gap_days: Optional[int] = None,
) -> StreakState:
    """
    Calculate the current streak and days since the last logged workout.

    Args:
        history: Workout records ordered newest-first by date
        now: Current local time
        break_gap_days: Largest day gap that keeps a streak alive
            (defaults to STREAK_BREAK_GAP_DAYS)

    Skips and misses count as "the last workout" for days_since_last, but only
    completions extend the streak. Several completions on one calendar day
    count as a single streak day.
    """
    if break_gap_days is None:
        break_gap_days = settings.STREAK_BREAK_GAP_DAYS

    days_since_last = days_between(now, history[0].date) if history else NEVER

    completed = [w for w in history if w.status == WorkoutStatus.COMPLETED]
    today = start_of_day(now)
    if not completed:
        # A completion older than everything given could still count
        reachable = bool(history) and days_between(today, start_of_day(history[-1].date)) <= break_gap_days
        return StreakState(current_streak=0, days_since_last=days_since_last, run_open=reachable)

    gap = days_between(today, start_of_day(completed[0].date))
    if gap > break_gap_days:
        return StreakState(current_streak=0, days_since_last=days_since_last)

    streak = 1
    for newer, older in zip(completed, completed[1:]):
        diff = days_between(start_of_day(newer.date), start_of_day(older.date))
        if diff > break_gap_days:
            return StreakState(current_streak=streak, days_since_last=days_since_last)
        if diff > 0:
            streak += 1

    return StreakState(current_streak=streak, days_since_last=days_since_last, run_open=True)


def summarize_history(history: Sequence[WorkoutRecord]) -> Dict[str, Any]:
    """
    Outcome counts over a slice of history.

    completion_rate is a percentage rounded to one decimal place.
    """
    completed = sum(1 for w in history if w.status == WorkoutStatus.COMPLETED)
    skipped = sum(1 for w in history if w.status == WorkoutStatus.SKIPPED)
    missed = sum(1 for w in history if w.status == WorkoutStatus.MISSED)
    total = len(history)

    return {
        "completed": completed,
        "skipped": skipped,
        "missed": missed,
        "total": total,
        "completion_rate": round(completed / total * 100, 1) if total > 0 else 0.0,
    }
