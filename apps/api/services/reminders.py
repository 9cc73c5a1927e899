"""
Reminder timers.

Two independent timers per session: the weekly workout reminder and the
one-shot follow-up an hour after it fires. Both run on the asyncio loop via
call_later. cancel_all() bumps a generation counter, so a callback that was
already queued under old settings sees it is stale and does nothing.
"""
import asyncio
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Dict, Iterable, Optional
import logging

from core.config import settings
from services.recurrence import next_occurrence

logger = logging.getLogger(__name__)

WORKOUT_TIMER = "workout"
FOLLOW_UP_TIMER = "followup"


class CancelableTimer:
    """Runs an async callback once after a delay unless cancelled first."""

    def __init__(
        self,
        name: str,
        delay_s: float,
        callback: Callable[[], Awaitable[None]],
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ):
        self.name = name
        self.callback = callback
        self.fired = False
        self.cancelled = False
        self._loop = loop or asyncio.get_running_loop()
        self._task: Optional[asyncio.Task] = None
        self._handle = self._loop.call_later(max(0.0, delay_s), self._fire)

    @property
    def pending(self) -> bool:
        return not (self.fired or self.cancelled)

    def cancel(self) -> None:
        """Safe to call any number of times."""
        if self.cancelled:
            return
        self.cancelled = True
        self._handle.cancel()

    def _fire(self) -> None:
        if self.cancelled:
            return
        self.fired = True
        self._task = self._loop.create_task(self._run())

    async def _run(self) -> None:
        try:
            await self.callback()
        except Exception:
            logger.exception(f"Timer '{self.name}' callback failed")


class ReminderScheduler:
    """
    Owns the session's timers.

    on_reminder(scheduled_at) runs when the weekly reminder fires and
    on_follow_up() when the follow-up does. Firing the weekly reminder arms the
    follow-up and the next weekly occurrence before calling on_reminder, so the
    recurrence keeps going even if the callback fails.
    """

    def __init__(
        self,
        on_reminder: Callable[[datetime], Awaitable[None]],
        on_follow_up: Callable[[], Awaitable[None]],
        clock: Callable[[], datetime] = datetime.now,
        follow_up_delay: Optional[timedelta] = None,
    ):
        self.on_reminder = on_reminder
        self.on_follow_up = on_follow_up
        self.clock = clock
        self.follow_up_delay = follow_up_delay or timedelta(minutes=settings.FOLLOW_UP_DELAY_MINUTES)
        self.timers: Dict[str, CancelableTimer] = {}
        self.generation = 0

    def _replace(self, name: str, timer: CancelableTimer) -> None:
        existing = self.timers.get(name)
        if existing:
            existing.cancel()
        self.timers[name] = timer

    def pending(self, name: str) -> bool:
        timer = self.timers.get(name)
        return bool(timer and timer.pending)

    def schedule_workout_reminder(
        self,
        time_of_day: str,
        active_days: Iterable[int],
        after: Optional[datetime] = None,
    ) -> Optional[datetime]:
        """Arm the weekly reminder for the next occurrence. Returns its instant."""
        days = list(active_days)
        now = self.clock()
        upcoming = next_occurrence(time_of_day, days, max(now, after) if after else now)
        if upcoming is None:
            existing = self.timers.pop(WORKOUT_TIMER, None)
            if existing:
                existing.cancel()
            logger.info("No active days, workout reminder not scheduled")
            return None

        generation = self.generation

        async def fire() -> None:
            await self._fire_workout(generation, time_of_day, days, upcoming)

        delay = (upcoming - now).total_seconds()
        self._replace(WORKOUT_TIMER, CancelableTimer(WORKOUT_TIMER, delay, fire))
        logger.info(f"Workout reminder scheduled for {upcoming.isoformat()}")
        return upcoming

    def schedule_follow_up(self) -> datetime:
        """Arm the one-shot check-in, replacing any pending one."""
        generation = self.generation
        due_at = self.clock() + self.follow_up_delay

        async def fire() -> None:
            if generation != self.generation:
                return
            await self.on_follow_up()

        self._replace(
            FOLLOW_UP_TIMER,
            CancelableTimer(FOLLOW_UP_TIMER, self.follow_up_delay.total_seconds(), fire),
        )
        return due_at

    def cancel_all(self) -> None:
        """Cancel every pending timer. Idempotent."""
        self.generation += 1
        for timer in self.timers.values():
            timer.cancel()
        self.timers.clear()

    async def _fire_workout(
        self,
        generation: int,
        time_of_day: str,
        active_days: Iterable[int],
        scheduled_at: datetime,
    ) -> None:
        if generation != self.generation:
            logger.debug("Ignoring stale workout reminder")
            return
        self.schedule_follow_up()
        # `after` keeps an early wake-up from re-arming the same occurrence
        self.schedule_workout_reminder(time_of_day, active_days, after=scheduled_at)
        await self.on_reminder(scheduled_at)
