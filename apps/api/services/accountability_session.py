"""
Accountability Session

Sequences the engine for one user session: load, complete, skip, freeform
chat, settings changes and the two reminder timers. It holds the only mutable
session state, and that state is always re-derived from the workout log after
an append; nothing is patched incrementally.

Phases: IDLE -> WORKOUT_DUE -> (COMPLETED | SKIPPED) -> IDLE. The follow-up
timer may fire in any phase and only ever adds a message.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple
import logging

from core.config import settings
from core.exceptions import StorageUnavailable
from schemas import MessageRecord, Sender, UserSettings, WorkoutRecord, WorkoutStatus
from services.message_policy import (
    MessageContext,
    MessageProvider,
    MessageType,
    create_provider,
)
from services.notifications import (
    FOLLOW_UP_TAG,
    WORKOUT_REMINDER_TAG,
    NotificationManager,
)
from services.recurrence import (
    describe_next,
    find_missed_occurrence,
    is_due_now,
    next_occurrence,
)
from services.reminders import ReminderScheduler
from services.storage import AccountabilityStore
from services.streak_calculator import NEVER, StreakState, compute_streak
from services.tone import ToneBand, classify

logger = logging.getLogger(__name__)

# Assistant-only messages that can be requested on demand
NUDGE_TYPES = (MessageType.ENCOURAGEMENT, MessageType.CHECK_IN)

# How far back to look for an earlier "missed" message for the same occurrence
MISSED_LOOKBACK_MESSAGES = 50


class SessionPhase(str, Enum):
    IDLE = "idle"
    WORKOUT_DUE = "workout_due"
    COMPLETED = "completed"
    SKIPPED = "skipped"


@dataclass
class SessionSnapshot:
    phase: SessionPhase
    streak: int
    days_since_last: Optional[int]
    tone: ToneBand
    is_due: bool
    next_workout: Optional[datetime]
    next_workout_label: str
    notifications_permitted: bool


@dataclass
class ActionResult:
    workout: WorkoutRecord
    messages: List[MessageRecord]
    snapshot: SessionSnapshot


class AccountabilitySession:
    def __init__(
        self,
        store: AccountabilityStore,
        notifications: Optional[NotificationManager] = None,
        clock: Callable[[], datetime] = datetime.now,
        provider_factory: Callable[[UserSettings], MessageProvider] = create_provider,
    ):
        self.store = store
        self.notifications = notifications or NotificationManager()
        self.clock = clock
        self.provider_factory = provider_factory

        self.settings = UserSettings()
        self.provider = provider_factory(self.settings)
        self.streak = StreakState(current_streak=0, days_since_last=NEVER)
        self.tone = ToneBand.NEUTRAL
        self._phase = SessionPhase.IDLE

        # One workout action at a time
        self._action_lock = asyncio.Lock()
        self.reminders = ReminderScheduler(
            on_reminder=self._on_workout_reminder,
            on_follow_up=self._on_follow_up,
            clock=clock,
        )

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def phase(self) -> SessionPhase:
        # A due workout whose window has closed reads as idle
        if self._phase == SessionPhase.WORKOUT_DUE and not self.is_due():
            return SessionPhase.IDLE
        return self._phase

    def _transition(self, phase: SessionPhase) -> None:
        if phase != self._phase:
            logger.info(f"Session phase {self._phase.value} -> {phase.value}")
            self._phase = phase

    def is_due(self) -> bool:
        return is_due_now(self.settings.workout_time, self.settings.active_days, self.clock())

    async def refresh_state(self) -> List[WorkoutRecord]:
        """
        Recompute streak and tone from the log. Returns the history read.

        The log is read a page at a time and paging continues while the
        current run still reaches the oldest row read, so the streak is
        never capped by the page size.
        """
        now = self.clock()
        page_size = settings.STREAK_LOOKBACK_LIMIT
        page = await self.store.query_workouts(limit=page_size, newest_first=True)
        history = list(page)
        self.streak = compute_streak(history, now)
        while self.streak.run_open and len(page) == page_size:
            page = await self.store.query_workouts(limit=page_size, newest_first=True, offset=len(history))
            history.extend(page)
            self.streak = compute_streak(history, now)

        if self._phase == SessionPhase.WORKOUT_DUE and not self.is_due():
            self._transition(SessionPhase.IDLE)
        self.tone = classify(self.streak.current_streak, self.streak.days_since_last)
        return history

    def snapshot(self) -> SessionSnapshot:
        now = self.clock()
        return SessionSnapshot(
            phase=self.phase,
            streak=self.streak.current_streak,
            days_since_last=self.streak.days_since_last,
            tone=self.tone,
            is_due=self.is_due(),
            next_workout=next_occurrence(self.settings.workout_time, self.settings.active_days, now),
            next_workout_label=describe_next(self.settings.workout_time, self.settings.active_days, now),
            notifications_permitted=self.notifications.permission_granted,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def load(self) -> SessionSnapshot:
        """App load: settings, derived state, timers, and opening messages."""
        try:
            self.settings = await self.store.load_settings()
        except StorageUnavailable as e:
            logger.error(f"Settings unavailable, using defaults: {e.detail}")
            self.settings = UserSettings()

        self.provider = self.provider_factory(self.settings)
        if self.settings.notifications_enabled:
            await self.notifications.request_permission()
        # Armed before any log read so a storage outage can't leave it off
        self._schedule_reminders()

        history = await self.refresh_state()

        due = self.is_due()
        if due:
            self._transition(SessionPhase.WORKOUT_DUE)

        await self._emit_missed_if_needed(history)

        existing = await self.store.query_messages(limit=1)
        if not existing or due:
            await self.send_message(MessageType.WELCOME)

        return self.snapshot()

    def close(self) -> None:
        self.reminders.cancel_all()

    def _schedule_reminders(self) -> Optional[datetime]:
        return self.reminders.schedule_workout_reminder(self.settings.workout_time, self.settings.active_days)

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    def _context(self, message_type: MessageType, data: Optional[Dict[str, Any]] = None) -> MessageContext:
        return MessageContext(
            type=message_type,
            streak=self.streak.current_streak,
            days_since_last=self.streak.days_since_last,
            data=data or {},
        )

    async def _append_message(self, sender: Sender, content: str, context: MessageContext) -> MessageRecord:
        record = MessageRecord(
            timestamp=self.clock(),
            sender=sender,
            content=content,
            context=context.to_dict(),
        )
        message_id = await self.store.append_message(record)
        return record.model_copy(update={"id": message_id})

    async def send_message(self, message_type: MessageType, data: Optional[Dict[str, Any]] = None) -> MessageRecord:
        """Ask the provider for an assistant message and log it."""
        context = self._context(message_type, data)
        content = await self.provider.get_message(context)
        return await self._append_message(Sender.ASSISTANT, content, context)

    async def _record_user_message(self, content: str, message_type: MessageType) -> MessageRecord:
        context = self._context(message_type, {"content": content})
        return await self._append_message(Sender.USER, content, context)

    async def send_user_message(self, content: str) -> Tuple[MessageRecord, MessageRecord]:
        """Freeform chat: log the user's line and the buddy's reply."""
        user_message = await self._record_user_message(content, MessageType.MESSAGE)
        reply = await self.send_message(MessageType.MESSAGE, {"content": content})
        return user_message, reply

    async def nudge(self, message_type: MessageType) -> MessageRecord:
        if message_type not in NUDGE_TYPES:
            raise ValueError(f"Cannot request a '{message_type.value}' message directly")
        return await self.send_message(message_type)

    async def _emit_missed_if_needed(self, history: List[WorkoutRecord]) -> Optional[MessageRecord]:
        missed_at = find_missed_occurrence(
            self.settings.workout_time,
            self.settings.active_days,
            history,
            self.clock(),
        )
        if missed_at is None:
            return None

        occurrence = missed_at.isoformat()
        recent = await self.store.query_messages(limit=MISSED_LOOKBACK_MESSAGES)
        for message in recent:
            data = message.context.get("data") or {}
            if message.context.get("type") == MessageType.MISSED.value and data.get("occurrence") == occurrence:
                return None

        logger.info(f"Workout at {occurrence} was never logged")
        return await self.send_message(MessageType.MISSED, {"occurrence": occurrence})

    # ------------------------------------------------------------------
    # Workout actions
    # ------------------------------------------------------------------

    async def complete_workout(self, activity: str = "", notes: str = "") -> ActionResult:
        return await self._log_workout(
            status=WorkoutStatus.COMPLETED,
            phase=SessionPhase.COMPLETED,
            message_type=MessageType.COMPLETED,
            user_line="I did it!",
            activity=activity,
            notes=notes,
        )

    async def skip_workout(self, notes: str = "") -> ActionResult:
        return await self._log_workout(
            status=WorkoutStatus.SKIPPED,
            phase=SessionPhase.SKIPPED,
            message_type=MessageType.SKIPPED,
            user_line="Skipping today",
            notes=notes,
        )

    async def _log_workout(
        self,
        status: WorkoutStatus,
        phase: SessionPhase,
        message_type: MessageType,
        user_line: str,
        activity: str = "",
        notes: str = "",
    ) -> ActionResult:
        async with self._action_lock:
            now = self.clock()
            self._transition(phase)
            try:
                record = WorkoutRecord(
                    date=now,
                    scheduled_time=self.settings.workout_time,
                    completed_time=now if status == WorkoutStatus.COMPLETED else None,
                    status=status,
                    notes=notes,
                    activity=activity,
                )
                workout_id = await self.store.append_workout(record)
                await self.refresh_state()

                user_message = await self._record_user_message(user_line, message_type)
                reply = await self.send_message(message_type)
                self._schedule_reminders()
            finally:
                self._transition(SessionPhase.IDLE)

            return ActionResult(
                workout=record.model_copy(update={"id": workout_id}),
                messages=[user_message, reply],
                snapshot=self.snapshot(),
            )

    # ------------------------------------------------------------------
    # Settings and data
    # ------------------------------------------------------------------

    async def update_settings(self, new_settings: UserSettings) -> SessionSnapshot:
        """
        Replace settings. Pending timers are cancelled before anything is
        rescheduled, and the weekly reminder is re-armed for whichever
        settings are in effect even when storage fails.
        """
        self.reminders.cancel_all()
        try:
            await self.store.save_settings(new_settings)

            self.settings = new_settings
            self.provider = self.provider_factory(new_settings)
            if new_settings.notifications_enabled:
                await self.notifications.request_permission()

            await self.refresh_state()
        finally:
            self._schedule_reminders()
        return self.snapshot()

    async def enable_notifications(self) -> bool:
        granted = await self.notifications.request_permission()
        if granted and not self.settings.notifications_enabled:
            self.settings = self.settings.model_copy(update={"notifications_enabled": True})
            await self.store.save_settings(self.settings)
        return granted

    async def clear_all(self) -> SessionSnapshot:
        self.reminders.cancel_all()
        try:
            await self.store.clear_all()

            self.settings = UserSettings()
            self.provider = self.provider_factory(self.settings)
            self._transition(SessionPhase.IDLE)
            await self.refresh_state()
        finally:
            self._schedule_reminders()
        return self.snapshot()

    # ------------------------------------------------------------------
    # Timer callbacks
    # ------------------------------------------------------------------

    async def _on_workout_reminder(self, scheduled_at: datetime) -> None:
        self._transition(SessionPhase.WORKOUT_DUE)
        await self.notifications.show(
            "💪 Workout Time!",
            "Time to get moving. Open the app and let's do this.",
            WORKOUT_REMINDER_TAG,
            {"type": "workout", "scheduled_at": scheduled_at.isoformat()},
        )

    async def _on_follow_up(self) -> None:
        await self.notifications.show(
            "Check-in Time",
            "Hey, did you end up doing anything? Let me know.",
            FOLLOW_UP_TAG,
            {"type": "followup"},
        )
        await self.send_message(MessageType.REMINDER_FOLLOW_UP)
