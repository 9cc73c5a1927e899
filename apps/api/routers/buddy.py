"""
Workout Buddy API Router

Everything the buddy UI drives: mark done, skip, chat, history, settings,
and clearing data.
"""

from datetime import datetime
from typing import List, Literal, Optional

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, Field

from schemas import MessageRecord, UserSettings, WorkoutRecord
from services.accountability_session import AccountabilitySession, SessionSnapshot
from services.message_policy import MessageType
from services.streak_calculator import summarize_history

router = APIRouter(prefix="/v1", tags=["Workout Buddy"])


def get_session(request: Request) -> AccountabilitySession:
    return request.app.state.session


class StatusResponse(BaseModel):
    """Streak, tone band and what's next."""
    phase: str
    streak: int
    days_since_last: Optional[int]
    tone: str
    is_due: bool
    next_workout: Optional[datetime]
    next_workout_label: str
    notifications_permitted: bool

    @classmethod
    def from_snapshot(cls, snapshot: SessionSnapshot) -> "StatusResponse":
        return cls(
            phase=snapshot.phase.value,
            streak=snapshot.streak,
            days_since_last=snapshot.days_since_last,
            tone=snapshot.tone.value,
            is_due=snapshot.is_due,
            next_workout=snapshot.next_workout,
            next_workout_label=snapshot.next_workout_label,
            notifications_permitted=snapshot.notifications_permitted,
        )


class CompleteWorkoutRequest(BaseModel):
    activity: str = ""
    notes: str = ""


class SkipWorkoutRequest(BaseModel):
    notes: str = ""


class WorkoutActionResponse(BaseModel):
    workout: WorkoutRecord
    messages: List[MessageRecord]
    status: StatusResponse


class WorkoutStats(BaseModel):
    completed: int
    skipped: int
    missed: int
    total: int
    completion_rate: float


class WorkoutHistoryResponse(BaseModel):
    workouts: List[WorkoutRecord]
    stats: WorkoutStats


class ChatRequest(BaseModel):
    content: str = Field(min_length=1, max_length=2000)


class NudgeRequest(BaseModel):
    type: Literal["encouragement", "check_in"]


@router.get("/status", response_model=StatusResponse)
async def get_status(session: AccountabilitySession = Depends(get_session)):
    """Current derived state, recomputed from the log."""
    await session.refresh_state()
    return StatusResponse.from_snapshot(session.snapshot())


@router.post("/workouts/complete", response_model=WorkoutActionResponse)
async def complete_workout(
    request: CompleteWorkoutRequest,
    session: AccountabilitySession = Depends(get_session),
):
    result = await session.complete_workout(activity=request.activity, notes=request.notes)
    return WorkoutActionResponse(
        workout=result.workout,
        messages=result.messages,
        status=StatusResponse.from_snapshot(result.snapshot),
    )


@router.post("/workouts/skip", response_model=WorkoutActionResponse)
async def skip_workout(
    request: SkipWorkoutRequest,
    session: AccountabilitySession = Depends(get_session),
):
    result = await session.skip_workout(notes=request.notes)
    return WorkoutActionResponse(
        workout=result.workout,
        messages=result.messages,
        status=StatusResponse.from_snapshot(result.snapshot),
    )


@router.get("/workouts", response_model=WorkoutHistoryResponse)
async def list_workouts(
    limit: int = Query(default=30, ge=1, le=365),
    session: AccountabilitySession = Depends(get_session),
):
    """Recent workouts, newest first, with outcome counts over the same slice."""
    workouts = await session.store.query_workouts(limit=limit, newest_first=True)
    return WorkoutHistoryResponse(workouts=workouts, stats=WorkoutStats(**summarize_history(workouts)))


@router.get("/messages", response_model=List[MessageRecord])
async def list_messages(
    limit: int = Query(default=50, ge=1, le=500),
    session: AccountabilitySession = Depends(get_session),
):
    return await session.store.query_messages(limit=limit)


@router.post("/messages", response_model=List[MessageRecord])
async def post_message(
    request: ChatRequest,
    session: AccountabilitySession = Depends(get_session),
):
    user_message, reply = await session.send_user_message(request.content)
    return [user_message, reply]


@router.post("/nudge", response_model=MessageRecord)
async def nudge(
    request: NudgeRequest,
    session: AccountabilitySession = Depends(get_session),
):
    """Ask for a check-in or a bit of encouragement."""
    return await session.nudge(MessageType(request.type))


@router.get("/settings", response_model=UserSettings)
async def get_settings(session: AccountabilitySession = Depends(get_session)):
    return session.settings


@router.put("/settings", response_model=StatusResponse)
async def update_settings(
    request: UserSettings,
    session: AccountabilitySession = Depends(get_session),
):
    """Overwrite settings wholesale and reschedule reminders."""
    snapshot = await session.update_settings(request)
    return StatusResponse.from_snapshot(snapshot)


@router.post("/notifications/enable")
async def enable_notifications(session: AccountabilitySession = Depends(get_session)):
    granted = await session.enable_notifications()
    return {"granted": granted}


@router.delete("/data", response_model=StatusResponse)
async def clear_data(session: AccountabilitySession = Depends(get_session)):
    """Clear settings, workouts and messages. Cannot be undone."""
    snapshot = await session.clear_all()
    return StatusResponse.from_snapshot(snapshot)
