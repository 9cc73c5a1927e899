"""
Pytest configuration and fixtures

Tests run against a shared in-memory SQLite database that is rebuilt for every
test, so nothing leaks between tests.
"""
import os
import sys
from datetime import datetime, timedelta
from typing import Any, Dict, List, Tuple

# Must be set before core.config is imported anywhere
os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("LOG_FORMAT", "text")
os.environ.pop("NOTIFY_WEBHOOK_URL", None)

# Add the parent directory to the path so we can import from services
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest

from core.database import Base, engine, init_db
from schemas import WorkoutRecord, WorkoutStatus
from services.notifications import NotificationChannel, NotificationManager
from services.storage import AccountabilityStore


class FakeClock:
    """Callable clock that tests move by hand."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class RecordingChannel(NotificationChannel):
    """Notification channel that remembers what it was asked to deliver."""

    def __init__(self, grant: bool = True):
        self.grant = grant
        self.delivered: List[Tuple[str, str, str, Dict[str, Any]]] = []

    async def request_permission(self) -> bool:
        return self.grant

    async def deliver(self, title: str, body: str, tag: str, payload: Dict[str, Any]) -> None:
        self.delivered.append((title, body, tag, payload))


def make_workout(
    date: datetime,
    status: WorkoutStatus = WorkoutStatus.COMPLETED,
    **kwargs,
) -> WorkoutRecord:
    return WorkoutRecord(
        date=date,
        scheduled_time=kwargs.pop("scheduled_time", "12:00"),
        completed_time=date if status == WorkoutStatus.COMPLETED else None,
        status=status,
        **kwargs,
    )


@pytest.fixture(autouse=True)
def fresh_database():
    """Drop and recreate all tables around each test."""
    init_db()
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def store() -> AccountabilityStore:
    return AccountabilityStore()


@pytest.fixture
def channel() -> RecordingChannel:
    return RecordingChannel()


@pytest.fixture
def notifications(channel) -> NotificationManager:
    return NotificationManager(channel)


@pytest.fixture
def monday_morning() -> datetime:
    # 2024-01-08 is a Monday
    return datetime(2024, 1, 8, 8, 0)


@pytest.fixture
def clock(monday_morning) -> FakeClock:
    return FakeClock(monday_morning)
