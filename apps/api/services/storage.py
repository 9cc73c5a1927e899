"""
Accountability Store

Persistence for the engine: a key-value row for settings plus append-only
workout and message logs. Methods are async so the orchestrator awaits them
like any other I/O collaborator. Every database error surfaces as
StorageUnavailable; the store itself never retries.
"""
from contextlib import contextmanager
from typing import Callable, Iterator, List
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from core.database import SessionLocal
from core.exceptions import StorageUnavailable
from models import AppSetting, MessageLog, WorkoutLog
from schemas import MessageRecord, UserSettings, WorkoutRecord
from services.calendar_utils import to_local

logger = logging.getLogger(__name__)

SETTINGS_KEY = "settings"


class AccountabilityStore:
    def __init__(self, session_factory: Callable[[], Session] = SessionLocal):
        self.session_factory = session_factory

    @contextmanager
    def _session(self, operation: str) -> Iterator[Session]:
        db = None
        try:
            db = self.session_factory()
            yield db
            db.commit()
        except SQLAlchemyError as e:
            if db is not None:
                db.rollback()
            logger.error(f"Storage operation failed: {operation}: {e}")
            raise StorageUnavailable(f"{operation} failed: {e}") from e
        finally:
            if db is not None:
                db.close()

    # Settings (key-value)

    async def load_settings(self) -> UserSettings:
        """Stored settings merged over defaults."""
        with self._session("load_settings") as db:
            row = db.get(AppSetting, SETTINGS_KEY)
            raw = row.value if row else None
        return UserSettings.from_stored(raw)

    async def save_settings(self, user_settings: UserSettings) -> None:
        """Overwrite the settings record wholesale."""
        with self._session("save_settings") as db:
            row = db.get(AppSetting, SETTINGS_KEY)
            if row is None:
                row = AppSetting(key=SETTINGS_KEY)
            row.value = user_settings.to_stored()
            db.add(row)

    # Workout log (append-only)

    async def append_workout(self, record: WorkoutRecord) -> int:
        with self._session("append_workout") as db:
            row = WorkoutLog(
                date=to_local(record.date),
                scheduled_time=record.scheduled_time,
                completed_time=to_local(record.completed_time) if record.completed_time else None,
                status=record.status.value,
                notes=record.notes or "",
                activity=record.activity or "",
            )
            db.add(row)
            db.flush()
            workout_id = row.id
        logger.info(f"Workout logged: id={workout_id} status={record.status.value}")
        return workout_id

    async def query_workouts(
        self,
        limit: int = 30,
        newest_first: bool = True,
        offset: int = 0,
    ) -> List[WorkoutRecord]:
        with self._session("query_workouts") as db:
            if newest_first:
                order = (WorkoutLog.date.desc(), WorkoutLog.id.desc())
            else:
                order = (WorkoutLog.date.asc(), WorkoutLog.id.asc())
            rows = db.query(WorkoutLog).order_by(*order).offset(offset).limit(limit).all()
            return [WorkoutRecord.model_validate(row) for row in rows]

    # Message log (append-only)

    async def append_message(self, record: MessageRecord) -> int:
        with self._session("append_message") as db:
            row = MessageLog(
                timestamp=to_local(record.timestamp),
                sender=record.sender.value,
                content=record.content,
                context=record.context or {},
            )
            db.add(row)
            db.flush()
            return row.id

    async def query_messages(self, limit: int = 50) -> List[MessageRecord]:
        """The most recent messages, returned in chronological order."""
        with self._session("query_messages") as db:
            rows = (
                db.query(MessageLog)
                .order_by(MessageLog.timestamp.desc(), MessageLog.id.desc())
                .limit(limit)
                .all()
            )
            return [MessageRecord.model_validate(row) for row in reversed(rows)]

    async def clear_all(self) -> None:
        """Drop settings and both logs."""
        with self._session("clear_all") as db:
            db.query(WorkoutLog).delete()
            db.query(MessageLog).delete()
            db.query(AppSetting).delete()
        logger.info("All accountability data cleared")
