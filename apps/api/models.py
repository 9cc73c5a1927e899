from sqlalchemy import Column, Integer, DateTime, Text, String, Index, JSON
from core.database import Base


class WorkoutLog(Base):
    """One row per user action (complete/skip). Never updated by the engine."""
    __tablename__ = "workout_log"

    id = Column(Integer, primary_key=True, autoincrement=True)
    # Naive local time; see services.calendar_utils
    date = Column(DateTime, nullable=False)
    scheduled_time = Column(String(5), nullable=True)  # "HH:MM"
    completed_time = Column(DateTime, nullable=True)
    status = Column(String(16), nullable=False)  # 'completed', 'skipped', 'missed'
    notes = Column(Text, default="", nullable=False)
    activity = Column(Text, default="", nullable=False)

    __table_args__ = (
        Index("ix_workout_log_date", "date"),
        Index("ix_workout_log_status", "status"),
    )


class MessageLog(Base):
    """Append-only chat transcript."""
    __tablename__ = "message_log"

    id = Column(Integer, primary_key=True, autoincrement=True)
    timestamp = Column(DateTime, nullable=False)
    sender = Column(String(16), nullable=False)  # 'user', 'assistant', 'system'
    content = Column(Text, nullable=False)
    context = Column(JSON, nullable=False, default=dict)

    __table_args__ = (
        Index("ix_message_log_timestamp", "timestamp"),
    )


class AppSetting(Base):
    """Key-value store for installation-wide settings."""
    __tablename__ = "app_setting"

    key = Column(String(64), primary_key=True)
    value = Column(JSON, nullable=False)
