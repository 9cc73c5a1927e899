from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
import logging

from services.calendar_utils import parse_time_of_day

logger = logging.getLogger(__name__)


class WorkoutStatus(str, Enum):
    COMPLETED = "completed"
    SKIPPED = "skipped"
    MISSED = "missed"


class Sender(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class MessageProviderKind(str, Enum):
    SCRIPTED = "scripted"
    API = "api"


class WorkoutRecord(BaseModel):
    """A logged workout outcome. id is assigned by the store."""
    id: Optional[int] = None
    date: datetime
    scheduled_time: Optional[str] = None
    completed_time: Optional[datetime] = None
    status: WorkoutStatus
    notes: str = ""
    activity: str = ""

    model_config = ConfigDict(from_attributes=True, frozen=True)


class MessageRecord(BaseModel):
    id: Optional[int] = None
    timestamp: datetime
    sender: Sender
    content: str
    context: Dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(from_attributes=True, frozen=True)


DEFAULT_WORKOUT_TIME = "12:00"
DEFAULT_ACTIVE_DAYS = [0, 1, 4, 6]  # Sunday, Monday, Thursday, Saturday


class UserSettings(BaseModel):
    """
    Installation-wide settings, overwritten wholesale on every change.

    active_days holds weekday indexes (0=Sunday..6=Saturday) and is kept
    sorted and de-duplicated, so two settings with the same days compare equal.
    """
    workout_time: str = DEFAULT_WORKOUT_TIME
    active_days: List[int] = Field(default_factory=lambda: list(DEFAULT_ACTIVE_DAYS))
    message_provider: MessageProviderKind = MessageProviderKind.SCRIPTED
    api_key: str = ""
    notifications_enabled: bool = False

    model_config = ConfigDict(extra="ignore")

    @field_validator("workout_time")
    @classmethod
    def _normalize_time(cls, value: str) -> str:
        return parse_time_of_day(value).strftime("%H:%M")

    @field_validator("active_days")
    @classmethod
    def _normalize_days(cls, value: List[int]) -> List[int]:
        days = set(value)
        invalid = sorted(d for d in days if not 0 <= d <= 6)
        if invalid:
            raise ValueError(f"weekday indexes must be 0-6, got {invalid}")
        return sorted(days)

    @classmethod
    def from_stored(cls, raw: Any) -> "UserSettings":
        """
        Build settings from a stored payload.

        Missing, unknown, or invalid fields fall back to their defaults
        instead of failing the whole load.
        """
        if not isinstance(raw, dict):
            if raw is not None:
                logger.warning(f"Ignoring malformed stored settings: {type(raw).__name__}")
            return cls()

        data = {k: v for k, v in raw.items() if k in cls.model_fields}
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            bad_fields = {err["loc"][0] for err in e.errors() if err.get("loc")}
            logger.warning(f"Stored settings had invalid fields, using defaults for: {sorted(bad_fields)}")
            return cls.model_validate({k: v for k, v in data.items() if k not in bad_fields})

    def to_stored(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")
