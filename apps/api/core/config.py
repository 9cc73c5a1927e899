"""
Environment configuration.

Every tunable of the service lives here: storage URL, logging, the
Anthropic backend, and the accountability heuristics (streak gap, due
window, follow-up delay). Values come from the environment or a local .env.
"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from typing import Optional
from dotenv import load_dotenv

load_dotenv()


class Settings(BaseSettings):
    """Application settings with validation."""

    # Pydantic v2 configuration
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore"
    )

    # Database Configuration
    # "sqlite://" (no path) gives a single shared in-memory database.
    DATABASE_URL: str = Field(default="sqlite:///./workout_buddy.db")

    # Logging Configuration
    LOG_LEVEL: str = Field(default="INFO")
    LOG_FORMAT: str = Field(default="json")  # json or text

    # Environment
    ENVIRONMENT: str = Field(default="development")
    DEBUG: bool = Field(default=False)

    # CORS - comma-separated list of allowed origins for production
    CORS_ORIGINS: Optional[str] = Field(default=None)

    # Generative message backend (Anthropic Messages API)
    ANTHROPIC_MODEL: str = Field(default="claude-sonnet-4-20250514")
    ANTHROPIC_MAX_TOKENS: int = Field(default=150, ge=16)
    EXTERNAL_API_TIMEOUT: int = Field(default=30)
    # Rolling conversation window, in user/assistant exchanges.
    HISTORY_MAX_EXCHANGES: int = Field(default=10, ge=1)

    # Accountability heuristics
    # A completion more than this many days before today breaks the streak.
    STREAK_BREAK_GAP_DAYS: int = Field(default=1, ge=1)
    # Page size when reading the workout log back to derive streak state.
    STREAK_LOOKBACK_LIMIT: int = Field(default=100, ge=1)
    # A workout stays "due" for this long after its scheduled time.
    DUE_GRACE_WINDOW_HOURS: float = Field(default=2.0, gt=0)
    FOLLOW_UP_DELAY_MINUTES: int = Field(default=60, ge=1)

    # Notification delivery
    # When set, reminders are POSTed here as JSON; otherwise they are logged.
    NOTIFY_WEBHOOK_URL: Optional[str] = Field(default=None)


# Global settings instance
settings = Settings()
