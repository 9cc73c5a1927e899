"""
Custom exception classes and error handling.

Engine-level errors carry an error_code so the API layer can map them to
consistent responses.
"""
from typing import Any, Optional


class AccountabilityError(Exception):
    """Base class for errors raised by the accountability engine."""

    error_code = "ACCOUNTABILITY_ERROR"

    def __init__(self, detail: str, error_code: Optional[str] = None):
        super().__init__(detail)
        self.detail = detail
        if error_code:
            self.error_code = error_code


class StorageUnavailable(AccountabilityError):
    """Persistence collaborator failed. Surfaced to the caller, never retried."""

    error_code = "STORAGE_UNAVAILABLE"


class PermissionDenied(AccountabilityError):
    """Notification delivery is not permitted."""

    error_code = "PERMISSION_DENIED"


class GenerativeBackendFailure(AccountabilityError):
    """Generative backend timed out, returned non-2xx, or sent a malformed payload."""

    error_code = "GENERATIVE_BACKEND_FAILURE"


class InvalidTimeOfDay(AccountabilityError, ValueError):
    """A time-of-day string is not a valid "HH:MM" value."""

    error_code = "INVALID_TIME_OF_DAY"

    def __init__(self, value: Any):
        super().__init__(f"Invalid time of day: {value!r} (expected HH:MM)")
        self.value = value
