"""Error taxonomy for the session engine.

Each error carries the HTTP status it maps to and a short, friendly
message that is safe to show on the child-facing screen. Internal
details stay in the exception text and the logs.
"""

from __future__ import annotations


class WatchBudgetError(Exception):
    """Base class for all session engine errors."""

    status_code: int = 500
    error: str = "Internal error"
    friendly_message: str = "Oops! Something went wrong. Please try again!"

    def __init__(
        self,
        message: str = "",
        *,
        friendly_message: str | None = None,
        session_id: str | None = None,
        extra: dict | None = None,
    ) -> None:
        super().__init__(message or self.error)
        if friendly_message is not None:
            self.friendly_message = friendly_message
        self.session_id = session_id
        self.extra = extra or {}

    def to_payload(self) -> dict:
        payload = {"error": self.error, "message": self.friendly_message}
        payload.update(self.extra)
        return payload


class ValidationError(WatchBudgetError):
    """Malformed identifiers or an out-of-range reported position."""

    status_code = 400
    error = "Invalid request"
    friendly_message = "Oops! Something doesn't look right. Please refresh!"


class InvalidPositionError(ValidationError):
    error = "Invalid playback position"


class AuthorizationError(WatchBudgetError):
    """Chip/profile mismatch or any other ownership failure."""

    status_code = 403
    error = "Not allowed"
    friendly_message = "Oops! This chip doesn't belong to your profile. Ask a grown-up for help!"


class BudgetExhaustedError(AuthorizationError):
    """The profile has no minutes left today; raised before any session exists."""

    error = "Daily watch time limit reached"
    friendly_message = "You've watched enough for today! See you tomorrow!"

    def __init__(self, total_minutes: int, limit_minutes: int, **kwargs) -> None:
        extra = {
            "total_minutes": total_minutes,
            "daily_limit_minutes": limit_minutes,
            "limit_reached": True,
        }
        super().__init__(
            f"Daily limit exhausted ({total_minutes}/{limit_minutes} minutes)",
            extra=extra,
            **kwargs,
        )
        self.total_minutes = total_minutes
        self.limit_minutes = limit_minutes


class NotFoundError(WatchBudgetError):
    status_code = 404
    error = "Not found"
    friendly_message = "Oops! We can't find that. Ask a grown-up for help!"


class SessionNotFoundError(NotFoundError):
    """The session id never existed."""

    error = "Session not found"
    friendly_message = "Oops! Your watch session ended. Start a new one!"


class SessionEndedError(NotFoundError):
    """The session exists but is already terminal (expected under races)."""

    error = "Session already ended"
    friendly_message = "Oops! Your watch session ended. Start a new one!"


class ServerError(WatchBudgetError):
    """Persistence failure; details are logged, never shown to the child."""

    status_code = 500
    error = "Server error"
