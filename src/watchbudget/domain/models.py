"""Core domain models for the watchbudget system.

These models represent the data flowing through the session engine:
the watch session record, the per-day budget counter, and the results
returned by the start / heartbeat / end operations.
"""

from __future__ import annotations

import enum
from datetime import date, datetime

from pydantic import BaseModel, ConfigDict, Field


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class StoppedReason(str, enum.Enum):
    """Why a watch session was terminated."""

    MANUAL = "manual"
    COMPLETED = "completed"  # Video played to the end
    TIME_LIMIT = "time_limit"  # Per-video cap from the chip mapping
    DAILY_LIMIT = "daily_limit"
    SWIPE_EXIT = "swipe_exit"  # Child swiped away / page torn down
    ERROR = "error"


class SessionPhase(str, enum.Enum):
    """Server-side view of a session as reported by the heartbeat monitor.

    ``LIMIT_REACHED`` is advisory only; the session row stays active until
    an explicit end call arrives.
    """

    ACTIVE = "active"
    LIMIT_REACHED = "limit_reached"
    ENDED = "ended"


# ---------------------------------------------------------------------------
# Stored records
# ---------------------------------------------------------------------------


class WatchSession(BaseModel):
    """One continuous viewing attempt, from start to a single terminal end."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(description="Opaque session identifier")
    profile_id: str | None = Field(default=None, description="Absent for anonymous viewing")
    video_id: str
    nfc_chip_id: str | None = Field(default=None, description="Provenance only")
    started_at: datetime = Field(description="Server clock at creation")
    ended_at: datetime | None = None
    duration_seconds: int | None = Field(default=None, ge=0)
    stopped_reason: StoppedReason | None = None
    final_position_seconds: int | None = Field(default=None, ge=0)

    @property
    def phase(self) -> SessionPhase:
        return SessionPhase.ACTIVE if self.ended_at is None else SessionPhase.ENDED

    @property
    def is_active(self) -> bool:
        return self.ended_at is None


class DailyBudget(BaseModel):
    """Accumulated watched minutes for one profile on one calendar day."""

    model_config = ConfigDict(frozen=True)

    profile_id: str
    date: date
    total_minutes: int = Field(ge=0)
    timezone: str = "UTC"


class BudgetStatus(BaseModel):
    """Committed total for a day compared against the profile's limit.

    ``limit_minutes`` is None for profiles without a daily ceiling, in which
    case ``remaining_minutes`` is None as well.
    """

    model_config = ConfigDict(frozen=True)

    profile_id: str
    date: date
    total_minutes: int = Field(ge=0)
    limit_minutes: int | None = None
    remaining_minutes: int | None = None

    @property
    def exhausted(self) -> bool:
        return self.remaining_minutes == 0


# ---------------------------------------------------------------------------
# External read-only records
# ---------------------------------------------------------------------------


class ProfileInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    owner_id: str
    name: str = ""
    daily_limit_minutes: int | None = None
    timezone: str = "UTC"


class VideoInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    title: str = ""
    duration_seconds: int | None = None


# ---------------------------------------------------------------------------
# Operation results
# ---------------------------------------------------------------------------


class StartResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    session_id: str
    started_at: datetime
    remaining_minutes: int | None = None
    daily_limit_minutes: int | None = None


class HeartbeatResult(BaseModel):
    """Answer to "should this session keep playing?" for one tick."""

    model_config = ConfigDict(frozen=True)

    session_id: str
    elapsed_seconds: int = Field(ge=0)
    remaining_minutes: int | None = None
    limit_reached: bool = False
    projected_total_minutes: int | None = None
    phase: SessionPhase = SessionPhase.ACTIVE


class EndResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    session_id: str
    duration_seconds: int = Field(ge=0)
    stopped_reason: StoppedReason
    already_ended: bool = False
    total_watched_today: int | None = None


# ---------------------------------------------------------------------------
# Historical stats
# ---------------------------------------------------------------------------


class DailyTotal(BaseModel):
    date: date
    total_minutes: int


class VideoWatchCount(BaseModel):
    video_id: str
    title: str
    watch_count: int
    total_minutes: int


class WatchStats(BaseModel):
    """Read-only summary of a profile's recent viewing."""

    profile_id: str
    daily_limit_minutes: int | None = None
    watched_today: int = 0
    remaining_minutes: int | None = None
    weekly: list[DailyTotal] = Field(default_factory=list)
    top_videos: list[VideoWatchCount] = Field(default_factory=list)
