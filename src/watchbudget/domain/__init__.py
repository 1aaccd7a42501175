"""Domain models for watchbudget.

This package contains the core data structures, enumerations, and error
types used throughout the system. All models use Pydantic v2 for
validation and serialization.
"""

from watchbudget.domain.models import (
    BudgetStatus,
    DailyBudget,
    EndResult,
    HeartbeatResult,
    ProfileInfo,
    SessionPhase,
    StartResult,
    StoppedReason,
    VideoInfo,
    WatchSession,
    WatchStats,
)

__all__ = [
    "BudgetStatus",
    "DailyBudget",
    "EndResult",
    "HeartbeatResult",
    "ProfileInfo",
    "SessionPhase",
    "StartResult",
    "StoppedReason",
    "VideoInfo",
    "WatchSession",
    "WatchStats",
]
