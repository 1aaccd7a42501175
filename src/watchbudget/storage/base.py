"""Abstract storage interfaces used by the heartbeat monitor.

The monitor only talks to these, so a different persistence backend can
be slotted in without touching the engine. Whatever the backend, the two
consistency guarantees must come from the store itself:

- a session's terminal write happens at most once (conditional update
  on ``ended_at IS NULL``), and
- daily budget contributions are atomic additions, never read-then-write.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import date

from watchbudget.domain.errors import ServerError
from watchbudget.domain.models import (
    BudgetStatus,
    DailyBudget,
    EndResult,
    ProfileInfo,
    StartResult,
    StoppedReason,
    VideoInfo,
    WatchSession,
    WatchStats,
)


class SessionLedger(ABC):
    """Authoritative per-session record."""

    @abstractmethod
    def start_session(
        self,
        profile_id: str | None,
        video_id: str,
        nfc_chip_id: str | None = None,
    ) -> StartResult:
        """Insert one active session with ``started_at`` from the server clock.

        Callers must have verified ownership and the daily budget already;
        the ledger does not re-derive either.
        """
        ...

    @abstractmethod
    def end_session(
        self,
        session_id: str,
        stopped_reason: StoppedReason,
        final_position_seconds: int | None = None,
    ) -> EndResult:
        """Terminate the session if it is still active.

        Returns ``already_ended=True`` with the originally recorded duration
        when another call won the race.

        Raises:
            SessionNotFoundError: The id never existed.
        """
        ...

    @abstractmethod
    def get_session(self, session_id: str) -> WatchSession | None:
        ...


class DailyBudgetAggregator(ABC):
    """Per-profile, per-day watched minutes."""

    @abstractmethod
    def commit(self, profile_id: str, day: date, minutes_to_add: int, timezone: str = "UTC") -> DailyBudget:
        """Atomically add minutes for the day and return the updated day record."""
        ...

    @abstractmethod
    def query(self, profile_id: str, day: date) -> BudgetStatus:
        """Committed total, limit and remaining minutes for the day.

        Raises:
            NotFoundError: The profile does not exist.
        """
        ...


class CatalogLookup(ABC):
    """Read-only view of profiles, videos and NFC chips."""

    @abstractmethod
    def get_profile(self, profile_id: str) -> ProfileInfo | None:
        ...

    @abstractmethod
    def get_video(self, video_id: str) -> VideoInfo | None:
        ...

    @abstractmethod
    def chip_matches_profile(self, nfc_chip_id: str, profile_id: str) -> bool:
        """Whether an active chip and the profile belong to the same account."""
        ...

    @abstractmethod
    def watch_stats(self, profile_id: str, today: date, days: int = 7, top: int = 5) -> WatchStats:
        ...


class StorageError(ServerError):
    """Raised when the database cannot complete an operation."""
