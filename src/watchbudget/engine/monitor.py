"""The heartbeat monitor that decides whether a session keeps playing.

Coordinates the ledger, the daily budget and the tamper guard:

    start:     authorize -> look up -> budget gate -> create
    heartbeat: load session -> check position -> project today's total
    end:       conditional terminal write (+ budget commit) in the ledger

Heartbeats never write. They project ``committed today + own elapsed
minutes`` against the limit; the session's own minutes are committed
only when it ends.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable

from watchbudget.domain.clock import local_date, utcnow
from watchbudget.domain.errors import (
    AuthorizationError,
    BudgetExhaustedError,
    InvalidPositionError,
    NotFoundError,
    SessionEndedError,
    SessionNotFoundError,
)
from watchbudget.domain.models import (
    EndResult,
    HeartbeatResult,
    ProfileInfo,
    SessionPhase,
    StartResult,
    StoppedReason,
    WatchStats,
)
from watchbudget.engine.tamper import DEFAULT_TOLERANCE_SECONDS, validate_position
from watchbudget.storage.base import CatalogLookup, DailyBudgetAggregator, SessionLedger

logger = logging.getLogger(__name__)

PROFILE_NOT_FOUND_MESSAGE = "Oops! We can't find your profile. Ask a grown-up for help!"
VIDEO_NOT_FOUND_MESSAGE = "Oops! We can't find that video. Ask a grown-up for help!"


class HeartbeatMonitor:
    """Start gate, heartbeat evaluation and end delegation for watch sessions."""

    def __init__(
        self,
        ledger: SessionLedger,
        budget: DailyBudgetAggregator,
        catalog: CatalogLookup,
        clock: Callable[[], datetime] = utcnow,
        position_tolerance_seconds: int = DEFAULT_TOLERANCE_SECONDS,
        default_timezone: str = "UTC",
    ) -> None:
        self._ledger = ledger
        self._budget = budget
        self._catalog = catalog
        self._clock = clock
        self._tolerance = position_tolerance_seconds
        self._default_timezone = default_timezone

    # ------------------------------------------------------------------
    # Start
    # ------------------------------------------------------------------

    def start(
        self,
        profile_id: str | None,
        video_id: str,
        nfc_chip_id: str | None = None,
        *,
        verify_chip: bool = False,
    ) -> StartResult:
        """Open a session unless the profile's budget is already spent.

        Every rejection happens before the ledger is touched, so a refused
        start never leaves a session row behind.

        Args:
            profile_id: Viewing profile, or None for anonymous viewing.
            video_id: Video being played.
            nfc_chip_id: Chip that triggered playback (provenance).
            verify_chip: Kiosk flow; require that the chip and the profile
                belong to the same account.

        Raises:
            AuthorizationError: Chip/profile mismatch.
            NotFoundError: Unknown profile or video.
            BudgetExhaustedError: No minutes left today.
        """
        if verify_chip:
            if profile_id is None or nfc_chip_id is None:
                raise AuthorizationError("Kiosk start requires profile and chip")
            if not self._catalog.chip_matches_profile(nfc_chip_id, profile_id):
                logger.info("Chip %s rejected for profile %s", nfc_chip_id, profile_id)
                raise AuthorizationError(f"Chip {nfc_chip_id} does not belong to profile {profile_id}")

        profile = None
        if profile_id is not None:
            profile = self._catalog.get_profile(profile_id)
            if profile is None:
                raise NotFoundError(
                    f"Profile {profile_id} not found",
                    friendly_message=PROFILE_NOT_FOUND_MESSAGE,
                )

        if self._catalog.get_video(video_id) is None:
            raise NotFoundError(f"Video {video_id} not found", friendly_message=VIDEO_NOT_FOUND_MESSAGE)

        remaining = None
        limit = None
        if profile is not None:
            status = self._budget.query(profile.id, self._today(profile))
            limit = status.limit_minutes
            remaining = status.remaining_minutes
            if status.exhausted:
                logger.info(
                    "Start refused for profile %s: %d/%d minutes used",
                    profile.id, status.total_minutes, limit,
                )
                raise BudgetExhaustedError(status.total_minutes, limit)

        started = self._ledger.start_session(profile_id, video_id, nfc_chip_id)
        return started.model_copy(
            update={"remaining_minutes": remaining, "daily_limit_minutes": limit}
        )

    # ------------------------------------------------------------------
    # Heartbeat
    # ------------------------------------------------------------------

    def heartbeat(
        self,
        session_id: str,
        current_position_seconds: int | None = None,
    ) -> HeartbeatResult:
        """Evaluate one tick for an active session.

        ``elapsed_seconds`` is always server now minus ``started_at``; the
        reported position is only bound-checked, never used for time.

        Raises:
            SessionNotFoundError: Unknown id.
            SessionEndedError: The session already ended; the client should stop polling.
            InvalidPositionError: Position beyond the video's end plus tolerance.
        """
        session = self._ledger.get_session(session_id)
        if session is None:
            raise SessionNotFoundError(f"Session {session_id} not found", session_id=session_id)
        if session.phase is SessionPhase.ENDED:
            raise SessionEndedError(f"Session {session_id} already ended", session_id=session_id)

        if current_position_seconds is not None:
            self._check_position(session_id, session.video_id, current_position_seconds)

        now = self._clock()
        elapsed = max(0, int((now - session.started_at).total_seconds()))

        profile = None
        if session.profile_id is not None:
            profile = self._catalog.get_profile(session.profile_id)
        if profile is None or profile.daily_limit_minutes is None:
            return HeartbeatResult(session_id=session_id, elapsed_seconds=elapsed)

        status = self._budget.query(profile.id, local_date(now, profile.timezone))
        projected = status.total_minutes + elapsed // 60
        limit = profile.daily_limit_minutes

        if projected >= limit:
            logger.info(
                "Session %s reached the daily limit (%d >= %d minutes)",
                session_id, projected, limit,
            )
            return HeartbeatResult(
                session_id=session_id,
                elapsed_seconds=elapsed,
                remaining_minutes=0,
                limit_reached=True,
                projected_total_minutes=projected,
                phase=SessionPhase.LIMIT_REACHED,
            )

        return HeartbeatResult(
            session_id=session_id,
            elapsed_seconds=elapsed,
            remaining_minutes=limit - projected,
            limit_reached=False,
            projected_total_minutes=projected,
        )

    def _check_position(self, session_id: str, video_id: str, position: int) -> None:
        video = self._catalog.get_video(video_id)
        if video is None or video.duration_seconds is None:
            return
        if not validate_position(position, video.duration_seconds, self._tolerance):
            logger.warning(
                "Session %s reported position %ds past video length %ds",
                session_id, position, video.duration_seconds,
            )
            raise InvalidPositionError(
                f"Position {position}s exceeds video duration {video.duration_seconds}s",
                session_id=session_id,
            )

    # ------------------------------------------------------------------
    # End
    # ------------------------------------------------------------------

    def end(
        self,
        session_id: str,
        stopped_reason: StoppedReason = StoppedReason.MANUAL,
        final_position_seconds: int | None = None,
    ) -> EndResult:
        """Terminate a session; idempotent, so racing stop signals are harmless."""
        result = self._ledger.end_session(session_id, stopped_reason, final_position_seconds)
        if result.already_ended:
            logger.debug(
                "End(%s) for session %s ignored; already ended as %s",
                StoppedReason(stopped_reason).value, session_id, result.stopped_reason.value,
            )
        return result

    # ------------------------------------------------------------------
    # Stats
    # ------------------------------------------------------------------

    def stats(self, profile_id: str) -> WatchStats:
        profile = self._catalog.get_profile(profile_id)
        if profile is None:
            raise NotFoundError(f"Profile {profile_id} not found", friendly_message=PROFILE_NOT_FOUND_MESSAGE)
        return self._catalog.watch_stats(profile_id, self._today(profile))

    def _today(self, profile: ProfileInfo):
        return local_date(self._clock(), profile.timezone or self._default_timezone)
