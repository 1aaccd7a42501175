"""Watch session ledger with an exactly-once terminal transition.

The only guard on ``ended_at`` is the storage-level predicate
``WHERE ended_at IS NULL``. Any number of end calls may race; the one
whose UPDATE matches a row is the terminal write and the rest read back
what it recorded. No in-process lock is involved, so the guarantee
holds across worker processes.
"""

from __future__ import annotations

import logging
import math
from datetime import datetime
from typing import Callable

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from watchbudget.domain.clock import local_date, utcnow
from watchbudget.domain.errors import SessionNotFoundError, WatchBudgetError
from watchbudget.domain.models import EndResult, StartResult, StoppedReason, WatchSession
from watchbudget.storage.base import SessionLedger, StorageError
from watchbudget.storage.budget import add_minutes
from watchbudget.storage.db import write_transaction
from watchbudget.storage.tables import ProfileRow, WatchSessionRow, new_id

logger = logging.getLogger(__name__)


def billable_minutes(duration_seconds: int) -> int:
    """Minutes committed to the daily budget; a started minute counts."""
    return math.ceil(duration_seconds / 60)


class SqlSessionLedger(SessionLedger):
    """SessionLedger over the ``watch_sessions`` table.

    Ending a session that has a profile also commits its minutes to
    ``daily_watch_time`` in the same transaction, so a session contributes
    to the budget if and only if its terminal write landed.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        clock: Callable[[], datetime] = utcnow,
        default_timezone: str = "UTC",
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock
        self._default_timezone = default_timezone

    def start_session(
        self,
        profile_id: str | None,
        video_id: str,
        nfc_chip_id: str | None = None,
    ) -> StartResult:
        row = WatchSessionRow(
            id=new_id(),
            profile_id=profile_id,
            video_id=video_id,
            nfc_chip_id=nfc_chip_id,
            started_at=self._clock(),
        )
        try:
            with write_transaction(self._session_factory) as db:
                db.add(row)
        except SQLAlchemyError as e:
            logger.exception("Failed to create session for profile %s video %s", profile_id, video_id)
            raise StorageError(f"Session insert failed: {e}") from e

        logger.info("Session %s started (profile=%s, video=%s)", row.id, profile_id, video_id)
        return StartResult(session_id=row.id, started_at=row.started_at)

    def get_session(self, session_id: str) -> WatchSession | None:
        try:
            with self._session_factory() as db:
                return _load(db, session_id)
        except SQLAlchemyError as e:
            logger.exception("Failed to read session %s", session_id)
            raise StorageError(f"Session read failed: {e}", session_id=session_id) from e

    def end_session(
        self,
        session_id: str,
        stopped_reason: StoppedReason,
        final_position_seconds: int | None = None,
    ) -> EndResult:
        try:
            with write_transaction(self._session_factory) as db:
                return self._end(db, session_id, StoppedReason(stopped_reason), final_position_seconds)
        except WatchBudgetError:
            raise
        except SQLAlchemyError as e:
            logger.exception("Failed to end session %s", session_id)
            raise StorageError(f"Session end failed: {e}", session_id=session_id) from e

    def _end(
        self,
        db: Session,
        session_id: str,
        reason: StoppedReason,
        final_position_seconds: int | None,
    ) -> EndResult:
        current = _load(db, session_id)
        if current is None:
            raise SessionNotFoundError(f"Session {session_id} not found", session_id=session_id)
        if not current.is_active:
            return _already_ended(current)

        ended_at = self._clock()
        # started_at never changes, so the delta computed here is the one
        # that gets stored if our conditional update wins.
        duration = max(0, int((ended_at - current.started_at).total_seconds()))

        result = db.execute(
            update(WatchSessionRow)
            .where(WatchSessionRow.id == session_id, WatchSessionRow.ended_at.is_(None))
            .values(
                ended_at=ended_at,
                duration_seconds=duration,
                stopped_reason=reason.value,
                final_position_seconds=final_position_seconds,
            )
            .execution_options(synchronize_session=False)
        )

        if result.rowcount == 0:
            winner = _load(db, session_id)
            logger.debug("Session %s lost the end race; already ended", session_id)
            return _already_ended(winner)

        total_today = None
        if current.profile_id is not None:
            tz_name = db.execute(
                select(ProfileRow.timezone).where(ProfileRow.id == current.profile_id)
            ).scalar_one_or_none() or self._default_timezone
            day = local_date(ended_at, tz_name)
            total_today = add_minutes(db, current.profile_id, day, billable_minutes(duration), tz_name).total_minutes

        logger.info(
            "Session %s ended (%s) after %ds; profile %s today=%s",
            session_id, reason.value, duration, current.profile_id, total_today,
        )
        return EndResult(
            session_id=session_id,
            duration_seconds=duration,
            stopped_reason=reason,
            already_ended=False,
            total_watched_today=total_today,
        )


def _load(db: Session, session_id: str) -> WatchSession | None:
    row = db.execute(
        select(WatchSessionRow)
        .where(WatchSessionRow.id == session_id)
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if row is None:
        return None
    return WatchSession(
        id=row.id,
        profile_id=row.profile_id,
        video_id=row.video_id,
        nfc_chip_id=row.nfc_chip_id,
        started_at=row.started_at,
        ended_at=row.ended_at,
        duration_seconds=row.duration_seconds,
        stopped_reason=StoppedReason(row.stopped_reason) if row.stopped_reason else None,
        final_position_seconds=row.final_position_seconds,
    )


def _already_ended(session: WatchSession) -> EndResult:
    return EndResult(
        session_id=session.id,
        duration_seconds=session.duration_seconds or 0,
        stopped_reason=session.stopped_reason or StoppedReason.MANUAL,
        already_ended=True,
    )
