"""Read-only lookups against the catalog tables."""

from __future__ import annotations

import logging
from datetime import date, timedelta

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from watchbudget.domain.errors import NotFoundError
from watchbudget.domain.models import (
    DailyTotal,
    ProfileInfo,
    VideoInfo,
    VideoWatchCount,
    WatchStats,
)
from watchbudget.storage.base import CatalogLookup, StorageError
from watchbudget.storage.db import write_transaction
from watchbudget.storage.tables import (
    DailyWatchTimeRow,
    NfcChipRow,
    ProfileRow,
    VideoRow,
    WatchSessionRow,
)

logger = logging.getLogger(__name__)


class SqlCatalogLookup(CatalogLookup):
    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    def get_profile(self, profile_id: str) -> ProfileInfo | None:
        with self._reading("profile", profile_id) as db:
            row = db.execute(
                select(ProfileRow).where(ProfileRow.id == profile_id, ProfileRow.deleted_at.is_(None))
            ).scalar_one_or_none()
        if row is None:
            return None
        return ProfileInfo(
            id=row.id,
            owner_id=row.owner_id,
            name=row.name,
            daily_limit_minutes=row.daily_limit_minutes,
            timezone=row.timezone,
        )

    def get_video(self, video_id: str) -> VideoInfo | None:
        with self._reading("video", video_id) as db:
            row = db.get(VideoRow, video_id)
        if row is None:
            return None
        return VideoInfo(id=row.id, title=row.title, duration_seconds=row.duration_seconds)

    def chip_matches_profile(self, nfc_chip_id: str, profile_id: str) -> bool:
        stmt = (
            select(NfcChipRow.id)
            .join(ProfileRow, ProfileRow.owner_id == NfcChipRow.owner_id)
            .where(
                NfcChipRow.id == nfc_chip_id,
                NfcChipRow.is_active.is_(True),
                ProfileRow.id == profile_id,
                ProfileRow.deleted_at.is_(None),
            )
        )
        with self._reading("chip", nfc_chip_id) as db:
            return db.execute(stmt).first() is not None

    def watch_stats(self, profile_id: str, today: date, days: int = 7, top: int = 5) -> WatchStats:
        profile = self.get_profile(profile_id)
        if profile is None:
            raise NotFoundError(f"Profile {profile_id} not found")

        since = today - timedelta(days=days)
        with self._reading("stats", profile_id) as db:
            daily_rows = db.execute(
                select(DailyWatchTimeRow.date, DailyWatchTimeRow.total_minutes)
                .where(DailyWatchTimeRow.profile_id == profile_id, DailyWatchTimeRow.date >= since)
                .order_by(DailyWatchTimeRow.date.desc())
            ).all()
            top_rows = db.execute(
                select(
                    VideoRow.id,
                    VideoRow.title,
                    func.count(WatchSessionRow.id),
                    func.coalesce(func.sum(WatchSessionRow.duration_seconds), 0),
                )
                .join(VideoRow, VideoRow.id == WatchSessionRow.video_id)
                .where(WatchSessionRow.profile_id == profile_id)
                .group_by(VideoRow.id, VideoRow.title)
                .order_by(func.count(WatchSessionRow.id).desc(), VideoRow.title)
                .limit(top)
            ).all()

        weekly = [DailyTotal(date=d, total_minutes=m) for d, m in daily_rows]
        watched_today = next((t.total_minutes for t in weekly if t.date == today), 0)
        remaining = None
        if profile.daily_limit_minutes is not None:
            remaining = max(0, profile.daily_limit_minutes - watched_today)

        return WatchStats(
            profile_id=profile_id,
            daily_limit_minutes=profile.daily_limit_minutes,
            watched_today=watched_today,
            remaining_minutes=remaining,
            weekly=weekly,
            top_videos=[
                VideoWatchCount(
                    video_id=vid,
                    title=title,
                    watch_count=count,
                    total_minutes=int(seconds) // 60,
                )
                for vid, title, count, seconds in top_rows
            ],
        )

    def _reading(self, what: str, key: str) -> _ReadScope:
        return _ReadScope(self._session_factory, what, key)


class _ReadScope:
    """Session context that turns driver failures into StorageError."""

    def __init__(self, session_factory: sessionmaker[Session], what: str, key: str) -> None:
        self._session_factory = session_factory
        self._what = what
        self._key = key
        self._db: Session | None = None

    def __enter__(self) -> Session:
        self._db = self._session_factory()
        return self._db

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        assert self._db is not None
        self._db.close()
        if exc_val is not None and isinstance(exc_val, SQLAlchemyError):
            logger.error("Catalog %s lookup failed for %s", self._what, self._key, exc_info=exc_val)
            raise StorageError(f"Catalog {self._what} lookup failed: {exc_val}") from exc_val
        return False


def create_profile(
    session_factory: sessionmaker[Session],
    owner_id: str,
    name: str,
    daily_limit_minutes: int | None,
    timezone: str = "UTC",
) -> ProfileInfo:
    """Insert a profile row. Used by operator tooling, not by the engine."""
    row = ProfileRow(
        owner_id=owner_id,
        name=name,
        daily_limit_minutes=daily_limit_minutes,
        timezone=timezone,
    )
    try:
        with write_transaction(session_factory) as db:
            db.add(row)
    except SQLAlchemyError as e:
        logger.exception("Failed to create profile %r for owner %s", name, owner_id)
        raise StorageError(f"Profile insert failed: {e}") from e
    return ProfileInfo(
        id=row.id,
        owner_id=row.owner_id,
        name=row.name,
        daily_limit_minutes=row.daily_limit_minutes,
        timezone=row.timezone,
    )
