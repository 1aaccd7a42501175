"""Daily budget counter backed by an atomic upsert."""

from __future__ import annotations

import logging
from datetime import date

from sqlalchemy import and_, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from watchbudget.domain.errors import NotFoundError
from watchbudget.domain.models import BudgetStatus, DailyBudget
from watchbudget.storage.base import DailyBudgetAggregator, StorageError
from watchbudget.storage.db import write_transaction
from watchbudget.storage.tables import DailyWatchTimeRow, ProfileRow

logger = logging.getLogger(__name__)


def _dialect_insert(dialect_name: str):
    if dialect_name == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif dialect_name == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        raise StorageError(f"Atomic upsert not supported on dialect {dialect_name!r}")
    return insert


def add_minutes(
    db: Session,
    profile_id: str,
    day: date,
    minutes_to_add: int,
    timezone: str = "UTC",
) -> DailyBudget:
    """Add ``minutes_to_add`` to the (profile, day) row inside ``db``'s transaction.

    Renders as ``INSERT ... ON CONFLICT (profile_id, date) DO UPDATE SET
    total_minutes = total_minutes + excluded.total_minutes`` so concurrent
    contributions never overwrite each other.
    """
    if minutes_to_add < 0:
        raise ValueError("minutes_to_add must be >= 0")

    insert = _dialect_insert(db.get_bind().dialect.name)
    stmt = insert(DailyWatchTimeRow).values(
        profile_id=profile_id,
        date=day,
        total_minutes=minutes_to_add,
        timezone=timezone,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=[DailyWatchTimeRow.profile_id, DailyWatchTimeRow.date],
        set_={"total_minutes": DailyWatchTimeRow.total_minutes + stmt.excluded.total_minutes},
    )
    db.execute(stmt)

    # Same transaction as the upsert: the row is write-locked, so this
    # reads our own contribution plus everything committed before it.
    row = db.execute(
        select(DailyWatchTimeRow.total_minutes, DailyWatchTimeRow.timezone).where(
            DailyWatchTimeRow.profile_id == profile_id,
            DailyWatchTimeRow.date == day,
        )
    ).one()
    return DailyBudget(profile_id=profile_id, date=day, total_minutes=row.total_minutes, timezone=row.timezone)


class SqlDailyBudgetAggregator(DailyBudgetAggregator):
    """DailyBudgetAggregator over the ``daily_watch_time`` table."""

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    def commit(self, profile_id: str, day: date, minutes_to_add: int, timezone: str = "UTC") -> DailyBudget:
        try:
            with write_transaction(self._session_factory) as db:
                record = add_minutes(db, profile_id, day, minutes_to_add, timezone)
        except SQLAlchemyError as e:
            logger.exception("Failed to commit %d minutes for profile %s", minutes_to_add, profile_id)
            raise StorageError(f"Budget commit failed: {e}") from e
        logger.debug("Profile %s on %s: +%d -> %d minutes", profile_id, day, minutes_to_add, record.total_minutes)
        return record

    def query(self, profile_id: str, day: date) -> BudgetStatus:
        stmt = (
            select(
                ProfileRow.daily_limit_minutes,
                func.coalesce(DailyWatchTimeRow.total_minutes, 0),
            )
            .outerjoin(
                DailyWatchTimeRow,
                and_(
                    DailyWatchTimeRow.profile_id == ProfileRow.id,
                    DailyWatchTimeRow.date == day,
                ),
            )
            .where(ProfileRow.id == profile_id, ProfileRow.deleted_at.is_(None))
        )
        try:
            with self._session_factory() as db:
                row = db.execute(stmt).first()
        except SQLAlchemyError as e:
            logger.exception("Failed to read budget for profile %s", profile_id)
            raise StorageError(f"Budget query failed: {e}") from e

        if row is None:
            raise NotFoundError(
                f"Profile {profile_id} not found",
                friendly_message="Oops! We can't find your profile. Ask a grown-up for help!",
            )

        limit, total = row
        return budget_status(profile_id, day, int(total), limit)


def budget_status(profile_id: str, day: date, total: int, limit: int | None) -> BudgetStatus:
    remaining = None if limit is None else max(0, limit - total)
    return BudgetStatus(
        profile_id=profile_id,
        date=day,
        total_minutes=total,
        limit_minutes=limit,
        remaining_minutes=remaining,
    )
