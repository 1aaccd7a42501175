"""Shared test fixtures for the watchbudget test suite.

Provides an in-memory database with a seeded account (profile, video,
NFC chip), a controllable clock, and a monitor wired to both.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

import pytest
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from watchbudget.config.settings import DatabaseConfig
from watchbudget.engine.monitor import HeartbeatMonitor
from watchbudget.storage import (
    SqlCatalogLookup,
    SqlDailyBudgetAggregator,
    SqlSessionLedger,
    create_db_engine,
    init_db,
    make_session_factory,
)
from watchbudget.storage.budget import add_minutes
from watchbudget.storage.tables import NfcChipRow, ProfileRow, VideoRow

OWNER_ID = "0b7f3e55-8a0c-4a53-9d1e-2f5c7b1e9a01"
OTHER_OWNER_ID = "4e2d9c11-5b6a-4f0e-8c3d-7a9b0e1f2d02"
PROFILE_ID = "6f1c2a3b-4d5e-4f60-8a7b-9c0d1e2f3a03"
UNLIMITED_PROFILE_ID = "7a2b3c4d-5e6f-4a70-8b8c-9d0e1f2a3b04"
VIDEO_ID = "8b3c4d5e-6f7a-4b81-9c9d-0e1f2a3b4c05"
CHIP_ID = "9c4d5e6f-7a8b-4c92-8dae-1f2a3b4c5d06"
FOREIGN_CHIP_ID = "ad5e6f7a-8b9c-4da3-9ebf-2a3b4c5d6e07"
MISSING_ID = "be6f7a8b-9cad-4eb4-8fc0-3b4c5d6e7f08"

VIDEO_DURATION_SECONDS = 600
START_TIME = datetime(2025, 1, 15, 12, 0, 0, tzinfo=timezone.utc)
TODAY = date(2025, 1, 15)


# ---------------------------------------------------------------------------
# Clock
# ---------------------------------------------------------------------------


class FakeClock:
    """Callable server clock that only moves when told to."""

    def __init__(self, now: datetime = START_TIME) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


# ---------------------------------------------------------------------------
# Database Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def engine() -> Engine:
    """A fresh in-memory database with the schema created."""
    engine = create_db_engine(DatabaseConfig(url="sqlite://"))
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine: Engine) -> sessionmaker[Session]:
    return make_session_factory(engine)


def seed_catalog(session_factory: sessionmaker[Session]) -> None:
    """One account with a 60-minute profile, an unlimited profile, a video and a chip."""
    with session_factory() as db, db.begin():
        db.add_all(
            [
                ProfileRow(id=PROFILE_ID, owner_id=OWNER_ID, name="Mia", daily_limit_minutes=60),
                ProfileRow(id=UNLIMITED_PROFILE_ID, owner_id=OWNER_ID, name="Leo", daily_limit_minutes=None),
                VideoRow(id=VIDEO_ID, owner_id=OWNER_ID, title="Counting Song", duration_seconds=VIDEO_DURATION_SECONDS),
                NfcChipRow(id=CHIP_ID, owner_id=OWNER_ID, chip_uid="04:A2:1B:7C", label="Blue card"),
                NfcChipRow(id=FOREIGN_CHIP_ID, owner_id=OTHER_OWNER_ID, chip_uid="04:FF:00:11", label="Neighbour"),
            ]
        )


def seed_minutes(session_factory: sessionmaker[Session], minutes: int, day: date = TODAY) -> None:
    """Commit ``minutes`` already watched today by the limited profile."""
    with session_factory() as db, db.begin():
        add_minutes(db, PROFILE_ID, day, minutes)


@pytest.fixture
def seeded(session_factory: sessionmaker[Session]) -> sessionmaker[Session]:
    seed_catalog(session_factory)
    return session_factory


# ---------------------------------------------------------------------------
# Engine Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def ledger(seeded: sessionmaker[Session], clock: FakeClock) -> SqlSessionLedger:
    return SqlSessionLedger(seeded, clock=clock)


@pytest.fixture
def budget(seeded: sessionmaker[Session]) -> SqlDailyBudgetAggregator:
    return SqlDailyBudgetAggregator(seeded)


@pytest.fixture
def catalog(seeded: sessionmaker[Session]) -> SqlCatalogLookup:
    return SqlCatalogLookup(seeded)


@pytest.fixture
def monitor(
    ledger: SqlSessionLedger,
    budget: SqlDailyBudgetAggregator,
    catalog: SqlCatalogLookup,
    clock: FakeClock,
) -> HeartbeatMonitor:
    return HeartbeatMonitor(ledger=ledger, budget=budget, catalog=catalog, clock=clock)
