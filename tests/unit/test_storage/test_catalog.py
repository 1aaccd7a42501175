"""Tests for catalog lookups."""

from __future__ import annotations

from sqlalchemy import update

from conftest import (
    CHIP_ID,
    FOREIGN_CHIP_ID,
    MISSING_ID,
    OWNER_ID,
    PROFILE_ID,
    START_TIME,
    VIDEO_DURATION_SECONDS,
    VIDEO_ID,
)
from watchbudget.storage.catalog import create_profile
from watchbudget.storage.tables import NfcChipRow, ProfileRow


class TestSqlCatalogLookup:
    def test_get_profile(self, catalog) -> None:
        profile = catalog.get_profile(PROFILE_ID)
        assert profile.owner_id == OWNER_ID
        assert profile.daily_limit_minutes == 60
        assert profile.timezone == "UTC"

    def test_soft_deleted_profile_hidden(self, catalog, seeded) -> None:
        with seeded() as db, db.begin():
            db.execute(update(ProfileRow).where(ProfileRow.id == PROFILE_ID).values(deleted_at=START_TIME))
        assert catalog.get_profile(PROFILE_ID) is None

    def test_get_video(self, catalog) -> None:
        video = catalog.get_video(VIDEO_ID)
        assert video.duration_seconds == VIDEO_DURATION_SECONDS
        assert catalog.get_video(MISSING_ID) is None

    def test_chip_matches_same_owner(self, catalog) -> None:
        assert catalog.chip_matches_profile(CHIP_ID, PROFILE_ID) is True

    def test_chip_from_other_owner(self, catalog) -> None:
        assert catalog.chip_matches_profile(FOREIGN_CHIP_ID, PROFILE_ID) is False

    def test_inactive_chip(self, catalog, seeded) -> None:
        with seeded() as db, db.begin():
            db.execute(update(NfcChipRow).where(NfcChipRow.id == CHIP_ID).values(is_active=False))
        assert catalog.chip_matches_profile(CHIP_ID, PROFILE_ID) is False

    def test_stats_for_quiet_profile(self, catalog) -> None:
        stats = catalog.watch_stats(PROFILE_ID, START_TIME.date())
        assert stats.watched_today == 0
        assert stats.remaining_minutes == 60
        assert stats.weekly == []
        assert stats.top_videos == []


class TestCreateProfile:
    def test_create_profile(self, session_factory, catalog) -> None:
        created = create_profile(session_factory, OWNER_ID, "Ada", 45, "Europe/Berlin")
        loaded = catalog.get_profile(created.id)
        assert loaded.name == "Ada"
        assert loaded.daily_limit_minutes == 45
        assert loaded.timezone == "Europe/Berlin"

    def test_create_unlimited_profile(self, session_factory, catalog) -> None:
        created = create_profile(session_factory, OWNER_ID, "Max", None)
        assert catalog.get_profile(created.id).daily_limit_minutes is None
