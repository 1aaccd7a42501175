"""ORM tables.

``profiles``, ``videos`` and ``nfc_chips`` belong to the catalog side of
the platform and are only read here. ``watch_sessions`` and
``daily_watch_time`` are owned by the session engine.
"""

from __future__ import annotations

import uuid
from datetime import date, datetime
from typing import Optional

from sqlalchemy import Boolean, Date, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from watchbudget.domain.clock import utcnow
from watchbudget.storage.db import Base, UTCDateTime


def new_id() -> str:
    return str(uuid.uuid4())


class ProfileRow(Base):
    __tablename__ = "profiles"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    owner_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    daily_limit_minutes: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    timezone: Mapped[str] = mapped_column(String(50), nullable=False, default="UTC")
    deleted_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)


class VideoRow(Base):
    __tablename__ = "videos"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    owner_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    duration_seconds: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)


class NfcChipRow(Base):
    __tablename__ = "nfc_chips"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    owner_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    chip_uid: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    label: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class WatchSessionRow(Base):
    __tablename__ = "watch_sessions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    profile_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True, index=True
    )
    video_id: Mapped[str] = mapped_column(
        ForeignKey("videos.id", ondelete="CASCADE"), nullable=False, index=True
    )
    nfc_chip_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("nfc_chips.id", ondelete="SET NULL"), nullable=True
    )
    started_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    # Written exactly once, by the conditional update in SqlSessionLedger.end_session.
    ended_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    duration_seconds: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    stopped_reason: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    final_position_seconds: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    __table_args__ = (Index("ix_watch_sessions_started_at", "started_at"),)


class DailyWatchTimeRow(Base):
    __tablename__ = "daily_watch_time"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    profile_id: Mapped[str] = mapped_column(
        ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False
    )
    date: Mapped[date] = mapped_column(Date, nullable=False)
    total_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    timezone: Mapped[str] = mapped_column(String(50), nullable=False, default="UTC")

    __table_args__ = (UniqueConstraint("profile_id", "date"),)
