"""ORM models for the account store.

One ``users`` row per account; sessions, schedules, achievements and
friendships are owned child rows. Aggregate counters on ``users`` are
maintained incrementally by ``studytogether.study.ledger``.
"""

from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import (
    BigInteger,
    Boolean,
    Date,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from studytogether.db.base import Base, UTCDateTime

DEFAULT_DAILY_GOAL_MS = 2 * 60 * 60 * 1000

RECURRENCE_CHOICES = ("none", "daily", "weekly", "monthly")


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class User(Base):
    """An account with its identity, counters, goal and streak state."""

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    username: Mapped[str] = mapped_column(String(20), unique=True, nullable=False)
    email: Mapped[str] = mapped_column(String(320), unique=True, nullable=False)
    password_hash: Mapped[str] = mapped_column(String(256), nullable=False)
    avatar_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    friend_invite_code: Mapped[str] = mapped_column(String(8), unique=True, nullable=False)

    # --- Aggregate counters (milliseconds) ---
    total_study_time: Mapped[int] = mapped_column(BigInteger, default=0, server_default="0")
    weekly_study_time: Mapped[int] = mapped_column(BigInteger, default=0, server_default="0")
    monthly_study_time: Mapped[int] = mapped_column(BigInteger, default=0, server_default="0")
    stats_week_start: Mapped[date | None] = mapped_column(Date, nullable=True)
    stats_month_start: Mapped[date | None] = mapped_column(Date, nullable=True)

    # --- Goal / streak ---
    daily_goal: Mapped[int] = mapped_column(BigInteger, default=DEFAULT_DAILY_GOAL_MS, server_default=str(DEFAULT_DAILY_GOAL_MS))
    current_streak: Mapped[int] = mapped_column(Integer, default=0, server_default="0")
    longest_streak: Mapped[int] = mapped_column(Integer, default=0, server_default="0")
    last_study_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    # --- Email verification ---
    is_email_verified: Mapped[bool] = mapped_column(Boolean, default=False, server_default="false")
    email_verification_otp: Mapped[str | None] = mapped_column(String(64), nullable=True)  # sha256 hex
    otp_expires_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    updated_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    last_login: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    version_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default="1")

    __mapper_args__ = {"version_id_col": version_id}  # noqa: RUF012


# ---------------------------------------------------------------------------
# Session ledger
# ---------------------------------------------------------------------------


class StudySession(Base):
    """A completed study interval."""

    __tablename__ = "study_sessions"
    __table_args__ = (Index("ix_study_sessions_user_start", "user_id", "start_time"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    start_time: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    end_time: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    duration: Mapped[int] = mapped_column(BigInteger, nullable=False)
    subject: Mapped[str] = mapped_column(String(100), nullable=False, default="General Study")
    notes: Mapped[str] = mapped_column(Text, nullable=False, default="")
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)


# ---------------------------------------------------------------------------
# Schedules
# ---------------------------------------------------------------------------


class StudySchedule(Base):
    """A planned (optionally recurring) study block."""

    __tablename__ = "study_schedules"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    subject: Mapped[str] = mapped_column(String(100), nullable=False)
    start_time: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    end_time: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    recurring: Mapped[str] = mapped_column(String(8), nullable=False, default="none", server_default="none")
    completed: Mapped[bool] = mapped_column(Boolean, default=False, server_default="false")
    completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    last_reminder_for: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    updated_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    completed_sessions: Mapped[list[ScheduleCompletion]] = relationship(
        "ScheduleCompletion",
        back_populates="schedule",
        cascade="all, delete-orphan",
        order_by="ScheduleCompletion.id",
        lazy="selectin",
    )


class ScheduleCompletion(Base):
    """A sub-session counted toward a schedule's planned duration."""

    __tablename__ = "schedule_completions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    schedule_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("study_schedules.id", ondelete="CASCADE"), nullable=False, index=True
    )
    date: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    duration: Mapped[int] = mapped_column(BigInteger, nullable=False)
    actual_start_time: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    actual_end_time: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)

    schedule: Mapped[StudySchedule] = relationship("StudySchedule", back_populates="completed_sessions")


# ---------------------------------------------------------------------------
# Achievements
# ---------------------------------------------------------------------------


class Achievement(Base):
    """A one-time unlock. UNIQUE(user_id, type) makes unlocking idempotent."""

    __tablename__ = "achievements"
    __table_args__ = (UniqueConstraint("user_id", "type"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    type: Mapped[str] = mapped_column(String(32), nullable=False)
    unlocked_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)


# ---------------------------------------------------------------------------
# Friend graph
# ---------------------------------------------------------------------------


class Friendship(Base):
    """One direction of a symmetric friendship; always written in pairs."""

    __tablename__ = "friendships"
    __table_args__ = (UniqueConstraint("user_id", "friend_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    friend_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
