"""Session ledger: persist study sessions and keep the user's aggregates in step.

Each write is a read-modify-write on the ``users`` row (counters, streak,
achievements). The row carries a ``version_id``; a concurrent writer makes
our UPDATE match zero rows, SQLAlchemy raises ``StaleDataError``, and the
whole attempt is rolled back and replayed from a fresh read.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import TypeVar

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from studytogether.config import get_settings
from studytogether.db.models import Achievement, StudySchedule, StudySession, User
from studytogether.errors import ConflictError, NotFoundError, ValidationError
from studytogether.study.engine import (
    GOAL_WINDOW_DAYS,
    AchievementType,
    StreakState,
    advance_streak,
    count_goal_days,
    due_achievements,
    local_day,
    month_start,
    study_tz,
    validate_interval,
    week_start,
)
from studytogether.study.schedules import apply_session_to_schedule, get_owned_schedule

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_SUBJECT = "General Study"


@dataclass
class SessionOutcome:
    """Result of recording one session."""

    session: StudySession
    user: User
    new_achievements: list[AchievementType] = field(default_factory=list)
    schedule: StudySchedule | None = None


def duration_ms(start_time: datetime, end_time: datetime) -> int:
    return (end_time - start_time) // timedelta(milliseconds=1)


# ---------------------------------------------------------------------------
# Counter windows
# ---------------------------------------------------------------------------


def roll_windows(user: User, now: datetime) -> None:
    """Zero the weekly/monthly counters if they belong to an earlier window."""
    tz = study_tz()
    current_week = week_start(now, tz).date()
    current_month = month_start(now, tz).date()
    if user.stats_week_start != current_week:
        user.weekly_study_time = 0
        user.stats_week_start = current_week
    if user.stats_month_start != current_month:
        user.monthly_study_time = 0
        user.stats_month_start = current_month


def current_window_totals(user: User, now: datetime) -> tuple[int, int]:
    """(weekly, monthly) totals as they read at ``now``, without mutating the user."""
    tz = study_tz()
    weekly = user.weekly_study_time if user.stats_week_start == week_start(now, tz).date() else 0
    monthly = user.monthly_study_time if user.stats_month_start == month_start(now, tz).date() else 0
    return weekly or 0, monthly or 0


# ---------------------------------------------------------------------------
# Optimistic retry
# ---------------------------------------------------------------------------


async def _with_version_retry(db: AsyncSession, attempt: Callable[[], Awaitable[T]]) -> T:
    max_attempts = get_settings().session_write_attempts
    for n in range(1, max_attempts + 1):
        try:
            result = await attempt()
            await db.commit()
            return result
        except (StaleDataError, IntegrityError) as exc:
            await db.rollback()
            logger.warning("Concurrent write on user row (attempt %d/%d): %s", n, max_attempts, exc)
        except Exception:
            await db.rollback()
            raise

    msg = "The account was modified concurrently, please retry"
    raise ConflictError(msg)


async def _load_user(db: AsyncSession, user_id: int) -> User:
    result = await db.execute(
        select(User).where(User.id == user_id).execution_options(populate_existing=True)
    )
    user = result.scalar_one_or_none()
    if user is None:
        msg = "User not found"
        raise NotFoundError(msg)
    return user


# ---------------------------------------------------------------------------
# Record
# ---------------------------------------------------------------------------


async def record_session(
    db: AsyncSession,
    user_id: int,
    *,
    start_time: datetime,
    end_time: datetime,
    now: datetime,
    duration: int | None = None,
    subject: str | None = None,
    notes: str = "",
    schedule_id: int | None = None,
) -> SessionOutcome:
    """Append a session and apply counters, streak, achievements and schedule progress.

    Everything happens in one transaction. Invalid intervals and unknown
    schedules are rejected before anything is written.
    """
    if duration is None:
        duration = duration_ms(start_time, end_time)
    validate_interval(start_time, end_time, duration)
    subject = (subject or "").strip() or DEFAULT_SUBJECT

    async def attempt() -> SessionOutcome:
        user = await _load_user(db, user_id)
        schedule = await get_owned_schedule(db, user_id, schedule_id) if schedule_id is not None else None

        tz = study_tz()
        roll_windows(user, now)

        session = StudySession(
            user_id=user_id,
            start_time=start_time,
            end_time=end_time,
            duration=duration,
            subject=subject,
            notes=notes or "",
            created_at=now,
        )
        db.add(session)

        user.total_study_time = (user.total_study_time or 0) + duration
        if start_time >= week_start(now, tz):
            user.weekly_study_time = (user.weekly_study_time or 0) + duration
        if start_time >= month_start(now, tz):
            user.monthly_study_time = (user.monthly_study_time or 0) + duration

        streak = advance_streak(
            StreakState(user.current_streak or 0, user.last_study_date, user.longest_streak or 0),
            local_day(start_time, tz),
            local_day(now, tz),
        )
        user.current_streak = streak.current_streak
        user.last_study_date = streak.last_study_date
        user.longest_streak = streak.longest_streak
        user.updated_at = now

        await db.flush()

        session_count = await db.scalar(
            select(func.count()).select_from(StudySession).where(StudySession.user_id == user_id)
        )
        recent = await db.execute(
            select(StudySession.start_time, StudySession.duration).where(
                StudySession.user_id == user_id,
                StudySession.start_time >= now - timedelta(days=GOAL_WINDOW_DAYS),
            )
        )
        unlocked = await db.scalars(select(Achievement.type).where(Achievement.user_id == user_id))

        new_achievements = due_achievements(
            session_count=session_count or 0,
            current_streak=user.current_streak,
            goal_days=count_goal_days(recent.all(), user.daily_goal, now, tz),
            unlocked=unlocked.all(),
        )
        for kind in new_achievements:
            db.add(Achievement(user_id=user_id, type=kind.value, unlocked_at=now))

        if schedule is not None:
            apply_session_to_schedule(schedule, duration, start_time, end_time, now)

        await db.flush()
        return SessionOutcome(session=session, user=user, new_achievements=new_achievements, schedule=schedule)

    outcome = await _with_version_retry(db, attempt)
    logger.info(
        "Session recorded for user %d: %d ms of %s (streak=%d, new achievements=%s)",
        user_id,
        duration,
        subject,
        outcome.user.current_streak,
        [a.value for a in outcome.new_achievements],
    )
    return outcome


# ---------------------------------------------------------------------------
# Delete / list
# ---------------------------------------------------------------------------


async def delete_session(db: AsyncSession, user_id: int, session_id: int, *, now: datetime) -> None:
    """Remove one of the caller's sessions and reverse its counter contribution.

    Counters are clamped at 0. Streak and achievements are left as they are.
    """

    async def attempt() -> None:
        result = await db.execute(
            select(StudySession).where(
                StudySession.id == session_id,
                StudySession.user_id == user_id,
            )
        )
        session = result.scalar_one_or_none()
        if session is None:
            msg = "Session not found"
            raise NotFoundError(msg)

        user = await _load_user(db, user_id)
        tz = study_tz()
        roll_windows(user, now)

        user.total_study_time = max(0, (user.total_study_time or 0) - session.duration)
        if session.start_time >= week_start(now, tz):
            user.weekly_study_time = max(0, (user.weekly_study_time or 0) - session.duration)
        if session.start_time >= month_start(now, tz):
            user.monthly_study_time = max(0, (user.monthly_study_time or 0) - session.duration)
        user.updated_at = now

        await db.delete(session)
        await db.flush()

    await _with_version_retry(db, attempt)
    logger.info("Session %d deleted for user %d", session_id, user_id)


async def list_sessions(db: AsyncSession, user_id: int, *, limit: int = 20, offset: int = 0) -> list[StudySession]:
    """Most recent sessions first."""
    result = await db.execute(
        select(StudySession)
        .where(StudySession.user_id == user_id)
        .order_by(StudySession.start_time.desc(), StudySession.id.desc())
        .limit(limit)
        .offset(offset)
    )
    return list(result.scalars().all())


async def count_sessions(db: AsyncSession, user_id: int) -> int:
    total = await db.scalar(select(func.count()).select_from(StudySession).where(StudySession.user_id == user_id))
    return int(total or 0)


async def set_daily_goal(db: AsyncSession, user_id: int, daily_goal: int, *, now: datetime) -> User:
    """Change the per-day target. Bounds come from settings."""
    settings = get_settings()
    if not settings.min_daily_goal_ms <= daily_goal <= settings.max_daily_goal_ms:
        msg = (
            f"Daily goal must be between {settings.min_daily_goal_ms // 60000} "
            f"and {settings.max_daily_goal_ms // 60000} minutes"
        )
        raise ValidationError(msg)

    async def attempt() -> User:
        user = await _load_user(db, user_id)
        user.daily_goal = daily_goal
        user.updated_at = now
        await db.flush()
        return user

    user = await _with_version_retry(db, attempt)
    logger.info("Daily goal for user %d set to %d ms", user_id, daily_goal)
    return user
