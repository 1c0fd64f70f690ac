"""Read-side statistics: daily breakdown, per-subject totals and today's progress."""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime, timedelta

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from studytogether.db.models import Achievement, StudySession, User
from studytogether.study.engine import local_day, local_midnight, study_tz

WEEK_STATS_DAYS = 7


@dataclass(frozen=True)
class DayTotal:
    date: date
    study_time: int


@dataclass(frozen=True)
class TodayProgress:
    date: date
    study_time: int
    daily_goal: int
    progress_percent: int
    goal_met: bool
    session_count: int


async def week_stats(db: AsyncSession, user_id: int, now: datetime) -> list[DayTotal]:
    """Study time per local day for the last seven days, oldest first."""
    tz = study_tz()
    today = local_day(now, tz)
    first_day = today - timedelta(days=WEEK_STATS_DAYS - 1)

    result = await db.execute(
        select(StudySession.start_time, StudySession.duration).where(
            StudySession.user_id == user_id,
            StudySession.start_time >= local_midnight(first_day, tz),
            StudySession.start_time < local_midnight(today + timedelta(days=1), tz),
        )
    )
    per_day: dict[date, int] = defaultdict(int)
    for start_time, duration in result.all():
        per_day[local_day(start_time, tz)] += duration

    return [
        DayTotal(date=first_day + timedelta(days=i), study_time=per_day.get(first_day + timedelta(days=i), 0))
        for i in range(WEEK_STATS_DAYS)
    ]


async def subject_stats(db: AsyncSession, user_id: int) -> dict[str, int]:
    """Total study time per subject across the whole ledger."""
    result = await db.execute(
        select(StudySession.subject, func.sum(StudySession.duration))
        .where(StudySession.user_id == user_id)
        .group_by(StudySession.subject)
        .order_by(func.sum(StudySession.duration).desc())
    )
    return {subject: int(total or 0) for subject, total in result.all()}


async def today_progress(db: AsyncSession, user: User, now: datetime) -> TodayProgress:
    """How far the user is toward today's goal."""
    tz = study_tz()
    today = local_day(now, tz)
    result = await db.execute(
        select(func.coalesce(func.sum(StudySession.duration), 0), func.count(StudySession.id)).where(
            StudySession.user_id == user.id,
            StudySession.start_time >= local_midnight(today, tz),
            StudySession.start_time < local_midnight(today + timedelta(days=1), tz),
        )
    )
    studied, count = result.one()
    studied = int(studied or 0)
    goal = user.daily_goal
    percent = min(100, studied * 100 // goal) if goal > 0 else 100
    return TodayProgress(
        date=today,
        study_time=studied,
        daily_goal=goal,
        progress_percent=percent,
        goal_met=studied >= goal,
        session_count=int(count or 0),
    )


async def list_achievements(db: AsyncSession, user_id: int) -> list[Achievement]:
    result = await db.execute(
        select(Achievement).where(Achievement.user_id == user_id).order_by(Achievement.unlocked_at, Achievement.id)
    )
    return list(result.scalars().all())
