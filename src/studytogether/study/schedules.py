"""Schedule tracker: planned study blocks and their progress.

A schedule with an ``end_time`` plans ``end_time - start_time`` of study.
Sessions applied to it accumulate as completion records; once their summed
duration reaches the plan, ``completed`` flips to True and never flips back.
Open-ended schedules (no ``end_time``) never auto-complete.
"""

from __future__ import annotations

import calendar
from datetime import datetime, timedelta, tzinfo
from typing import TYPE_CHECKING

import structlog
from sqlalchemy import select

from studytogether.db.models import RECURRENCE_CHOICES, ScheduleCompletion, StudySchedule
from studytogether.errors import NotFoundError, ValidationError
from studytogether.study.engine import study_tz

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = structlog.get_logger()

_UNSET = object()


# ---------------------------------------------------------------------------
# Progress rules
# ---------------------------------------------------------------------------


def planned_duration(schedule: StudySchedule) -> int | None:
    """Planned length in ms, or None for open-ended schedules."""
    if schedule.end_time is None:
        return None
    return (schedule.end_time - schedule.start_time) // timedelta(milliseconds=1)


def total_completed(schedule: StudySchedule) -> int:
    """Sum of all completion durations (ms)."""
    return sum(c.duration for c in schedule.completed_sessions)


def refresh_completion(schedule: StudySchedule, now: datetime) -> bool:
    """Set ``completed`` if the plan is met. Returns True only on the flip."""
    if schedule.completed:
        return False
    planned = planned_duration(schedule)
    if planned is None or total_completed(schedule) < planned:
        return False
    schedule.completed = True
    schedule.completed_at = now
    return True


def apply_session_to_schedule(
    schedule: StudySchedule,
    duration: int,
    actual_start: datetime,
    actual_end: datetime,
    now: datetime,
) -> ScheduleCompletion:
    """Record a sub-session against the schedule and re-check completion."""
    completion = ScheduleCompletion(
        date=now,
        duration=duration,
        actual_start_time=actual_start,
        actual_end_time=actual_end,
    )
    schedule.completed_sessions.append(completion)
    schedule.updated_at = now
    if refresh_completion(schedule, now):
        logger.info("schedule_completed", schedule_id=schedule.id, user_id=schedule.user_id)
    return completion


# ---------------------------------------------------------------------------
# Recurrence
# ---------------------------------------------------------------------------


def _add_months(dt: datetime, months: int) -> datetime:
    """Shift by whole months, clamping the day to the target month's length."""
    month_index = dt.month - 1 + months
    year = dt.year + month_index // 12
    month = month_index % 12 + 1
    day = min(dt.day, calendar.monthrange(year, month)[1])
    return dt.replace(year=year, month=month, day=day)


def next_occurrence(
    start_time: datetime,
    recurring: str,
    now: datetime,
    tz: tzinfo | None = None,
) -> datetime:
    """First occurrence at or after ``now`` (or ``start_time`` itself if later).

    Recurrence steps in local wall-clock time so a 09:00 daily block stays
    at 09:00 across DST changes.
    """
    if recurring == "none" or start_time >= now:
        return start_time

    tz = tz or study_tz()
    local_start = start_time.astimezone(tz)
    local_now = now.astimezone(tz)

    if recurring in ("daily", "weekly"):
        step_days = 1 if recurring == "daily" else 7
        elapsed_days = (local_now.date() - local_start.date()).days
        k = max(0, elapsed_days // step_days)
        candidate = local_start + timedelta(days=k * step_days)
        while candidate < local_now:
            k += 1
            candidate = local_start + timedelta(days=k * step_days)
        return candidate.astimezone(start_time.tzinfo)

    if recurring == "monthly":
        months = (local_now.year - local_start.year) * 12 + (local_now.month - local_start.month)
        k = max(0, months - 1)
        candidate = _add_months(local_start, k)
        while candidate < local_now:
            k += 1
            candidate = _add_months(local_start, k)
        return candidate.astimezone(start_time.tzinfo)

    msg = f"Unknown recurrence: {recurring}"
    raise ValueError(msg)


# ---------------------------------------------------------------------------
# CRUD
# ---------------------------------------------------------------------------


def _validate(start_time: datetime, end_time: datetime | None, recurring: str) -> None:
    if recurring not in RECURRENCE_CHOICES:
        msg = f"recurring must be one of: {', '.join(RECURRENCE_CHOICES)}"
        raise ValidationError(msg)
    if end_time is not None and end_time < start_time:
        msg = "Schedule end time must not be before its start time"
        raise ValidationError(msg)


async def get_owned_schedule(db: AsyncSession, user_id: int, schedule_id: int) -> StudySchedule:
    """Load a schedule belonging to ``user_id`` or raise NotFoundError."""
    result = await db.execute(
        select(StudySchedule).where(
            StudySchedule.id == schedule_id,
            StudySchedule.user_id == user_id,
        )
    )
    schedule = result.scalar_one_or_none()
    if schedule is None:
        msg = "Schedule not found"
        raise NotFoundError(msg)
    return schedule


async def list_schedules(db: AsyncSession, user_id: int) -> list[StudySchedule]:
    result = await db.execute(
        select(StudySchedule)
        .where(StudySchedule.user_id == user_id)
        .order_by(StudySchedule.start_time, StudySchedule.id)
    )
    return list(result.scalars().all())


async def create_schedule(
    db: AsyncSession,
    user_id: int,
    *,
    title: str,
    subject: str,
    start_time: datetime,
    end_time: datetime | None = None,
    recurring: str = "none",
    now: datetime,
) -> StudySchedule:
    """Create a schedule owned by ``user_id``."""
    if not title.strip() or not subject.strip():
        msg = "title and subject are required"
        raise ValidationError(msg)
    _validate(start_time, end_time, recurring)

    schedule = StudySchedule(
        user_id=user_id,
        title=title.strip(),
        subject=subject.strip(),
        start_time=start_time,
        end_time=end_time,
        recurring=recurring,
        completed=False,
        created_at=now,
        updated_at=now,
        completed_sessions=[],
    )
    db.add(schedule)
    await db.flush()
    logger.info("schedule_created", schedule_id=schedule.id, user_id=user_id, recurring=recurring)
    return schedule


async def update_schedule(
    db: AsyncSession,
    user_id: int,
    schedule_id: int,
    *,
    title: str | None = None,
    subject: str | None = None,
    start_time: datetime | None = None,
    end_time: datetime | None | object = _UNSET,
    recurring: str | None = None,
    now: datetime,
) -> StudySchedule:
    """Patch a schedule. Fields left as None keep their value.

    Completion is re-evaluated afterwards; it can be reached by shrinking the
    plan but is never revoked by growing it.
    """
    schedule = await get_owned_schedule(db, user_id, schedule_id)

    new_start = start_time or schedule.start_time
    new_end = schedule.end_time if end_time is _UNSET else end_time
    new_recurring = recurring or schedule.recurring
    _validate(new_start, new_end, new_recurring)  # type: ignore[arg-type]

    if title:
        schedule.title = title.strip()
    if subject:
        schedule.subject = subject.strip()
    if start_time is not None and start_time != schedule.start_time:
        schedule.start_time = start_time
        schedule.last_reminder_for = None
    schedule.end_time = new_end  # type: ignore[assignment]
    schedule.recurring = new_recurring
    schedule.updated_at = now

    refresh_completion(schedule, now)
    await db.flush()
    return schedule


async def delete_schedule(db: AsyncSession, user_id: int, schedule_id: int) -> None:
    schedule = await get_owned_schedule(db, user_id, schedule_id)
    await db.delete(schedule)
    await db.flush()
    logger.info("schedule_deleted", schedule_id=schedule_id, user_id=user_id)
