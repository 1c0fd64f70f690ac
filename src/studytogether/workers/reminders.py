"""Reminder emails for upcoming scheduled study blocks.

An APScheduler job started with the app looks every few minutes for schedule
occurrences starting within the lead window and sends one reminder per
occurrence (``last_reminder_for`` records which occurrence was reminded).
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from studytogether.config import get_settings
from studytogether.database import session_scope
from studytogether.db.models import StudySchedule, User
from studytogether.email.service import EmailService, get_email_service
from studytogether.study.engine import study_tz
from studytogether.study.schedules import next_occurrence

logger = logging.getLogger(__name__)

TIME_FORMAT = "%Y-%m-%d %H:%M %Z"
JOB_ID = "schedule_reminders"

_scheduler: AsyncIOScheduler | None = None


def _format_local(dt: datetime) -> str:
    return dt.astimezone(study_tz()).strftime(TIME_FORMAT)


async def dispatch_due_reminders(
    db: AsyncSession,
    email_service: EmailService,
    now: datetime,
    lead: timedelta | None = None,
) -> int:
    """Send reminders for occurrences starting in ``[now, now + lead]``. Returns the number sent."""
    lead = lead or timedelta(minutes=get_settings().schedule_reminder_lead_minutes)
    horizon = now + lead

    result = await db.execute(
        select(StudySchedule, User)
        .join(User, User.id == StudySchedule.user_id)
        .where(
            StudySchedule.completed.is_(False),
            User.is_email_verified.is_(True),
            or_(
                StudySchedule.recurring != "none",
                StudySchedule.start_time.between(now, horizon),
            ),
        )
    )

    sent = 0
    for schedule, user in result.all():
        occurrence = next_occurrence(schedule.start_time, schedule.recurring, now)
        if not now <= occurrence <= horizon or schedule.last_reminder_for == occurrence:
            continue

        end = occurrence + (schedule.end_time - schedule.start_time) if schedule.end_time else None
        delivered = await email_service.send_template(
            user.email,
            "session_reminder",
            {
                "username": user.username,
                "title": schedule.title,
                "subject_name": schedule.subject,
                "start_time": _format_local(occurrence),
                "end_time": _format_local(end) if end else None,
            },
        )
        if not delivered:
            logger.warning("Reminder for schedule %d (user %d) was not delivered", schedule.id, user.id)
            continue
        schedule.last_reminder_for = occurrence
        sent += 1

    await db.commit()
    return sent


async def send_schedule_reminders() -> int:
    """Scheduled job: remind users of study blocks starting soon."""
    now = datetime.now(timezone.utc)
    try:
        async with session_scope() as db:
            count = await dispatch_due_reminders(db, get_email_service(), now)
    except Exception:
        logger.exception("Schedule reminder job failed")
        return 0
    if count:
        logger.info("Sent %d schedule reminders", count)
    return count


def start_scheduler() -> AsyncIOScheduler:
    """Start the reminder job on the running event loop."""
    global _scheduler  # noqa: PLW0603
    settings = get_settings()
    scheduler = AsyncIOScheduler(timezone=timezone.utc)
    scheduler.add_job(
        send_schedule_reminders,
        IntervalTrigger(minutes=max(1, settings.schedule_reminder_interval_minutes)),
        id=JOB_ID,
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    scheduler.start()
    _scheduler = scheduler
    logger.info(
        "Reminder scheduler started (every %d min, lead=%d min)",
        settings.schedule_reminder_interval_minutes,
        settings.schedule_reminder_lead_minutes,
    )
    return scheduler


def shutdown_scheduler() -> None:
    """Stop the reminder job if it is running."""
    global _scheduler  # noqa: PLW0603
    if _scheduler is not None and _scheduler.running:
        _scheduler.shutdown(wait=False)
        logger.info("Reminder scheduler stopped")
    _scheduler = None
