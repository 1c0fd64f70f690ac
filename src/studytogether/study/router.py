"""Study API endpoints: sessions, schedules, stats and goal."""

from __future__ import annotations

from datetime import datetime

import structlog
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from studytogether.auth.dependencies import get_current_user
from studytogether.db.models import User
from studytogether.dependencies import get_db, request_time
from studytogether.notifications.dispatcher import get_dispatcher
from studytogether.presence.coordinator import get_coordinator
from studytogether.schemas import MessageResponse
from studytogether.study import ledger, schedules, stats
from studytogether.study.schemas import (
    AchievementResponse,
    DayTotalResponse,
    GoalRequest,
    GoalResponse,
    LiveSessionResponse,
    ScheduleCreateRequest,
    ScheduleEnvelope,
    ScheduleListResponse,
    ScheduleResponse,
    ScheduleUpdateRequest,
    SessionListResponse,
    SessionResponse,
    StartSessionRequest,
    StartSessionResponse,
    StatsResponse,
    StopSessionRequest,
    StopSessionResponse,
    StudyTotals,
    TodayResponse,
)

logger = structlog.get_logger()

router = APIRouter(prefix="/api/v1/study", tags=["Study"])


def _totals(user: User, now: datetime) -> StudyTotals:
    weekly, monthly = ledger.current_window_totals(user, now)
    return StudyTotals(
        total_study_time=user.total_study_time,
        weekly_study_time=weekly,
        monthly_study_time=monthly,
    )


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


@router.post("/session/start", response_model=StartSessionResponse)
async def start_session(
    body: StartSessionRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    now: datetime = Depends(request_time),
):
    """Hand back a live session stamp. Nothing is stored until the session stops."""
    if body.schedule_id is not None:
        await schedules.get_owned_schedule(db, user.id, body.schedule_id)
    subject = (body.subject or "").strip() or ledger.DEFAULT_SUBJECT
    return StartSessionResponse(
        session=LiveSessionResponse(
            user_id=user.id,
            subject=subject,
            schedule_id=body.schedule_id,
            start_time=now,
        )
    )


@router.post("/session/stop", response_model=StopSessionResponse)
async def stop_session(
    body: StopSessionRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    now: datetime = Depends(request_time),
):
    """Persist the session and run streak, achievement and schedule updates."""
    outcome = await ledger.record_session(
        db,
        user.id,
        start_time=body.start_time,
        end_time=now,
        now=now,
        subject=body.subject,
        notes=body.notes or "",
        schedule_id=body.schedule_id,
    )

    await get_coordinator().reconcile_stopped(user.id, now=now)
    if outcome.new_achievements:
        get_dispatcher().notify_achievements(outcome.user, outcome.new_achievements)

    today = await stats.today_progress(db, outcome.user, now)
    return StopSessionResponse(
        session=SessionResponse.model_validate(outcome.session),
        new_achievements=[a.value for a in outcome.new_achievements],
        stats=_totals(outcome.user, now),
        today=TodayResponse.model_validate(today),
    )


@router.get("/sessions", response_model=SessionListResponse)
async def list_sessions(
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Recorded sessions, most recent first."""
    rows = await ledger.list_sessions(db, user.id, limit=limit, offset=offset)
    total = await ledger.count_sessions(db, user.id)
    return SessionListResponse(
        sessions=[SessionResponse.model_validate(r) for r in rows],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.delete("/sessions/{session_id}", response_model=MessageResponse)
async def delete_session(
    session_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    now: datetime = Depends(request_time),
):
    await ledger.delete_session(db, user.id, session_id, now=now)
    return MessageResponse(message="Session deleted successfully")


# ---------------------------------------------------------------------------
# Schedules
# ---------------------------------------------------------------------------


@router.get("/schedules", response_model=ScheduleListResponse)
async def list_schedules(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    now: datetime = Depends(request_time),
):
    rows = await schedules.list_schedules(db, user.id)
    return ScheduleListResponse(schedules=[ScheduleResponse.from_schedule(s, now) for s in rows])


@router.post("/schedule", response_model=ScheduleEnvelope)
async def create_schedule(
    body: ScheduleCreateRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    now: datetime = Depends(request_time),
):
    schedule = await schedules.create_schedule(
        db,
        user.id,
        title=body.title,
        subject=body.subject,
        start_time=body.start_time,
        end_time=body.end_time,
        recurring=body.recurring,
        now=now,
    )
    await db.commit()
    return ScheduleEnvelope(
        message="Schedule created successfully",
        schedule=ScheduleResponse.from_schedule(schedule, now),
    )


@router.put("/schedule/{schedule_id}", response_model=ScheduleEnvelope)
async def update_schedule(
    schedule_id: int,
    body: ScheduleUpdateRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    now: datetime = Depends(request_time),
):
    changes = body.model_dump(exclude_unset=True)
    schedule = await schedules.update_schedule(db, user.id, schedule_id, now=now, **changes)
    await db.commit()
    return ScheduleEnvelope(
        message="Schedule updated successfully",
        schedule=ScheduleResponse.from_schedule(schedule, now),
    )


@router.delete("/schedule/{schedule_id}", response_model=MessageResponse)
async def delete_schedule(
    schedule_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await schedules.delete_schedule(db, user.id, schedule_id)
    await db.commit()
    return MessageResponse(message="Schedule deleted successfully")


# ---------------------------------------------------------------------------
# Stats / goal
# ---------------------------------------------------------------------------


@router.get("/stats", response_model=StatsResponse)
async def get_stats(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    now: datetime = Depends(request_time),
):
    """Totals, streaks, a seven-day breakdown and per-subject totals."""
    totals = _totals(user, now)
    week = await stats.week_stats(db, user.id, now)
    subjects = await stats.subject_stats(db, user.id)
    achievements = await stats.list_achievements(db, user.id)
    schedule_rows = await schedules.list_schedules(db, user.id)
    return StatsResponse(
        total_study_time=totals.total_study_time,
        weekly_study_time=totals.weekly_study_time,
        monthly_study_time=totals.monthly_study_time,
        current_streak=user.current_streak,
        longest_streak=user.longest_streak,
        daily_goal=user.daily_goal,
        week_stats=[DayTotalResponse.model_validate(d) for d in week],
        subject_stats=subjects,
        total_sessions=await ledger.count_sessions(db, user.id),
        achievements=[AchievementResponse.from_row(a) for a in achievements],
        schedules=[ScheduleResponse.from_schedule(s, now) for s in schedule_rows],
    )


@router.get("/today", response_model=TodayResponse)
async def get_today(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    now: datetime = Depends(request_time),
):
    progress = await stats.today_progress(db, user, now)
    return TodayResponse.model_validate(progress)


@router.put("/goal", response_model=GoalResponse)
async def set_goal(
    body: GoalRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    now: datetime = Depends(request_time),
):
    updated = await ledger.set_daily_goal(db, user.id, body.daily_goal, now=now)
    logger.info("daily_goal_updated", user_id=user.id, daily_goal=body.daily_goal)
    return GoalResponse(daily_goal=updated.daily_goal)
