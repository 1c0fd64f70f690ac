"""Request/response schemas for study endpoints."""

from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Literal

from pydantic import Field, field_validator

from studytogether.db.models import Achievement, StudySchedule
from studytogether.schemas import CamelModel
from studytogether.study.engine import achievement_title
from studytogether.study.schedules import next_occurrence, planned_duration, total_completed

CalendarDate = date

Recurrence = Literal["none", "daily", "weekly", "monthly"]


def _as_utc(v: datetime | None) -> datetime | None:
    """Naive timestamps from clients are read as UTC."""
    if v is not None and v.tzinfo is None:
        return v.replace(tzinfo=timezone.utc)
    return v


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


class StartSessionRequest(CamelModel):
    subject: str | None = Field(None, max_length=100)
    schedule_id: int | None = None


class LiveSessionResponse(CamelModel):
    """A session in progress. Not persisted until it is stopped."""

    user_id: int
    subject: str
    schedule_id: int | None = None
    start_time: datetime


class StartSessionResponse(CamelModel):
    message: str = "Study session started"
    session: LiveSessionResponse


class StopSessionRequest(CamelModel):
    start_time: datetime
    subject: str | None = Field(None, max_length=100)
    schedule_id: int | None = None
    notes: str | None = Field(None, max_length=2000)

    @field_validator("start_time")
    @classmethod
    def _assume_utc(cls, v: datetime | None) -> datetime | None:
        return _as_utc(v)


class SessionResponse(CamelModel):
    id: int
    start_time: datetime
    end_time: datetime
    duration: int
    subject: str
    notes: str
    created_at: datetime


class SessionListResponse(CamelModel):
    sessions: list[SessionResponse]
    total: int
    limit: int
    offset: int


class StudyTotals(CamelModel):
    total_study_time: int
    weekly_study_time: int
    monthly_study_time: int


class TodayResponse(CamelModel):
    date: CalendarDate
    study_time: int
    daily_goal: int
    progress_percent: int
    goal_met: bool
    session_count: int


class StopSessionResponse(CamelModel):
    message: str = "Study session saved"
    session: SessionResponse
    new_achievements: list[str]
    stats: StudyTotals
    today: TodayResponse


# ---------------------------------------------------------------------------
# Schedules
# ---------------------------------------------------------------------------


class ScheduleCreateRequest(CamelModel):
    title: str = Field(..., min_length=1, max_length=200)
    subject: str = Field(..., min_length=1, max_length=100)
    start_time: datetime
    end_time: datetime | None = None
    recurring: Recurrence = "none"

    @field_validator("start_time", "end_time")
    @classmethod
    def _assume_utc(cls, v: datetime | None) -> datetime | None:
        return _as_utc(v)


class ScheduleUpdateRequest(CamelModel):
    """Partial update. Omitted fields keep their value; ``endTime: null`` clears the end."""

    title: str | None = Field(None, min_length=1, max_length=200)
    subject: str | None = Field(None, min_length=1, max_length=100)
    start_time: datetime | None = None
    end_time: datetime | None = None
    recurring: Recurrence | None = None

    @field_validator("start_time", "end_time")
    @classmethod
    def _assume_utc(cls, v: datetime | None) -> datetime | None:
        return _as_utc(v)


class CompletionResponse(CamelModel):
    id: int
    date: datetime
    duration: int
    actual_start_time: datetime
    actual_end_time: datetime


class ScheduleResponse(CamelModel):
    id: int
    title: str
    subject: str
    start_time: datetime
    end_time: datetime | None
    recurring: str
    completed: bool
    completed_at: datetime | None
    completed_sessions: list[CompletionResponse]
    total_completed: int
    planned_duration: int | None
    next_occurrence: datetime

    @classmethod
    def from_schedule(cls, schedule: StudySchedule, now: datetime) -> ScheduleResponse:
        return cls(
            id=schedule.id,
            title=schedule.title,
            subject=schedule.subject,
            start_time=schedule.start_time,
            end_time=schedule.end_time,
            recurring=schedule.recurring,
            completed=schedule.completed,
            completed_at=schedule.completed_at,
            completed_sessions=[CompletionResponse.model_validate(c) for c in schedule.completed_sessions],
            total_completed=total_completed(schedule),
            planned_duration=planned_duration(schedule),
            next_occurrence=next_occurrence(schedule.start_time, schedule.recurring, now),
        )


class ScheduleEnvelope(CamelModel):
    message: str
    schedule: ScheduleResponse


class ScheduleListResponse(CamelModel):
    schedules: list[ScheduleResponse]


# ---------------------------------------------------------------------------
# Stats / goal
# ---------------------------------------------------------------------------


class AchievementResponse(CamelModel):
    type: str
    title: str
    unlocked_at: datetime

    @classmethod
    def from_row(cls, row: Achievement) -> AchievementResponse:
        return cls(type=row.type, title=achievement_title(row.type), unlocked_at=row.unlocked_at)


class DayTotalResponse(CamelModel):
    date: CalendarDate
    study_time: int


class StatsResponse(CamelModel):
    total_study_time: int
    weekly_study_time: int
    monthly_study_time: int
    current_streak: int
    longest_streak: int
    daily_goal: int
    week_stats: list[DayTotalResponse]
    subject_stats: dict[str, int]
    total_sessions: int
    achievements: list[AchievementResponse]
    schedules: list[ScheduleResponse]


class GoalRequest(CamelModel):
    daily_goal: int


class GoalResponse(CamelModel):
    message: str = "Daily goal updated"
    daily_goal: int
