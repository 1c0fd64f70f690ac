"""Request/response schemas for friend endpoints."""

from __future__ import annotations

from datetime import datetime

from pydantic import EmailStr, Field

from studytogether.schemas import CamelModel
from studytogether.study.schemas import ScheduleResponse, SessionResponse


class AddFriendRequest(CamelModel):
    invite_code: str = Field(..., min_length=1, max_length=32)


class InviteRequest(CamelModel):
    email: EmailStr


class FriendSummary(CamelModel):
    id: int
    username: str
    email: str
    friend_invite_code: str
    total_study_time: int


class FriendDetail(FriendSummary):
    """A friend with live status and their latest sessions."""

    weekly_study_time: int
    monthly_study_time: int
    current_streak: int
    is_online: bool
    is_studying: bool
    current_subject: str | None = None
    studying_since: datetime | None = None
    recent_sessions: list[SessionResponse]


class AddFriendResponse(CamelModel):
    message: str = "Friend added successfully"
    friend: FriendSummary


class FriendListResponse(CamelModel):
    friends: list[FriendDetail]


class ProfileResponse(CamelModel):
    id: int
    username: str
    avatar_url: str | None = None
    total_study_time: int
    weekly_study_time: int
    monthly_study_time: int
    current_streak: int
    longest_streak: int
    study_schedules: list[ScheduleResponse]
    recent_sessions: list[SessionResponse]
