"""Request/response schemas for authentication endpoints."""

from __future__ import annotations

from datetime import date, datetime

from pydantic import EmailStr, Field, field_validator

from studytogether.schemas import CamelModel
from studytogether.social.schemas import FriendSummary
from studytogether.study.schemas import AchievementResponse, ScheduleResponse, SessionResponse


class RegisterRequest(CamelModel):
    username: str = Field(..., min_length=3, max_length=20, pattern=r"^[A-Za-z0-9_.-]+$")
    email: EmailStr
    password: str = Field(..., min_length=1, max_length=128)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        return v.lower().strip()


class RegisterResponse(CamelModel):
    message: str = "Registration successful. Check your email for the verification code."
    user_id: int
    email: str


class VerifyOtpRequest(CamelModel):
    user_id: int
    otp: str = Field(..., min_length=6, max_length=6, pattern=r"^\d{6}$")


class ResendOtpRequest(CamelModel):
    user_id: int


class LoginRequest(CamelModel):
    email: EmailStr
    password: str = Field(..., min_length=1, max_length=128)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        return v.lower().strip()


class UserResponse(CamelModel):
    """The caller's own account."""

    id: int
    username: str
    email: str
    avatar_url: str | None = None
    friend_invite_code: str
    total_study_time: int
    weekly_study_time: int
    monthly_study_time: int
    daily_goal: int
    current_streak: int
    longest_streak: int
    last_study_date: date | None = None
    is_email_verified: bool
    created_at: datetime


class TokenResponse(CamelModel):
    message: str
    token: str
    user: UserResponse


class MeResponse(UserResponse):
    friends: list[FriendSummary]
    achievements: list[AchievementResponse]
    study_schedules: list[ScheduleResponse]
    study_sessions: list[SessionResponse]
