"""Authentication router: all /api/v1/auth/* endpoints."""

from __future__ import annotations

from datetime import datetime

import structlog
from fastapi import APIRouter, Depends
from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncSession

from studytogether.auth import service
from studytogether.auth.dependencies import get_current_user
from studytogether.auth.jwt import create_access_token
from studytogether.auth.schemas import (
    LoginRequest,
    MeResponse,
    RegisterRequest,
    RegisterResponse,
    ResendOtpRequest,
    TokenResponse,
    UserResponse,
    VerifyOtpRequest,
)
from studytogether.config import get_settings
from studytogether.db.models import User
from studytogether.dependencies import get_db, get_redis_dep, request_time
from studytogether.schemas import MessageResponse
from studytogether.social.schemas import FriendSummary
from studytogether.social.service import list_friends
from studytogether.study import ledger, schedules, stats
from studytogether.study.schemas import AchievementResponse, ScheduleResponse, SessionResponse

logger = structlog.get_logger()

router = APIRouter(prefix="/api/v1/auth", tags=["Authentication"])


def _user_fields(user: User, now: datetime) -> dict:
    weekly, monthly = ledger.current_window_totals(user, now)
    return {
        "id": user.id,
        "username": user.username,
        "email": user.email,
        "avatar_url": user.avatar_url,
        "friend_invite_code": user.friend_invite_code,
        "total_study_time": user.total_study_time,
        "weekly_study_time": weekly,
        "monthly_study_time": monthly,
        "daily_goal": user.daily_goal,
        "current_streak": user.current_streak,
        "longest_streak": user.longest_streak,
        "last_study_date": user.last_study_date,
        "is_email_verified": user.is_email_verified,
        "created_at": user.created_at,
    }


@router.post("/register", response_model=RegisterResponse, status_code=201)
async def register(
    body: RegisterRequest,
    db: AsyncSession = Depends(get_db),
    now: datetime = Depends(request_time),
):
    """Create an unverified account and email a 6-digit code."""
    user = await service.register_user(
        db,
        username=body.username,
        email=body.email,
        password=body.password,
        now=now,
    )
    return RegisterResponse(user_id=user.id, email=user.email)


@router.post("/verify-otp", response_model=TokenResponse)
async def verify_otp(
    body: VerifyOtpRequest,
    db: AsyncSession = Depends(get_db),
    redis: Redis = Depends(get_redis_dep),
    now: datetime = Depends(request_time),
):
    user = await service.verify_otp(db, redis, user_id=body.user_id, otp=body.otp, now=now)
    return TokenResponse(
        message="Email verified successfully",
        token=create_access_token(user.id, now=now),
        user=UserResponse(**_user_fields(user, now)),
    )


@router.post("/resend-otp", response_model=MessageResponse)
async def resend_otp(
    body: ResendOtpRequest,
    db: AsyncSession = Depends(get_db),
    redis: Redis = Depends(get_redis_dep),
    now: datetime = Depends(request_time),
):
    await service.resend_otp(db, redis, user_id=body.user_id, now=now)
    return MessageResponse(message="A new verification code has been sent")


@router.post("/login", response_model=TokenResponse)
async def login(
    body: LoginRequest,
    db: AsyncSession = Depends(get_db),
    redis: Redis = Depends(get_redis_dep),
    now: datetime = Depends(request_time),
):
    user = await service.authenticate_user(db, redis, email=body.email, password=body.password, now=now)
    logger.info("user_login", user_id=user.id)
    return TokenResponse(
        message="Login successful",
        token=create_access_token(user.id, now=now),
        user=UserResponse(**_user_fields(user, now)),
    )


@router.get("/me", response_model=MeResponse)
async def me(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    now: datetime = Depends(request_time),
):
    """The caller's account with friends, schedules, achievements and recent sessions."""
    friends = await list_friends(db, user.id)
    achievements = await stats.list_achievements(db, user.id)
    plans = await schedules.list_schedules(db, user.id)
    sessions = await ledger.list_sessions(db, user.id, limit=get_settings().recent_sessions_limit)
    return MeResponse(
        **_user_fields(user, now),
        friends=[FriendSummary.model_validate(f) for f in friends],
        achievements=[AchievementResponse.from_row(a) for a in achievements],
        study_schedules=[ScheduleResponse.from_schedule(s, now) for s in plans],
        study_sessions=[SessionResponse.model_validate(s) for s in sessions],
    )
