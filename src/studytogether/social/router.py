"""Friend endpoints: add/remove by invite code, list, profile, email invite."""

from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from studytogether.auth.dependencies import get_current_user
from studytogether.db.models import User
from studytogether.dependencies import get_db, request_time
from studytogether.notifications.dispatcher import get_dispatcher
from studytogether.presence.coordinator import get_coordinator
from studytogether.schemas import MessageResponse
from studytogether.social import service
from studytogether.social.schemas import (
    AddFriendRequest,
    AddFriendResponse,
    FriendDetail,
    FriendListResponse,
    FriendSummary,
    InviteRequest,
    ProfileResponse,
)
from studytogether.study import ledger, schedules
from studytogether.study.schemas import ScheduleResponse, SessionResponse

router = APIRouter(prefix="/api/v1/users", tags=["Friends"])

FRIEND_RECENT_SESSIONS = 5
PROFILE_RECENT_SESSIONS = 10


@router.post("/add-friend", response_model=AddFriendResponse)
async def add_friend(
    body: AddFriendRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    now: datetime = Depends(request_time),
):
    friend = await service.add_friend(db, user, body.invite_code, now=now)
    await get_coordinator().link_friends(user.id, friend.id)
    return AddFriendResponse(friend=FriendSummary.model_validate(friend))


@router.delete("/remove-friend/{friend_id}", response_model=MessageResponse)
async def remove_friend(
    friend_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await service.remove_friend(db, user.id, friend_id)
    await get_coordinator().unlink_friends(user.id, friend_id)
    return MessageResponse(message="Friend removed successfully")


@router.get("/friends", response_model=FriendListResponse)
async def list_friends(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    now: datetime = Depends(request_time),
):
    """Friends with their totals, live status and last few sessions."""
    coordinator = get_coordinator()
    friends = []
    for friend in await service.list_friends(db, user.id):
        weekly, monthly = ledger.current_window_totals(friend, now)
        live = coordinator.live_session(friend.id)
        recent = await ledger.list_sessions(db, friend.id, limit=FRIEND_RECENT_SESSIONS)
        friends.append(
            FriendDetail(
                id=friend.id,
                username=friend.username,
                email=friend.email,
                friend_invite_code=friend.friend_invite_code,
                total_study_time=friend.total_study_time,
                weekly_study_time=weekly,
                monthly_study_time=monthly,
                current_streak=friend.current_streak,
                is_online=coordinator.is_online(friend.id),
                is_studying=live is not None,
                current_subject=live.subject if live else None,
                studying_since=live.start_time if live else None,
                recent_sessions=[SessionResponse.model_validate(s) for s in recent],
            )
        )
    return FriendListResponse(friends=friends)


@router.get("/profile/{user_id}", response_model=ProfileResponse)
async def get_profile(
    user_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    now: datetime = Depends(request_time),
):
    """Another user's profile; only for yourself or a friend."""
    target = await service.get_visible_profile(db, user.id, user_id)
    weekly, monthly = ledger.current_window_totals(target, now)
    recent = await ledger.list_sessions(db, target.id, limit=PROFILE_RECENT_SESSIONS)
    plans = await schedules.list_schedules(db, target.id)
    return ProfileResponse(
        id=target.id,
        username=target.username,
        avatar_url=target.avatar_url,
        total_study_time=target.total_study_time,
        weekly_study_time=weekly,
        monthly_study_time=monthly,
        current_streak=target.current_streak,
        longest_streak=target.longest_streak,
        study_schedules=[ScheduleResponse.from_schedule(s, now) for s in plans],
        recent_sessions=[SessionResponse.model_validate(s) for s in recent],
    )


@router.post("/invite", response_model=MessageResponse, status_code=202)
async def invite_by_email(
    body: InviteRequest,
    user: User = Depends(get_current_user),
):
    """Queue an invitation email carrying the caller's invite code."""
    get_dispatcher().notify_friend_invite(user, body.email)
    return MessageResponse(message="Invitation sent")
