"""Friend graph operations.

Friendships are stored as two directed rows (A->B and B->A) written and
deleted together, so either side can list its friends with one query.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

import structlog
from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError

from studytogether.db.models import Friendship, User
from studytogether.errors import AuthError, ConflictError, NotFoundError
from studytogether.social.invite_codes import is_well_formed, normalize_invite_code

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = structlog.get_logger()


async def get_friend_ids(db: AsyncSession, user_id: int) -> list[int]:
    result = await db.execute(select(Friendship.friend_id).where(Friendship.user_id == user_id))
    return list(result.scalars().all())


async def list_friends(db: AsyncSession, user_id: int) -> list[User]:
    """Friends of ``user_id`` in the order the friendships were made."""
    result = await db.execute(
        select(User)
        .join(Friendship, Friendship.friend_id == User.id)
        .where(Friendship.user_id == user_id)
        .order_by(Friendship.created_at, Friendship.id)
    )
    return list(result.scalars().all())


async def are_friends(db: AsyncSession, user_id: int, other_id: int) -> bool:
    result = await db.execute(
        select(Friendship.id).where(Friendship.user_id == user_id, Friendship.friend_id == other_id)
    )
    return result.scalar_one_or_none() is not None


async def find_by_invite_code(db: AsyncSession, code: str) -> User | None:
    code = normalize_invite_code(code)
    if not is_well_formed(code):
        return None
    result = await db.execute(select(User).where(User.friend_invite_code == code))
    return result.scalar_one_or_none()


async def add_friend(db: AsyncSession, user: User, invite_code: str, *, now: datetime) -> User:
    """
    Befriend the owner of ``invite_code``.

    Raises:
        NotFoundError: No user holds the code.
        ConflictError: Self-add (400) or already friends (409).
    """
    friend = await find_by_invite_code(db, invite_code)
    if friend is None:
        msg = "Invalid invite code"
        raise NotFoundError(msg)
    if friend.id == user.id:
        msg = "Cannot add yourself as a friend"
        raise ConflictError(msg, status_code=400)
    if await are_friends(db, user.id, friend.id):
        msg = "User is already your friend"
        raise ConflictError(msg)

    db.add_all([
        Friendship(user_id=user.id, friend_id=friend.id, created_at=now),
        Friendship(user_id=friend.id, friend_id=user.id, created_at=now),
    ])
    try:
        await db.commit()
    except IntegrityError as e:
        await db.rollback()
        msg = "User is already your friend"
        raise ConflictError(msg) from e

    logger.info("friend_added", user_id=user.id, friend_id=friend.id)
    return friend


async def remove_friend(db: AsyncSession, user_id: int, friend_id: int) -> None:
    """Delete both directions. Raises NotFoundError if the two are not friends."""
    result = await db.execute(
        delete(Friendship).where(
            ((Friendship.user_id == user_id) & (Friendship.friend_id == friend_id))
            | ((Friendship.user_id == friend_id) & (Friendship.friend_id == user_id))
        )
    )
    if not result.rowcount:
        await db.rollback()
        msg = "Not friends with this user"
        raise NotFoundError(msg)
    await db.commit()
    logger.info("friend_removed", user_id=user_id, friend_id=friend_id)


async def get_visible_profile(db: AsyncSession, viewer_id: int, target_id: int) -> User:
    """
    Load ``target_id`` if the viewer may see it (self or a friend).

    Raises:
        NotFoundError: Unknown user.
        AuthError: 403 when the viewer is not a friend.
    """
    result = await db.execute(select(User).where(User.id == target_id))
    target = result.scalar_one_or_none()
    if target is None:
        msg = "User not found"
        raise NotFoundError(msg)
    if target_id != viewer_id and not await are_friends(db, viewer_id, target_id):
        msg = "You can only view friends' profiles"
        raise AuthError(msg, status_code=403)
    return target
