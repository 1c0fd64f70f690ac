"""FastAPI authentication dependencies."""

from __future__ import annotations

import jwt
from fastapi import Depends, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from studytogether.auth.jwt import user_id_from_token
from studytogether.auth.service import get_user_by_id
from studytogether.database import get_session
from studytogether.db.models import User
from studytogether.errors import AuthError

_bearer = HTTPBearer(auto_error=False)


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Security(_bearer),
    db: AsyncSession = Depends(get_session),
) -> User:
    """
    Resolve the bearer token to a verified user.

    Raises AuthError (401) for a missing, invalid or expired token, or a
    user that no longer exists; 403 if the email is not verified yet.
    """
    if credentials is None:
        msg = "Access token required"
        raise AuthError(msg)
    try:
        user_id = user_id_from_token(credentials.credentials)
    except jwt.InvalidTokenError as e:
        raise AuthError(str(e)) from e

    user = await get_user_by_id(db, user_id)
    if user is None:
        msg = "User not found"
        raise AuthError(msg)
    if not user.is_email_verified:
        msg = "Please verify your email first"
        raise AuthError(msg, status_code=403, extra={"needsVerification": True, "userId": user.id})
    return user
