"""
HS256 JWT access tokens.

A single shared secret signs and verifies. The token only carries the user id;
everything else is loaded from the account store on each request.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

import jwt

from studytogether.config import get_settings


def create_access_token(user_id: int, now: datetime | None = None) -> str:
    """
    Create an access token for ``user_id``.

    Args:
        user_id: The user's database ID.
        now: Issue time; defaults to the current UTC time.

    Returns:
        Encoded JWT string, valid for ``jwt_access_token_expire_days``.
    """
    settings = get_settings()
    now = now or datetime.now(timezone.utc)
    payload: dict[str, Any] = {
        "sub": str(user_id),
        "iat": now,
        "exp": now + timedelta(days=settings.jwt_access_token_expire_days),
        "iss": settings.jwt_issuer,
        "type": "access",
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def verify_token(token: str, expected_type: str = "access") -> dict[str, Any]:
    """
    Verify and decode a token.

    Raises:
        jwt.InvalidTokenError: If the token is invalid, expired, or of the wrong type.
    """
    settings = get_settings()
    try:
        payload: dict[str, Any] = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
            issuer=settings.jwt_issuer,
            options={"require": ["sub", "exp"]},
        )
    except jwt.ExpiredSignatureError:
        msg = "Token has expired"
        raise jwt.InvalidTokenError(msg) from None

    if payload.get("type") != expected_type:
        msg = f"Expected token type '{expected_type}', got '{payload.get('type')}'"
        raise jwt.InvalidTokenError(msg)

    return payload


def user_id_from_token(token: str) -> int:
    """Decode an access token and return its subject as an int."""
    payload = verify_token(token)
    try:
        return int(payload["sub"])
    except (TypeError, ValueError):
        msg = "Malformed token subject"
        raise jwt.InvalidTokenError(msg) from None
