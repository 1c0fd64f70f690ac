"""
Authentication business logic.

Handles registration with email OTP verification, login with account
lockout, and user lookups.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

import structlog
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from studytogether.auth.otp import generate_otp, hash_otp, otp_expiry, otp_matches
from studytogether.auth.password import (
    PasswordStrengthError,
    check_needs_rehash,
    hash_password,
    validate_password_strength,
    verify_password,
)
from studytogether.config import get_settings
from studytogether.db.models import User
from studytogether.email.service import get_email_service
from studytogether.errors import (
    AuthError,
    ConflictError,
    DependencyError,
    NotFoundError,
    RateLimitedError,
    ValidationError,
)
from studytogether.redis_client import incr_with_ttl, redis_key
from studytogether.social.invite_codes import generate_unique_invite_code

if TYPE_CHECKING:
    from redis.asyncio import Redis
    from sqlalchemy.ext.asyncio import AsyncSession

logger = structlog.get_logger()


# ---------------------------------------------------------------------------
# User queries
# ---------------------------------------------------------------------------


async def get_user_by_id(db: AsyncSession, user_id: int) -> User | None:
    """Fetch a user by ID."""
    result = await db.execute(select(User).where(User.id == user_id))
    return result.scalar_one_or_none()


async def get_user_by_email(db: AsyncSession, email: str) -> User | None:
    """Fetch a user by email (case-insensitive)."""
    result = await db.execute(select(User).where(func.lower(User.email) == email.lower()))
    return result.scalar_one_or_none()


async def get_user_by_username(db: AsyncSession, username: str) -> User | None:
    result = await db.execute(select(User).where(func.lower(User.username) == username.lower()))
    return result.scalar_one_or_none()


# ---------------------------------------------------------------------------
# OTP delivery
# ---------------------------------------------------------------------------


def _issue_otp(user: User, now: datetime) -> str:
    """Put a fresh code on the user and return it in clear for the email."""
    otp = generate_otp()
    user.email_verification_otp = hash_otp(otp)
    user.otp_expires_at = otp_expiry(now, get_settings().otp_ttl_minutes)
    return otp


async def _send_otp(user: User, otp: str) -> bool:
    """Deliver the verification code. Any failure on the send path reports False."""
    try:
        return await get_email_service().send_template(
            user.email,
            "otp_verification",
            {
                "username": user.username,
                "otp": otp,
                "expires_minutes": get_settings().otp_ttl_minutes,
            },
        )
    except Exception:
        logger.exception("otp_email_error", user_id=user.id)
        return False


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------


async def register_user(
    db: AsyncSession,
    *,
    username: str,
    email: str,
    password: str,
    now: datetime,
) -> User:
    """
    Create an unverified account and email it a verification code.

    The row is committed before sending; if delivery fails it is removed
    again and DependencyError is raised.

    Raises:
        ValidationError: Weak password.
        ConflictError: Email or username already taken.
        DependencyError: The verification email could not be sent.
    """
    try:
        validate_password_strength(password)
    except PasswordStrengthError as e:
        raise ValidationError(str(e)) from e

    email = email.lower().strip()
    username = username.strip()

    if await get_user_by_email(db, email) is not None:
        msg = "Email already registered"
        raise ConflictError(msg, extra={"field": "email"})
    if await get_user_by_username(db, username) is not None:
        msg = "Username already taken"
        raise ConflictError(msg, extra={"field": "username"})

    user = User(
        username=username,
        email=email,
        password_hash=hash_password(password),
        friend_invite_code=await generate_unique_invite_code(db),
        daily_goal=get_settings().default_daily_goal_ms,
        is_email_verified=False,
        created_at=now,
        updated_at=now,
    )
    otp = _issue_otp(user, now)
    db.add(user)
    try:
        await db.commit()
    except IntegrityError as e:
        await db.rollback()
        msg = "User with this email or username already exists"
        raise ConflictError(msg) from e

    logger.info("user_created", user_id=user.id, username=username)

    if not await _send_otp(user, otp):
        await db.delete(user)
        await db.commit()
        logger.warning("registration_rolled_back", email=email, reason="otp_email_failed")
        msg = "Could not send verification email. Please try again later."
        raise DependencyError(msg)

    return user


# ---------------------------------------------------------------------------
# Verification
# ---------------------------------------------------------------------------


async def verify_otp(
    db: AsyncSession,
    redis: Redis,
    *,
    user_id: int,
    otp: str,
    now: datetime,
) -> User:
    """
    Check a submitted code and activate the account.

    Raises:
        NotFoundError: Unknown user.
        ValidationError: Already verified, no code pending, expired or wrong code.
        RateLimitedError: Too many wrong guesses for the current code.
    """
    settings = get_settings()
    user = await get_user_by_id(db, user_id)
    if user is None:
        msg = "User not found"
        raise NotFoundError(msg)
    if user.is_email_verified:
        msg = "Email is already verified"
        raise ValidationError(msg)

    attempts_key = redis_key("otp_attempts", user_id)
    attempts = await redis.get(attempts_key)
    if attempts is not None and int(attempts) >= settings.otp_max_attempts:
        msg = "Too many incorrect attempts. Please request a new code."
        raise RateLimitedError(msg)

    if not user.email_verification_otp or user.otp_expires_at is None:
        msg = "No verification code pending. Please request a new code."
        raise ValidationError(msg)
    if now > user.otp_expires_at:
        msg = "Verification code has expired. Please request a new code."
        raise ValidationError(msg)
    if not otp_matches(otp, user.email_verification_otp):
        await incr_with_ttl(redis, attempts_key, settings.otp_ttl_minutes * 60)
        msg = "Invalid verification code"
        raise ValidationError(msg)

    user.is_email_verified = True
    user.email_verification_otp = None
    user.otp_expires_at = None
    user.last_login = now
    user.updated_at = now
    await db.commit()
    await redis.delete(attempts_key)

    logger.info("email_verified", user_id=user.id)
    return user


async def resend_otp(db: AsyncSession, redis: Redis, *, user_id: int, now: datetime) -> User:
    """
    Reissue the verification code and email it again.

    Raises:
        NotFoundError: Unknown user.
        ValidationError: Already verified.
        RateLimitedError: Called again within the cooldown.
        DependencyError: The email could not be sent.
    """
    settings = get_settings()
    user = await get_user_by_id(db, user_id)
    if user is None:
        msg = "User not found"
        raise NotFoundError(msg)
    if user.is_email_verified:
        msg = "Email is already verified"
        raise ValidationError(msg)

    cooldown_key = redis_key("otp_resend", user_id)
    if not await redis.set(cooldown_key, "1", ex=settings.otp_resend_cooldown_seconds, nx=True):
        msg = "Please wait before requesting another code"
        raise RateLimitedError(msg, extra={"retryAfter": settings.otp_resend_cooldown_seconds})

    otp = _issue_otp(user, now)
    user.updated_at = now
    await db.commit()
    await redis.delete(redis_key("otp_attempts", user_id))

    if not await _send_otp(user, otp):
        await redis.delete(cooldown_key)
        msg = "Could not send verification email. Please try again later."
        raise DependencyError(msg)

    logger.info("otp_resent", user_id=user.id)
    return user


# ---------------------------------------------------------------------------
# Login
# ---------------------------------------------------------------------------


async def authenticate_user(
    db: AsyncSession,
    redis: Redis,
    *,
    email: str,
    password: str,
    now: datetime,
) -> User:
    """
    Authenticate with email + password.

    Raises:
        AuthError: Bad credentials (401) or unverified email (403, with
            ``needsVerification``, ``userId`` and ``email`` in ``extra``).
        RateLimitedError: Account locked after repeated failures.
    """
    user = await get_user_by_email(db, email)
    if user is None:
        msg = "Invalid email or password"
        raise AuthError(msg)

    if await check_account_lockout(redis, user.id):
        msg = "Account temporarily locked. Try again later."
        raise RateLimitedError(msg)

    if not verify_password(password, user.password_hash):
        await increment_failed_login(redis, user.id)
        msg = "Invalid email or password"
        raise AuthError(msg)

    await clear_failed_login(redis, user.id)

    if not user.is_email_verified:
        msg = "Please verify your email before logging in"
        raise AuthError(
            msg,
            status_code=403,
            extra={"needsVerification": True, "userId": user.id, "email": user.email},
        )

    user.last_login = now
    if check_needs_rehash(user.password_hash):
        user.password_hash = hash_password(password)
        logger.info("password_rehashed", user_id=user.id)
    await db.commit()
    return user


# ---------------------------------------------------------------------------
# Account lockout
# ---------------------------------------------------------------------------


async def check_account_lockout(redis: Redis, user_id: int) -> bool:
    """Check if the account is locked due to too many failed login attempts."""
    count_str = await redis.get(redis_key("login_attempts", user_id))
    if count_str is None:
        return False
    return int(count_str) >= get_settings().account_lockout_threshold


async def increment_failed_login(redis: Redis, user_id: int) -> int:
    """Increment failed login counter. Returns the new count."""
    window = get_settings().account_lockout_duration_minutes * 60
    return await incr_with_ttl(redis, redis_key("login_attempts", user_id), window)


async def clear_failed_login(redis: Redis, user_id: int) -> None:
    await redis.delete(redis_key("login_attempts", user_id))
