"""Domain error taxonomy.

Services raise these; the global handler in ``middleware.error_handler``
turns them into ``{"detail": message, **extra}`` JSON responses.
"""

from __future__ import annotations

from typing import Any


class StudyError(Exception):
    """Base class for all expected, user-facing failures."""

    status_code = 500

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        extra: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.extra = extra or {}


class ValidationError(StudyError):
    """Bad or missing input, out-of-range values, wrong or expired OTP."""

    status_code = 400


class AuthError(StudyError):
    """Bad credentials, missing/invalid token, unverified email (403)."""

    status_code = 401


class NotFoundError(StudyError):
    """Unknown user, schedule, session or invite code."""

    status_code = 404


class ConflictError(StudyError):
    """Duplicate username/email, self-friending, already friends, stale write."""

    status_code = 409


class RateLimitedError(StudyError):
    """Too many attempts in a window (login lockout, OTP guesses, resends)."""

    status_code = 429


class DependencyError(StudyError):
    """An outside dependency (email delivery, store) failed."""

    status_code = 503
