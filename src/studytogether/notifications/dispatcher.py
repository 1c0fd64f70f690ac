"""Fire-and-forget notifications.

Request handlers hand work to the dispatcher and return immediately. Each
job runs as its own asyncio task; the dispatcher keeps a reference until it
finishes so it is not garbage-collected mid-flight, logs any failure, and
can be drained on shutdown. Failures never reach the caller.
"""

from __future__ import annotations

import asyncio
from collections.abc import Coroutine, Iterable
from typing import Any

import structlog

from studytogether.config import get_settings
from studytogether.db.models import User
from studytogether.email.service import get_email_service
from studytogether.presence.coordinator import get_coordinator
from studytogether.study.engine import AchievementType, achievement_title

logger = structlog.get_logger()


class NotificationDispatcher:
    """Runs notification jobs in the background."""

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task[Any]] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def submit(self, coro: Coroutine[Any, Any, Any], *, kind: str, **context: Any) -> asyncio.Task[Any]:  # noqa: ANN401
        """Schedule ``coro`` and return its task."""
        task = asyncio.create_task(coro, name=f"notify:{kind}")
        self._tasks.add(task)

        def _done(t: asyncio.Task[Any]) -> None:
            self._tasks.discard(t)
            if t.cancelled():
                logger.warning("notification_cancelled", kind=kind, **context)
                return
            exc = t.exception()
            if exc is not None:
                logger.error("notification_failed", kind=kind, error=str(exc), exc_info=exc, **context)
            elif t.result() is False:
                logger.warning("notification_not_delivered", kind=kind, **context)

        task.add_done_callback(_done)
        return task

    async def drain(self, timeout: float | None = None) -> None:
        """Wait for in-flight jobs, cancelling whatever is left after ``timeout``."""
        if not self._tasks:
            return
        tasks = list(self._tasks)
        _, pending = await asyncio.wait(tasks, timeout=timeout)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    # -- notification kinds -------------------------------------------------

    def notify_achievements(self, user: User, kinds: Iterable[AchievementType]) -> None:
        """Email and live-push each newly unlocked achievement."""
        for kind in kinds:
            title = achievement_title(kind.value)
            self.submit(
                get_email_service().send_template(
                    user.email,
                    "achievement_unlocked",
                    {"username": user.username, "achievement_name": title},
                ),
                kind="achievement_email",
                user_id=user.id,
                achievement=kind.value,
            )
            self.submit(
                get_coordinator().send_to_user(
                    user.id,
                    "achievement_unlocked",
                    {"type": kind.value, "title": title},
                ),
                kind="achievement_push",
                user_id=user.id,
                achievement=kind.value,
            )

    def notify_friend_invite(self, inviter: User, email: str) -> None:
        """Email ``email`` an invitation carrying the inviter's code."""
        register_url = f"{get_settings().frontend_base_url.rstrip('/')}/register"
        self.submit(
            get_email_service().send_template(
                email,
                "friend_invite",
                {
                    "inviter_name": inviter.username,
                    "invite_code": inviter.friend_invite_code,
                    "register_url": register_url,
                },
            ),
            kind="friend_invite",
            user_id=inviter.id,
        )


# Module-level singleton
_dispatcher: NotificationDispatcher | None = None


def get_dispatcher() -> NotificationDispatcher:
    global _dispatcher  # noqa: PLW0603
    if _dispatcher is None:
        _dispatcher = NotificationDispatcher()
    return _dispatcher


def reset_dispatcher() -> None:
    """Forget the singleton (for testing)."""
    global _dispatcher  # noqa: PLW0603
    _dispatcher = None
