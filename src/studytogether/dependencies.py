"""Shared FastAPI dependencies."""

from datetime import datetime, timezone

from studytogether.database import get_session as _get_session
from studytogether.redis_client import get_redis as _get_redis

get_db = _get_session
get_redis_dep = _get_redis


def request_time() -> datetime:
    """Wall-clock time for the current request (UTC).

    Handlers take "now" through this dependency so streak, OTP-expiry and
    week-window logic all agree on one instant per request.
    """
    return datetime.now(timezone.utc)
