"""Shared test fixtures."""

from __future__ import annotations

import os

# Settings are cached on first use, so the environment must be in place first
os.environ["STUDY_DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["STUDY_JWT_SECRET"] = "test-secret-for-the-study-together-suite-0123456789"
os.environ["STUDY_REMINDERS_ENABLED"] = "false"
os.environ["STUDY_LOG_FORMAT"] = "console"
os.environ["STUDY_TIMEZONE"] = "UTC"

from collections.abc import AsyncGenerator, Awaitable, Callable  # noqa: E402
from datetime import datetime, timedelta, timezone  # noqa: E402
from typing import Any  # noqa: E402
from unittest.mock import AsyncMock, MagicMock  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from fakeredis import FakeAsyncRedis, FakeServer  # noqa: E402
from fastapi import FastAPI  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402

from studytogether.config import get_settings  # noqa: E402
from studytogether.database import close_db, get_engine, init_db  # noqa: E402
from studytogether.db.base import Base  # noqa: E402
from studytogether.dependencies import request_time  # noqa: E402
from studytogether.email.service import reset_email_service, set_email_service  # noqa: E402
from studytogether.main import create_app  # noqa: E402
from studytogether.notifications.dispatcher import get_dispatcher, reset_dispatcher  # noqa: E402
from studytogether.presence.coordinator import reset_coordinator  # noqa: E402
from studytogether.redis_client import close_redis, use_redis  # noqa: E402

get_settings.cache_clear()

PASSWORD = "secret123"


class Clock:
    """Stands in for ``request_time``; tests move it forward explicitly."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


def _base_time() -> datetime:
    # Noon, a few days back: tokens issued at clock time are never "from the future"
    # even after a test advances the clock by two days.
    today = datetime.now(timezone.utc).date() - timedelta(days=3)
    return datetime(today.year, today.month, today.day, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def clock() -> Clock:
    return Clock(_base_time())


@pytest_asyncio.fixture
async def db_engine() -> AsyncGenerator[None, None]:
    """Fresh in-memory database with every table created."""
    await init_db("sqlite+aiosqlite:///:memory:")
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    await close_db()


@pytest_asyncio.fixture
async def fake_redis() -> AsyncGenerator[FakeAsyncRedis, None]:
    client = FakeAsyncRedis(server=FakeServer(), decode_responses=True)
    use_redis(client)
    yield client
    await close_redis()


@pytest.fixture
def mock_email_service() -> Any:  # noqa: ANN401
    """Replace the email service so nothing is actually sent."""
    service = MagicMock()
    service.send_template = AsyncMock(return_value=True)
    service.send_email = AsyncMock(return_value=True)
    set_email_service(service)
    yield service
    reset_email_service()


@pytest.fixture(autouse=True)
def _fresh_singletons() -> Any:  # noqa: ANN401
    reset_coordinator()
    reset_dispatcher()
    yield
    reset_coordinator()
    reset_dispatcher()


@pytest_asyncio.fixture
async def app(db_engine: None, fake_redis: FakeAsyncRedis, mock_email_service: Any, clock: Clock) -> AsyncGenerator[FastAPI, None]:
    application = create_app()
    application.dependency_overrides[request_time] = clock
    yield application
    await get_dispatcher().drain(timeout=1.0)


@pytest_asyncio.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client bound to the app (no lifespan; fixtures provide the store and Redis)."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


def _last_otp(mock_email_service: Any) -> str:  # noqa: ANN401
    _to, template, context = mock_email_service.send_template.call_args.args
    assert template == "otp_verification"
    return context["otp"]


@pytest.fixture
def latest_otp(mock_email_service: Any) -> Callable[[], str]:  # noqa: ANN401
    """The code carried by the most recent verification email."""
    return lambda: _last_otp(mock_email_service)


@pytest.fixture
def make_user(client: AsyncClient, mock_email_service: Any) -> Callable[..., Awaitable[dict]]:  # noqa: ANN401
    """Register and verify an account through the API. Returns ids, token and auth headers."""

    async def _make(username: str = "alice", email: str | None = None, password: str = PASSWORD) -> dict:
        email = email or f"{username}@example.com"
        response = await client.post(
            "/api/v1/auth/register",
            json={"username": username, "email": email, "password": password},
        )
        assert response.status_code == 201, response.text
        user_id = response.json()["userId"]

        response = await client.post(
            "/api/v1/auth/verify-otp",
            json={"userId": user_id, "otp": _last_otp(mock_email_service)},
        )
        assert response.status_code == 200, response.text
        data = response.json()
        return {
            "id": user_id,
            "username": username,
            "email": email,
            "password": password,
            "token": data["token"],
            "user": data["user"],
            "headers": {"Authorization": f"Bearer {data['token']}"},
        }

    return _make


@pytest_asyncio.fixture
async def alice(make_user: Callable[..., Awaitable[dict]]) -> dict:
    return await make_user("alice")


@pytest_asyncio.fixture
async def bob(make_user: Callable[..., Awaitable[dict]]) -> dict:
    return await make_user("bob")
