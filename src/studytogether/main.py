"""FastAPI application factory."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from studytogether.auth.router import router as auth_router
from studytogether.config import INSECURE_JWT_SECRET, get_settings
from studytogether.database import close_db, init_db
from studytogether.email.service import get_email_service
from studytogether.health.router import router as health_router
from studytogether.middleware import setup_middleware
from studytogether.notifications.dispatcher import get_dispatcher
from studytogether.presence.router import router as presence_router
from studytogether.redis_client import close_redis, get_redis, init_redis
from studytogether.social.router import router as social_router
from studytogether.study.router import router as study_router
from studytogether.workers.reminders import shutdown_scheduler, start_scheduler

logger = logging.getLogger(__name__)

SHUTDOWN_DRAIN_SECONDS = 10.0


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup and shutdown lifecycle."""
    settings = get_settings()
    if settings.jwt_secret == INSECURE_JWT_SECRET:
        logger.warning("STUDY_JWT_SECRET is not set; tokens are signed with the built-in development secret")

    await init_db(settings.database_url)
    await init_redis(settings.redis_url)
    get_email_service(redis=get_redis())
    if settings.reminders_enabled:
        start_scheduler()

    yield

    shutdown_scheduler()
    await get_dispatcher().drain(timeout=SHUTDOWN_DRAIN_SECONDS)
    await close_db()
    await close_redis()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="StudyTogether API",
        description="Backend API for StudyTogether: collaborative study tracking with streaks and live friend presence",
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    setup_middleware(app, settings)
    app.include_router(health_router, tags=["Health"])
    app.include_router(auth_router)
    app.include_router(study_router)
    app.include_router(social_router)
    app.include_router(presence_router)

    return app


app = create_app()
