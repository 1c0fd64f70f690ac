"""Middleware registration."""

from fastapi import FastAPI

from studytogether.config import Settings
from studytogether.middleware.cors import setup_cors
from studytogether.middleware.error_handler import setup_error_handlers
from studytogether.middleware.logging import setup_logging
from studytogether.middleware.rate_limit import RateLimitMiddleware
from studytogether.middleware.request_id import RequestIdMiddleware


def setup_middleware(app: FastAPI, settings: Settings) -> None:
    """Register all middleware.

    Starlette runs middleware in reverse-add order (last added = outermost).
    CORS goes last so its headers are also applied to 429 responses.
    """
    setup_logging(settings)
    setup_error_handlers(app)
    app.add_middleware(
        RateLimitMiddleware,
        requests_per_window=settings.rate_limit_requests,
        window_seconds=settings.rate_limit_window_seconds,
    )
    app.add_middleware(RequestIdMiddleware)
    setup_cors(app, settings)
