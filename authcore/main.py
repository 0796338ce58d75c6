"""FastAPI application factory."""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI

from authcore.config import configure_structlog, get_settings
from authcore.core.scheduler import run_periodically, sweep_expired_tokens
from authcore.core.tokens import get_token_ledger
from authcore.db.session import dispose_engine
from authcore.error_handlers import register_exception_handlers
from authcore.middleware import (
    CorrelationIdMiddleware,
    LoggingMiddleware,
    RateLimitMiddleware,
    SecurityHeadersMiddleware,
)
from authcore.routers import admin, auth, health, rbac, users

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Run the token sweep in the background for the lifetime of the app."""
    settings = get_settings()
    cleanup_task: asyncio.Task[None] | None = None
    if settings.session.cleanup_enabled:
        cleanup_task = asyncio.create_task(
            run_periodically(
                settings.session.cleanup_interval_seconds,
                lambda: sweep_expired_tokens(get_token_ledger()),
                name="token_cleanup",
            )
        )
        logger.info(
            "token_cleanup_scheduled",
            interval_seconds=settings.session.cleanup_interval_seconds,
        )
    try:
        yield
    finally:
        if cleanup_task is not None:
            cleanup_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await cleanup_task
        await dispose_engine()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()
    configure_structlog(settings)

    app = FastAPI(title=settings.app.service, lifespan=lifespan)
    register_exception_handlers(app, environment=settings.app.environment)
    app.add_middleware(RateLimitMiddleware)
    app.add_middleware(LoggingMiddleware)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(CorrelationIdMiddleware)

    app.include_router(auth.router)
    app.include_router(admin.router)
    app.include_router(rbac.router)
    app.include_router(users.router)
    app.include_router(health.router)
    return app


app = create_app()
