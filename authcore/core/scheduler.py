"""Periodic background task runner."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

import structlog
from sqlalchemy.exc import SQLAlchemyError

from authcore.core.tokens import TokenCleanupResult, TokenLedger
from authcore.db.session import get_session_factory

logger = structlog.get_logger(__name__)


async def run_periodically(
    interval_seconds: float,
    task: Callable[[], Awaitable[object]],
    name: str = "periodic_task",
) -> None:
    """Run ``task`` every ``interval_seconds`` until cancelled.

    A failing run is logged and the loop keeps going; cancellation propagates.
    """
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            await task()
        except asyncio.CancelledError:
            raise
        except (SQLAlchemyError, OSError) as exc:
            logger.error("periodic_task_failed", task=name, error=str(exc))


async def sweep_expired_tokens(token_ledger: TokenLedger) -> TokenCleanupResult:
    """Run one token cleanup sweep in its own database session."""
    session_factory = get_session_factory()
    async with session_factory() as db_session:
        return await token_ledger.cleanup_expired_tokens(db_session)
