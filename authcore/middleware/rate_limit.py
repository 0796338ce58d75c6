"""Redis-backed sliding-window rate limiting middleware."""

from __future__ import annotations

import math
import time
from functools import lru_cache
from typing import Protocol
from uuid import uuid4

import structlog
from fastapi import Request
from redis import asyncio as redis_async
from redis.asyncio.client import Redis
from redis.exceptions import RedisError
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse, Response

from authcore.config import RateLimitSettings, get_settings

logger = structlog.get_logger(__name__)
_WINDOW_SECONDS = 60


class SlidingWindowRedis(Protocol):
    """Protocol for Redis operations used by the rate limiter."""

    async def zremrangebyscore(self, key: str, min: str | int, max: int) -> int:
        """Delete members with score inside an inclusive range."""

    async def zcard(self, key: str) -> int:
        """Return sorted-set cardinality."""

    async def zadd(self, key: str, mapping: dict[str, int]) -> int:
        """Add one or more scored members to sorted set."""

    async def expire(self, key: str, ttl_seconds: int) -> bool:
        """Apply TTL to key."""


@lru_cache
def get_rate_limit_redis_client() -> Redis:
    """Create and cache Redis client used by rate limiter and health checks."""
    settings = get_settings()
    return redis_async.from_url(settings.redis.url, decode_responses=True)


def build_path_limits(limits: RateLimitSettings) -> dict[str, int]:
    """Map credential and code endpoints to their tighter per-minute limits."""
    return {
        "/auth/login": limits.login_requests_per_minute,
        "/admin/login": limits.login_requests_per_minute,
        "/auth/verify-login": limits.otp_requests_per_minute,
        "/auth/forgot-password": limits.otp_requests_per_minute,
        "/admin/change-password": limits.login_requests_per_minute,
        "/users/me/email": limits.otp_requests_per_minute,
        "/users/me/email/verify": limits.otp_requests_per_minute,
        "/auth/token": limits.token_requests_per_minute,
    }


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Apply per-client sliding-window request limits."""

    def __init__(
        self,
        app,
        redis_client: SlidingWindowRedis | None = None,
        limits: RateLimitSettings | None = None,
    ) -> None:
        """Initialize middleware with optional explicit limits for testability."""
        super().__init__(app)
        resolved = limits if limits is not None else get_settings().rate_limit
        self._redis = redis_client or get_rate_limit_redis_client()
        self._default_limit = resolved.default_requests_per_minute
        self._path_limits = build_path_limits(resolved)
        self._window_milliseconds = _WINDOW_SECONDS * 1000

    async def dispatch(self, request: Request, call_next) -> Response:
        """Reject requests exceeding the configured per-minute threshold."""
        limit = self._path_limits.get(request.url.path, self._default_limit)
        bucket_key = self._build_bucket_key(request)
        now_ms = int(time.time() * 1000)
        window_start = now_ms - self._window_milliseconds

        try:
            await self._redis.zremrangebyscore(bucket_key, "-inf", window_start)
            current_count = await self._redis.zcard(bucket_key)
            if current_count >= limit:
                logger.warning(
                    "rate_limit_exceeded",
                    path=request.url.path,
                    method=request.method,
                    limit=limit,
                )
                return JSONResponse(
                    status_code=429,
                    content={"detail": "Rate limit exceeded.", "code": "rate_limited"},
                )

            member = f"{now_ms}:{uuid4()}"
            await self._redis.zadd(bucket_key, {member: now_ms})
            await self._redis.expire(bucket_key, math.ceil(self._window_milliseconds / 1000) + 1)
        except RedisError:
            # Fail open while Redis is unreachable.
            logger.warning(
                "rate_limit_backend_unavailable",
                path=request.url.path,
                method=request.method,
            )

        return await call_next(request)

    def _build_bucket_key(self, request: Request) -> str:
        """Build Redis key using route and caller network identity."""
        forwarded_for = request.headers.get("x-forwarded-for", "").strip()
        if forwarded_for:
            client_id = forwarded_for.split(",")[0].strip()
        else:
            client_id = request.client.host if request.client else "unknown"
        return f"rate_limit:{request.url.path}:{client_id}"
