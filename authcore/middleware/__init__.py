"""Middleware package exports."""

from authcore.middleware.correlation_id import CorrelationIdMiddleware
from authcore.middleware.logging import LoggingMiddleware
from authcore.middleware.rate_limit import RateLimitMiddleware
from authcore.middleware.security_headers import SecurityHeadersMiddleware

__all__ = [
    "CorrelationIdMiddleware",
    "LoggingMiddleware",
    "RateLimitMiddleware",
    "SecurityHeadersMiddleware",
]
