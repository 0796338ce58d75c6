"""Security headers middleware."""

from __future__ import annotations

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

NO_STORE_PREFIXES = ("/auth", "/admin", "/users")


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Ensure every response carries mandatory security headers."""

    _HEADERS: dict[str, str] = {
        "Content-Security-Policy": "default-src 'none'; frame-ancestors 'none'",
        "X-Frame-Options": "DENY",
        "X-Content-Type-Options": "nosniff",
        "Referrer-Policy": "no-referrer",
        "Strict-Transport-Security": "max-age=63072000; includeSubDomains",
    }

    async def dispatch(self, request: Request, call_next) -> Response:
        """Append security headers; token-bearing responses are never cached."""
        response = await call_next(request)
        for header_name, header_value in self._HEADERS.items():
            response.headers[header_name] = header_value
        if request.url.path.startswith(NO_STORE_PREFIXES):
            response.headers["Cache-Control"] = "no-store"
        return response
