"""Shared FastAPI dependency helpers."""

from __future__ import annotations

import hmac
from collections.abc import AsyncGenerator, Awaitable, Callable
from typing import Annotated

import structlog
from fastapi import Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from authcore.core.authorization import (
    AuthorizationEngine,
    get_authorization_engine,
    resolve_required_rules,
)
from authcore.core.sessions import DeviceMetadata, extract_device_info
from authcore.db.session import get_db_session
from authcore.services.auth_service import (
    AuthenticatedPrincipal,
    AuthServiceError,
    IdentityFlows,
    get_identity_flows,
)

logger = structlog.get_logger(__name__)


async def get_database_session() -> AsyncGenerator[AsyncSession, None]:
    """Expose the request-scoped async database session dependency."""
    async for session in get_db_session():
        yield session


def get_device_metadata(request: Request) -> DeviceMetadata:
    """Expose client device metadata parsed from request headers."""
    return extract_device_info(request)


def extract_bearer_token(request: Request) -> str | None:
    """Extract bearer token from Authorization header."""
    authorization = request.headers.get("authorization", "").strip()
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if not hmac.compare_digest(scheme.lower(), "bearer"):
        return None
    stripped = token.strip()
    return stripped or None


async def get_current_principal(
    request: Request,
    db_session: Annotated[AsyncSession, Depends(get_database_session)],
    identity_flows: Annotated[IdentityFlows, Depends(get_identity_flows)],
) -> AuthenticatedPrincipal:
    """Resolve the caller from a live bearer access token."""
    raw_token = extract_bearer_token(request)
    if raw_token is None:
        raise HTTPException(
            status_code=401,
            detail={"detail": "Invalid token.", "code": "invalid_token"},
        )
    try:
        principal = await identity_flows.authenticate_access_token(
            db_session=db_session,
            raw_token=raw_token,
        )
    except AuthServiceError as exc:
        raise HTTPException(
            status_code=exc.status_code,
            detail={"detail": exc.detail, "code": exc.code},
        ) from exc
    request.state.principal = principal.ref
    return principal


def require_operation(
    operation: str,
) -> Callable[..., Awaitable[AuthenticatedPrincipal]]:
    """Build a dependency that admits only principals whose role grants ``operation``."""

    async def _guard(
        principal: Annotated[AuthenticatedPrincipal, Depends(get_current_principal)],
        db_session: Annotated[AsyncSession, Depends(get_database_session)],
        engine: Annotated[AuthorizationEngine, Depends(get_authorization_engine)],
    ) -> AuthenticatedPrincipal:
        decision = await engine.evaluate(
            db_session=db_session,
            principal=principal.ref,
            rules=resolve_required_rules(operation),
        )
        if not decision.allowed:
            logger.warning(
                "authorization_denied",
                operation=operation,
                principal=str(principal.ref),
                reason=decision.reason,
            )
            raise HTTPException(
                status_code=403,
                detail={"detail": "Access denied.", "code": "forbidden"},
            )
        return principal

    return _guard
