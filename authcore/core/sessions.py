"""Device session tracking and single-active-session enforcement."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from functools import lru_cache
from uuid import UUID, uuid4

import structlog
from fastapi import Request
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from authcore.config import get_settings
from authcore.core.principal import PrincipalRef
from authcore.core.tokens import TokenLedger, get_token_ledger
from authcore.models.device_session import DeviceSession
from authcore.models.enums import ActivityType, DeviceType, TokenKind
from authcore.models.token import Token

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class DeviceMetadata:
    """Client device details taken from request headers."""

    device_id: str | None = None
    device_name: str | None = None
    device_type: DeviceType | None = None
    app_version: str | None = None
    timezone: str | None = None
    device_ip: str | None = None


@dataclass(frozen=True)
class LinkSession:
    """Device session and token backing an emailed link."""

    device: DeviceSession
    token: Token
    link_id: UUID


def _parse_device_type(raw_value: str | None) -> DeviceType | None:
    if not raw_value:
        return None
    try:
        return DeviceType(raw_value.strip().lower())
    except ValueError:
        return None


def _client_ip(request: Request) -> str | None:
    forwarded_for = request.headers.get("x-forwarded-for", "")
    first_hop = forwarded_for.split(",")[0].strip()
    if first_hop:
        return first_hop
    if request.client is not None:
        return request.client.host
    return None


def extract_device_info(request: Request) -> DeviceMetadata:
    """Build device metadata from request headers and peer address."""
    headers = request.headers
    device_type = _parse_device_type(headers.get("device-type"))
    device_name = headers.get("device-name")
    if device_type == DeviceType.WEB:
        user_agent = headers.get("user-agent")
        device_name = user_agent.lower() if user_agent else device_name
    return DeviceMetadata(
        device_id=headers.get("device-id"),
        device_name=device_name,
        device_type=device_type,
        app_version=headers.get("app-version"),
        timezone=headers.get("timezone"),
        device_ip=_client_ip(request),
    )


class SessionTracker:
    """Record device activity and apply the multi-device login policy."""

    def __init__(self, token_ledger: TokenLedger, allow_multiple_device_login: bool) -> None:
        self._token_ledger = token_ledger
        self._allow_multiple_device_login = allow_multiple_device_login

    @property
    def allow_multiple_device_login(self) -> bool:
        return self._allow_multiple_device_login

    async def record_activity(
        self,
        db_session: AsyncSession,
        owner: PrincipalRef,
        activity_type: ActivityType,
        metadata: DeviceMetadata,
        *,
        is_active: bool = True,
        last_active_at: datetime | None = None,
        registered_at: datetime | None = None,
        link_id: UUID | None = None,
    ) -> DeviceSession:
        """Append one device session row."""
        device = DeviceSession(
            **owner.owner_fields(),
            device_id=metadata.device_id,
            device_name=metadata.device_name,
            device_ip=metadata.device_ip,
            app_version=metadata.app_version,
            device_type=metadata.device_type,
            timezone=metadata.timezone,
            activity_type=activity_type,
            is_active=is_active,
            last_active_at=last_active_at,
            registered_at=registered_at,
            link_id=link_id,
        )
        db_session.add(device)
        await db_session.flush()
        return device

    async def enforce_single_session(self, db_session: AsyncSession, owner: PrincipalRef) -> int:
        """Log out every live token of the owner unless multiple devices are allowed.

        Runs inside the caller's transaction so the invalidation and the new
        session's issuance commit or roll back together. Session pairs also lose
        their refresh side so a retired session cannot be refreshed back.
        """
        if self._allow_multiple_device_login:
            return 0

        now = datetime.now(UTC)
        tokens = await self._token_ledger.find_active_tokens(db_session=db_session, owner=owner)
        for token in tokens:
            await self._token_ledger.invalidate_token(db_session, token, "access")
            if token.type == TokenKind.ACCESS:
                await self._token_ledger.invalidate_token(db_session, token, "refresh")
            if token.device is not None:
                token.device.is_active = False
                token.device.last_active_at = now
                token.device.activity_type = ActivityType.LOGOUT
        await db_session.flush()
        if tokens:
            logger.info("single_session_enforced", principal=str(owner), invalidated=len(tokens))
        return len(tokens)

    async def upsert_link_session(
        self,
        db_session: AsyncSession,
        owner: PrincipalRef,
        activity_type: ActivityType,
        metadata: DeviceMetadata,
        link_token: str,
        link_token_expiry: datetime,
        token_kind: TokenKind,
    ) -> LinkSession:
        """Bind a fresh link id to the owner's device session for this activity."""
        link_id = uuid4()
        device = await self._fetch_link_device(
            db_session=db_session,
            owner=owner,
            activity_type=activity_type,
            device_type=metadata.device_type,
        )
        if device is None:
            device = await self.record_activity(
                db_session,
                owner,
                activity_type,
                metadata,
                registered_at=datetime.now(UTC),
                link_id=link_id,
            )
            token = await self._token_ledger.issue(
                db_session=db_session,
                owner=owner,
                access_token=link_token,
                access_token_expiry=link_token_expiry,
                kind=token_kind,
                device=device,
            )
            return LinkSession(device=device, token=token, link_id=link_id)

        device.link_id = link_id
        device.is_active = True
        existing = next((item for item in device.tokens if item.type == token_kind), None)
        if existing is None:
            token = await self._token_ledger.issue(
                db_session=db_session,
                owner=owner,
                access_token=link_token,
                access_token_expiry=link_token_expiry,
                kind=token_kind,
                device=device,
            )
        else:
            token = await self._token_ledger.refresh_link_token(
                db_session=db_session,
                token=existing,
                access_token=link_token,
                access_token_expiry=link_token_expiry,
            )
        await db_session.flush()
        return LinkSession(device=device, token=token, link_id=link_id)

    async def _fetch_link_device(
        self,
        db_session: AsyncSession,
        owner: PrincipalRef,
        activity_type: ActivityType,
        device_type: DeviceType | None,
    ) -> DeviceSession | None:
        """Fetch the latest device session for (owner, activity, device type)."""
        type_filter = (
            DeviceSession.device_type.is_(None)
            if device_type is None
            else DeviceSession.device_type == device_type
        )
        statement = (
            select(DeviceSession)
            .where(
                owner.owner_filter(DeviceSession),
                DeviceSession.activity_type == activity_type,
                type_filter,
                DeviceSession.deleted_at.is_(None),
            )
            .options(selectinload(DeviceSession.tokens))
            .order_by(DeviceSession.created_at.desc())
            .with_for_update()
        )
        result = await db_session.execute(statement)
        return result.scalars().first()


@lru_cache
def get_session_tracker() -> SessionTracker:
    """Create and cache the session tracker from settings."""
    settings = get_settings()
    return SessionTracker(
        token_ledger=get_token_ledger(),
        allow_multiple_device_login=settings.session.allow_multiple_device_login,
    )
