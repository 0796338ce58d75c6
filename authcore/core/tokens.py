"""Token ledger: persisted token pairs with independent status and expiry."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from functools import lru_cache
from typing import Literal
from uuid import UUID

import structlog
from sqlalchemy import and_, delete, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import contains_eager, selectinload

from authcore.core.principal import PrincipalRef
from authcore.models.device_session import DeviceSession
from authcore.models.enums import ActivityType, RecordStatus, TokenKind
from authcore.models.token import Token

logger = structlog.get_logger(__name__)

TokenSide = Literal["access", "refresh"]


@dataclass(frozen=True)
class TokenCleanupResult:
    """Row counts affected by one sweep."""

    deactivated: int
    deleted: int


class TokenLedger:
    """Issue, validate, invalidate, and garbage-collect stored tokens."""

    async def issue(
        self,
        db_session: AsyncSession,
        owner: PrincipalRef,
        access_token: str,
        access_token_expiry: datetime,
        kind: TokenKind = TokenKind.ACCESS,
        refresh_token: str | None = None,
        refresh_token_expiry: datetime | None = None,
        device: DeviceSession | None = None,
    ) -> Token:
        """Persist a new token row; the refresh side starts inactive when absent."""
        token = Token(
            **owner.owner_fields(),
            type=kind,
            access_token=access_token,
            access_token_expiry=access_token_expiry,
            access_token_status=RecordStatus.ACTIVE,
            refresh_token=refresh_token,
            refresh_token_expiry=refresh_token_expiry,
            refresh_token_status=(
                RecordStatus.ACTIVE if refresh_token is not None else RecordStatus.INACTIVE
            ),
            device_id=device.id if device is not None else None,
        )
        db_session.add(token)
        await db_session.flush()
        return token

    async def validate_token(self, db_session: AsyncSession, raw: str, which: TokenSide) -> bool:
        """True only when the matching side is active and expires strictly in the future."""
        token = await self.find_by_raw(db_session=db_session, raw=raw, which=which)
        if token is None:
            return False
        return self.is_side_valid(token, which)

    @staticmethod
    def is_side_valid(token: Token, which: TokenSide, now: datetime | None = None) -> bool:
        """Check status and expiry of one side of an already loaded token row."""
        current = now or datetime.now(UTC)
        if which == "access":
            status, expiry = token.access_token_status, token.access_token_expiry
        else:
            status, expiry = token.refresh_token_status, token.refresh_token_expiry
        return status == RecordStatus.ACTIVE and expiry is not None and expiry > current

    async def invalidate_token(
        self,
        db_session: AsyncSession,
        token: Token,
        which: TokenSide,
    ) -> None:
        """Deactivate only the targeted side of the token."""
        if which == "access":
            token.access_token_status = RecordStatus.INACTIVE
        else:
            token.refresh_token_status = RecordStatus.INACTIVE
        await db_session.flush()

    async def find_token_record(
        self,
        db_session: AsyncSession,
        link_id: UUID,
        activity_type: ActivityType,
    ) -> Token | None:
        """Find the token linked to a device session by link id and activity."""
        statement = (
            select(Token)
            .join(DeviceSession, Token.device_id == DeviceSession.id)
            .where(
                DeviceSession.link_id == link_id,
                DeviceSession.activity_type == activity_type,
                DeviceSession.deleted_at.is_(None),
                Token.deleted_at.is_(None),
            )
            .options(
                contains_eager(Token.device),
                selectinload(Token.user),
                selectinload(Token.admin),
            )
            .order_by(Token.created_at.desc())
            .with_for_update(of=Token)
        )
        result = await db_session.execute(statement)
        return result.scalars().first()

    async def find_active_tokens(
        self, db_session: AsyncSession, owner: PrincipalRef
    ) -> list[Token]:
        """Return the owner's tokens with at least one active, unexpired side."""
        now = datetime.now(UTC)
        statement = (
            select(Token)
            .where(
                owner.owner_filter(Token),
                Token.deleted_at.is_(None),
                or_(
                    and_(
                        Token.access_token_status == RecordStatus.ACTIVE,
                        Token.access_token_expiry > now,
                    ),
                    and_(
                        Token.refresh_token_status == RecordStatus.ACTIVE,
                        Token.refresh_token_expiry > now,
                    ),
                ),
            )
            .options(selectinload(Token.device))
            .with_for_update(of=Token)
        )
        result = await db_session.execute(statement)
        return list(result.scalars().all())

    async def find_by_raw(
        self,
        db_session: AsyncSession,
        raw: str,
        which: TokenSide,
        owner: PrincipalRef | None = None,
        for_update: bool = False,
    ) -> Token | None:
        """Find a token row by exact access or refresh string, optionally owner-scoped."""
        column = Token.access_token if which == "access" else Token.refresh_token
        statement = (
            select(Token)
            .where(column == raw, Token.deleted_at.is_(None))
            .options(selectinload(Token.device))
        )
        if owner is not None:
            statement = statement.where(owner.owner_filter(Token))
        if for_update:
            statement = statement.with_for_update(of=Token)
        result = await db_session.execute(statement.order_by(Token.created_at.desc()))
        return result.scalars().first()

    async def refresh_link_token(
        self,
        db_session: AsyncSession,
        token: Token,
        access_token: str,
        access_token_expiry: datetime,
    ) -> Token:
        """Replace a link token's access side and reactivate it."""
        token.access_token = access_token
        token.access_token_expiry = access_token_expiry
        token.access_token_status = RecordStatus.ACTIVE
        await db_session.flush()
        return token

    async def cleanup_expired_tokens(self, db_session: AsyncSession) -> TokenCleanupResult:
        """Deactivate expired sides, then delete rows with both sides inactive."""
        now = datetime.now(UTC)
        try:
            access_result = await db_session.execute(
                update(Token)
                .where(
                    Token.access_token_status == RecordStatus.ACTIVE,
                    Token.access_token_expiry <= now,
                )
                .values(access_token_status=RecordStatus.INACTIVE)
                .execution_options(synchronize_session=False)
            )
            refresh_result = await db_session.execute(
                update(Token)
                .where(
                    Token.refresh_token_status == RecordStatus.ACTIVE,
                    Token.refresh_token_expiry <= now,
                )
                .values(refresh_token_status=RecordStatus.INACTIVE)
                .execution_options(synchronize_session=False)
            )
            await db_session.commit()
        except Exception:
            await db_session.rollback()
            raise
        deactivated = (access_result.rowcount or 0) + (refresh_result.rowcount or 0)

        try:
            delete_result = await db_session.execute(
                delete(Token)
                .where(
                    Token.access_token_status == RecordStatus.INACTIVE,
                    Token.refresh_token_status == RecordStatus.INACTIVE,
                )
                .execution_options(synchronize_session=False)
            )
            await db_session.commit()
        except Exception:
            await db_session.rollback()
            raise
        deleted = delete_result.rowcount or 0

        logger.info("token_cleanup_completed", deactivated=deactivated, deleted=deleted)
        return TokenCleanupResult(deactivated=deactivated, deleted=deleted)


@lru_cache
def get_token_ledger() -> TokenLedger:
    """Create and cache the token ledger."""
    return TokenLedger()
