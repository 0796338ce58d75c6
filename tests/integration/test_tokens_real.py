"""Integration tests for OTP and token ledger primitives on real Postgres."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy import func, select

from authcore.core.otp import OtpManager
from authcore.core.principal import PrincipalRef
from authcore.core.scheduler import sweep_expired_tokens
from authcore.core.tokens import TokenLedger
from authcore.models import Otp, Token
from authcore.models.enums import OtpPurpose, RecordStatus, TokenKind


@pytest.mark.asyncio
async def test_reissuing_otp_overwrites_single_row(db_session, verified_user_factory) -> None:
    """Only the latest code for (owner, purpose) is accepted, and only once."""
    user = await verified_user_factory("otp@example.com", "Password123!")
    owner = PrincipalRef.user(user.id)
    first_manager = OtpManager(fixed_code=111111)
    second_manager = OtpManager(fixed_code=222222)

    await first_manager.handle_otp_generation(
        db_session, owner, "otp@example.com", OtpPurpose.LOGIN
    )
    await second_manager.handle_otp_generation(
        db_session, owner, "otp@example.com", OtpPurpose.LOGIN
    )
    await db_session.commit()

    row_count = await db_session.scalar(
        select(func.count()).select_from(Otp).where(Otp.user_id == user.id)
    )
    assert row_count == 1

    assert await first_manager.validate_otp(db_session, owner, 111111, OtpPurpose.LOGIN) is False
    assert await second_manager.validate_otp(db_session, owner, 222222, OtpPurpose.LOGIN) is True
    assert await second_manager.validate_otp(db_session, owner, 222222, OtpPurpose.LOGIN) is False
    await db_session.commit()


@pytest.mark.asyncio
async def test_expired_otp_is_rejected(db_session, verified_user_factory) -> None:
    user = await verified_user_factory("late@example.com", "Password123!")
    owner = PrincipalRef.user(user.id)
    manager = OtpManager(ttl_seconds=0, fixed_code=333333)

    await manager.handle_otp_generation(db_session, owner, "late@example.com", OtpPurpose.LOGIN)
    await db_session.commit()

    assert await manager.validate_otp(db_session, owner, 333333, OtpPurpose.LOGIN) is False


@pytest.mark.asyncio
async def test_same_code_live_for_two_purposes_is_consumed_per_purpose(
    db_session,
    verified_user_factory,
) -> None:
    """A fixed code issued for two flows is one row per purpose and each is consumed alone."""
    user = await verified_user_factory("twin@example.com", "Password123!")
    owner = PrincipalRef.user(user.id)
    manager = OtpManager(fixed_code=444444)

    await manager.handle_otp_generation(
        db_session, owner, "twin@example.com", OtpPurpose.FORGOT_PASSWORD
    )
    await manager.handle_otp_generation(db_session, owner, "twin@example.com", OtpPurpose.LOGIN)
    await db_session.commit()

    assert await manager.validate_otp(db_session, owner, 444444, OtpPurpose.SIGNUP) is False
    assert await manager.validate_otp(db_session, owner, 444444, OtpPurpose.LOGIN) is True
    await db_session.commit()

    reset_row = await db_session.scalar(
        select(Otp).where(Otp.user_id == user.id, Otp.type == OtpPurpose.FORGOT_PASSWORD)
    )
    assert reset_row is not None
    assert reset_row.is_verified is False
    assert reset_row.status == RecordStatus.ACTIVE

    assert (
        await manager.validate_otp(db_session, owner, 444444, OtpPurpose.FORGOT_PASSWORD)
        is True
    )
    await db_session.commit()


@pytest.mark.asyncio
async def test_cleanup_deactivates_expired_sides_then_deletes_dead_rows(
    db_session,
    db_session_factory,
    verified_user_factory,
) -> None:
    """A sweep keeps rows with one live side and is idempotent."""
    user = await verified_user_factory("sweep@example.com", "Password123!")
    owner = PrincipalRef.user(user.id)
    ledger = TokenLedger()
    now = datetime.now(UTC)

    dead = await ledger.issue(
        db_session,
        owner,
        access_token="dead-access",
        access_token_expiry=now - timedelta(minutes=5),
        refresh_token="dead-refresh",
        refresh_token_expiry=now - timedelta(minutes=1),
    )
    half_live = await ledger.issue(
        db_session,
        owner,
        access_token="stale-access",
        access_token_expiry=now - timedelta(minutes=5),
        refresh_token="live-refresh",
        refresh_token_expiry=now + timedelta(days=1),
    )
    link = await ledger.issue(
        db_session,
        owner,
        access_token="live-link",
        access_token_expiry=now + timedelta(minutes=15),
        kind=TokenKind.RESET,
    )
    await db_session.commit()

    first = await sweep_expired_tokens(ledger)
    assert first.deactivated == 3
    assert first.deleted == 1

    second = await sweep_expired_tokens(ledger)
    assert second.deactivated == 0
    assert second.deleted == 0

    async with db_session_factory() as check_session:
        remaining = {
            row.id: row for row in (await check_session.execute(select(Token))).scalars().all()
        }
    assert dead.id not in remaining
    assert remaining[half_live.id].access_token_status == RecordStatus.INACTIVE
    assert remaining[half_live.id].refresh_token_status == RecordStatus.ACTIVE
    assert remaining[link.id].access_token_status == RecordStatus.ACTIVE
    assert await ledger.validate_token(db_session, "live-refresh", "refresh") is True
    assert await ledger.validate_token(db_session, "stale-access", "access") is False
