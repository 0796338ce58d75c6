"""Unit tests for token ledger status and expiry handling."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from uuid import uuid4

import pytest

from authcore.core.principal import PrincipalRef
from authcore.core.tokens import TokenLedger
from authcore.models.enums import RecordStatus, TokenKind
from authcore.models.token import Token


class _FakeSession:
    """Async session stub recording added rows and flushes."""

    def __init__(self) -> None:
        self.added: list[object] = []
        self.flush_count = 0

    def add(self, row: object) -> None:
        self.added.append(row)

    async def flush(self) -> None:
        self.flush_count += 1


def _token(
    access_expiry: datetime | None,
    refresh_expiry: datetime | None = None,
    access_status: RecordStatus = RecordStatus.ACTIVE,
    refresh_status: RecordStatus = RecordStatus.ACTIVE,
) -> Token:
    return Token(
        id=uuid4(),
        user_id=uuid4(),
        type=TokenKind.ACCESS,
        access_token="access-raw",
        access_token_expiry=access_expiry,
        access_token_status=access_status,
        refresh_token="refresh-raw",
        refresh_token_expiry=refresh_expiry,
        refresh_token_status=refresh_status,
    )


@pytest.mark.asyncio
async def test_issue_without_refresh_token_starts_refresh_side_inactive() -> None:
    """Link tokens carry only an access side."""
    db_session = _FakeSession()
    owner = PrincipalRef.user(uuid4())
    expiry = datetime.now(UTC) + timedelta(minutes=5)

    token = await TokenLedger().issue(
        db_session=db_session,  # type: ignore[arg-type]
        owner=owner,
        access_token="link-token",
        access_token_expiry=expiry,
        kind=TokenKind.VERIFY,
    )

    assert db_session.added == [token]
    assert db_session.flush_count == 1
    assert token.user_id == owner.id
    assert token.admin_id is None
    assert token.type == TokenKind.VERIFY
    assert token.access_token_status == RecordStatus.ACTIVE
    assert token.refresh_token_status == RecordStatus.INACTIVE
    assert TokenLedger.is_side_valid(token, "refresh") is False


@pytest.mark.asyncio
async def test_issue_pair_for_admin_sets_admin_owner() -> None:
    """Admin-owned pairs store the admin foreign key only."""
    db_session = _FakeSession()
    owner = PrincipalRef.admin(uuid4())
    now = datetime.now(UTC)

    token = await TokenLedger().issue(
        db_session=db_session,  # type: ignore[arg-type]
        owner=owner,
        access_token="access",
        access_token_expiry=now + timedelta(minutes=5),
        refresh_token="refresh",
        refresh_token_expiry=now + timedelta(days=1),
    )

    assert token.admin_id == owner.id
    assert token.user_id is None
    assert token.refresh_token_status == RecordStatus.ACTIVE
    assert TokenLedger.is_side_valid(token, "access")
    assert TokenLedger.is_side_valid(token, "refresh")


def test_is_side_valid_requires_expiry_strictly_in_future() -> None:
    """A side expiring exactly now is no longer valid."""
    now = datetime.now(UTC)
    token = _token(access_expiry=now, refresh_expiry=now + timedelta(seconds=1))

    assert TokenLedger.is_side_valid(token, "access", now=now) is False
    assert TokenLedger.is_side_valid(token, "refresh", now=now) is True


def test_is_side_valid_rejects_inactive_and_missing_expiry() -> None:
    """Inactive status or a missing expiry invalidates a side."""
    future = datetime.now(UTC) + timedelta(hours=1)
    inactive = _token(access_expiry=future, access_status=RecordStatus.INACTIVE)
    no_expiry = _token(access_expiry=future, refresh_expiry=None)

    assert TokenLedger.is_side_valid(inactive, "access") is False
    assert TokenLedger.is_side_valid(no_expiry, "refresh") is False


@pytest.mark.asyncio
async def test_invalidate_token_touches_only_the_targeted_side() -> None:
    """Invalidating the access side leaves the refresh side usable."""
    future = datetime.now(UTC) + timedelta(hours=1)
    token = _token(access_expiry=future, refresh_expiry=future)
    db_session = _FakeSession()

    await TokenLedger().invalidate_token(db_session, token, "access")  # type: ignore[arg-type]

    assert token.access_token_status == RecordStatus.INACTIVE
    assert token.refresh_token_status == RecordStatus.ACTIVE
    assert db_session.flush_count == 1

    await TokenLedger().invalidate_token(db_session, token, "refresh")  # type: ignore[arg-type]

    assert token.refresh_token_status == RecordStatus.INACTIVE


@pytest.mark.asyncio
async def test_refresh_link_token_reactivates_access_side() -> None:
    """Re-sent links replace the raw token and expiry in place."""
    past = datetime.now(UTC) - timedelta(minutes=1)
    token = _token(access_expiry=past, access_status=RecordStatus.INACTIVE)
    new_expiry = datetime.now(UTC) + timedelta(minutes=5)

    refreshed = await TokenLedger().refresh_link_token(
        db_session=_FakeSession(),  # type: ignore[arg-type]
        token=token,
        access_token="new-link",
        access_token_expiry=new_expiry,
    )

    assert refreshed is token
    assert token.access_token == "new-link"
    assert token.access_token_expiry == new_expiry
    assert token.access_token_status == RecordStatus.ACTIVE
