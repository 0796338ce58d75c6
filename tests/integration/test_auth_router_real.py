"""Integration tests for identity flows with real Postgres and Redis backends."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy import func, select, update

from authcore.core.jwt import get_jwt_service
from authcore.core.principal import PrincipalRef
from authcore.core.tokens import TokenLedger
from authcore.models import DeviceSession, Otp, Token, User, UserStatus
from authcore.models.enums import ActivityType, BlockReason, OtpPurpose, RecordStatus, TokenKind


def _client(app: FastAPI) -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://testserver")


def _bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


async def _login(
    client: AsyncClient, email: str, password: str, otp: int = 123456
) -> dict[str, str]:
    """Run password login plus OTP confirmation and return the session payload."""
    login_response = await client.post("/auth/login", json={"email": email, "password": password})
    assert login_response.status_code == 200
    verify_response = await client.post(
        "/auth/verify-login",
        json={"email": email, "otp": otp},
        headers={"device-id": "device-1", "device-type": "android"},
    )
    assert verify_response.status_code == 200
    return verify_response.json()


@pytest.mark.asyncio
async def test_signup_and_verify_link_opens_session(
    app_factory,
    notification_sender,
    db_session,
) -> None:
    """Signup emails a link; following it verifies the account exactly once."""
    app: FastAPI = app_factory()

    async with _client(app) as client:
        signup_response = await client.post(
            "/auth/signup",
            json={"email": "New.User@Example.com", "password": "Password123!"},
        )
        assert signup_response.status_code == 201
        assert signup_response.json() == {"message": "Verification link sent to your email."}

        link_id = notification_sender.last_link_id("verification_link")
        verify_response = await client.get(f"/auth/verify-signup/{link_id}")
        assert verify_response.status_code == 200
        payload = verify_response.json()
        assert payload["email"] == "new.user@example.com"

        claims = get_jwt_service().verify_token(payload["access_token"], expected_type="access")
        assert claims["sub"] == payload["id"]
        assert claims["roleName"] == "user"

        reused_response = await client.get(f"/auth/verify-signup/{link_id}")
        assert reused_response.status_code == 400
        assert reused_response.json()["code"] == "already_verified"

    user = (
        await db_session.execute(select(User).where(User.email == "new.user@example.com"))
    ).scalar_one()
    assert user.status == UserStatus.VERIFIED


@pytest.mark.asyncio
async def test_signup_for_verified_email_conflicts(app_factory, verified_user_factory) -> None:
    app: FastAPI = app_factory()
    await verified_user_factory("taken@example.com", "Password123!")

    async with _client(app) as client:
        response = await client.post(
            "/auth/signup",
            json={"email": "taken@example.com", "password": "Password123!"},
        )

    assert response.status_code == 409
    assert response.json()["code"] == "already_exists"


@pytest.mark.asyncio
async def test_unknown_link_is_rejected(app_factory) -> None:
    app: FastAPI = app_factory()

    async with _client(app) as client:
        response = await client.get("/auth/verify-signup/5f0c6d55-4b7e-4f6e-8a8e-0d3f8c1d2a10")

    assert response.status_code == 401
    assert response.json()["code"] == "invalid_link"


@pytest.mark.asyncio
async def test_login_requires_otp_and_code_is_single_use(
    app_factory,
    verified_user_factory,
    notification_sender,
    fixed_otp,
) -> None:
    """The emailed code opens one session and is consumed by it."""
    app: FastAPI = app_factory(allow_multiple_device_login=True)
    await verified_user_factory("alice@example.com", "Password123!")

    async with _client(app) as client:
        bad_password = await client.post(
            "/auth/login",
            json={"email": "alice@example.com", "password": "wrong-password"},
        )
        assert bad_password.status_code == 401
        assert bad_password.json()["code"] == "invalid_credentials"

        session = await _login(client, "alice@example.com", "Password123!", fixed_otp)
        assert session["access_token"]
        assert notification_sender.messages[-1].kind == "otp"
        assert notification_sender.messages[-1].payload == str(fixed_otp)

        replay = await client.post(
            "/auth/verify-login",
            json={"email": "alice@example.com", "otp": fixed_otp},
        )
        assert replay.status_code == 401
        assert replay.json()["code"] == "invalid_otp"


@pytest.mark.asyncio
async def test_unverified_user_cannot_log_in(app_factory) -> None:
    app: FastAPI = app_factory()

    async with _client(app) as client:
        await client.post(
            "/auth/signup",
            json={"email": "pending@example.com", "password": "Password123!"},
        )
        response = await client.post(
            "/auth/login",
            json={"email": "pending@example.com", "password": "Password123!"},
        )

    assert response.status_code == 400
    assert response.json()["code"] == "account_not_verified"


@pytest.mark.asyncio
async def test_second_login_logs_out_first_session(app_factory, verified_user_factory) -> None:
    """With single-device login, a new session invalidates the previous pair."""
    app: FastAPI = app_factory(allow_multiple_device_login=False)
    await verified_user_factory("solo@example.com", "Password123!")

    async with _client(app) as client:
        first = await _login(client, "solo@example.com", "Password123!")
        second = await _login(client, "solo@example.com", "Password123!")

        old_logout = await client.post("/auth/logout", headers=_bearer(first["access_token"]))
        assert old_logout.status_code == 401
        assert old_logout.json()["code"] == "invalid_token"

        old_refresh = await client.post(
            "/auth/token", json={"refresh_token": first["refresh_token"]}
        )
        assert old_refresh.status_code == 400
        assert old_refresh.json()["code"] == "invalid_refresh_token"

        current_logout = await client.post("/auth/logout", headers=_bearer(second["access_token"]))
        assert current_logout.status_code == 204


@pytest.mark.asyncio
async def test_multiple_sessions_survive_when_allowed(app_factory, verified_user_factory) -> None:
    app: FastAPI = app_factory(allow_multiple_device_login=True)
    await verified_user_factory("multi@example.com", "Password123!")

    async with _client(app) as client:
        first = await _login(client, "multi@example.com", "Password123!")
        await _login(client, "multi@example.com", "Password123!")

        response = await client.post("/auth/logout", headers=_bearer(first["access_token"]))

    assert response.status_code == 204


@pytest.mark.asyncio
async def test_refresh_rotation_rejects_old_refresh_token(
    app_factory,
    verified_user_factory,
    db_session,
) -> None:
    """Each refresh token can be exchanged once."""
    app: FastAPI = app_factory()
    await verified_user_factory("rotate@example.com", "Password123!")

    async with _client(app) as client:
        session = await _login(client, "rotate@example.com", "Password123!")

        rotated = await client.post("/auth/token", json={"refresh_token": session["refresh_token"]})
        assert rotated.status_code == 200
        pair = rotated.json()
        assert pair["token_type"] == "bearer"
        assert pair["refresh_token"] != session["refresh_token"]

        replay = await client.post("/auth/token", json={"refresh_token": session["refresh_token"]})
        assert replay.status_code == 400
        assert replay.json()["code"] == "invalid_refresh_token"

        logout = await client.post("/auth/logout", headers=_bearer(pair["access_token"]))
        assert logout.status_code == 204

    new_row = (
        await db_session.execute(select(Token).where(Token.refresh_token == pair["refresh_token"]))
    ).scalar_one()
    old_row = (
        await db_session.execute(
            select(Token).where(Token.refresh_token == session["refresh_token"])
        )
    ).scalar_one()
    assert new_row.device_id == old_row.device_id
    assert new_row.access_token_status == RecordStatus.INACTIVE
    assert old_row.refresh_token_status == RecordStatus.INACTIVE


@pytest.mark.asyncio
async def test_logout_invalidates_access_token(app_factory, verified_user_factory) -> None:
    app: FastAPI = app_factory()
    await verified_user_factory("bye@example.com", "Password123!")

    async with _client(app) as client:
        session = await _login(client, "bye@example.com", "Password123!")

        first = await client.post("/auth/logout", headers=_bearer(session["access_token"]))
        second = await client.post("/auth/logout", headers=_bearer(session["access_token"]))
        missing = await client.post("/auth/logout")

    assert first.status_code == 204
    assert second.status_code == 401
    assert missing.status_code == 401


@pytest.mark.asyncio
async def test_forgot_and_reset_password(
    app_factory,
    verified_user_factory,
    notification_sender,
    db_session,
) -> None:
    """A reset link changes the password once; the old password stops working."""
    app: FastAPI = app_factory(allow_multiple_device_login=True)
    await verified_user_factory("forgetful@example.com", "Password123!")

    async with _client(app) as client:
        forgot = await client.post(
            "/auth/forgot-password", json={"email": "forgetful@example.com"}
        )
        assert forgot.status_code == 200

        link_id = notification_sender.last_link_id("password_reset_link")
        reset = await client.post(
            f"/auth/reset-password/{link_id}",
            json={"new_password": "BrandNew456!"},
        )
        assert reset.status_code == 200

        reused = await client.post(
            f"/auth/reset-password/{link_id}",
            json={"new_password": "Another789!"},
        )
        assert reused.status_code == 401
        assert reused.json()["code"] == "link_expired"

        old_password = await client.post(
            "/auth/login",
            json={"email": "forgetful@example.com", "password": "Password123!"},
        )
        assert old_password.status_code == 401

        await _login(client, "forgetful@example.com", "BrandNew456!")

        unknown = await client.post(
            "/auth/forgot-password", json={"email": "nobody@example.com"}
        )
        assert unknown.status_code == 404

    otp_rows = (await db_session.execute(select(Otp))).scalars().all()
    assert all(row.status == RecordStatus.INACTIVE for row in otp_rows)


@pytest.mark.asyncio
async def test_signup_code_cannot_open_login_session(app_factory, notification_sender) -> None:
    """An unverified account is refused at verify-login and its signup code survives."""
    app: FastAPI = app_factory()

    async with _client(app) as client:
        await client.post(
            "/auth/signup",
            json={"email": "shortcut@example.com", "password": "Password123!"},
        )
        shortcut = await client.post(
            "/auth/verify-login",
            json={"email": "shortcut@example.com", "otp": 123456},
        )
        assert shortcut.status_code == 400
        assert shortcut.json()["code"] == "account_not_verified"

        link_id = notification_sender.last_link_id("verification_link")
        verified = await client.get(f"/auth/verify-signup/{link_id}")
        assert verified.status_code == 200


@pytest.mark.asyncio
@pytest.mark.parametrize("reset_first", [True, False])
async def test_login_and_reset_codes_live_side_by_side(
    app_factory,
    verified_user_factory,
    notification_sender,
    reset_first: bool,
) -> None:
    """Identical fixed codes for login and reset are consumed by their own flows only."""
    app: FastAPI = app_factory(allow_multiple_device_login=True)
    await verified_user_factory("both@example.com", "Password123!")

    async with _client(app) as client:
        if reset_first:
            await client.post("/auth/forgot-password", json={"email": "both@example.com"})
            await _login(client, "both@example.com", "Password123!")
        else:
            await client.post(
                "/auth/login", json={"email": "both@example.com", "password": "Password123!"}
            )
            await client.post("/auth/forgot-password", json={"email": "both@example.com"})
            verify = await client.post(
                "/auth/verify-login", json={"email": "both@example.com", "otp": 123456}
            )
            assert verify.status_code == 200

        link_id = notification_sender.last_link_id("password_reset_link")
        reset = await client.post(
            f"/auth/reset-password/{link_id}", json={"new_password": "BrandNew456!"}
        )
        assert reset.status_code == 200


@pytest.mark.asyncio
async def test_repeated_signup_rotates_link_on_same_device_session(
    app_factory,
    notification_sender,
    db_session,
) -> None:
    """A second signup reuses the pending device session and retires the first link."""
    app: FastAPI = app_factory()

    async with _client(app) as client:
        await client.post(
            "/auth/signup", json={"email": "again@example.com", "password": "Password123!"}
        )
        first_link = notification_sender.last_link_id("verification_link")
        first_token = await db_session.scalar(
            select(Token.access_token).where(Token.type == TokenKind.VERIFY)
        )
        await db_session.commit()

        await client.post(
            "/auth/signup", json={"email": "again@example.com", "password": "Password456!"}
        )
        second_link = notification_sender.last_link_id("verification_link")
        assert second_link != first_link

        signup_devices = await db_session.scalar(
            select(func.count())
            .select_from(DeviceSession)
            .where(DeviceSession.activity_type == ActivityType.SIGNUP)
        )
        verify_tokens = (
            await db_session.execute(
                select(Token.access_token).where(Token.type == TokenKind.VERIFY)
            )
        ).scalars().all()
        await db_session.commit()
        assert signup_devices == 1
        assert len(verify_tokens) == 1
        assert verify_tokens[0] != first_token

        stale = await client.get(f"/auth/verify-signup/{first_link}")
        assert stale.status_code == 401
        assert stale.json()["code"] == "invalid_link"

        fresh = await client.get(f"/auth/verify-signup/{second_link}")
        assert fresh.status_code == 200

        login = await client.post(
            "/auth/login", json={"email": "again@example.com", "password": "Password456!"}
        )
        assert login.status_code == 200


@pytest.mark.asyncio
async def test_signup_for_blocked_account_is_refused(
    app_factory,
    verified_user_factory,
    db_session,
) -> None:
    app: FastAPI = app_factory()
    user = await verified_user_factory("banned@example.com", "Password123!")
    await db_session.execute(
        update(User).where(User.id == user.id).values(status=UserStatus.BLOCKED)
    )
    await db_session.commit()

    async with _client(app) as client:
        response = await client.post(
            "/auth/signup", json={"email": "banned@example.com", "password": "Password123!"}
        )

    assert response.status_code == 400
    assert response.json()["code"] == "account_blocked"


@pytest.mark.asyncio
async def test_reset_with_lapsed_code_reports_link_expired(
    app_factory,
    verified_user_factory,
    notification_sender,
    db_session,
) -> None:
    """A live link whose code has passed its own expiry is refused as expired."""
    app: FastAPI = app_factory()
    user = await verified_user_factory("slow@example.com", "Password123!")

    async with _client(app) as client:
        await client.post("/auth/forgot-password", json={"email": "slow@example.com"})
        await db_session.execute(
            update(Otp)
            .where(Otp.user_id == user.id, Otp.type == OtpPurpose.FORGOT_PASSWORD)
            .values(expire_at=datetime.now(UTC) - timedelta(minutes=1))
        )
        await db_session.commit()

        link_id = notification_sender.last_link_id("password_reset_link")
        response = await client.post(
            f"/auth/reset-password/{link_id}", json={"new_password": "BrandNew456!"}
        )

    assert response.status_code == 401
    assert response.json()["code"] == "link_expired"


@pytest.mark.asyncio
async def test_only_newest_session_stays_active_after_second_login(
    app_factory,
    verified_user_factory,
    db_session,
) -> None:
    app: FastAPI = app_factory(allow_multiple_device_login=False)
    user = await verified_user_factory("single@example.com", "Password123!")

    async with _client(app) as client:
        await _login(client, "single@example.com", "Password123!")
        second = await _login(client, "single@example.com", "Password123!")

    active = await TokenLedger().find_active_tokens(db_session, PrincipalRef.user(user.id))
    await db_session.commit()
    assert [token.access_token for token in active] == [second["access_token"]]


@pytest.mark.asyncio
async def test_profile_view_is_recorded(app_factory, verified_user_factory, db_session) -> None:
    app: FastAPI = app_factory()
    user = await verified_user_factory("me@example.com", "Password123!")

    async with _client(app) as client:
        session = await _login(client, "me@example.com", "Password123!")
        response = await client.get("/users/me", headers=_bearer(session["access_token"]))
        anonymous = await client.get("/users/me")

    assert response.status_code == 200
    assert response.json() == {
        "id": str(user.id),
        "full_name": None,
        "email": "me@example.com",
        "role": "user",
    }
    assert anonymous.status_code == 401
    views = await db_session.scalar(
        select(func.count())
        .select_from(DeviceSession)
        .where(
            DeviceSession.user_id == user.id,
            DeviceSession.activity_type == ActivityType.VIEW_PROFILE,
        )
    )
    assert views == 1


@pytest.mark.asyncio
async def test_email_update_is_confirmed_by_code_sent_to_new_address(
    app_factory,
    verified_user_factory,
    notification_sender,
    db_session,
) -> None:
    """The new address must be free and must match the one the code was sent to."""
    app: FastAPI = app_factory()
    user = await verified_user_factory("old@example.com", "Password123!")
    await verified_user_factory("taken@example.com", "Password123!")

    async with _client(app) as client:
        session = await _login(client, "old@example.com", "Password123!")
        headers = _bearer(session["access_token"])

        taken = await client.post(
            "/users/me/email", json={"email": "taken@example.com"}, headers=headers
        )
        assert taken.status_code == 409
        assert taken.json()["code"] == "already_exists"

        requested = await client.post(
            "/users/me/email", json={"email": "New@Example.com"}, headers=headers
        )
        assert requested.status_code == 200
        assert notification_sender.messages[-1].kind == "otp"
        assert notification_sender.messages[-1].to_email == "new@example.com"

        wrong_address = await client.post(
            "/users/me/email/verify",
            json={"email": "other@example.com", "otp": 123456},
            headers=headers,
        )
        assert wrong_address.status_code == 400
        assert wrong_address.json()["code"] == "invalid_otp"

        confirmed = await client.post(
            "/users/me/email/verify",
            json={"email": "new@example.com", "otp": 123456},
            headers=headers,
        )
        assert confirmed.status_code == 200

        replay = await client.post(
            "/users/me/email/verify",
            json={"email": "new@example.com", "otp": 123456},
            headers=headers,
        )
        assert replay.status_code == 409

        profile = await client.get("/users/me", headers=headers)
        assert profile.json()["email"] == "new@example.com"

    stored_email = await db_session.scalar(select(User.email).where(User.id == user.id))
    assert stored_email == "new@example.com"


@pytest.mark.asyncio
async def test_delete_account_blocks_user_and_ends_sessions(
    app_factory,
    verified_user_factory,
    db_session,
) -> None:
    app: FastAPI = app_factory(allow_multiple_device_login=True)
    user = await verified_user_factory("leaving@example.com", "Password123!")

    async with _client(app) as client:
        first = await _login(client, "leaving@example.com", "Password123!")
        second = await _login(client, "leaving@example.com", "Password123!")

        deleted = await client.delete("/users/me", headers=_bearer(first["access_token"]))
        assert deleted.status_code == 204

        other_device = await client.get("/users/me", headers=_bearer(second["access_token"]))
        assert other_device.status_code == 401

        refresh = await client.post("/auth/token", json={"refresh_token": second["refresh_token"]})
        assert refresh.status_code == 404

        login = await client.post(
            "/auth/login", json={"email": "leaving@example.com", "password": "Password123!"}
        )
        assert login.status_code == 401

    row = (
        await db_session.execute(
            select(User.status, User.block_reason, User.deleted_at).where(User.id == user.id)
        )
    ).one()
    assert row.status == UserStatus.BLOCKED
    assert row.block_reason == BlockReason.USER_DELETED_ACCOUNT.value
    assert row.deleted_at is not None
