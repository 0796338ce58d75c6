"""Identity flows: signup, login, password reset, refresh rotation, logout, and account care."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from functools import lru_cache
from typing import Any
from uuid import UUID

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from authcore.config import get_settings
from authcore.core.jwt import TokenValidationError
from authcore.core.otp import OtpManager, get_otp_manager
from authcore.core.principal import PrincipalKind, PrincipalRef
from authcore.core.sessions import DeviceMetadata, LinkSession, SessionTracker, get_session_tracker
from authcore.core.tokens import TokenLedger, get_token_ledger
from authcore.models.enums import (
    ActivityType,
    BlockReason,
    OtpPurpose,
    TokenKind,
    UserStatus,
)
from authcore.models.user import User
from authcore.services.notification_service import NotificationSender, get_notification_sender
from authcore.services.token_service import (
    LinkTokenType,
    TokenPair,
    TokenService,
    get_token_service,
)
from authcore.services.user_service import UserService, UserServiceError, get_user_service

logger = structlog.get_logger(__name__)


class AuthServiceError(Exception):
    """Raised for identity flow failures."""

    def __init__(self, detail: str, code: str, status_code: int) -> None:
        super().__init__(detail)
        self.detail = detail
        self.code = code
        self.status_code = status_code


def _invalid_link() -> AuthServiceError:
    return AuthServiceError("Invalid or already used link.", "invalid_link", 401)


def _link_expired() -> AuthServiceError:
    return AuthServiceError("Link has expired.", "link_expired", 401)


def _invalid_credentials() -> AuthServiceError:
    return AuthServiceError("Invalid credentials.", "invalid_credentials", 401)


@dataclass(frozen=True)
class AuthResult:
    """Tokens handed to a principal after a completed sign-in."""

    id: UUID
    email: str | None
    access_token: str
    refresh_token: str


@dataclass(frozen=True)
class AuthenticatedPrincipal:
    """Principal resolved from a live access token."""

    ref: PrincipalRef
    email: str | None
    role_name: str | None
    access_token: str


@dataclass(frozen=True)
class ProfileView:
    """Public profile of a signed-in user."""

    id: UUID
    full_name: str | None
    email: str | None
    role_name: str | None


class IdentityFlows:
    """Orchestrates OTP, token, and session primitives into account flows."""

    def __init__(
        self,
        otp_manager: OtpManager,
        token_ledger: TokenLedger,
        session_tracker: SessionTracker,
        token_service: TokenService,
        user_service: UserService,
        notification_sender: NotificationSender,
        default_user_role: str,
        verify_signup_url: str,
        reset_password_url: str,
    ) -> None:
        self._otp_manager = otp_manager
        self._token_ledger = token_ledger
        self._session_tracker = session_tracker
        self._token_service = token_service
        self._user_service = user_service
        self._notification_sender = notification_sender
        self._default_user_role = default_user_role
        self._verify_signup_url = verify_signup_url
        self._reset_password_url = reset_password_url

    async def signup(
        self,
        db_session: AsyncSession,
        email: str,
        password: str,
        metadata: DeviceMetadata,
        full_name: str | None = None,
    ) -> User:
        """Create or refresh a pending account and email its verification link."""
        normalized_email = email.strip().lower()
        try:
            user = await self._user_service.get_user_by_email(
                db_session=db_session,
                email=normalized_email,
            )
            if user is not None:
                if user.status == UserStatus.BLOCKED:
                    raise AuthServiceError("Account is blocked.", "account_blocked", 400)
                if user.status != UserStatus.UNVERIFIED:
                    raise AuthServiceError("Email already registered.", "already_exists", 409)
                user.password_hash = self._user_service.hash_password(password)
                if full_name:
                    user.full_name = full_name
            else:
                role = await self._user_service.get_role_by_name(
                    db_session=db_session,
                    role_name=self._default_user_role,
                )
                user = await self._user_service.create_user(
                    db_session=db_session,
                    email=normalized_email,
                    password=password,
                    role=role,
                    full_name=full_name,
                )
            link = await self._issue_link(
                db_session=db_session,
                owner=PrincipalRef.user(user.id),
                email=normalized_email,
                purpose=OtpPurpose.SIGNUP,
                activity_type=ActivityType.SIGNUP,
                token_type="verify",
                metadata=metadata,
            )
            await db_session.commit()
        except IntegrityError as exc:
            await db_session.rollback()
            raise AuthServiceError("Email already registered.", "already_exists", 409) from exc
        except Exception:
            await db_session.rollback()
            raise

        await self._notify(
            "verification_link",
            lambda: self._notification_sender.send_verification_link(
                to_email=normalized_email,
                link=f"{self._verify_signup_url}{link.link_id}",
                expires_in_minutes=self._link_minutes(),
            ),
        )
        return user

    async def verify_signup(
        self,
        db_session: AsyncSession,
        link_id: UUID,
        metadata: DeviceMetadata,
    ) -> AuthResult:
        """Consume a signup link, verify the account, and open a session."""
        try:
            token = await self._token_ledger.find_token_record(
                db_session=db_session,
                link_id=link_id,
                activity_type=ActivityType.SIGNUP,
            )
            if token is None or token.user is None:
                raise _invalid_link()
            linked_user = token.user
            if linked_user.status == UserStatus.VERIFIED:
                raise AuthServiceError("Account is already verified.", "already_verified", 400)
            if not self._token_ledger.is_side_valid(token, "access"):
                raise _link_expired()

            claims = self._decode_link(token.access_token, "verify")
            user = await self._user_service.get_user_by_email(
                db_session=db_session,
                email=str(claims.get("email", "")),
            )
            if user is None or user.id != linked_user.id:
                raise _invalid_link()
            owner = PrincipalRef.user(user.id)
            if not await self._otp_manager.validate_otp(
                db_session, owner, self._claim_otp(claims), OtpPurpose.SIGNUP
            ):
                raise _invalid_link()

            await self._token_ledger.invalidate_token(db_session, token, "access")
            user.status = UserStatus.VERIFIED
            result = await self._open_session(
                db_session=db_session,
                owner=owner,
                email=user.email,
                role_name=user.role.role_name if user.role is not None else None,
                activity_type=ActivityType.SIGNUP_VERIFICATION,
                metadata=metadata,
            )
            await db_session.commit()
        except Exception:
            await db_session.rollback()
            raise
        return result

    async def login(self, db_session: AsyncSession, email: str, password: str) -> None:
        """Check credentials and email a login OTP."""
        normalized_email = email.strip().lower()
        user = await self._user_service.authenticate_user(
            db_session=db_session,
            email=normalized_email,
            password=password,
        )
        if user is None:
            raise _invalid_credentials()
        if user.status == UserStatus.UNVERIFIED:
            raise AuthServiceError("Account is not verified.", "account_not_verified", 400)
        if user.status == UserStatus.BLOCKED:
            raise AuthServiceError("Account is blocked.", "account_blocked", 400)

        try:
            otp = await self._otp_manager.handle_otp_generation(
                db_session=db_session,
                owner=PrincipalRef.user(user.id),
                contact=normalized_email,
                purpose=OtpPurpose.LOGIN,
            )
            await db_session.commit()
        except Exception:
            await db_session.rollback()
            raise

        await self._notify(
            "login_otp",
            lambda: self._notification_sender.send_otp_email(
                to_email=normalized_email,
                otp=otp,
                expires_in_minutes=self._otp_minutes(),
            ),
        )

    async def verify_login(
        self,
        db_session: AsyncSession,
        email: str,
        otp: int,
        metadata: DeviceMetadata,
    ) -> AuthResult:
        """Consume a login OTP and open a session."""
        user = await self._user_service.get_user_by_email(
            db_session=db_session,
            email=email.strip().lower(),
        )
        if user is None:
            raise _invalid_credentials()
        if user.status == UserStatus.UNVERIFIED:
            raise AuthServiceError("Account is not verified.", "account_not_verified", 400)
        if user.status == UserStatus.BLOCKED:
            raise AuthServiceError("Account is blocked.", "account_blocked", 400)

        owner = PrincipalRef.user(user.id)
        try:
            if not await self._otp_manager.validate_otp(db_session, owner, otp, OtpPurpose.LOGIN):
                raise AuthServiceError("Invalid or expired code.", "invalid_otp", 401)
            result = await self._open_session(
                db_session=db_session,
                owner=owner,
                email=user.email,
                role_name=user.role.role_name if user.role is not None else None,
                activity_type=ActivityType.LOGIN,
                metadata=metadata,
            )
            await db_session.commit()
        except Exception:
            await db_session.rollback()
            raise
        return result

    async def forgot_password(
        self,
        db_session: AsyncSession,
        email: str,
        metadata: DeviceMetadata,
    ) -> None:
        """Email a password reset link."""
        normalized_email = email.strip().lower()
        user = await self._user_service.get_user_by_email(
            db_session=db_session,
            email=normalized_email,
        )
        if user is None:
            raise AuthServiceError("User not found.", "not_found", 404)

        try:
            link = await self._issue_link(
                db_session=db_session,
                owner=PrincipalRef.user(user.id),
                email=normalized_email,
                purpose=OtpPurpose.FORGOT_PASSWORD,
                activity_type=ActivityType.FORGOT_PASSWORD,
                token_type="reset",
                metadata=metadata,
            )
            await db_session.commit()
        except Exception:
            await db_session.rollback()
            raise

        await self._notify(
            "password_reset_link",
            lambda: self._notification_sender.send_password_reset_link(
                to_email=normalized_email,
                link=f"{self._reset_password_url}{link.link_id}",
                expires_in_minutes=self._link_minutes(),
            ),
        )

    async def reset_password(
        self,
        db_session: AsyncSession,
        link_id: UUID,
        new_password: str,
        metadata: DeviceMetadata,
    ) -> None:
        """Consume a reset link and store the new password."""
        try:
            token = await self._token_ledger.find_token_record(
                db_session=db_session,
                link_id=link_id,
                activity_type=ActivityType.FORGOT_PASSWORD,
            )
            if token is None:
                raise _invalid_link()
            if not self._token_ledger.is_side_valid(token, "access"):
                raise _link_expired()

            claims = self._decode_link(token.access_token, "reset")
            otp_row = await self._otp_manager.find_link_otp(
                db_session=db_session,
                email=str(claims.get("email", "")),
                code=self._claim_otp(claims),
                purpose=OtpPurpose.FORGOT_PASSWORD,
            )
            if otp_row is None or otp_row.user_id is None:
                raise _invalid_link()
            if not otp_row.is_verified and otp_row.expire_at < datetime.now(UTC):
                raise _link_expired()

            owner = PrincipalRef.of(otp_row)
            if not await self._otp_manager.validate_otp(
                db_session, owner, otp_row.otp, OtpPurpose.FORGOT_PASSWORD
            ):
                raise _invalid_link()
            user = await self._user_service.get_user_by_id(db_session=db_session, user_id=owner.id)
            if user is None:
                raise _invalid_link()

            user.password_hash = self._user_service.hash_password(new_password)
            await self._token_ledger.invalidate_token(db_session, token, "access")
            await self._session_tracker.record_activity(
                db_session,
                owner,
                ActivityType.RESET_PASSWORD,
                metadata,
            )
            await db_session.commit()
        except Exception:
            await db_session.rollback()
            raise

    async def refresh_token(self, db_session: AsyncSession, raw_refresh_token: str) -> TokenPair:
        """Rotate a refresh token into a new pair on the same device."""
        try:
            claims = self._token_service.decode(raw_refresh_token, expected_type="refresh")
        except TokenValidationError as exc:
            raise AuthServiceError("Invalid token.", "invalid_token", 401) from exc
        owner = self._principal_from_claims(claims)

        try:
            principal = await self._user_service.get_principal(
                db_session=db_session, principal=owner
            )
            if principal is None:
                raise AuthServiceError("Account not found.", "not_found", 404)
            token = await self._token_ledger.find_by_raw(
                db_session=db_session,
                raw=raw_refresh_token,
                which="refresh",
                owner=owner,
                for_update=True,
            )
            if token is None:
                raise AuthServiceError("Invalid token.", "invalid_token", 400)
            if not self._token_ledger.is_side_valid(token, "refresh"):
                raise AuthServiceError(
                    "Refresh token is no longer valid.", "invalid_refresh_token", 400
                )

            await self._token_ledger.invalidate_token(db_session, token, "refresh")
            pair = self._token_service.issue_token_pair(
                principal=owner,
                email=principal.email,
                role_name=principal.role.role_name if principal.role is not None else None,
            )
            await self._token_ledger.issue(
                db_session=db_session,
                owner=owner,
                access_token=pair.access_token,
                access_token_expiry=pair.access_token_expiry,
                refresh_token=pair.refresh_token,
                refresh_token_expiry=pair.refresh_token_expiry,
                device=token.device,
            )
            await db_session.commit()
        except Exception:
            await db_session.rollback()
            raise
        logger.info("tokens_issued", principal=str(owner), activity="refresh")
        return pair

    async def logout(
        self,
        db_session: AsyncSession,
        principal: PrincipalRef,
        raw_token: str,
        metadata: DeviceMetadata,
    ) -> None:
        """Invalidate the presented token and record the logout."""
        now = datetime.now(UTC)
        try:
            access_row = await self._token_ledger.find_by_raw(
                db_session=db_session, raw=raw_token, which="access", owner=principal
            )
            if access_row is not None:
                await self._token_ledger.invalidate_token(db_session, access_row, "access")
                if access_row.device is not None:
                    access_row.device.is_active = False
                    access_row.device.last_active_at = now
            refresh_row = await self._token_ledger.find_by_raw(
                db_session=db_session, raw=raw_token, which="refresh", owner=principal
            )
            if refresh_row is not None:
                await self._token_ledger.invalidate_token(db_session, refresh_row, "refresh")
            await self._session_tracker.record_activity(
                db_session,
                principal,
                ActivityType.LOGOUT,
                metadata,
                is_active=False,
                last_active_at=now,
            )
            await db_session.commit()
        except Exception:
            await db_session.rollback()
            raise

    async def admin_login(
        self,
        db_session: AsyncSession,
        email: str,
        password: str,
        metadata: DeviceMetadata,
    ) -> AuthResult:
        """Check admin credentials and open an admin session."""
        admin = await self._user_service.authenticate_admin(
            db_session=db_session,
            email=email.strip().lower(),
            password=password,
        )
        if admin is None:
            raise _invalid_credentials()

        try:
            result = await self._open_session(
                db_session=db_session,
                owner=PrincipalRef.admin(admin.id),
                email=admin.email,
                role_name=admin.role.role_name if admin.role is not None else None,
                activity_type=ActivityType.LOGIN,
                metadata=metadata,
            )
            await db_session.commit()
        except Exception:
            await db_session.rollback()
            raise
        return result

    async def assign_role(self, db_session: AsyncSession, user_id: UUID, role_id: UUID) -> User:
        """Bind a user to a role."""
        try:
            return await self._user_service.assign_role(
                db_session=db_session, user_id=user_id, role_id=role_id
            )
        except UserServiceError as exc:
            raise AuthServiceError(exc.detail, exc.code, exc.status_code) from exc

    async def remove_role(self, db_session: AsyncSession, user_id: UUID, role_id: UUID) -> User:
        """Reset a user's role to the default user role."""
        try:
            return await self._user_service.remove_role(
                db_session=db_session,
                user_id=user_id,
                role_id=role_id,
                fallback_role_name=self._default_user_role,
            )
        except UserServiceError as exc:
            raise AuthServiceError(exc.detail, exc.code, exc.status_code) from exc

    async def admin_logout(
        self,
        db_session: AsyncSession,
        principal: PrincipalRef,
        raw_token: str,
        metadata: DeviceMetadata,
    ) -> None:
        """End an administrator's session."""
        self._require_kind(principal, "admin")
        await self.logout(
            db_session=db_session,
            principal=principal,
            raw_token=raw_token,
            metadata=metadata,
        )

    async def change_admin_password(
        self,
        db_session: AsyncSession,
        principal: PrincipalRef,
        old_password: str,
        new_password: str,
    ) -> None:
        """Replace an administrator's password after checking the current one."""
        self._require_kind(principal, "admin")
        admin = await self._user_service.get_admin_by_id(
            db_session=db_session, admin_id=principal.id
        )
        if admin is None:
            raise AuthServiceError("Admin not found.", "not_found", 404)
        if not self._user_service.verify_password(
            password=old_password, password_hash=admin.password_hash
        ):
            raise _invalid_credentials()

        try:
            admin.password_hash = self._user_service.hash_password(new_password)
            await db_session.commit()
        except Exception:
            await db_session.rollback()
            raise
        logger.info("admin_password_changed", principal=str(principal))

    async def view_profile(
        self,
        db_session: AsyncSession,
        principal: PrincipalRef,
        metadata: DeviceMetadata,
    ) -> ProfileView:
        """Return the caller's profile and record the view."""
        self._require_kind(principal, "user")
        user = await self._user_service.get_user_by_id(db_session=db_session, user_id=principal.id)
        if user is None:
            raise AuthServiceError("User not found.", "not_found", 404)

        try:
            await self._session_tracker.record_activity(
                db_session, principal, ActivityType.VIEW_PROFILE, metadata
            )
            await db_session.commit()
        except Exception:
            await db_session.rollback()
            raise
        return ProfileView(
            id=user.id,
            full_name=user.full_name,
            email=user.email,
            role_name=user.role.role_name if user.role is not None else None,
        )

    async def request_email_update(
        self,
        db_session: AsyncSession,
        principal: PrincipalRef,
        new_email: str,
        metadata: DeviceMetadata,
    ) -> None:
        """Email a confirmation code to the address the caller wants to switch to."""
        self._require_kind(principal, "user")
        normalized_email = new_email.strip().lower()
        user = await self._user_service.get_user_by_id(db_session=db_session, user_id=principal.id)
        if user is None:
            raise AuthServiceError("User not found.", "not_found", 404)
        await self._ensure_email_available(db_session, normalized_email)

        try:
            otp = await self._otp_manager.handle_otp_generation(
                db_session=db_session,
                owner=principal,
                contact=normalized_email,
                purpose=OtpPurpose.UPDATE_EMAIL,
            )
            await self._session_tracker.record_activity(
                db_session, principal, ActivityType.UPDATE_EMAIL, metadata
            )
            await db_session.commit()
        except Exception:
            await db_session.rollback()
            raise

        await self._notify(
            "email_update_otp",
            lambda: self._notification_sender.send_otp_email(
                to_email=normalized_email,
                otp=otp,
                expires_in_minutes=self._otp_minutes(),
            ),
        )

    async def verify_email_update(
        self,
        db_session: AsyncSession,
        principal: PrincipalRef,
        new_email: str,
        otp: int,
        metadata: DeviceMetadata,
    ) -> None:
        """Consume the code sent to the new address and switch the account email to it."""
        self._require_kind(principal, "user")
        normalized_email = new_email.strip().lower()
        user = await self._user_service.get_user_by_id(db_session=db_session, user_id=principal.id)
        if user is None:
            raise _invalid_credentials()
        await self._ensure_email_available(db_session, normalized_email)

        try:
            otp_row = await self._otp_manager.find_link_otp(
                db_session=db_session,
                email=normalized_email,
                code=otp,
                purpose=OtpPurpose.UPDATE_EMAIL,
            )
            if otp_row is None or otp_row.user_id != user.id:
                raise AuthServiceError("Invalid or expired code.", "invalid_otp", 400)
            if not await self._otp_manager.validate_otp(
                db_session, principal, otp, OtpPurpose.UPDATE_EMAIL
            ):
                raise AuthServiceError("Invalid or expired code.", "invalid_otp", 400)

            user.email = normalized_email
            await self._session_tracker.record_activity(
                db_session, principal, ActivityType.VERIFY_EMAIL_UPDATE, metadata
            )
            await db_session.commit()
        except IntegrityError as exc:
            await db_session.rollback()
            raise AuthServiceError("Email already registered.", "already_exists", 409) from exc
        except Exception:
            await db_session.rollback()
            raise
        logger.info("email_updated", principal=str(principal))

    async def delete_account(
        self,
        db_session: AsyncSession,
        principal: PrincipalRef,
        metadata: DeviceMetadata,
    ) -> None:
        """Soft-delete the caller's account, block it, and end all of its sessions."""
        self._require_kind(principal, "user")
        user = await self._user_service.get_user_by_id(db_session=db_session, user_id=principal.id)
        if user is None:
            raise AuthServiceError("User not found.", "not_found", 404)

        now = datetime.now(UTC)
        try:
            tokens = await self._token_ledger.find_active_tokens(db_session, principal)
            for token in tokens:
                await self._token_ledger.invalidate_token(db_session, token, "access")
                await self._token_ledger.invalidate_token(db_session, token, "refresh")
                if token.device is not None:
                    token.device.is_active = False
                    token.device.last_active_at = now
            user.status = UserStatus.BLOCKED
            user.block_reason = BlockReason.USER_DELETED_ACCOUNT.value
            user.deleted_at = now
            await self._session_tracker.record_activity(
                db_session,
                principal,
                ActivityType.DELETE_ACCOUNT,
                metadata,
                is_active=False,
                last_active_at=now,
            )
            await db_session.commit()
        except Exception:
            await db_session.rollback()
            raise
        logger.info("account_deleted", principal=str(principal), sessions_closed=len(tokens))

    async def authenticate_access_token(
        self,
        db_session: AsyncSession,
        raw_token: str,
    ) -> AuthenticatedPrincipal:
        """Resolve the principal behind a bearer access token."""
        try:
            claims = self._token_service.decode(raw_token, expected_type="access")
        except TokenValidationError as exc:
            raise AuthServiceError("Invalid token.", "invalid_token", 401) from exc
        if not await self._token_ledger.validate_token(db_session, raw_token, "access"):
            raise AuthServiceError("Invalid token.", "invalid_token", 401)

        owner = self._principal_from_claims(claims)
        principal = await self._user_service.get_principal(db_session=db_session, principal=owner)
        if principal is None:
            raise AuthServiceError("Invalid token.", "invalid_token", 401)
        return AuthenticatedPrincipal(
            ref=owner,
            email=principal.email,
            role_name=principal.role.role_name if principal.role is not None else None,
            access_token=raw_token,
        )

    async def _open_session(
        self,
        db_session: AsyncSession,
        owner: PrincipalRef,
        email: str | None,
        role_name: str | None,
        activity_type: ActivityType,
        metadata: DeviceMetadata,
    ) -> AuthResult:
        """Retire other sessions, record this one, and store a fresh pair bound to it."""
        await self._session_tracker.enforce_single_session(db_session, owner)
        device = await self._session_tracker.record_activity(
            db_session,
            owner,
            activity_type,
            metadata,
            is_active=True,
            last_active_at=datetime.now(UTC),
        )
        pair = self._token_service.issue_token_pair(
            principal=owner,
            email=email,
            role_name=role_name,
        )
        await self._token_ledger.issue(
            db_session=db_session,
            owner=owner,
            access_token=pair.access_token,
            access_token_expiry=pair.access_token_expiry,
            refresh_token=pair.refresh_token,
            refresh_token_expiry=pair.refresh_token_expiry,
            device=device,
        )
        logger.info("tokens_issued", principal=str(owner), activity=activity_type.value)
        return AuthResult(
            id=owner.id,
            email=email,
            access_token=pair.access_token,
            refresh_token=pair.refresh_token,
        )

    async def _issue_link(
        self,
        db_session: AsyncSession,
        owner: PrincipalRef,
        email: str,
        purpose: OtpPurpose,
        activity_type: ActivityType,
        token_type: LinkTokenType,
        metadata: DeviceMetadata,
    ) -> LinkSession:
        """Generate an OTP, wrap it in a link token, and bind it to a device session."""
        otp = await self._otp_manager.handle_otp_generation(
            db_session=db_session,
            owner=owner,
            contact=email,
            purpose=purpose,
        )
        link_token = self._token_service.issue_link_token(
            principal_id=str(owner.id),
            email=email,
            otp=otp,
            token_type=token_type,
        )
        return await self._session_tracker.upsert_link_session(
            db_session=db_session,
            owner=owner,
            activity_type=activity_type,
            metadata=metadata,
            link_token=link_token.token,
            link_token_expiry=link_token.expires_at,
            token_kind=TokenKind.VERIFY if token_type == "verify" else TokenKind.RESET,
        )

    async def _ensure_email_available(self, db_session: AsyncSession, email: str) -> None:
        existing = await self._user_service.get_user_by_email(db_session=db_session, email=email)
        if existing is not None:
            raise AuthServiceError("Email already registered.", "already_exists", 409)

    @staticmethod
    def _require_kind(principal: PrincipalRef, kind: PrincipalKind) -> None:
        if principal.kind != kind:
            raise AuthServiceError("Access denied.", "forbidden", 403)

    def _decode_link(self, token: str, token_type: LinkTokenType) -> dict[str, Any]:
        try:
            return self._token_service.decode(token, expected_type=token_type)
        except TokenValidationError as exc:
            if exc.code == "token_expired":
                raise _link_expired() from exc
            raise _invalid_link() from exc

    @staticmethod
    def _claim_otp(claims: dict[str, Any]) -> int:
        try:
            return int(claims.get("otp", 0))
        except (TypeError, ValueError) as exc:
            raise _invalid_link() from exc

    @staticmethod
    def _principal_from_claims(claims: dict[str, Any]) -> PrincipalRef:
        try:
            principal_id = UUID(str(claims.get("sub", "")))
        except ValueError as exc:
            raise AuthServiceError("Invalid token.", "invalid_token", 401) from exc
        if claims.get("principal") == "admin":
            return PrincipalRef.admin(principal_id)
        return PrincipalRef.user(principal_id)

    async def _notify(self, template: str, delivery: Callable[[], Awaitable[None]]) -> None:
        """Send a notification after commit; delivery failures never fail the flow."""
        try:
            await delivery()
        except OSError as exc:
            logger.warning("notification_delivery_failed", template=template, error=str(exc))

    def _link_minutes(self) -> int:
        return max(self._token_service.link_token_ttl_seconds // 60, 1)

    def _otp_minutes(self) -> int:
        return max(self._otp_manager.ttl_seconds // 60, 1)


@lru_cache
def get_identity_flows() -> IdentityFlows:
    """Create and cache identity flows dependency."""
    settings = get_settings()
    return IdentityFlows(
        otp_manager=get_otp_manager(),
        token_ledger=get_token_ledger(),
        session_tracker=get_session_tracker(),
        token_service=get_token_service(),
        user_service=get_user_service(),
        notification_sender=get_notification_sender(),
        default_user_role=settings.roles.default_user_role,
        verify_signup_url=settings.email.verify_signup_url,
        reset_password_url=settings.email.reset_password_url,
    )
