"""JWT minting for session pairs and emailed link tokens."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from functools import lru_cache
from typing import Any, Literal

from authcore.config import get_settings
from authcore.core.jwt import JWTService, TokenType, get_jwt_service
from authcore.core.principal import PrincipalRef

LinkTokenType = Literal["verify", "reset"]


@dataclass(frozen=True)
class TokenPair:
    """Returned access and refresh JWT pair with their expiries."""

    access_token: str
    refresh_token: str
    access_token_expiry: datetime
    refresh_token_expiry: datetime


@dataclass(frozen=True)
class LinkToken:
    """Short-lived JWT embedded behind an emailed link."""

    token: str
    expires_at: datetime


class TokenService:
    """Service responsible for creating and decoding signed tokens."""

    def __init__(
        self,
        jwt_service: JWTService,
        access_token_ttl_seconds: int,
        refresh_token_ttl_seconds: int,
        link_token_ttl_seconds: int,
    ) -> None:
        self._jwt_service = jwt_service
        self._access_token_ttl_seconds = access_token_ttl_seconds
        self._refresh_token_ttl_seconds = refresh_token_ttl_seconds
        self._link_token_ttl_seconds = link_token_ttl_seconds

    @property
    def link_token_ttl_seconds(self) -> int:
        return self._link_token_ttl_seconds

    def issue_token_pair(
        self,
        principal: PrincipalRef,
        email: str | None,
        role_name: str | None,
    ) -> TokenPair:
        """Issue access and refresh tokens for a principal."""
        issued_at = datetime.now(UTC)
        principal_id = str(principal.id)
        claims: dict[str, Any] = {
            "id": principal_id,
            "email": email,
            "roleName": role_name,
            "principal": principal.kind,
        }
        access_token = self._jwt_service.issue_token(
            subject=principal_id,
            token_type="access",
            expires_in_seconds=self._access_token_ttl_seconds,
            additional_claims=claims,
        )
        refresh_token = self._jwt_service.issue_token(
            subject=principal_id,
            token_type="refresh",
            expires_in_seconds=self._refresh_token_ttl_seconds,
            additional_claims=claims,
        )
        return TokenPair(
            access_token=access_token,
            refresh_token=refresh_token,
            access_token_expiry=issued_at + timedelta(seconds=self._access_token_ttl_seconds),
            refresh_token_expiry=issued_at + timedelta(seconds=self._refresh_token_ttl_seconds),
        )

    def issue_link_token(
        self,
        principal_id: str,
        email: str,
        otp: int,
        token_type: LinkTokenType,
    ) -> LinkToken:
        """Issue a verify/reset token carrying the OTP it unlocks."""
        issued_at = datetime.now(UTC)
        token = self._jwt_service.issue_token(
            subject=principal_id,
            token_type=token_type,
            expires_in_seconds=self._link_token_ttl_seconds,
            additional_claims={"id": principal_id, "email": email, "otp": otp},
        )
        return LinkToken(
            token=token,
            expires_at=issued_at + timedelta(seconds=self._link_token_ttl_seconds),
        )

    def decode(self, token: str, expected_type: TokenType) -> dict[str, Any]:
        """Verify a token and return its claims; raises TokenValidationError."""
        return self._jwt_service.verify_token(token, expected_type=expected_type)


@lru_cache
def get_token_service() -> TokenService:
    """Build and cache token service based on application settings."""
    settings = get_settings()
    return TokenService(
        jwt_service=get_jwt_service(),
        access_token_ttl_seconds=settings.jwt.access_token_ttl_seconds,
        refresh_token_ttl_seconds=settings.jwt.refresh_token_ttl_seconds,
        link_token_ttl_seconds=settings.jwt.link_token_ttl_seconds,
    )
