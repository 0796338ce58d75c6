"""One-time passcode generation and single-use validation."""

from __future__ import annotations

import re
import secrets
from datetime import UTC, datetime, timedelta
from functools import lru_cache

import structlog
from sqlalchemy import select, text, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from authcore.config import get_settings
from authcore.core.principal import PrincipalRef
from authcore.models.enums import OtpPurpose, RecordStatus
from authcore.models.otp import Otp

logger = structlog.get_logger(__name__)

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
OTP_MIN = 100000
OTP_MAX = 999999


class OtpManager:
    """Issue and consume six-digit codes bound to (principal, purpose)."""

    def __init__(self, ttl_seconds: int = 300, fixed_code: int | None = None) -> None:
        self._ttl_seconds = ttl_seconds
        self._fixed_code = fixed_code

    @property
    def ttl_seconds(self) -> int:
        return self._ttl_seconds

    def generate_code(self) -> int:
        """Return the fixed development code or a uniform random six-digit code."""
        if self._fixed_code is not None:
            return self._fixed_code
        return OTP_MIN + secrets.randbelow(OTP_MAX - OTP_MIN + 1)

    @staticmethod
    def is_email(contact: str) -> bool:
        return EMAIL_PATTERN.match(contact) is not None

    async def handle_otp_generation(
        self,
        db_session: AsyncSession,
        owner: PrincipalRef,
        contact: str,
        purpose: OtpPurpose,
        country_code: str | None = None,
    ) -> int:
        """Create or overwrite the single OTP row for (owner, purpose) and return the code."""
        code = self.generate_code()
        expire_at = datetime.now(UTC) + timedelta(seconds=self._ttl_seconds)
        if self.is_email(contact):
            contact_values = {"email": contact, "contact_number": None, "country_code": None}
        else:
            contact_values = {
                "email": None,
                "contact_number": contact,
                "country_code": country_code,
            }
        values = {
            **owner.owner_fields(),
            **contact_values,
            "otp": code,
            "type": purpose,
            "is_verified": False,
            "status": RecordStatus.ACTIVE,
            "expire_at": expire_at,
            "deleted_at": None,
        }
        statement = insert(Otp).values(**values)
        statement = statement.on_conflict_do_update(
            index_elements=[owner.owner_column, "type"],
            index_where=text(f"{owner.owner_column} IS NOT NULL"),
            set_={
                "otp": statement.excluded.otp,
                "email": statement.excluded.email,
                "contact_number": statement.excluded.contact_number,
                "country_code": statement.excluded.country_code,
                "is_verified": False,
                "status": RecordStatus.ACTIVE,
                "expire_at": statement.excluded.expire_at,
                "deleted_at": None,
                "updated_at": datetime.now(UTC),
            },
        )
        await db_session.execute(statement)
        logger.info("otp_generated", principal=str(owner), purpose=purpose.value)
        return code

    async def validate_otp(
        self,
        db_session: AsyncSession,
        owner: PrincipalRef,
        code: int,
        purpose: OtpPurpose,
    ) -> bool:
        """Consume a matching active, unverified, unexpired code in one conditional update.

        The match is scoped to `purpose` so codes issued for different flows never
        stand in for each other.
        """
        statement = (
            update(Otp)
            .where(
                owner.owner_filter(Otp),
                Otp.otp == code,
                Otp.type == purpose,
                Otp.status == RecordStatus.ACTIVE,
                Otp.is_verified.is_(False),
                Otp.expire_at > datetime.now(UTC),
                Otp.deleted_at.is_(None),
            )
            .values(is_verified=True, status=RecordStatus.INACTIVE, updated_at=datetime.now(UTC))
            .returning(Otp.id)
            .execution_options(synchronize_session=False)
        )
        result = await db_session.execute(statement)
        return result.first() is not None

    async def find_link_otp(
        self,
        db_session: AsyncSession,
        email: str,
        code: int,
        purpose: OtpPurpose,
    ) -> Otp | None:
        """Fetch the OTP row referenced by a link token's claims."""
        statement = select(Otp).where(
            Otp.email == email,
            Otp.otp == code,
            Otp.type == purpose,
            Otp.deleted_at.is_(None),
        )
        result = await db_session.execute(statement)
        return result.scalars().first()


@lru_cache
def get_otp_manager() -> OtpManager:
    """Create and cache the OTP manager from settings."""
    settings = get_settings()
    fixed_code = settings.otp.fixed_code if settings.otp.mode == "fixed" else None
    return OtpManager(ttl_seconds=settings.otp.ttl_seconds, fixed_code=fixed_code)
