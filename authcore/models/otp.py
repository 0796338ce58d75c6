"""One-time passcode ORM model."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import Boolean, CheckConstraint, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy import Enum as SAEnum
from sqlalchemy import text
from sqlalchemy.dialects.postgresql import UUID as PGUUID
from sqlalchemy.orm import Mapped, mapped_column

from authcore.db.base import Base, TimestampMixin
from authcore.models.enums import OtpPurpose, RecordStatus, enum_values


class Otp(Base, TimestampMixin):
    """Numeric verification code bound to one (principal, purpose) pair."""

    __tablename__ = "otps"
    __table_args__ = (
        CheckConstraint("num_nonnulls(user_id, admin_id) <= 1", name="single_owner"),
        Index(
            "uq_otps_user_id_type",
            "user_id",
            "type",
            unique=True,
            postgresql_where=text("user_id IS NOT NULL"),
        ),
        Index(
            "uq_otps_admin_id_type",
            "admin_id",
            "type",
            unique=True,
            postgresql_where=text("admin_id IS NOT NULL"),
        ),
        Index("ix_otps_email_type", "email", "type"),
    )

    id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id: Mapped[UUID | None] = mapped_column(
        PGUUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=True
    )
    admin_id: Mapped[UUID | None] = mapped_column(
        PGUUID(as_uuid=True), ForeignKey("admins.id", ondelete="CASCADE"), nullable=True
    )
    otp: Mapped[int] = mapped_column(Integer, nullable=False)
    country_code: Mapped[str | None] = mapped_column(String(5), nullable=True)
    contact_number: Mapped[str | None] = mapped_column(String(15), nullable=True)
    email: Mapped[str | None] = mapped_column(Text, nullable=True)
    type: Mapped[OtpPurpose] = mapped_column(
        SAEnum(OtpPurpose, name="otp_purpose", values_callable=enum_values), nullable=False
    )
    is_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    status: Mapped[RecordStatus] = mapped_column(
        SAEnum(RecordStatus, name="record_status", values_callable=enum_values),
        nullable=False,
        default=RecordStatus.ACTIVE,
    )
    expire_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
