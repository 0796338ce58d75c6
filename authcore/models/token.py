"""Token ORM model."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID, uuid4

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Index, Text
from sqlalchemy import Enum as SAEnum
from sqlalchemy.dialects.postgresql import UUID as PGUUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from authcore.db.base import Base, TimestampMixin
from authcore.models.enums import RecordStatus, TokenKind, enum_values

if TYPE_CHECKING:
    from authcore.models.device_session import DeviceSession
    from authcore.models.user import Admin, User


class Token(Base, TimestampMixin):
    """Issued access/refresh pair with independent status and expiry per side."""

    __tablename__ = "tokens"
    __table_args__ = (
        CheckConstraint("num_nonnulls(user_id, admin_id) = 1", name="single_owner"),
        Index("ix_tokens_access_token", "access_token"),
        Index("ix_tokens_refresh_token", "refresh_token"),
        Index("ix_tokens_user_id", "user_id"),
        Index("ix_tokens_admin_id", "admin_id"),
    )

    id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id: Mapped[UUID | None] = mapped_column(
        PGUUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=True
    )
    admin_id: Mapped[UUID | None] = mapped_column(
        PGUUID(as_uuid=True), ForeignKey("admins.id", ondelete="CASCADE"), nullable=True
    )
    device_id: Mapped[UUID | None] = mapped_column(
        PGUUID(as_uuid=True), ForeignKey("device_sessions.id", ondelete="CASCADE"), nullable=True
    )
    type: Mapped[TokenKind] = mapped_column(
        SAEnum(TokenKind, name="token_kind", values_callable=enum_values),
        nullable=False,
        default=TokenKind.VERIFY,
    )
    access_token: Mapped[str] = mapped_column(Text, nullable=False)
    refresh_token: Mapped[str | None] = mapped_column(Text, nullable=True)
    access_token_status: Mapped[RecordStatus] = mapped_column(
        SAEnum(RecordStatus, name="record_status", values_callable=enum_values),
        nullable=False,
        default=RecordStatus.ACTIVE,
    )
    refresh_token_status: Mapped[RecordStatus] = mapped_column(
        SAEnum(RecordStatus, name="record_status", values_callable=enum_values),
        nullable=False,
        default=RecordStatus.ACTIVE,
    )
    access_token_expiry: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    refresh_token_expiry: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    user: Mapped[User | None] = relationship()
    admin: Mapped[Admin | None] = relationship()
    device: Mapped[DeviceSession | None] = relationship(back_populates="tokens")
