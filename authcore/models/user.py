"""User and admin principal ORM models."""

from __future__ import annotations

from typing import TYPE_CHECKING
from uuid import UUID, uuid4

from sqlalchemy import ForeignKey, Index, String
from sqlalchemy import Enum as SAEnum
from sqlalchemy.dialects.postgresql import UUID as PGUUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from authcore.db.base import Base, TimestampMixin
from authcore.models.enums import UserStatus, enum_values

if TYPE_CHECKING:
    from authcore.models.role import Role


class User(Base, TimestampMixin):
    """End-user account that signs up with email and verifies through OTP links."""

    __tablename__ = "users"
    __table_args__ = (Index("ix_users_email_deleted_at", "email", "deleted_at"),)

    id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True), primary_key=True, default=uuid4)
    full_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    email: Mapped[str | None] = mapped_column(String(320), nullable=True, unique=True)
    password_hash: Mapped[str | None] = mapped_column(String(255), nullable=True)
    contact_number: Mapped[str | None] = mapped_column(String(15), nullable=True)
    country_code: Mapped[str | None] = mapped_column(String(5), nullable=True)
    status: Mapped[UserStatus] = mapped_column(
        SAEnum(UserStatus, name="user_status", values_callable=enum_values),
        nullable=False,
        default=UserStatus.UNVERIFIED,
    )
    block_reason: Mapped[str | None] = mapped_column(String(255), nullable=True)
    image: Mapped[str | None] = mapped_column(String(255), nullable=True)
    base_url: Mapped[str | None] = mapped_column(String(512), nullable=True)
    internal_path: Mapped[str | None] = mapped_column(String(255), nullable=True)
    external_path: Mapped[str | None] = mapped_column(String(255), nullable=True)
    role_id: Mapped[UUID | None] = mapped_column(
        PGUUID(as_uuid=True), ForeignKey("roles.id", ondelete="SET NULL"), nullable=True
    )

    role: Mapped[Role | None] = relationship(lazy="joined")


class Admin(Base, TimestampMixin):
    """Back-office operator account managed outside the signup flow."""

    __tablename__ = "admins"

    id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True), primary_key=True, default=uuid4)
    first_name: Mapped[str] = mapped_column(String(255), nullable=False)
    last_name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(320), nullable=False, unique=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    role_id: Mapped[UUID | None] = mapped_column(
        PGUUID(as_uuid=True), ForeignKey("roles.id", ondelete="SET NULL"), nullable=True
    )

    role: Mapped[Role | None] = relationship(lazy="joined")
