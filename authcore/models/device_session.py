"""Device session ORM model."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID, uuid4

from sqlalchemy import Boolean, CheckConstraint, DateTime, ForeignKey, Index, String
from sqlalchemy import Enum as SAEnum
from sqlalchemy.dialects.postgresql import UUID as PGUUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from authcore.db.base import Base, TimestampMixin
from authcore.models.enums import ActivityType, DeviceType, enum_values

if TYPE_CHECKING:
    from authcore.models.token import Token
    from authcore.models.user import Admin, User


class DeviceSession(Base, TimestampMixin):
    """One auth-relevant activity from one client device."""

    __tablename__ = "device_sessions"
    __table_args__ = (
        CheckConstraint("num_nonnulls(user_id, admin_id) = 1", name="single_owner"),
        Index("ix_device_sessions_link_id_activity_type", "link_id", "activity_type"),
        Index("ix_device_sessions_user_id_activity_type", "user_id", "activity_type"),
    )

    id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id: Mapped[UUID | None] = mapped_column(
        PGUUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=True
    )
    admin_id: Mapped[UUID | None] = mapped_column(
        PGUUID(as_uuid=True), ForeignKey("admins.id", ondelete="CASCADE"), nullable=True
    )
    device_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    device_name: Mapped[str | None] = mapped_column(String(512), nullable=True)
    device_ip: Mapped[str | None] = mapped_column(String(64), nullable=True)
    app_version: Mapped[str | None] = mapped_column(String(64), nullable=True)
    device_type: Mapped[DeviceType | None] = mapped_column(
        SAEnum(DeviceType, name="device_type", values_callable=enum_values), nullable=True
    )
    activity_type: Mapped[ActivityType] = mapped_column(
        SAEnum(ActivityType, name="activity_type", values_callable=enum_values), nullable=False
    )
    timezone: Mapped[str | None] = mapped_column(String(64), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    last_active_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    registered_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    link_id: Mapped[UUID | None] = mapped_column(PGUUID(as_uuid=True), nullable=True)

    user: Mapped[User | None] = relationship()
    admin: Mapped[Admin | None] = relationship()
    tokens: Mapped[list[Token]] = relationship(back_populates="device")
