"""Role, section, permission and junction ORM models."""

from __future__ import annotations

from uuid import UUID, uuid4

from sqlalchemy import ForeignKey, Index, String
from sqlalchemy.dialects.postgresql import UUID as PGUUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from authcore.db.base import Base, TimestampMixin


class Role(Base, TimestampMixin):
    """Named bucket of section permissions held by principals."""

    __tablename__ = "roles"

    id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True), primary_key=True, default=uuid4)
    role_name: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)

    section_permissions: Mapped[list[RoleSectionPermission]] = relationship(
        primaryjoin="and_(Role.id == RoleSectionPermission.role_id, "
        "RoleSectionPermission.deleted_at.is_(None))",
        viewonly=True,
    )


class Section(Base, TimestampMixin):
    """Functional area of the product, e.g. dashboard."""

    __tablename__ = "sections"

    id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True), primary_key=True, default=uuid4)
    section_name: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)


class Permission(Base, TimestampMixin):
    """Named capability such as create or delete."""

    __tablename__ = "permissions"

    id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True), primary_key=True, default=uuid4)
    permission_name: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)


class RoleSectionPermission(Base, TimestampMixin):
    """Grant of one permission on one section to one role."""

    __tablename__ = "role_section_permissions"
    __table_args__ = (
        Index("ix_role_section_permissions_role_id_deleted_at", "role_id", "deleted_at"),
    )

    id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True), primary_key=True, default=uuid4)
    role_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True), ForeignKey("roles.id", ondelete="CASCADE"), nullable=False
    )
    section_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True), ForeignKey("sections.id", ondelete="CASCADE"), nullable=False
    )
    permission_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True), ForeignKey("permissions.id", ondelete="CASCADE"), nullable=False
    )

    section: Mapped[Section] = relationship(lazy="joined")
    permission: Mapped[Permission] = relationship(lazy="joined")
