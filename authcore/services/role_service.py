"""Role management with section permission grants."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from functools import lru_cache
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from authcore.models.role import Permission, Role, RoleSectionPermission, Section
from authcore.services.catalog_service import Page, like_pattern


class RoleServiceError(Exception):
    """Raised for role management failures."""

    def __init__(self, detail: str, code: str, status_code: int) -> None:
        super().__init__(detail)
        self.detail = detail
        self.code = code
        self.status_code = status_code


@dataclass(frozen=True)
class SectionGrant:
    """Permissions a role holds on one section."""

    section: str
    permissions: tuple[str, ...]


class RoleService:
    """Create, list, update, and soft-delete roles and their grants."""

    async def create_role(
        self,
        db_session: AsyncSession,
        role_name: str,
        grants: Sequence[SectionGrant],
    ) -> Role:
        """Create a role with its section permissions.

        A soft-deleted role with the same name is restored in place with the new grants.
        """
        normalized = role_name.strip()
        result = await db_session.execute(
            select(Role).where(Role.role_name == normalized).with_for_update()
        )
        role = result.scalar_one_or_none()
        if role is not None and role.deleted_at is None:
            raise RoleServiceError("Role already exists.", "already_exists", 409)

        sections, permissions = await self._resolve_grants(db_session=db_session, grants=grants)
        try:
            if role is None:
                role = Role(role_name=normalized)
                db_session.add(role)
            else:
                role.deleted_at = None
                await self._retire_grants(db_session=db_session, role_id=role.id)
            await db_session.flush()
            self._add_grants(db_session, role.id, grants, sections, permissions)
            await db_session.flush()
            await db_session.commit()
        except IntegrityError as exc:
            await db_session.rollback()
            raise RoleServiceError("Role already exists.", "already_exists", 409) from exc
        except Exception:
            await db_session.rollback()
            raise
        return await self.get_role(db_session=db_session, role_id=role.id)

    async def update_role(
        self,
        db_session: AsyncSession,
        role_id: UUID,
        grants: Sequence[SectionGrant],
        role_name: str | None = None,
    ) -> Role:
        """Replace a role's grants; prior grants are soft-deleted, not merged."""
        role = await self._get_live_role(db_session=db_session, role_id=role_id, for_update=True)
        sections, permissions = await self._resolve_grants(db_session=db_session, grants=grants)
        try:
            if role_name is not None and role_name.strip() != role.role_name:
                role.role_name = role_name.strip()
            await self._retire_grants(db_session=db_session, role_id=role.id)
            self._add_grants(db_session, role.id, grants, sections, permissions)
            await db_session.flush()
            await db_session.commit()
        except IntegrityError as exc:
            await db_session.rollback()
            raise RoleServiceError("Role already exists.", "already_exists", 409) from exc
        except Exception:
            await db_session.rollback()
            raise
        return await self.get_role(db_session=db_session, role_id=role_id)

    async def get_role(self, db_session: AsyncSession, role_id: UUID) -> Role:
        """Fetch a live role with its live grants."""
        return await self._get_live_role(db_session=db_session, role_id=role_id)

    async def list_roles(
        self,
        db_session: AsyncSession,
        limit: int = 10,
        offset: int = 0,
        search: str | None = None,
    ) -> Page[Role]:
        """List live roles."""
        filters = [Role.deleted_at.is_(None)]
        if search:
            filters.append(Role.role_name.ilike(like_pattern(search), escape="\\"))
        total = await db_session.scalar(select(func.count()).select_from(Role).where(*filters))
        result = await db_session.execute(
            select(Role)
            .where(*filters)
            .options(selectinload(Role.section_permissions))
            .order_by(Role.created_at.desc())
            .limit(limit)
            .offset(offset)
        )
        return Page(
            total=int(total or 0),
            limit=limit,
            offset=offset,
            data=list(result.scalars().all()),
        )

    async def remove_role(self, db_session: AsyncSession, role_id: UUID) -> None:
        """Soft-delete a role together with its grants."""
        role = await self._get_live_role(db_session=db_session, role_id=role_id, for_update=True)
        try:
            await self._retire_grants(db_session=db_session, role_id=role.id)
            role.deleted_at = datetime.now(UTC)
            await db_session.flush()
            await db_session.commit()
        except Exception:
            await db_session.rollback()
            raise

    async def _get_live_role(
        self,
        db_session: AsyncSession,
        role_id: UUID,
        for_update: bool = False,
    ) -> Role:
        statement = (
            select(Role)
            .where(Role.id == role_id, Role.deleted_at.is_(None))
            .options(selectinload(Role.section_permissions))
            .execution_options(populate_existing=True)
        )
        if for_update:
            statement = statement.with_for_update()
        result = await db_session.execute(statement)
        role = result.scalar_one_or_none()
        if role is None:
            raise RoleServiceError("Role not found.", "not_found", 404)
        return role

    async def _resolve_grants(
        self,
        db_session: AsyncSession,
        grants: Sequence[SectionGrant],
    ) -> tuple[dict[str, Section], dict[str, Permission]]:
        """Load every referenced section and permission or fail on the first unknown name."""
        section_names = {grant.section for grant in grants}
        permission_names = {name for grant in grants for name in grant.permissions}

        sections: dict[str, Section] = {}
        if section_names:
            result = await db_session.execute(
                select(Section).where(
                    Section.section_name.in_(section_names),
                    Section.deleted_at.is_(None),
                )
            )
            sections = {section.section_name: section for section in result.scalars().all()}
        permissions: dict[str, Permission] = {}
        if permission_names:
            result = await db_session.execute(
                select(Permission).where(
                    Permission.permission_name.in_(permission_names),
                    Permission.deleted_at.is_(None),
                )
            )
            permissions = {item.permission_name: item for item in result.scalars().all()}

        missing_sections = sorted(section_names - sections.keys())
        if missing_sections:
            raise RoleServiceError(
                f"Section {missing_sections[0]} not found.", "invalid_request", 400
            )
        missing_permissions = sorted(permission_names - permissions.keys())
        if missing_permissions:
            raise RoleServiceError(
                f"Permission {missing_permissions[0]} not found.", "invalid_request", 400
            )
        return sections, permissions

    @staticmethod
    def _add_grants(
        db_session: AsyncSession,
        role_id: UUID,
        grants: Sequence[SectionGrant],
        sections: dict[str, Section],
        permissions: dict[str, Permission],
    ) -> None:
        seen: set[tuple[str, str]] = set()
        for grant in grants:
            for permission_name in grant.permissions:
                if (grant.section, permission_name) in seen:
                    continue
                seen.add((grant.section, permission_name))
                db_session.add(
                    RoleSectionPermission(
                        role_id=role_id,
                        section_id=sections[grant.section].id,
                        permission_id=permissions[permission_name].id,
                    )
                )

    @staticmethod
    async def _retire_grants(db_session: AsyncSession, role_id: UUID) -> None:
        await db_session.execute(
            update(RoleSectionPermission)
            .where(
                RoleSectionPermission.role_id == role_id,
                RoleSectionPermission.deleted_at.is_(None),
            )
            .values(deleted_at=datetime.now(UTC))
            .execution_options(synchronize_session=False)
        )


@lru_cache
def get_role_service() -> RoleService:
    """Create and cache the role service."""
    return RoleService()
