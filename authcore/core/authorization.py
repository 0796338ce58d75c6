"""Role x section x permission authorization decisions."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from functools import lru_cache
from typing import Literal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from authcore.core.principal import PrincipalRef
from authcore.models.role import Permission, Role, RoleSectionPermission, Section
from authcore.models.user import Admin, User

DenyReason = Literal[
    "no_rules_declared", "role_mismatch", "permission_mismatch", "missing_principal"
]

ADMIN_SECTION = "dashboard"


@dataclass(frozen=True)
class RolePermission:
    """One acceptable (role, permissions) combination for an operation.

    An empty ``permissions`` tuple means holding the role is enough.
    """

    role: str
    permissions: tuple[str, ...] = ()
    section: str | None = None


@dataclass(frozen=True)
class AuthorizationDecision:
    """Outcome of one authorization evaluation."""

    allowed: bool
    reason: DenyReason | None = None


ALLOW = AuthorizationDecision(allowed=True)


def _admin_rule(permission: str) -> tuple[RolePermission, ...]:
    return (RolePermission(role="admin", permissions=(permission,), section=ADMIN_SECTION),)


OPERATION_RULES: dict[str, tuple[RolePermission, ...]] = {
    "users.assign_role": (RolePermission(role="admin"),),
    "users.remove_role": (RolePermission(role="admin"),),
    "roles.create": _admin_rule("create"),
    "roles.view": _admin_rule("view"),
    "roles.update": _admin_rule("update"),
    "roles.delete": _admin_rule("delete"),
    "sections.create": _admin_rule("create"),
    "sections.view": _admin_rule("view"),
    "sections.update": _admin_rule("update"),
    "sections.delete": _admin_rule("delete"),
    "permissions.create": _admin_rule("create"),
    "permissions.view": _admin_rule("view"),
    "permissions.update": _admin_rule("update"),
    "permissions.delete": _admin_rule("delete"),
}


def resolve_required_rules(operation: str) -> tuple[RolePermission, ...]:
    """Return the rules guarding an operation; unknown operations have none."""
    return OPERATION_RULES.get(operation, ())


class AuthorizationEngine:
    """Fail-closed evaluation of role rules against stored grants."""

    async def evaluate(
        self,
        db_session: AsyncSession,
        principal: PrincipalRef | None,
        rules: Sequence[RolePermission],
    ) -> AuthorizationDecision:
        """Decide whether the principal's role satisfies any of the rules."""
        if not rules:
            return AuthorizationDecision(allowed=False, reason="no_rules_declared")
        if principal is None:
            return AuthorizationDecision(allowed=False, reason="missing_principal")

        role = await self._fetch_principal_role(
            db_session=db_session,
            principal=principal,
            role_names={rule.role for rule in rules},
        )
        if role is None:
            return AuthorizationDecision(allowed=False, reason="role_mismatch")

        for rule in rules:
            if rule.role != role.role_name:
                continue
            if not rule.permissions:
                return ALLOW
            granted = await self._fetch_granted_permissions(
                db_session=db_session,
                role_id=role.id,
                section=rule.section,
            )
            if set(rule.permissions) <= granted:
                return ALLOW
        return AuthorizationDecision(allowed=False, reason="permission_mismatch")

    async def check(
        self,
        db_session: AsyncSession,
        principal: PrincipalRef | None,
        rules: Sequence[RolePermission],
    ) -> bool:
        decision = await self.evaluate(db_session=db_session, principal=principal, rules=rules)
        return decision.allowed

    async def _fetch_principal_role(
        self,
        db_session: AsyncSession,
        principal: PrincipalRef,
        role_names: set[str],
    ) -> Role | None:
        """Fetch the principal's non-deleted role when its name is among the candidates."""
        owner_model = Admin if principal.kind == "admin" else User
        statement = (
            select(Role)
            .join(owner_model, owner_model.role_id == Role.id)
            .where(
                owner_model.id == principal.id,
                owner_model.deleted_at.is_(None),
                Role.role_name.in_(role_names),
                Role.deleted_at.is_(None),
            )
        )
        result = await db_session.execute(statement)
        return result.scalars().first()

    async def _fetch_granted_permissions(
        self,
        db_session: AsyncSession,
        role_id: UUID,
        section: str | None,
    ) -> set[str]:
        """Return permission names granted to a role through live grants."""
        statement = (
            select(Permission.permission_name)
            .join(RoleSectionPermission, RoleSectionPermission.permission_id == Permission.id)
            .join(Section, RoleSectionPermission.section_id == Section.id)
            .where(
                RoleSectionPermission.role_id == role_id,
                RoleSectionPermission.deleted_at.is_(None),
                Permission.deleted_at.is_(None),
                Section.deleted_at.is_(None),
            )
        )
        if section is not None:
            statement = statement.where(Section.section_name == section)
        result = await db_session.execute(statement)
        return set(result.scalars().all())


@lru_cache
def get_authorization_engine() -> AuthorizationEngine:
    """Create and cache the authorization engine."""
    return AuthorizationEngine()
