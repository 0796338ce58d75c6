"""Unit tests for role and permission authorization decisions."""

from __future__ import annotations

from types import MethodType
from uuid import UUID, uuid4

import pytest

from authcore.core.authorization import (
    AuthorizationEngine,
    RolePermission,
    resolve_required_rules,
)
from authcore.core.principal import PrincipalRef
from authcore.models.role import Role


def _engine(role: Role | None, granted: set[str]) -> tuple[AuthorizationEngine, list[str | None]]:
    """Build an engine whose role and grant lookups return fixed values."""
    engine = AuthorizationEngine()
    sections_seen: list[str | None] = []

    async def _fake_role(
        self: AuthorizationEngine,
        db_session: object,
        principal: PrincipalRef,
        role_names: set[str],
    ) -> Role | None:
        if role is None or role.role_name not in role_names:
            return None
        return role

    async def _fake_permissions(
        self: AuthorizationEngine,
        db_session: object,
        role_id: UUID,
        section: str | None,
    ) -> set[str]:
        sections_seen.append(section)
        return granted

    engine._fetch_principal_role = MethodType(_fake_role, engine)  # type: ignore[method-assign]
    engine._fetch_granted_permissions = MethodType(  # type: ignore[method-assign]
        _fake_permissions, engine
    )
    return engine, sections_seen


def _role(name: str) -> Role:
    return Role(id=uuid4(), role_name=name)


@pytest.mark.asyncio
async def test_empty_rules_deny() -> None:
    """Operations without declared rules fail closed."""
    engine, _ = _engine(_role("admin"), {"view"})

    decision = await engine.evaluate(
        db_session=None,  # type: ignore[arg-type]
        principal=PrincipalRef.admin(uuid4()),
        rules=(),
    )

    assert decision.allowed is False
    assert decision.reason == "no_rules_declared"


@pytest.mark.asyncio
async def test_missing_principal_denies() -> None:
    engine, _ = _engine(_role("admin"), {"view"})

    decision = await engine.evaluate(
        db_session=None,  # type: ignore[arg-type]
        principal=None,
        rules=(RolePermission(role="admin"),),
    )

    assert decision.allowed is False
    assert decision.reason == "missing_principal"


@pytest.mark.asyncio
async def test_role_outside_rules_is_denied() -> None:
    engine, _ = _engine(_role("user"), set())

    decision = await engine.evaluate(
        db_session=None,  # type: ignore[arg-type]
        principal=PrincipalRef.user(uuid4()),
        rules=resolve_required_rules("roles.view"),
    )

    assert decision.allowed is False
    assert decision.reason == "role_mismatch"


@pytest.mark.asyncio
async def test_role_only_rule_allows_without_permission_lookup() -> None:
    engine, sections_seen = _engine(_role("user"), set())

    decision = await engine.evaluate(
        db_session=None,  # type: ignore[arg-type]
        principal=PrincipalRef.user(uuid4()),
        rules=(RolePermission(role="admin"), RolePermission(role="user")),
    )

    assert decision.allowed is True
    assert sections_seen == []


@pytest.mark.asyncio
async def test_all_required_permissions_must_be_granted() -> None:
    """A partial grant set does not satisfy the rule."""
    engine, sections_seen = _engine(_role("admin"), {"view"})
    rules = (RolePermission(role="admin", permissions=("view", "update"), section="dashboard"),)

    decision = await engine.evaluate(
        db_session=None,  # type: ignore[arg-type]
        principal=PrincipalRef.admin(uuid4()),
        rules=rules,
    )

    assert decision.allowed is False
    assert decision.reason == "permission_mismatch"
    assert sections_seen == ["dashboard"]


@pytest.mark.asyncio
async def test_any_matching_rule_allows() -> None:
    engine, _ = _engine(_role("admin"), {"view", "update"})
    rules = (
        RolePermission(role="admin", permissions=("delete",), section="dashboard"),
        RolePermission(role="admin", permissions=("view", "update"), section="dashboard"),
    )

    allowed = await engine.check(
        db_session=None,  # type: ignore[arg-type]
        principal=PrincipalRef.admin(uuid4()),
        rules=rules,
    )

    assert allowed is True


def test_unknown_operation_has_no_rules() -> None:
    assert resolve_required_rules("reports.export") == ()


def test_session_level_operations_carry_no_role_rule() -> None:
    """Logout is open to any authenticated principal, so no rule table entry guards it."""
    assert resolve_required_rules("auth.logout") == ()
