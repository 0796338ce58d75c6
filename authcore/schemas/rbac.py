"""Schemas for role, section, permission, and role assignment endpoints."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class AdminLoginRequest(BaseModel):
    """Admin credential payload."""

    email: str = Field(min_length=3, max_length=320)
    password: str = Field(min_length=1, max_length=256)


class AdminChangePasswordRequest(BaseModel):
    """Current and replacement admin passwords."""

    old_password: str = Field(min_length=1, max_length=256)
    new_password: str = Field(min_length=8, max_length=256)


class RoleAssignmentRequest(BaseModel):
    """Role to bind to or remove from a user."""

    role_id: UUID


class UserRoleResponse(BaseModel):
    """User id with the role it now holds."""

    user_id: UUID
    role_id: UUID | None
    role_name: str | None


class CatalogNameRequest(BaseModel):
    """Section or permission name payload."""

    name: str = Field(min_length=1, max_length=128)


class CatalogItemResponse(BaseModel):
    """Section or permission entry."""

    id: UUID
    name: str
    created_at: datetime


class CatalogPageResponse(BaseModel):
    """Paginated catalog listing."""

    total: int
    limit: int
    offset: int
    data: list[CatalogItemResponse]


class SectionGrantPayload(BaseModel):
    """Permissions requested on one section."""

    section: str = Field(min_length=1, max_length=128)
    section_permission: list[str] = Field(default_factory=list)


class RoleCreateRequest(BaseModel):
    """Create role payload."""

    role_name: str = Field(min_length=1, max_length=128)
    permissions: list[SectionGrantPayload] = Field(default_factory=list)


class RoleUpdateRequest(BaseModel):
    """Replace role grants, optionally renaming it."""

    role_name: str | None = Field(default=None, min_length=1, max_length=128)
    permissions: list[SectionGrantPayload] = Field(default_factory=list)


class RoleGrantResponse(BaseModel):
    """One live (section, permission) grant of a role."""

    model_config = ConfigDict(from_attributes=True)

    section: str
    permission: str


class RoleResponse(BaseModel):
    """Role with its live grants."""

    id: UUID
    role_name: str
    created_at: datetime
    grants: list[RoleGrantResponse]


class RolePageResponse(BaseModel):
    """Paginated role listing."""

    total: int
    limit: int
    offset: int
    data: list[RoleResponse]
