"""Admin sign-in, password, logout, and user role assignment routes."""

from __future__ import annotations

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from authcore.core.sessions import DeviceMetadata
from authcore.dependencies import (
    get_current_principal,
    get_database_session,
    get_device_metadata,
    require_operation,
)
from authcore.error_handlers import service_error_response
from authcore.models.user import User
from authcore.schemas.auth import AuthSessionResponse, MessageResponse
from authcore.schemas.rbac import (
    AdminChangePasswordRequest,
    AdminLoginRequest,
    RoleAssignmentRequest,
    UserRoleResponse,
)
from authcore.services.auth_service import (
    AuthenticatedPrincipal,
    AuthServiceError,
    IdentityFlows,
    get_identity_flows,
)

router = APIRouter(prefix="/admin", tags=["admin"])


def _user_role_response(user: User) -> UserRoleResponse:
    return UserRoleResponse(
        user_id=user.id,
        role_id=user.role_id,
        role_name=user.role.role_name if user.role is not None else None,
    )


@router.post("/login", response_model=AuthSessionResponse)
async def admin_login(
    payload: AdminLoginRequest,
    request: Request,
    db_session: Annotated[AsyncSession, Depends(get_database_session)],
    identity_flows: Annotated[IdentityFlows, Depends(get_identity_flows)],
    metadata: Annotated[DeviceMetadata, Depends(get_device_metadata)],
) -> AuthSessionResponse | JSONResponse:
    """Authenticate an administrator and open an admin session."""
    try:
        result = await identity_flows.admin_login(
            db_session=db_session,
            email=payload.email,
            password=payload.password,
            metadata=metadata,
        )
    except AuthServiceError as exc:
        return service_error_response(request, exc)
    return AuthSessionResponse(
        id=result.id,
        email=result.email,
        access_token=result.access_token,
        refresh_token=result.refresh_token,
    )


@router.patch("/change-password", response_model=MessageResponse)
async def change_password(
    payload: AdminChangePasswordRequest,
    request: Request,
    principal: Annotated[AuthenticatedPrincipal, Depends(get_current_principal)],
    db_session: Annotated[AsyncSession, Depends(get_database_session)],
    identity_flows: Annotated[IdentityFlows, Depends(get_identity_flows)],
) -> MessageResponse | JSONResponse:
    """Replace the calling administrator's password."""
    try:
        await identity_flows.change_admin_password(
            db_session=db_session,
            principal=principal.ref,
            old_password=payload.old_password,
            new_password=payload.new_password,
        )
    except AuthServiceError as exc:
        return service_error_response(request, exc)
    return MessageResponse(message="Password updated.")


@router.post("/logout", response_model=None)
async def admin_logout(
    request: Request,
    principal: Annotated[AuthenticatedPrincipal, Depends(get_current_principal)],
    db_session: Annotated[AsyncSession, Depends(get_database_session)],
    identity_flows: Annotated[IdentityFlows, Depends(get_identity_flows)],
    metadata: Annotated[DeviceMetadata, Depends(get_device_metadata)],
) -> Response | JSONResponse:
    try:
        await identity_flows.admin_logout(
            db_session=db_session,
            principal=principal.ref,
            raw_token=principal.access_token,
            metadata=metadata,
        )
    except AuthServiceError as exc:
        return service_error_response(request, exc)
    return Response(status_code=204)


@router.post("/users/{user_id}/role", response_model=UserRoleResponse)
async def assign_role(
    user_id: UUID,
    payload: RoleAssignmentRequest,
    request: Request,
    _: Annotated[AuthenticatedPrincipal, Depends(require_operation("users.assign_role"))],
    db_session: Annotated[AsyncSession, Depends(get_database_session)],
    identity_flows: Annotated[IdentityFlows, Depends(get_identity_flows)],
) -> UserRoleResponse | JSONResponse:
    """Bind a user to a role."""
    try:
        user = await identity_flows.assign_role(
            db_session=db_session,
            user_id=user_id,
            role_id=payload.role_id,
        )
    except AuthServiceError as exc:
        return service_error_response(request, exc)
    return _user_role_response(user)


@router.delete("/users/{user_id}/role", response_model=UserRoleResponse)
async def remove_role(
    user_id: UUID,
    payload: RoleAssignmentRequest,
    request: Request,
    _: Annotated[AuthenticatedPrincipal, Depends(require_operation("users.remove_role"))],
    db_session: Annotated[AsyncSession, Depends(get_database_session)],
    identity_flows: Annotated[IdentityFlows, Depends(get_identity_flows)],
) -> UserRoleResponse | JSONResponse:
    """Drop a user's role back to the default user role."""
    try:
        user = await identity_flows.remove_role(
            db_session=db_session,
            user_id=user_id,
            role_id=payload.role_id,
        )
    except AuthServiceError as exc:
        return service_error_response(request, exc)
    return _user_role_response(user)
