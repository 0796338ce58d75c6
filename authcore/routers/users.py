"""Self-service routes for signed-in users."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from authcore.core.sessions import DeviceMetadata
from authcore.dependencies import get_current_principal, get_database_session, get_device_metadata
from authcore.error_handlers import service_error_response
from authcore.schemas.auth import (
    EmailUpdateRequest,
    EmailUpdateVerifyRequest,
    MessageResponse,
    ProfileResponse,
)
from authcore.services.auth_service import (
    AuthenticatedPrincipal,
    AuthServiceError,
    IdentityFlows,
    get_identity_flows,
)

router = APIRouter(prefix="/users", tags=["users"])

CurrentPrincipal = Annotated[AuthenticatedPrincipal, Depends(get_current_principal)]


@router.get("/me", response_model=ProfileResponse)
async def view_profile(
    request: Request,
    principal: CurrentPrincipal,
    db_session: Annotated[AsyncSession, Depends(get_database_session)],
    identity_flows: Annotated[IdentityFlows, Depends(get_identity_flows)],
    metadata: Annotated[DeviceMetadata, Depends(get_device_metadata)],
) -> ProfileResponse | JSONResponse:
    """Return the caller's profile."""
    try:
        profile = await identity_flows.view_profile(
            db_session=db_session,
            principal=principal.ref,
            metadata=metadata,
        )
    except AuthServiceError as exc:
        return service_error_response(request, exc)
    return ProfileResponse(
        id=profile.id,
        full_name=profile.full_name,
        email=profile.email,
        role=profile.role_name,
    )


@router.post("/me/email", response_model=MessageResponse)
async def request_email_update(
    payload: EmailUpdateRequest,
    request: Request,
    principal: CurrentPrincipal,
    db_session: Annotated[AsyncSession, Depends(get_database_session)],
    identity_flows: Annotated[IdentityFlows, Depends(get_identity_flows)],
    metadata: Annotated[DeviceMetadata, Depends(get_device_metadata)],
) -> MessageResponse | JSONResponse:
    """Send a confirmation code to a new email address."""
    try:
        await identity_flows.request_email_update(
            db_session=db_session,
            principal=principal.ref,
            new_email=payload.email,
            metadata=metadata,
        )
    except AuthServiceError as exc:
        return service_error_response(request, exc)
    return MessageResponse(message="Confirmation code sent to the new email.")


@router.post("/me/email/verify", response_model=MessageResponse)
async def verify_email_update(
    payload: EmailUpdateVerifyRequest,
    request: Request,
    principal: CurrentPrincipal,
    db_session: Annotated[AsyncSession, Depends(get_database_session)],
    identity_flows: Annotated[IdentityFlows, Depends(get_identity_flows)],
    metadata: Annotated[DeviceMetadata, Depends(get_device_metadata)],
) -> MessageResponse | JSONResponse:
    """Switch the account email once the code is confirmed."""
    try:
        await identity_flows.verify_email_update(
            db_session=db_session,
            principal=principal.ref,
            new_email=payload.email,
            otp=payload.otp,
            metadata=metadata,
        )
    except AuthServiceError as exc:
        return service_error_response(request, exc)
    return MessageResponse(message="Email updated.")


@router.delete("/me", response_model=None)
async def delete_account(
    request: Request,
    principal: CurrentPrincipal,
    db_session: Annotated[AsyncSession, Depends(get_database_session)],
    identity_flows: Annotated[IdentityFlows, Depends(get_identity_flows)],
    metadata: Annotated[DeviceMetadata, Depends(get_device_metadata)],
) -> Response | JSONResponse:
    try:
        await identity_flows.delete_account(
            db_session=db_session,
            principal=principal.ref,
            metadata=metadata,
        )
    except AuthServiceError as exc:
        return service_error_response(request, exc)
    return Response(status_code=204)
