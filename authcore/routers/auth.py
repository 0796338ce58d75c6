"""Authentication routes."""

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
)
from authcore.error_handlers import service_error_response
from authcore.schemas.auth import (
    AuthSessionResponse,
    ForgotPasswordRequest,
    LoginRequest,
    MessageResponse,
    ResetPasswordRequest,
    SignupRequest,
    VerifyLoginRequest,
)
from authcore.schemas.token import RefreshTokenRequest, TokenPairResponse
from authcore.services.auth_service import (
    AuthenticatedPrincipal,
    AuthResult,
    AuthServiceError,
    IdentityFlows,
    get_identity_flows,
)

router = APIRouter(tags=["auth"])


def _session_response(result: AuthResult) -> AuthSessionResponse:
    return AuthSessionResponse(
        id=result.id,
        email=result.email,
        access_token=result.access_token,
        refresh_token=result.refresh_token,
    )


@router.post("/auth/signup", response_model=MessageResponse, status_code=201)
async def signup(
    payload: SignupRequest,
    request: Request,
    db_session: Annotated[AsyncSession, Depends(get_database_session)],
    identity_flows: Annotated[IdentityFlows, Depends(get_identity_flows)],
    metadata: Annotated[DeviceMetadata, Depends(get_device_metadata)],
) -> MessageResponse | JSONResponse:
    """Register an account and email its verification link."""
    try:
        await identity_flows.signup(
            db_session=db_session,
            email=payload.email,
            password=payload.password,
            metadata=metadata,
            full_name=payload.full_name,
        )
    except AuthServiceError as exc:
        return service_error_response(request, exc)
    return MessageResponse(message="Verification link sent to your email.")


@router.get("/auth/verify-signup/{link_id}", response_model=AuthSessionResponse)
async def verify_signup(
    link_id: UUID,
    request: Request,
    db_session: Annotated[AsyncSession, Depends(get_database_session)],
    identity_flows: Annotated[IdentityFlows, Depends(get_identity_flows)],
    metadata: Annotated[DeviceMetadata, Depends(get_device_metadata)],
) -> AuthSessionResponse | JSONResponse:
    """Verify an account from its emailed link and open a session."""
    try:
        result = await identity_flows.verify_signup(
            db_session=db_session,
            link_id=link_id,
            metadata=metadata,
        )
    except AuthServiceError as exc:
        return service_error_response(request, exc)
    return _session_response(result)


@router.post("/auth/login", response_model=MessageResponse)
async def login(
    payload: LoginRequest,
    request: Request,
    db_session: Annotated[AsyncSession, Depends(get_database_session)],
    identity_flows: Annotated[IdentityFlows, Depends(get_identity_flows)],
) -> MessageResponse | JSONResponse:
    """Check credentials and email a login code."""
    try:
        await identity_flows.login(
            db_session=db_session,
            email=payload.email,
            password=payload.password,
        )
    except AuthServiceError as exc:
        return service_error_response(request, exc)
    return MessageResponse(message="Login code sent to your email.")


@router.post("/auth/verify-login", response_model=AuthSessionResponse)
async def verify_login(
    payload: VerifyLoginRequest,
    request: Request,
    db_session: Annotated[AsyncSession, Depends(get_database_session)],
    identity_flows: Annotated[IdentityFlows, Depends(get_identity_flows)],
    metadata: Annotated[DeviceMetadata, Depends(get_device_metadata)],
) -> AuthSessionResponse | JSONResponse:
    """Exchange a login code for a session token pair."""
    try:
        result = await identity_flows.verify_login(
            db_session=db_session,
            email=payload.email,
            otp=payload.otp,
            metadata=metadata,
        )
    except AuthServiceError as exc:
        return service_error_response(request, exc)
    return _session_response(result)


@router.post("/auth/forgot-password", response_model=MessageResponse)
async def forgot_password(
    payload: ForgotPasswordRequest,
    request: Request,
    db_session: Annotated[AsyncSession, Depends(get_database_session)],
    identity_flows: Annotated[IdentityFlows, Depends(get_identity_flows)],
    metadata: Annotated[DeviceMetadata, Depends(get_device_metadata)],
) -> MessageResponse | JSONResponse:
    """Email a password reset link."""
    try:
        await identity_flows.forgot_password(
            db_session=db_session,
            email=payload.email,
            metadata=metadata,
        )
    except AuthServiceError as exc:
        return service_error_response(request, exc)
    return MessageResponse(message="Password reset link sent to your email.")


@router.post("/auth/reset-password/{link_id}", response_model=MessageResponse)
async def reset_password(
    link_id: UUID,
    payload: ResetPasswordRequest,
    request: Request,
    db_session: Annotated[AsyncSession, Depends(get_database_session)],
    identity_flows: Annotated[IdentityFlows, Depends(get_identity_flows)],
    metadata: Annotated[DeviceMetadata, Depends(get_device_metadata)],
) -> MessageResponse | JSONResponse:
    """Set a new password through a reset link."""
    try:
        await identity_flows.reset_password(
            db_session=db_session,
            link_id=link_id,
            new_password=payload.new_password,
            metadata=metadata,
        )
    except AuthServiceError as exc:
        return service_error_response(request, exc)
    return MessageResponse(message="Password has been reset.")


@router.post("/auth/token", response_model=TokenPairResponse)
async def refresh_token(
    payload: RefreshTokenRequest,
    request: Request,
    db_session: Annotated[AsyncSession, Depends(get_database_session)],
    identity_flows: Annotated[IdentityFlows, Depends(get_identity_flows)],
) -> TokenPairResponse | JSONResponse:
    """Rotate refresh token and issue a new token pair."""
    try:
        pair = await identity_flows.refresh_token(
            db_session=db_session,
            raw_refresh_token=payload.refresh_token,
        )
    except AuthServiceError as exc:
        return service_error_response(request, exc)
    return TokenPairResponse(access_token=pair.access_token, refresh_token=pair.refresh_token)


@router.post("/auth/logout", response_model=None)
async def logout(
    request: Request,
    principal: Annotated[AuthenticatedPrincipal, Depends(get_current_principal)],
    db_session: Annotated[AsyncSession, Depends(get_database_session)],
    identity_flows: Annotated[IdentityFlows, Depends(get_identity_flows)],
    metadata: Annotated[DeviceMetadata, Depends(get_device_metadata)],
) -> Response | JSONResponse:
    """Invalidate the presented access token and end the device session."""
    try:
        await identity_flows.logout(
            db_session=db_session,
            principal=principal.ref,
            raw_token=principal.access_token,
            metadata=metadata,
        )
    except AuthServiceError as exc:
        return service_error_response(request, exc)
    return Response(status_code=204)
