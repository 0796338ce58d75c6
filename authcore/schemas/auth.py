"""Request/response schemas for identity flow endpoints."""

from __future__ import annotations

from uuid import UUID

from pydantic import BaseModel, Field


class SignupRequest(BaseModel):
    """Email signup payload."""

    email: str = Field(min_length=3, max_length=320)
    password: str = Field(min_length=8, max_length=256)
    full_name: str | None = Field(default=None, max_length=255)


class LoginRequest(BaseModel):
    """Password login request payload."""

    email: str = Field(min_length=3, max_length=320)
    password: str = Field(min_length=1, max_length=256)


class VerifyLoginRequest(BaseModel):
    """Login OTP confirmation payload."""

    email: str = Field(min_length=3, max_length=320)
    otp: int = Field(ge=100000, le=999999)


class ForgotPasswordRequest(BaseModel):
    """Password reset link request payload."""

    email: str = Field(min_length=3, max_length=320)


class ResetPasswordRequest(BaseModel):
    """New password submitted through a reset link."""

    new_password: str = Field(min_length=8, max_length=256)


class AuthSessionResponse(BaseModel):
    """Principal identity plus the session token pair."""

    id: UUID
    email: str | None
    access_token: str
    refresh_token: str


class MessageResponse(BaseModel):
    """Plain acknowledgement payload."""

    message: str


class ProfileResponse(BaseModel):
    """Signed-in user's profile."""

    id: UUID
    full_name: str | None
    email: str | None
    role: str | None


class EmailUpdateRequest(BaseModel):
    """New address to confirm with an emailed code."""

    email: str = Field(min_length=3, max_length=320)


class EmailUpdateVerifyRequest(BaseModel):
    email: str = Field(min_length=3, max_length=320)
    otp: int = Field(ge=100000, le=999999)
