"""Enumerations shared by identity ORM models."""

from __future__ import annotations

from enum import Enum


class UserStatus(str, Enum):
    """Account lifecycle statuses for users."""

    BLOCKED = "blocked"
    PENDING = "pending"
    SUSPENDED = "suspended"
    VERIFIED = "verified"
    UNVERIFIED = "unverified"
    DEACTIVATED = "deactivated"


class RecordStatus(str, Enum):
    """Active/inactive flag used by OTP rows and token sub-statuses."""

    ACTIVE = "active"
    INACTIVE = "inactive"


class OtpPurpose(str, Enum):
    """Flows an OTP can be issued for."""

    SIGNUP = "signup"
    LOGIN = "login"
    FORGOT_PASSWORD = "forgot_password"
    UPDATE_EMAIL = "update_email"
    UPDATE_PHONE = "update_phone"


class ActivityType(str, Enum):
    """Auth-relevant actions recorded against a device session."""

    SIGNUP = "signup"
    SIGNUP_VERIFICATION = "signup_verification"
    LOGIN = "login"
    LOGOUT = "logout"
    RESET_PASSWORD = "reset_password"
    FORGOT_PASSWORD = "forgot_password"
    UPDATE_PROFILE = "update_profile"
    UPDATE_EMAIL = "update_email"
    UPDATE_PHONE = "update_phone"
    SOCIAL_AUTH = "social_auth"
    VERIFY_EMAIL_UPDATE = "verify_email_update"
    VERIFY_PHONE_UPDATE = "verify_phone_update"
    DELETE_ACCOUNT = "delete_account"
    VIEW_PROFILE = "view_profile"


class DeviceType(str, Enum):
    """Client platforms reported through the device-type header."""

    IOS = "ios"
    ANDROID = "android"
    WEB = "web"


class TokenKind(str, Enum):
    """Purpose of a stored token row."""

    ACCESS = "access"
    REFRESH = "refresh"
    VERIFY = "verify"
    RESET = "reset"


def enum_values(enum_cls: type[Enum]) -> list[str]:
    """Store enum values instead of enum member names."""
    return [member.value for member in enum_cls]


class BlockReason(str, Enum):
    """Why an account was blocked."""

    USER_DELETED_ACCOUNT = "user_deleted_account"
