"""ORM model exports."""

from authcore.models.device_session import DeviceSession
from authcore.models.enums import (
    ActivityType,
    BlockReason,
    DeviceType,
    OtpPurpose,
    RecordStatus,
    TokenKind,
    UserStatus,
)
from authcore.models.otp import Otp
from authcore.models.role import Permission, Role, RoleSectionPermission, Section
from authcore.models.token import Token
from authcore.models.user import Admin, User

__all__ = [
    "ActivityType",
    "Admin",
    "BlockReason",
    "DeviceSession",
    "DeviceType",
    "Otp",
    "OtpPurpose",
    "Permission",
    "RecordStatus",
    "Role",
    "RoleSectionPermission",
    "Section",
    "Token",
    "TokenKind",
    "User",
    "UserStatus",
]
