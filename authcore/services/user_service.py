"""User and admin lookup, password validation, and role assignment services."""

from __future__ import annotations

from functools import lru_cache
from uuid import UUID

from passlib.context import CryptContext
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from authcore.config import get_settings
from authcore.core.principal import PrincipalRef
from authcore.models.role import Role
from authcore.models.user import Admin, User


class UserServiceError(Exception):
    """Raised when user management operations fail validation."""

    def __init__(self, detail: str, code: str, status_code: int) -> None:
        super().__init__(detail)
        self.detail = detail
        self.code = code
        self.status_code = status_code


class UserService:
    """Service responsible for principal retrieval and password verification."""

    def __init__(
        self,
        default_image: str = "user.png",
        assets_base_url: str | None = None,
        default_media_folder: str = "default",
    ) -> None:
        self._password_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
        self._default_image = default_image
        self._assets_base_url = assets_base_url
        self._default_media_path = f"{default_media_folder}/"

    async def get_user_by_email(self, db_session: AsyncSession, email: str) -> User | None:
        """Fetch a non-deleted user by email."""
        statement = select(User).where(
            func.lower(User.email) == email.lower(),
            User.deleted_at.is_(None),
        )
        result = await db_session.execute(statement)
        return result.scalar_one_or_none()

    async def get_user_by_id(self, db_session: AsyncSession, user_id: UUID) -> User | None:
        """Fetch a non-deleted user by id."""
        statement = select(User).where(User.id == user_id, User.deleted_at.is_(None))
        result = await db_session.execute(statement)
        return result.scalar_one_or_none()

    async def get_admin_by_email(self, db_session: AsyncSession, email: str) -> Admin | None:
        """Fetch a non-deleted admin by email."""
        statement = select(Admin).where(
            func.lower(Admin.email) == email.lower(),
            Admin.deleted_at.is_(None),
        )
        result = await db_session.execute(statement)
        return result.scalar_one_or_none()

    async def get_admin_by_id(self, db_session: AsyncSession, admin_id: UUID) -> Admin | None:
        """Fetch a non-deleted admin by id."""
        statement = select(Admin).where(Admin.id == admin_id, Admin.deleted_at.is_(None))
        result = await db_session.execute(statement)
        return result.scalar_one_or_none()

    async def get_principal(
        self,
        db_session: AsyncSession,
        principal: PrincipalRef,
    ) -> User | Admin | None:
        """Load the user or admin row a reference points at."""
        if principal.kind == "admin":
            return await self.get_admin_by_id(db_session=db_session, admin_id=principal.id)
        return await self.get_user_by_id(db_session=db_session, user_id=principal.id)

    async def get_role_by_name(self, db_session: AsyncSession, role_name: str) -> Role | None:
        """Fetch a non-deleted role by name."""
        statement = select(Role).where(Role.role_name == role_name, Role.deleted_at.is_(None))
        result = await db_session.execute(statement)
        return result.scalar_one_or_none()

    async def authenticate_user(
        self,
        db_session: AsyncSession,
        email: str,
        password: str,
    ) -> User | None:
        """Authenticate user credentials for password login."""
        user = await self.get_user_by_email(db_session=db_session, email=email)
        if user is None or user.password_hash is None:
            self._password_context.dummy_verify()
            return None
        if not self.verify_password(password=password, password_hash=user.password_hash):
            return None
        return user

    async def authenticate_admin(
        self,
        db_session: AsyncSession,
        email: str,
        password: str,
    ) -> Admin | None:
        """Authenticate admin credentials."""
        admin = await self.get_admin_by_email(db_session=db_session, email=email)
        if admin is None:
            self._password_context.dummy_verify()
            return None
        if not self.verify_password(password=password, password_hash=admin.password_hash):
            return None
        return admin

    async def create_user(
        self,
        db_session: AsyncSession,
        email: str,
        password: str,
        role: Role | None,
        full_name: str | None = None,
    ) -> User:
        """Insert an unverified user with default profile media."""
        user = User(
            email=email,
            full_name=full_name,
            password_hash=self.hash_password(password),
            role_id=role.id if role is not None else None,
            image=self._default_image,
            base_url=self._assets_base_url,
            internal_path=self._default_media_path,
            external_path=self._default_media_path,
        )
        db_session.add(user)
        await db_session.flush()
        return user

    async def create_admin(
        self,
        db_session: AsyncSession,
        email: str,
        password: str,
        first_name: str,
        last_name: str,
        role_name: str,
    ) -> Admin:
        """Insert an admin bound to the named role."""
        role = await self.get_role_by_name(db_session=db_session, role_name=role_name)
        if role is None:
            raise UserServiceError("Role not found.", "not_found", 404)
        existing = await self.get_admin_by_email(db_session=db_session, email=email)
        if existing is not None:
            raise UserServiceError("Email already registered.", "already_exists", 409)
        admin = Admin(
            email=email.strip().lower(),
            first_name=first_name,
            last_name=last_name,
            password_hash=self.hash_password(password),
            role_id=role.id,
        )
        db_session.add(admin)
        await db_session.flush()
        return admin

    async def assign_role(self, db_session: AsyncSession, user_id: UUID, role_id: UUID) -> User:
        """Bind a user to a role."""
        user = await self._get_user_for_update(db_session=db_session, user_id=user_id)
        if user is None:
            raise UserServiceError("User not found.", "not_found", 404)
        role = await self._get_role(db_session=db_session, role_id=role_id)
        if role is None:
            raise UserServiceError("Role not found.", "not_found", 404)

        user.role_id = role.id
        try:
            await db_session.flush()
            await db_session.commit()
        except Exception:
            await db_session.rollback()
            raise
        await db_session.refresh(user, attribute_names=["role"])
        return user

    async def remove_role(
        self,
        db_session: AsyncSession,
        user_id: UUID,
        role_id: UUID,
        fallback_role_name: str,
    ) -> User:
        """Drop a user's role back to the configured fallback role."""
        user = await self._get_user_for_update(db_session=db_session, user_id=user_id)
        if user is None:
            raise UserServiceError("User not found.", "not_found", 404)
        role = await self._get_role(db_session=db_session, role_id=role_id)
        if role is None:
            raise UserServiceError("Role not found.", "not_found", 404)
        if user.role_id != role.id:
            raise UserServiceError("User does not hold this role.", "invalid_role", 400)
        fallback = await self.get_role_by_name(db_session=db_session, role_name=fallback_role_name)
        if fallback is None:
            raise UserServiceError("Role not found.", "not_found", 404)

        user.role_id = fallback.id
        try:
            await db_session.flush()
            await db_session.commit()
        except Exception:
            await db_session.rollback()
            raise
        await db_session.refresh(user, attribute_names=["role"])
        return user

    def hash_password(self, password: str) -> str:
        """Generate a bcrypt hash for the provided password."""
        return str(self._password_context.hash(password))

    def verify_password(self, password: str, password_hash: str) -> bool:
        """Verify a plaintext password against the stored bcrypt hash."""
        return bool(self._password_context.verify(password, password_hash))

    async def _get_user_for_update(self, db_session: AsyncSession, user_id: UUID) -> User | None:
        """Fetch user row for mutation with row lock."""
        statement = (
            select(User)
            .where(User.id == user_id, User.deleted_at.is_(None))
            .with_for_update(of=User)
        )
        result = await db_session.execute(statement)
        return result.scalar_one_or_none()

    async def _get_role(self, db_session: AsyncSession, role_id: UUID) -> Role | None:
        statement = select(Role).where(Role.id == role_id, Role.deleted_at.is_(None))
        result = await db_session.execute(statement)
        return result.scalar_one_or_none()


@lru_cache
def get_user_service() -> UserService:
    """Create and cache the user service from settings."""
    settings = get_settings()
    return UserService(
        default_image=settings.profile.default_image,
        assets_base_url=settings.profile.assets_base_url,
        default_media_folder=settings.profile.default_media_folder,
    )
