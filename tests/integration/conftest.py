"""Shared integration-test fixtures using Postgres and Redis testcontainers."""

from __future__ import annotations

import os
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from typing import Any

import pytest
from alembic import command
from alembic.config import Config
from sqlalchemy import delete, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from testcontainers.postgres import PostgresContainer
from testcontainers.redis import RedisContainer

from docker.errors import DockerException

SEEDED_ROLES = ("user", "admin")
SEEDED_SECTIONS = ("dashboard",)
SEEDED_PERMISSIONS = ("create", "view", "update", "delete")
FIXED_OTP = 123456


def _clear_dependency_caches() -> None:
    """Clear all relevant singleton/lru-cache dependencies between test phases."""
    from authcore.config import get_settings
    from authcore.core.authorization import get_authorization_engine
    from authcore.core.jwt import get_jwt_service
    from authcore.core.otp import get_otp_manager
    from authcore.core.sessions import get_session_tracker
    from authcore.core.tokens import get_token_ledger
    from authcore.db.session import get_engine, get_session_factory
    from authcore.middleware.rate_limit import get_rate_limit_redis_client
    from authcore.services.auth_service import get_identity_flows
    from authcore.services.catalog_service import get_permission_service, get_section_service
    from authcore.services.notification_service import get_notification_sender
    from authcore.services.role_service import get_role_service
    from authcore.services.token_service import get_token_service
    from authcore.services.user_service import get_user_service

    get_settings.cache_clear()
    get_engine.cache_clear()
    get_session_factory.cache_clear()
    get_jwt_service.cache_clear()
    get_rate_limit_redis_client.cache_clear()
    get_otp_manager.cache_clear()
    get_token_ledger.cache_clear()
    get_session_tracker.cache_clear()
    get_authorization_engine.cache_clear()
    get_token_service.cache_clear()
    get_user_service.cache_clear()
    get_notification_sender.cache_clear()
    get_identity_flows.cache_clear()
    get_role_service.cache_clear()
    get_section_service.cache_clear()
    get_permission_service.cache_clear()


async def _dispose_async_singletons() -> None:
    """Dispose loop-bound async resources before changing event loops."""
    from authcore.db.session import dispose_engine, get_engine
    from authcore.middleware.rate_limit import get_rate_limit_redis_client

    if get_rate_limit_redis_client.cache_info().currsize:
        await get_rate_limit_redis_client().aclose()
    if get_engine.cache_info().currsize:
        await dispose_engine()


def _redis_connection_url(redis: RedisContainer) -> str:
    """Return a redis:// URL across testcontainers versions."""
    get_url = getattr(redis, "get_connection_url", None)
    if callable(get_url):
        redis_url = get_url()
    else:
        host = redis.get_container_host_ip()
        port = redis.get_exposed_port(6379)
        redis_url = f"redis://{host}:{port}"
    if not redis_url.endswith("/0"):
        redis_url = f"{redis_url}/0"
    return redis_url


def _postgres_async_url(postgres: PostgresContainer) -> str:
    """Return a postgresql+asyncpg URL across testcontainers versions."""
    try:
        postgres_url = postgres.get_connection_url(driver=None)
    except TypeError:
        postgres_url = postgres.get_connection_url()

    if postgres_url.startswith("postgresql+"):
        postgres_url = "postgresql://" + postgres_url.split("://", 1)[1]

    return postgres_url.replace("postgresql://", "postgresql+asyncpg://", 1)


def _set_env_values(env_values: dict[str, str]) -> Callable[[], None]:
    """Apply env vars and return a restore callback."""
    original = {key: os.environ.get(key) for key in env_values}
    os.environ.update(env_values)

    def _restore() -> None:
        for key, value in original.items():
            if value is None:
                os.environ.pop(key, None)
            else:
                os.environ[key] = value

    return _restore


@pytest.fixture(scope="session")
def integration_env() -> Iterator[dict[str, str]]:
    """Start Postgres/Redis containers and configure app settings for integration tests."""
    from authcore.core.jwt import generate_rsa_keypair

    try:
        postgres = PostgresContainer("postgres:16")
        redis = RedisContainer("redis:7")
        postgres.start()
        redis.start()
    except DockerException as exc:
        if os.environ.get("CI", "").lower() in {"1", "true", "yes"}:
            pytest.fail(
                f"Docker daemon unavailable in CI for testcontainers-backed integration tests: {exc}"
            )
        pytest.skip(f"Docker daemon unavailable for testcontainers-backed integration tests: {exc}")

    private_pem, public_pem = generate_rsa_keypair()
    database_url = _postgres_async_url(postgres)
    redis_url = _redis_connection_url(redis)

    restore_env = _set_env_values(
        {
            "APP__ENVIRONMENT": "development",
            "APP__SERVICE": "identity-core",
            "APP__LOG_LEVEL": "INFO",
            "DATABASE__URL": database_url,
            "REDIS__URL": redis_url,
            "JWT__PRIVATE_KEY_PEM": private_pem,
            "JWT__PUBLIC_KEY_PEM": public_pem,
            "OTP__MODE": "fixed",
            "OTP__FIXED_CODE": str(FIXED_OTP),
            "SESSION__ALLOW_MULTIPLE_DEVICE_LOGIN": "false",
            "SESSION__CLEANUP_ENABLED": "false",
            "RATE_LIMIT__DEFAULT_REQUESTS_PER_MINUTE": "10000",
            "RATE_LIMIT__LOGIN_REQUESTS_PER_MINUTE": "10000",
            "RATE_LIMIT__OTP_REQUESTS_PER_MINUTE": "10000",
            "RATE_LIMIT__TOKEN_REQUESTS_PER_MINUTE": "10000",
        }
    )
    _clear_dependency_caches()

    alembic_cfg = Config("alembic.ini")
    alembic_cfg.set_main_option("sqlalchemy.url", database_url)
    command.upgrade(alembic_cfg, "head")

    try:
        yield {"database_url": database_url, "redis_url": redis_url}
    finally:
        try:
            _clear_dependency_caches()
        finally:
            restore_env()
            postgres.stop()
            redis.stop()


@pytest.fixture(scope="function", autouse=True)
async def reset_state(integration_env: dict[str, str]) -> Iterator[None]:
    """Clear principal data, restore the seeded catalog, and flush Redis."""
    del integration_env
    from authcore.db.session import get_session_factory
    from authcore.middleware.rate_limit import get_rate_limit_redis_client
    from authcore.models import (
        Admin,
        DeviceSession,
        Otp,
        Permission,
        Role,
        RoleSectionPermission,
        Section,
        Token,
        User,
    )

    await _dispose_async_singletons()
    _clear_dependency_caches()

    async with get_session_factory()() as session:
        await session.execute(delete(Token))
        await session.execute(delete(DeviceSession))
        await session.execute(delete(Otp))
        await session.execute(delete(User))
        await session.execute(delete(Admin))
        await session.execute(delete(Role).where(Role.role_name.not_in(SEEDED_ROLES)))
        await session.execute(delete(Section).where(Section.section_name.not_in(SEEDED_SECTIONS)))
        await session.execute(
            delete(Permission).where(Permission.permission_name.not_in(SEEDED_PERMISSIONS))
        )
        for model in (Role, Section, Permission, RoleSectionPermission):
            await session.execute(update(model).values(deleted_at=None))
        await session.commit()

    await get_rate_limit_redis_client().flushdb()
    try:
        yield
    finally:
        await _dispose_async_singletons()
        _clear_dependency_caches()


@pytest.fixture(scope="function")
async def db_session_factory(
    integration_env: dict[str, str],
    reset_state: None,
) -> async_sessionmaker[AsyncSession]:
    """Expose async session factory bound to integration Postgres."""
    del integration_env, reset_state
    from authcore.db.session import get_session_factory

    return get_session_factory()


@pytest.fixture(scope="function")
async def db_session(
    db_session_factory: async_sessionmaker[AsyncSession],
) -> Iterator[AsyncSession]:
    """Yield a write-capable async DB session for test seeding and assertions."""
    async with db_session_factory() as session:
        yield session


@dataclass
class CapturedNotification:
    """One outgoing message recorded by the capturing sender."""

    kind: str
    to_email: str
    payload: str


@dataclass
class CapturingNotificationSender:
    """In-memory notification sender for integration assertions."""

    messages: list[CapturedNotification] = field(default_factory=list)

    async def send_otp_email(self, to_email: str, otp: int, expires_in_minutes: int) -> None:
        self.messages.append(CapturedNotification("otp", to_email, str(otp)))

    async def send_verification_link(
        self, to_email: str, link: str, expires_in_minutes: int
    ) -> None:
        self.messages.append(CapturedNotification("verification_link", to_email, link))

    async def send_password_reset_link(
        self, to_email: str, link: str, expires_in_minutes: int
    ) -> None:
        self.messages.append(CapturedNotification("password_reset_link", to_email, link))

    def last_link_id(self, kind: str) -> str:
        """Return the trailing link id of the newest message of ``kind``."""
        links = [message.payload for message in self.messages if message.kind == kind]
        return links[-1].rstrip("/").rsplit("/", 1)[-1]


@pytest.fixture(scope="function")
def fixed_otp() -> int:
    """OTP code issued while integration settings pin OTP__MODE=fixed."""
    return FIXED_OTP


@pytest.fixture(scope="function")
def notification_sender() -> CapturingNotificationSender:
    """Provide a fresh capturing sender per test."""
    return CapturingNotificationSender()


@pytest.fixture(scope="function")
def identity_flows_factory(
    integration_env: dict[str, str],
    notification_sender: CapturingNotificationSender,
) -> Callable[..., Any]:
    """Build identity flows on real infrastructure with a capturing sender."""
    del integration_env
    from authcore.config import get_settings
    from authcore.core.otp import get_otp_manager
    from authcore.core.sessions import SessionTracker
    from authcore.core.tokens import get_token_ledger
    from authcore.services.auth_service import IdentityFlows
    from authcore.services.token_service import get_token_service
    from authcore.services.user_service import get_user_service

    def _factory(allow_multiple_device_login: bool = False) -> IdentityFlows:
        settings = get_settings()
        return IdentityFlows(
            otp_manager=get_otp_manager(),
            token_ledger=get_token_ledger(),
            session_tracker=SessionTracker(
                token_ledger=get_token_ledger(),
                allow_multiple_device_login=allow_multiple_device_login,
            ),
            token_service=get_token_service(),
            user_service=get_user_service(),
            notification_sender=notification_sender,
            default_user_role=settings.roles.default_user_role,
            verify_signup_url=settings.email.verify_signup_url,
            reset_password_url=settings.email.reset_password_url,
        )

    return _factory


@pytest.fixture(scope="function")
def app_factory(
    integration_env: dict[str, str],
    identity_flows_factory: Callable[..., Any],
) -> Callable[..., Any]:
    """Build isolated FastAPI app instances wired to the capturing sender."""
    del integration_env
    from authcore.main import create_app
    from authcore.services.auth_service import get_identity_flows

    def _factory(allow_multiple_device_login: bool = False) -> Any:
        app = create_app()
        flows = identity_flows_factory(allow_multiple_device_login=allow_multiple_device_login)
        app.dependency_overrides[get_identity_flows] = lambda: flows
        return app

    return _factory


@pytest.fixture(scope="function")
async def verified_user_factory(db_session: AsyncSession) -> Callable[[str, str], Any]:
    """Create verified users holding the default user role."""
    from authcore.models import User, UserStatus
    from authcore.services.user_service import get_user_service

    user_service = get_user_service()

    async def _create(email: str, password: str) -> User:
        role = await user_service.get_role_by_name(db_session=db_session, role_name="user")
        user = User(
            email=email,
            password_hash=user_service.hash_password(password),
            status=UserStatus.VERIFIED,
            role_id=role.id if role is not None else None,
        )
        db_session.add(user)
        await db_session.commit()
        await db_session.refresh(user)
        return user

    return _create


@pytest.fixture(scope="function")
async def admin_factory(db_session: AsyncSession) -> Callable[[str, str], Any]:
    """Create admins bound to the seeded admin role."""
    from authcore.services.user_service import get_user_service

    user_service = get_user_service()

    async def _create(email: str, password: str) -> Any:
        admin = await user_service.create_admin(
            db_session=db_session,
            email=email,
            password=password,
            first_name="Ada",
            last_name="Admin",
            role_name="admin",
        )
        await db_session.commit()
        return admin

    return _create
