"""Initial identity core schema with seeded roles and grants."""

from __future__ import annotations

from uuid import uuid4

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "20261019_0001"
down_revision = None
branch_labels = None
depends_on = None

USER_STATUS = postgresql.ENUM(
    "blocked",
    "pending",
    "suspended",
    "verified",
    "unverified",
    "deactivated",
    name="user_status",
    create_type=False,
)
RECORD_STATUS = postgresql.ENUM("active", "inactive", name="record_status", create_type=False)
OTP_PURPOSE = postgresql.ENUM(
    "signup",
    "login",
    "forgot_password",
    "update_email",
    "update_phone",
    name="otp_purpose",
    create_type=False,
)
ACTIVITY_TYPE = postgresql.ENUM(
    "signup",
    "signup_verification",
    "login",
    "logout",
    "reset_password",
    "forgot_password",
    "update_profile",
    "update_email",
    "update_phone",
    "social_auth",
    "verify_email_update",
    "verify_phone_update",
    "delete_account",
    "view_profile",
    name="activity_type",
    create_type=False,
)
DEVICE_TYPE = postgresql.ENUM("ios", "android", "web", name="device_type", create_type=False)
TOKEN_KIND = postgresql.ENUM(
    "access", "refresh", "verify", "reset", name="token_kind", create_type=False
)
ENUM_TYPES = (USER_STATUS, RECORD_STATUS, OTP_PURPOSE, ACTIVITY_TYPE, DEVICE_TYPE, TOKEN_KIND)

SEED_ROLES = ("user", "admin")
SEED_SECTIONS = ("dashboard",)
SEED_PERMISSIONS = ("create", "view", "update", "delete")


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
    ]


def _owner_columns(table_name: str) -> list[sa.SchemaItem]:
    return [
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("admin_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.ForeignKeyConstraint(
            ["user_id"],
            ["users.id"],
            name=op.f(f"fk_{table_name}_user_id_users"),
            ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["admin_id"],
            ["admins.id"],
            name=op.f(f"fk_{table_name}_admin_id_admins"),
            ondelete="CASCADE",
        ),
    ]


def _named_table(table_name: str, name_column: str) -> None:
    op.create_table(
        table_name,
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column(name_column, sa.String(length=128), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name=op.f(f"pk_{table_name}")),
        sa.UniqueConstraint(name_column, name=op.f(f"uq_{table_name}_{name_column}")),
    )


def upgrade() -> None:
    """Create identity tables and seed the default role catalog."""
    bind = op.get_bind()
    for enum_type in ENUM_TYPES:
        enum_type.create(bind, checkfirst=True)

    _named_table("roles", "role_name")
    _named_table("sections", "section_name")
    _named_table("permissions", "permission_name")

    op.create_table(
        "role_section_permissions",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("role_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("section_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("permission_id", postgresql.UUID(as_uuid=True), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(
            ["role_id"],
            ["roles.id"],
            name=op.f("fk_role_section_permissions_role_id_roles"),
            ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["section_id"],
            ["sections.id"],
            name=op.f("fk_role_section_permissions_section_id_sections"),
            ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["permission_id"],
            ["permissions.id"],
            name=op.f("fk_role_section_permissions_permission_id_permissions"),
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_role_section_permissions")),
    )
    op.create_index(
        "ix_role_section_permissions_role_id_deleted_at",
        "role_section_permissions",
        ["role_id", "deleted_at"],
        unique=False,
    )

    op.create_table(
        "users",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("full_name", sa.String(length=255), nullable=True),
        sa.Column("email", sa.String(length=320), nullable=True),
        sa.Column("password_hash", sa.String(length=255), nullable=True),
        sa.Column("contact_number", sa.String(length=15), nullable=True),
        sa.Column("country_code", sa.String(length=5), nullable=True),
        sa.Column("status", USER_STATUS, nullable=False, server_default="unverified"),
        sa.Column("block_reason", sa.String(length=255), nullable=True),
        sa.Column("image", sa.String(length=255), nullable=True),
        sa.Column("base_url", sa.String(length=512), nullable=True),
        sa.Column("internal_path", sa.String(length=255), nullable=True),
        sa.Column("external_path", sa.String(length=255), nullable=True),
        sa.Column("role_id", postgresql.UUID(as_uuid=True), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(
            ["role_id"], ["roles.id"], name=op.f("fk_users_role_id_roles"), ondelete="SET NULL"
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_users")),
        sa.UniqueConstraint("email", name=op.f("uq_users_email")),
    )
    op.create_index("ix_users_email_deleted_at", "users", ["email", "deleted_at"], unique=False)

    op.create_table(
        "admins",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("first_name", sa.String(length=255), nullable=False),
        sa.Column("last_name", sa.String(length=255), nullable=False),
        sa.Column("email", sa.String(length=320), nullable=False),
        sa.Column("password_hash", sa.String(length=255), nullable=False),
        sa.Column("role_id", postgresql.UUID(as_uuid=True), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(
            ["role_id"], ["roles.id"], name=op.f("fk_admins_role_id_roles"), ondelete="SET NULL"
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_admins")),
        sa.UniqueConstraint("email", name=op.f("uq_admins_email")),
    )

    op.create_table(
        "otps",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        *_owner_columns("otps"),
        sa.Column("otp", sa.Integer(), nullable=False),
        sa.Column("country_code", sa.String(length=5), nullable=True),
        sa.Column("contact_number", sa.String(length=15), nullable=True),
        sa.Column("email", sa.Text(), nullable=True),
        sa.Column("type", OTP_PURPOSE, nullable=False),
        sa.Column("is_verified", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("status", RECORD_STATUS, nullable=False, server_default="active"),
        sa.Column("expire_at", sa.DateTime(timezone=True), nullable=False),
        *_timestamps(),
        sa.CheckConstraint(
            "num_nonnulls(user_id, admin_id) <= 1", name=op.f("ck_otps_single_owner")
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_otps")),
    )
    op.create_index(
        "uq_otps_user_id_type",
        "otps",
        ["user_id", "type"],
        unique=True,
        postgresql_where=sa.text("user_id IS NOT NULL"),
    )
    op.create_index(
        "uq_otps_admin_id_type",
        "otps",
        ["admin_id", "type"],
        unique=True,
        postgresql_where=sa.text("admin_id IS NOT NULL"),
    )
    op.create_index("ix_otps_email_type", "otps", ["email", "type"], unique=False)

    op.create_table(
        "device_sessions",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        *_owner_columns("device_sessions"),
        sa.Column("device_id", sa.String(length=255), nullable=True),
        sa.Column("device_name", sa.String(length=512), nullable=True),
        sa.Column("device_ip", sa.String(length=64), nullable=True),
        sa.Column("app_version", sa.String(length=64), nullable=True),
        sa.Column("device_type", DEVICE_TYPE, nullable=True),
        sa.Column("activity_type", ACTIVITY_TYPE, nullable=False),
        sa.Column("timezone", sa.String(length=64), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("last_active_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("registered_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("link_id", postgresql.UUID(as_uuid=True), nullable=True),
        *_timestamps(),
        sa.CheckConstraint(
            "num_nonnulls(user_id, admin_id) = 1", name=op.f("ck_device_sessions_single_owner")
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_device_sessions")),
    )
    op.create_index(
        "ix_device_sessions_link_id_activity_type",
        "device_sessions",
        ["link_id", "activity_type"],
        unique=False,
    )
    op.create_index(
        "ix_device_sessions_user_id_activity_type",
        "device_sessions",
        ["user_id", "activity_type"],
        unique=False,
    )

    op.create_table(
        "tokens",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        *_owner_columns("tokens"),
        sa.Column("device_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("type", TOKEN_KIND, nullable=False, server_default="verify"),
        sa.Column("access_token", sa.Text(), nullable=False),
        sa.Column("refresh_token", sa.Text(), nullable=True),
        sa.Column("access_token_status", RECORD_STATUS, nullable=False, server_default="active"),
        sa.Column("refresh_token_status", RECORD_STATUS, nullable=False, server_default="active"),
        sa.Column("access_token_expiry", sa.DateTime(timezone=True), nullable=True),
        sa.Column("refresh_token_expiry", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(
            ["device_id"],
            ["device_sessions.id"],
            name=op.f("fk_tokens_device_id_device_sessions"),
            ondelete="CASCADE",
        ),
        sa.CheckConstraint(
            "num_nonnulls(user_id, admin_id) = 1", name=op.f("ck_tokens_single_owner")
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_tokens")),
    )
    op.create_index("ix_tokens_access_token", "tokens", ["access_token"], unique=False)
    op.create_index("ix_tokens_refresh_token", "tokens", ["refresh_token"], unique=False)
    op.create_index("ix_tokens_user_id", "tokens", ["user_id"], unique=False)
    op.create_index("ix_tokens_admin_id", "tokens", ["admin_id"], unique=False)

    _seed_catalog()


def _seed_catalog() -> None:
    """Seed default roles and give both full permissions on the dashboard section."""
    roles = sa.table("roles", sa.column("id", postgresql.UUID), sa.column("role_name", sa.String))
    sections = sa.table(
        "sections", sa.column("id", postgresql.UUID), sa.column("section_name", sa.String)
    )
    permissions = sa.table(
        "permissions", sa.column("id", postgresql.UUID), sa.column("permission_name", sa.String)
    )
    grants = sa.table(
        "role_section_permissions",
        sa.column("id", postgresql.UUID),
        sa.column("role_id", postgresql.UUID),
        sa.column("section_id", postgresql.UUID),
        sa.column("permission_id", postgresql.UUID),
    )

    role_ids = {name: uuid4() for name in SEED_ROLES}
    section_ids = {name: uuid4() for name in SEED_SECTIONS}
    permission_ids = {name: uuid4() for name in SEED_PERMISSIONS}

    op.bulk_insert(roles, [{"id": value, "role_name": key} for key, value in role_ids.items()])
    op.bulk_insert(
        sections, [{"id": value, "section_name": key} for key, value in section_ids.items()]
    )
    op.bulk_insert(
        permissions,
        [{"id": value, "permission_name": key} for key, value in permission_ids.items()],
    )
    op.bulk_insert(
        grants,
        [
            {
                "id": uuid4(),
                "role_id": role_id,
                "section_id": section_id,
                "permission_id": permission_id,
            }
            for role_id in role_ids.values()
            for section_id in section_ids.values()
            for permission_id in permission_ids.values()
        ],
    )


def downgrade() -> None:
    """Drop identity tables and enum types."""
    op.drop_index("ix_tokens_admin_id", table_name="tokens")
    op.drop_index("ix_tokens_user_id", table_name="tokens")
    op.drop_index("ix_tokens_refresh_token", table_name="tokens")
    op.drop_index("ix_tokens_access_token", table_name="tokens")
    op.drop_table("tokens")
    op.drop_index("ix_device_sessions_user_id_activity_type", table_name="device_sessions")
    op.drop_index("ix_device_sessions_link_id_activity_type", table_name="device_sessions")
    op.drop_table("device_sessions")
    op.drop_index("ix_otps_email_type", table_name="otps")
    op.drop_index("uq_otps_admin_id_type", table_name="otps")
    op.drop_index("uq_otps_user_id_type", table_name="otps")
    op.drop_table("otps")
    op.drop_table("admins")
    op.drop_index("ix_users_email_deleted_at", table_name="users")
    op.drop_table("users")
    op.drop_index(
        "ix_role_section_permissions_role_id_deleted_at", table_name="role_section_permissions"
    )
    op.drop_table("role_section_permissions")
    op.drop_table("permissions")
    op.drop_table("sections")
    op.drop_table("roles")

    bind = op.get_bind()
    for enum_type in reversed(ENUM_TYPES):
        enum_type.drop(bind, checkfirst=True)
