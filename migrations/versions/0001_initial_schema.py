"""Initial Service Vault access schema.

Identifiers are UUIDv7 values generated in the application layer using
:func:`servicevault_api.common.ids.generate_uuid7` (RFC 9562).
"""

from __future__ import annotations

from typing import Optional

import sqlalchemy as sa
from alembic import op

# Revision identifiers, used by Alembic.
revision = "0001_initial_schema"
down_revision: Optional[str] = None
branch_labels: Optional[str] = None
depends_on: Optional[str] = None


# ---------------------------------------------------------------------------
# Types / enums
# ---------------------------------------------------------------------------


def _timestamps() -> tuple[sa.Column, sa.Column]:
    """Common created_at / updated_at pair."""
    return (
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )


ACCOUNT_TYPE = sa.Enum(
    "organization",
    "subsidiary",
    "individual",
    name="account_type",
    native_enum=False,
    create_constraint=True,
    length=20,
)

ROLE_SCOPE = sa.Enum(
    "system",
    "account",
    name="role_scope",
    native_enum=False,
    create_constraint=True,
    length=20,
)

GRANT_SCOPE = sa.Enum(
    "own",
    "account",
    "subsidiary",
    "global",
    name="grant_scope",
    native_enum=False,
    create_constraint=True,
    length=20,
)


# ---------------------------------------------------------------------------
# Upgrade / downgrade
# ---------------------------------------------------------------------------


def upgrade() -> None:
    _create_users()
    _create_accounts()
    _create_memberships()
    _create_permissions()
    _create_role_templates()
    _create_assignments()


def downgrade() -> None:
    op.drop_table("membership_role_assignments")
    op.drop_table("system_role_assignments")
    op.drop_table("role_template_permissions")
    op.drop_table("role_templates")
    op.drop_table("permissions")
    op.drop_table("account_memberships")
    op.drop_table("accounts")
    op.drop_table("users")


def _create_users() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("email", sa.String(length=320), nullable=False),
        sa.Column("display_name", sa.String(length=255), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="users_pkey"),
        sa.UniqueConstraint("email", name="users_email_key"),
    )


def _create_accounts() -> None:
    op.create_table(
        "accounts",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("account_type", ACCOUNT_TYPE, nullable=False),
        sa.Column("parent_id", sa.Uuid(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="accounts_pkey"),
        sa.ForeignKeyConstraint(
            ["parent_id"],
            ["accounts.id"],
            name="accounts_parent_id_fkey",
            ondelete="RESTRICT",
        ),
        sa.CheckConstraint(
            "parent_id IS NULL OR parent_id <> id",
            name="accounts_not_own_parent_check",
        ),
    )
    op.create_index("ix_accounts_parent_id", "accounts", ["parent_id"])


def _create_memberships() -> None:
    op.create_table(
        "account_memberships",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("account_id", sa.Uuid(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="account_memberships_pkey"),
        sa.ForeignKeyConstraint(
            ["user_id"],
            ["users.id"],
            name="account_memberships_user_id_fkey",
            ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["account_id"],
            ["accounts.id"],
            name="account_memberships_account_id_fkey",
            ondelete="CASCADE",
        ),
        sa.UniqueConstraint("user_id", "account_id", name="uq_membership_user_account"),
    )
    op.create_index(
        "ix_account_memberships_account_id", "account_memberships", ["account_id"]
    )


def _create_permissions() -> None:
    op.create_table(
        "permissions",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("resource", sa.String(length=100), nullable=False),
        sa.Column("action", sa.String(length=100), nullable=False),
        sa.Column("label", sa.String(length=200), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.PrimaryKeyConstraint("id", name="permissions_pkey"),
        sa.UniqueConstraint("resource", "action", name="uq_permissions_resource_action"),
    )


def _create_role_templates() -> None:
    op.create_table(
        "role_templates",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("description", sa.String(length=500), nullable=True),
        sa.Column("scope", ROLE_SCOPE, nullable=False),
        sa.Column(
            "inherit_all_permissions",
            sa.Boolean(),
            nullable=False,
            server_default=sa.false(),
        ),
        sa.Column("is_system", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="role_templates_pkey"),
        sa.UniqueConstraint("name", name="role_templates_name_key"),
    )

    op.create_table(
        "role_template_permissions",
        sa.Column("role_template_id", sa.Uuid(), nullable=False),
        sa.Column("resource", sa.String(length=100), nullable=False),
        sa.Column("action", sa.String(length=100), nullable=False),
        sa.Column("scope", GRANT_SCOPE, nullable=False),
        sa.PrimaryKeyConstraint(
            "role_template_id",
            "resource",
            "action",
            "scope",
            name="role_template_permissions_pkey",
        ),
        sa.ForeignKeyConstraint(
            ["role_template_id"],
            ["role_templates.id"],
            name="role_template_permissions_role_template_id_fkey",
            ondelete="CASCADE",
        ),
    )


def _create_assignments() -> None:
    op.create_table(
        "system_role_assignments",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("role_template_id", sa.Uuid(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="system_role_assignments_pkey"),
        sa.ForeignKeyConstraint(
            ["user_id"],
            ["users.id"],
            name="system_role_assignments_user_id_fkey",
            ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["role_template_id"],
            ["role_templates.id"],
            name="system_role_assignments_role_template_id_fkey",
            ondelete="RESTRICT",
        ),
        sa.UniqueConstraint(
            "user_id", "role_template_id", name="uq_system_role_user_template"
        ),
    )
    op.create_index(
        "ix_system_role_assignments_role_template_id",
        "system_role_assignments",
        ["role_template_id"],
    )

    op.create_table(
        "membership_role_assignments",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("membership_id", sa.Uuid(), nullable=False),
        sa.Column("role_template_id", sa.Uuid(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="membership_role_assignments_pkey"),
        sa.ForeignKeyConstraint(
            ["membership_id"],
            ["account_memberships.id"],
            name="membership_role_assignments_membership_id_fkey",
            ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["role_template_id"],
            ["role_templates.id"],
            name="membership_role_assignments_role_template_id_fkey",
            ondelete="RESTRICT",
        ),
        sa.UniqueConstraint(
            "membership_id",
            "role_template_id",
            name="uq_membership_role_membership_template",
        ),
    )
    op.create_index(
        "ix_membership_role_assignments_role_template_id",
        "membership_role_assignments",
        ["role_template_id"],
    )
