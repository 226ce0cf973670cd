"""Role template and assignment models."""

from __future__ import annotations

from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import (
    Boolean,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    false,
)
from sqlalchemy import Enum as SAEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from servicevault_api.core.rbac.types import GrantScope, PermissionTuple, RoleScope
from servicevault_api.infra.db.base import Base, PrimaryKeyMixin, TimestampsMixin
from servicevault_api.infra.db.enums import enum_values

if TYPE_CHECKING:
    from .membership import Membership
    from .user import User

ROLE_TEMPLATE_NAME_MAX = 100
ROLE_TEMPLATE_DESCRIPTION_MAX = 500

grant_scope_enum = SAEnum(
    GrantScope,
    name="grant_scope",
    native_enum=False,
    length=20,
    values_callable=enum_values,
)

role_scope_enum = SAEnum(
    RoleScope,
    name="role_scope",
    native_enum=False,
    length=20,
    values_callable=enum_values,
)


class Permission(PrimaryKeyMixin, Base):
    """Catalog entry mirrored from the static registry."""

    __tablename__ = "permissions"

    resource: Mapped[str] = mapped_column(String(100), nullable=False)
    action: Mapped[str] = mapped_column(String(100), nullable=False)
    label: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)

    __table_args__ = (
        UniqueConstraint("resource", "action", name="uq_permissions_resource_action"),
    )


class RoleTemplate(PrimaryKeyMixin, TimestampsMixin, Base):
    """Named bundle of permission tuples."""

    __tablename__ = "role_templates"

    name: Mapped[str] = mapped_column(
        String(ROLE_TEMPLATE_NAME_MAX), nullable=False, unique=True
    )
    description: Mapped[str | None] = mapped_column(
        String(ROLE_TEMPLATE_DESCRIPTION_MAX), nullable=True
    )
    scope: Mapped[RoleScope] = mapped_column(
        role_scope_enum, nullable=False, default=RoleScope.ACCOUNT
    )
    inherit_all_permissions: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=false()
    )
    is_system: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=false()
    )

    permissions: Mapped[list[RoleTemplatePermission]] = relationship(
        "RoleTemplatePermission",
        back_populates="role_template",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def permission_tuples(self) -> frozenset[PermissionTuple]:
        return frozenset(entry.as_tuple() for entry in self.permissions)


class RoleTemplatePermission(Base):
    """One ``(resource, action, scope)`` tuple owned by a role template."""

    __tablename__ = "role_template_permissions"

    role_template_id: Mapped[UUID] = mapped_column(
        Uuid(),
        ForeignKey("role_templates.id", ondelete="CASCADE"),
        primary_key=True,
    )
    resource: Mapped[str] = mapped_column(String(100), primary_key=True)
    action: Mapped[str] = mapped_column(String(100), primary_key=True)
    scope: Mapped[GrantScope] = mapped_column(grant_scope_enum, primary_key=True)

    role_template: Mapped[RoleTemplate] = relationship(
        "RoleTemplate", back_populates="permissions"
    )

    def as_tuple(self) -> PermissionTuple:
        return PermissionTuple(self.resource, self.action, GrantScope(self.scope))


class SystemRoleAssignment(PrimaryKeyMixin, TimestampsMixin, Base):
    """System-wide role held directly by a user."""

    __tablename__ = "system_role_assignments"

    user_id: Mapped[UUID] = mapped_column(
        Uuid(), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    role_template_id: Mapped[UUID] = mapped_column(
        Uuid(), ForeignKey("role_templates.id", ondelete="RESTRICT"), nullable=False
    )

    user: Mapped[User] = relationship("User", back_populates="system_roles")
    role_template: Mapped[RoleTemplate] = relationship("RoleTemplate")

    __table_args__ = (
        UniqueConstraint("user_id", "role_template_id", name="uq_system_role_user_template"),
        Index("ix_system_role_assignments_role_template_id", "role_template_id"),
    )


class MembershipRoleAssignment(PrimaryKeyMixin, TimestampsMixin, Base):
    """Account-level role attached to a membership."""

    __tablename__ = "membership_role_assignments"

    membership_id: Mapped[UUID] = mapped_column(
        Uuid(), ForeignKey("account_memberships.id", ondelete="CASCADE"), nullable=False
    )
    role_template_id: Mapped[UUID] = mapped_column(
        Uuid(), ForeignKey("role_templates.id", ondelete="RESTRICT"), nullable=False
    )

    membership: Mapped[Membership] = relationship("Membership", back_populates="roles")
    role_template: Mapped[RoleTemplate] = relationship("RoleTemplate")

    __table_args__ = (
        UniqueConstraint(
            "membership_id", "role_template_id", name="uq_membership_role_membership_template"
        ),
        Index("ix_membership_role_assignments_role_template_id", "role_template_id"),
    )


__all__ = [
    "MembershipRoleAssignment",
    "Permission",
    "ROLE_TEMPLATE_DESCRIPTION_MAX",
    "ROLE_TEMPLATE_NAME_MAX",
    "RoleTemplate",
    "RoleTemplatePermission",
    "SystemRoleAssignment",
]
