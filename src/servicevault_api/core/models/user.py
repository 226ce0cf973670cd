"""User identity model."""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import Boolean, String, true
from sqlalchemy.orm import Mapped, mapped_column, relationship

from servicevault_api.infra.db.base import Base, PrimaryKeyMixin, TimestampsMixin

if TYPE_CHECKING:
    from .membership import Membership
    from .rbac import SystemRoleAssignment


class User(PrimaryKeyMixin, TimestampsMixin, Base):
    """Person who can hold memberships and system roles."""

    __tablename__ = "users"

    email: Mapped[str] = mapped_column(String(320), nullable=False, unique=True)
    display_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    is_active: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True, server_default=true()
    )

    memberships: Mapped[list[Membership]] = relationship(
        "Membership",
        back_populates="user",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    system_roles: Mapped[list[SystemRoleAssignment]] = relationship(
        "SystemRoleAssignment",
        back_populates="user",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


__all__ = ["User"]
