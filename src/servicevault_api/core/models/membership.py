"""Account membership model."""

from __future__ import annotations

from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import ForeignKey, Index, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from servicevault_api.infra.db.base import Base, PrimaryKeyMixin, TimestampsMixin

if TYPE_CHECKING:
    from .account import Account
    from .rbac import MembershipRoleAssignment
    from .user import User


class Membership(PrimaryKeyMixin, TimestampsMixin, Base):
    """Binds one user to one account; carries account-level role templates."""

    __tablename__ = "account_memberships"

    user_id: Mapped[UUID] = mapped_column(
        Uuid(), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    account_id: Mapped[UUID] = mapped_column(
        Uuid(), ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False
    )

    user: Mapped[User] = relationship("User", back_populates="memberships")
    account: Mapped[Account] = relationship("Account", back_populates="memberships")
    roles: Mapped[list[MembershipRoleAssignment]] = relationship(
        "MembershipRoleAssignment",
        back_populates="membership",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        UniqueConstraint("user_id", "account_id", name="uq_membership_user_account"),
        Index("ix_account_memberships_account_id", "account_id"),
    )


__all__ = ["Membership"]
