"""Tenant account model."""

from __future__ import annotations

from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import CheckConstraint, ForeignKey, Index, String, Uuid
from sqlalchemy import Enum as SAEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from servicevault_api.common.domains import split_domains
from servicevault_api.core.rbac.types import AccountType
from servicevault_api.infra.db.base import Base, PrimaryKeyMixin, TimestampsMixin
from servicevault_api.infra.db.enums import enum_values

if TYPE_CHECKING:
    from .membership import Membership

account_type_enum = SAEnum(
    AccountType,
    name="account_type",
    native_enum=False,
    length=20,
    values_callable=enum_values,
)


class Account(PrimaryKeyMixin, TimestampsMixin, Base):
    """Customer account, optionally nested under a parent account."""

    __tablename__ = "accounts"

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    account_type: Mapped[AccountType] = mapped_column(
        account_type_enum, nullable=False, default=AccountType.ORGANIZATION
    )
    parent_id: Mapped[UUID | None] = mapped_column(
        Uuid(), ForeignKey("accounts.id", ondelete="RESTRICT"), nullable=True
    )
    # Comma separated email domains whose users join this account automatically.
    domains: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    parent: Mapped[Account | None] = relationship(
        "Account", remote_side="Account.id", back_populates="children"
    )
    children: Mapped[list[Account]] = relationship(
        "Account", back_populates="parent", passive_deletes=True
    )
    memberships: Mapped[list[Membership]] = relationship(
        "Membership",
        back_populates="account",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    @property
    def domain_list(self) -> list[str]:
        return split_domains(self.domains)

    __table_args__ = (
        CheckConstraint("parent_id IS NULL OR parent_id <> id", name="not_own_parent"),
        Index("ix_accounts_parent_id", "parent_id"),
    )


__all__ = ["Account"]
