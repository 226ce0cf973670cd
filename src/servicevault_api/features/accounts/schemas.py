"""Pydantic schemas for accounts."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import Field

from servicevault_api.common.schema import BaseSchema
from servicevault_api.core.rbac.types import AccountType


class AccountCreate(BaseSchema):
    name: str = Field(min_length=1, max_length=200)
    account_type: AccountType = AccountType.ORGANIZATION
    parent_id: UUID | None = None
    domains: list[str] = Field(
        default_factory=list,
        description="Email domains whose new users join this account automatically.",
    )


class AccountParentUpdate(BaseSchema):
    """Move an account; ``parent_id: null`` makes it top level."""

    parent_id: UUID | None


class AccountDomainsUpdate(BaseSchema):
    domains: list[str]


class AccountOut(BaseSchema):
    id: UUID
    name: str
    account_type: AccountType
    parent_id: UUID | None = None
    domains: list[str] = Field(default_factory=list, validation_alias="domain_list")
    created_at: datetime
    updated_at: datetime


__all__ = ["AccountCreate", "AccountDomainsUpdate", "AccountOut", "AccountParentUpdate"]
