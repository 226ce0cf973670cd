"""Pydantic schemas for user payloads."""

from __future__ import annotations

from datetime import datetime

from pydantic import EmailStr, Field

from servicevault_api.common.ids import UUIDStr
from servicevault_api.common.schema import BaseSchema


class UserCreate(BaseSchema):
    email: EmailStr
    display_name: str | None = Field(default=None, max_length=255)
    is_active: bool = True
    auto_assign: bool = Field(
        default=True,
        description="Join every account that claims the email domain.",
    )


class UserOut(BaseSchema):
    """Representation of a user record."""

    id: UUIDStr
    email: str
    display_name: str | None = None
    is_active: bool
    created_at: datetime
    updated_at: datetime


class DomainAssignmentOut(BaseSchema):
    """Accounts joined by a domain assignment run."""

    user_id: UUIDStr
    account_ids: list[UUIDStr]


__all__ = ["DomainAssignmentOut", "UserCreate", "UserOut"]
