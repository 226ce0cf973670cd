"""Pydantic schemas for permissions, role templates and assignments."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import Field

from servicevault_api.common.schema import BaseSchema
from servicevault_api.core.rbac.types import GrantScope, PermissionTuple, RoleScope


class PermissionTupleIn(BaseSchema):
    """One ``(resource, action, scope)`` grant in a role template payload."""

    resource: str = Field(min_length=1, max_length=100)
    action: str = Field(min_length=1, max_length=100)
    scope: GrantScope = GrantScope.ACCOUNT

    def as_tuple(self) -> PermissionTuple:
        return PermissionTuple(self.resource, self.action, GrantScope(self.scope))


class PermissionTupleOut(BaseSchema):
    resource: str
    action: str
    scope: GrantScope

    @classmethod
    def from_tuple(cls, grant: PermissionTuple) -> PermissionTupleOut:
        return cls(resource=grant.resource, action=grant.action, scope=grant.scope)


class PermissionOut(BaseSchema):
    """Serialized permission catalog entry."""

    resource: str
    action: str
    label: str
    description: str


class RoleTemplateCreate(BaseSchema):
    """Payload for creating a role template."""

    name: str = Field(min_length=1, max_length=100)
    description: str | None = Field(default=None, max_length=500)
    scope: RoleScope = RoleScope.ACCOUNT
    inherit_all_permissions: bool = False
    permissions: list[PermissionTupleIn] = Field(default_factory=list)


class RoleTemplateUpdate(BaseSchema):
    """Payload for updating a role template; omitted fields stay unchanged."""

    name: str | None = Field(default=None, min_length=1, max_length=100)
    description: str | None = Field(default=None, max_length=500)
    inherit_all_permissions: bool | None = None
    permissions: list[PermissionTupleIn] | None = None


class RoleTemplateOut(BaseSchema):
    """Serialized representation of a role template."""

    id: UUID
    name: str
    description: str | None = None
    scope: RoleScope
    inherit_all_permissions: bool
    is_system: bool
    permissions: list[PermissionTupleOut]
    created_at: datetime
    updated_at: datetime | None = None


class RoleTemplateSummary(BaseSchema):
    id: UUID
    name: str
    scope: RoleScope
    inherit_all_permissions: bool


class SystemRoleAssignmentCreate(BaseSchema):
    role_template_id: UUID


class SystemRoleAssignmentOut(BaseSchema):
    id: UUID
    user_id: UUID
    role_template: RoleTemplateSummary
    created_at: datetime


class MembershipCreate(BaseSchema):
    """Payload for adding a user to an account."""

    user_id: UUID
    role_template_ids: list[UUID] | None = Field(
        default=None,
        description="Account roles to assign. Omit to assign the default Account User role.",
    )


class MembershipRoleAssignmentCreate(BaseSchema):
    role_template_id: UUID


class MembershipRoleAssignmentOut(BaseSchema):
    id: UUID
    membership_id: UUID
    role_template: RoleTemplateSummary
    created_at: datetime


class MembershipOut(BaseSchema):
    id: UUID
    user_id: UUID
    account_id: UUID
    roles: list[RoleTemplateSummary]
    created_at: datetime


class PermissionSnapshotOut(BaseSchema):
    """Resolved permissions for one user, optionally within an account."""

    user_id: UUID
    account_id: UUID | None = None
    is_super_admin: bool
    permissions: list[PermissionTupleOut]


class PermissionCheckRequest(BaseSchema):
    resource: str
    action: str
    account_id: UUID | None = None


class PermissionCheckResponse(BaseSchema):
    resource: str
    action: str
    account_id: UUID | None = None
    granted: bool


class PermissionBatchCheckRequest(BaseSchema):
    checks: list[PermissionCheckRequest] = Field(min_length=1, max_length=100)


class PermissionBatchCheckResponse(BaseSchema):
    results: list[PermissionCheckResponse]


__all__ = [
    "MembershipCreate",
    "MembershipOut",
    "MembershipRoleAssignmentCreate",
    "MembershipRoleAssignmentOut",
    "PermissionBatchCheckRequest",
    "PermissionBatchCheckResponse",
    "PermissionCheckRequest",
    "PermissionCheckResponse",
    "PermissionOut",
    "PermissionSnapshotOut",
    "PermissionTupleIn",
    "PermissionTupleOut",
    "RoleTemplateCreate",
    "RoleTemplateOut",
    "RoleTemplateSummary",
    "RoleTemplateUpdate",
    "SystemRoleAssignmentCreate",
    "SystemRoleAssignmentOut",
]
