"""Access control primitives: types, catalog and matching rules."""

from .policy import grants_permission, matching_grants
from .types import (
    WILDCARD,
    AccountType,
    GrantScope,
    PermissionDef,
    PermissionTuple,
    RoleScope,
    RoleTemplateDef,
)

__all__ = [
    "WILDCARD",
    "AccountType",
    "GrantScope",
    "PermissionDef",
    "PermissionTuple",
    "RoleScope",
    "RoleTemplateDef",
    "grants_permission",
    "matching_grants",
]
