"""Access control type definitions used across the stack."""

from __future__ import annotations

import enum
from dataclasses import dataclass

WILDCARD = "*"


class GrantScope(str, enum.Enum):
    """Breadth of a single permission grant."""

    OWN = "own"
    ACCOUNT = "account"
    SUBSIDIARY = "subsidiary"
    GLOBAL = "global"


class RoleScope(str, enum.Enum):
    """Where a role template may be assigned."""

    SYSTEM = "system"
    ACCOUNT = "account"


class AccountType(str, enum.Enum):
    ORGANIZATION = "organization"
    SUBSIDIARY = "subsidiary"
    INDIVIDUAL = "individual"


# Scopes an account-level role template is allowed to carry.
ACCOUNT_GRANT_SCOPES: frozenset[GrantScope] = frozenset(
    {GrantScope.OWN, GrantScope.ACCOUNT, GrantScope.SUBSIDIARY}
)


@dataclass(frozen=True, slots=True)
class PermissionTuple:
    """A single ``(resource, action, scope)`` grant.

    Compared structurally; ``*`` is a wildcard in ``resource`` or ``action``.
    """

    resource: str
    action: str
    scope: GrantScope = GrantScope.ACCOUNT

    def sort_key(self) -> tuple[str, str, str]:
        return (self.resource, self.action, self.scope.value)


UNIVERSAL_GRANT = PermissionTuple(WILDCARD, WILDCARD, GrantScope.GLOBAL)


@dataclass(frozen=True)
class PermissionDef:
    """Static catalog entry for a ``resource``/``action`` pair."""

    resource: str
    action: str
    label: str
    description: str


@dataclass(frozen=True)
class RoleTemplateDef:
    """Static role template seeded at startup."""

    name: str
    description: str
    scope: RoleScope
    permissions: tuple[PermissionTuple, ...] = ()
    inherit_all_permissions: bool = False
    is_system: bool = True


__all__ = [
    "ACCOUNT_GRANT_SCOPES",
    "AccountType",
    "GrantScope",
    "PermissionDef",
    "PermissionTuple",
    "RoleScope",
    "RoleTemplateDef",
    "UNIVERSAL_GRANT",
    "WILDCARD",
]
