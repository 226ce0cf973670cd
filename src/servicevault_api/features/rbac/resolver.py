"""Pure permission resolution over pre-loaded grants.

Nothing in this module touches the database: the repository loads a
:class:`UserGrants` snapshot and an :class:`AccountTree`, and resolution is a
bounded, in-memory computation over them.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from uuid import UUID

from servicevault_api.core.rbac.policy import grants_permission
from servicevault_api.core.rbac.types import (
    ACCOUNT_GRANT_SCOPES,
    UNIVERSAL_GRANT,
    WILDCARD,
    GrantScope,
    PermissionTuple,
    RoleScope,
)

from .hierarchy import AccountTree


@dataclass(frozen=True)
class RoleGrant:
    """Role template as seen by the resolver."""

    role_template_id: UUID
    name: str
    scope: RoleScope
    inherit_all_permissions: bool = False
    permissions: frozenset[PermissionTuple] = frozenset()


@dataclass(frozen=True)
class MembershipGrants:
    membership_id: UUID
    account_id: UUID
    roles: tuple[RoleGrant, ...] = ()


@dataclass(frozen=True)
class UserGrants:
    """Everything a user holds: system roles plus per-account memberships."""

    user_id: UUID
    system_roles: tuple[RoleGrant, ...] = ()
    memberships: tuple[MembershipGrants, ...] = ()
    _by_account: dict[UUID, MembershipGrants] = field(
        init=False, repr=False, compare=False
    )

    def __post_init__(self) -> None:
        object.__setattr__(
            self,
            "_by_account",
            {membership.account_id: membership for membership in self.memberships},
        )

    @property
    def is_super_admin(self) -> bool:
        return any(role.inherit_all_permissions for role in self.system_roles)

    def membership_for(self, account_id: UUID) -> MembershipGrants | None:
        return self._by_account.get(account_id)


@dataclass(frozen=True)
class ResolvedPermissions:
    """Deduplicated set of grants effective for a user, optionally in an account."""

    user_id: UUID
    account_id: UUID | None
    permissions: frozenset[PermissionTuple]
    is_super_admin: bool = False

    def allows(self, resource: str, action: str) -> bool:
        if self.is_super_admin:
            return True
        return grants_permission(self.permissions, resource, action)

    def sorted_permissions(self) -> list[PermissionTuple]:
        return sorted(self.permissions, key=PermissionTuple.sort_key)


def _membership_grants(membership: MembershipGrants, *, direct: bool) -> set[PermissionTuple]:
    """Tuples a membership contributes to its own account or, if not direct, below it."""

    collected: set[PermissionTuple] = set()
    for role in membership.roles:
        if role.scope is not RoleScope.ACCOUNT:
            continue
        if role.inherit_all_permissions and direct:
            collected.add(PermissionTuple(WILDCARD, WILDCARD, GrantScope.ACCOUNT))
        for grant in role.permissions:
            if grant.scope not in ACCOUNT_GRANT_SCOPES:
                continue
            if direct or grant.scope is GrantScope.SUBSIDIARY:
                collected.add(grant)
    return collected


def resolve_permissions(
    grants: UserGrants,
    tree: AccountTree,
    account_id: UUID | None = None,
) -> ResolvedPermissions:
    """Compute the effective permission set for ``grants`` in ``account_id``.

    1. Any system role with ``inherit_all_permissions`` returns the universal
       grant and nothing else.
    2. Tuples from every system role apply regardless of account.
    3. With an account, the user's membership there contributes its
       own/account/subsidiary tuples.
    4. Subsidiary tuples held on any ancestor of the account apply as well.

    Unknown accounts and missing memberships contribute nothing.
    """

    if grants.is_super_admin:
        return ResolvedPermissions(
            user_id=grants.user_id,
            account_id=account_id,
            permissions=frozenset({UNIVERSAL_GRANT}),
            is_super_admin=True,
        )

    collected: set[PermissionTuple] = set()
    for role in grants.system_roles:
        collected.update(role.permissions)

    if account_id is not None:
        membership = grants.membership_for(account_id)
        if membership is not None:
            collected.update(_membership_grants(membership, direct=True))
        for ancestor_id in tree.ancestors(account_id):
            inherited = grants.membership_for(ancestor_id)
            if inherited is not None:
                collected.update(_membership_grants(inherited, direct=False))

    return ResolvedPermissions(
        user_id=grants.user_id,
        account_id=account_id,
        permissions=frozenset(collected),
    )


def accessible_accounts(
    grants: UserGrants,
    tree: AccountTree,
    all_account_ids: Iterable[UUID] | None = None,
) -> list[UUID]:
    """Accounts the user can act in: memberships plus subsidiary reach.

    Super-admins reach every account (``all_account_ids`` or every node of
    ``tree``).
    """

    if grants.is_super_admin:
        return list(all_account_ids if all_account_ids is not None else tree)

    seen: set[UUID] = set()
    ordered: list[UUID] = []

    def _add(account_id: UUID) -> None:
        if account_id not in seen:
            seen.add(account_id)
            ordered.append(account_id)

    for membership in grants.memberships:
        _add(membership.account_id)
        if _membership_grants(membership, direct=False):
            for descendant in tree.descendants(membership.account_id):
                _add(descendant)
    return ordered


__all__ = [
    "MembershipGrants",
    "ResolvedPermissions",
    "RoleGrant",
    "UserGrants",
    "accessible_accounts",
    "resolve_permissions",
]
