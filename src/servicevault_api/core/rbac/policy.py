"""Wildcard matching shared by the server check API and the client cache."""

from __future__ import annotations

from collections.abc import Iterable

from servicevault_api.core.rbac.types import WILDCARD, GrantScope, PermissionTuple


def _candidates(resource: str, action: str) -> tuple[tuple[str, str], ...]:
    # Exact pair, then resource wildcard, then universal wildcard.
    return ((resource, action), (resource, WILDCARD), (WILDCARD, WILDCARD))


def grants_permission(
    permissions: Iterable[PermissionTuple],
    resource: str,
    action: str,
) -> bool:
    """Three-tier wildcard check over a resolved permission set.

    The first tier with a match answers ``True``; scope plays no part.
    """

    present = {(grant.resource, grant.action) for grant in permissions}
    return any(candidate in present for candidate in _candidates(resource, action))


def matching_grants(
    permissions: Iterable[PermissionTuple],
    resource: str,
    action: str,
) -> tuple[PermissionTuple, ...]:
    """Return every grant, across all three tiers, that covers ``resource``/``action``."""

    candidates = set(_candidates(resource, action))
    return tuple(
        sorted(
            (grant for grant in permissions if (grant.resource, grant.action) in candidates),
            key=PermissionTuple.sort_key,
        )
    )


def grants_beyond_own(grants: Iterable[PermissionTuple]) -> bool:
    """True when any grant reaches past the caller's own records."""

    return any(grant.scope is not GrantScope.OWN for grant in grants)


__all__ = ["grants_beyond_own", "grants_permission", "matching_grants"]
