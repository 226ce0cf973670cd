from __future__ import annotations

from servicevault_api.core.rbac.policy import (
    grants_beyond_own,
    grants_permission,
    matching_grants,
)
from servicevault_api.core.rbac.types import GrantScope, PermissionTuple


def _tuple(resource: str, action: str, scope: GrantScope = GrantScope.ACCOUNT) -> PermissionTuple:
    return PermissionTuple(resource, action, scope)


def test_exact_grant_matches_only_its_pair() -> None:
    permissions = {_tuple("tickets", "view")}

    assert grants_permission(permissions, "tickets", "view") is True
    assert grants_permission(permissions, "tickets", "delete") is False
    assert grants_permission(permissions, "billing", "view") is False


def test_resource_wildcard_covers_every_action_of_that_resource() -> None:
    permissions = {_tuple("tickets", "*")}

    assert grants_permission(permissions, "tickets", "assign") is True
    assert grants_permission(permissions, "billing", "view") is False


def test_universal_wildcard_covers_everything() -> None:
    permissions = {_tuple("*", "*", GrantScope.GLOBAL)}

    assert grants_permission(permissions, "system", "backup") is True
    assert grants_permission(permissions, "email", "queue") is True


def test_action_wildcard_alone_does_not_match_other_resources() -> None:
    permissions = {_tuple("*", "view")}

    assert grants_permission(permissions, "tickets", "view") is False


def test_scope_does_not_affect_the_boolean_check() -> None:
    for scope in GrantScope:
        assert grants_permission({_tuple("reports", "export", scope)}, "reports", "export")


def test_empty_set_denies() -> None:
    assert grants_permission(frozenset(), "tickets", "view") is False


def test_matching_grants_returns_every_tier_sorted() -> None:
    permissions = {
        _tuple("tickets", "view", GrantScope.OWN),
        _tuple("tickets", "*", GrantScope.SUBSIDIARY),
        _tuple("*", "*", GrantScope.GLOBAL),
        _tuple("billing", "view"),
    }

    matches = matching_grants(permissions, "tickets", "view")

    assert matches == (
        _tuple("*", "*", GrantScope.GLOBAL),
        _tuple("tickets", "*", GrantScope.SUBSIDIARY),
        _tuple("tickets", "view", GrantScope.OWN),
    )


def test_grants_beyond_own() -> None:
    assert grants_beyond_own([_tuple("tickets", "view", GrantScope.OWN)]) is False
    assert grants_beyond_own(
        [_tuple("tickets", "view", GrantScope.OWN), _tuple("tickets", "*", GrantScope.ACCOUNT)]
    )
    assert grants_beyond_own([]) is False
