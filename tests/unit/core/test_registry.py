from __future__ import annotations

import pytest

from servicevault_api.core.rbac.registry import (
    ACCOUNT_ADMIN_TEMPLATE,
    DEFAULT_ROLE_TEMPLATE_BY_NAME,
    DEFAULT_ROLE_TEMPLATES,
    PERMISSION_REGISTRY,
    PERMISSIONS,
    RESOURCES,
    SUPER_ADMIN_TEMPLATE,
    is_grantable,
    is_registered,
)
from servicevault_api.core.rbac.types import ACCOUNT_GRANT_SCOPES, RoleScope


def test_catalog_entries_are_unique() -> None:
    keys = [(definition.resource, definition.action) for definition in PERMISSIONS]

    assert len(keys) == len(set(keys)) == len(PERMISSION_REGISTRY)


def test_catalog_contains_known_resources() -> None:
    assert {
        "time-entries",
        "billing",
        "reports",
        "tickets",
        "accounts",
        "users",
        "email",
        "settings",
        "system",
        "role-templates",
    } <= RESOURCES


@pytest.mark.parametrize(
    ("resource", "action", "expected"),
    [
        ("tickets", "view", True),
        ("tickets", "approve", False),
        ("*", "*", False),
        ("tickets", "*", False),
        ("", "view", False),
    ],
)
def test_is_registered(resource: str, action: str, expected: bool) -> None:
    assert is_registered(resource, action) is expected


@pytest.mark.parametrize(
    ("resource", "action", "expected"),
    [
        ("tickets", "view", True),
        ("tickets", "*", True),
        ("*", "*", True),
        ("*", "view", False),
        ("widgets", "*", False),
        ("tickets", "approve", False),
    ],
)
def test_is_grantable(resource: str, action: str, expected: bool) -> None:
    assert is_grantable(resource, action) is expected


def test_default_templates_only_reference_grantable_tuples() -> None:
    for definition in DEFAULT_ROLE_TEMPLATES:
        for grant in definition.permissions:
            assert is_grantable(grant.resource, grant.action), (definition.name, grant)
        if definition.scope is RoleScope.ACCOUNT:
            assert all(grant.scope in ACCOUNT_GRANT_SCOPES for grant in definition.permissions)


def test_super_admin_template_inherits_everything() -> None:
    definition = DEFAULT_ROLE_TEMPLATE_BY_NAME[SUPER_ADMIN_TEMPLATE]

    assert definition.scope is RoleScope.SYSTEM
    assert definition.inherit_all_permissions is True
    assert definition.is_system is True


def test_account_admin_template_is_account_scoped() -> None:
    definition = DEFAULT_ROLE_TEMPLATE_BY_NAME[ACCOUNT_ADMIN_TEMPLATE]

    assert definition.scope is RoleScope.ACCOUNT
    assert definition.inherit_all_permissions is False
    assert definition.permissions
