from __future__ import annotations

import pytest

from servicevault_api.core.rbac.types import GrantScope, PermissionTuple, RoleScope
from servicevault_api.features.rbac.exceptions import RoleValidationError
from servicevault_api.features.rbac.service import collect_grants


def test_accepts_tuples_and_mappings_and_deduplicates_in_order() -> None:
    grants = collect_grants(
        [
            {"resource": "tickets", "action": "view"},
            PermissionTuple("reports", "*", GrantScope.SUBSIDIARY),
            {"resource": " tickets ", "action": "view", "scope": "account"},
        ],
        scope=RoleScope.ACCOUNT,
    )

    assert grants == (
        PermissionTuple("tickets", "view", GrantScope.ACCOUNT),
        PermissionTuple("reports", "*", GrantScope.SUBSIDIARY),
    )


def test_system_templates_may_grant_global_scope() -> None:
    grants = collect_grants(
        [PermissionTuple("*", "*", GrantScope.GLOBAL)],
        scope=RoleScope.SYSTEM,
    )

    assert grants == (PermissionTuple("*", "*", GrantScope.GLOBAL),)


def test_account_templates_reject_global_scope() -> None:
    with pytest.raises(RoleValidationError, match="global"):
        collect_grants(
            [PermissionTuple("tickets", "view", GrantScope.GLOBAL)],
            scope=RoleScope.ACCOUNT,
        )


@pytest.mark.parametrize(
    "entry",
    [
        {"resource": "tickets", "action": "approve"},
        {"resource": "*", "action": "view"},
        {"resource": "widgets", "action": "*"},
        {"resource": "", "action": "view"},
        {"resource": "tickets", "action": "view", "scope": "planet"},
    ],
)
def test_rejects_unknown_or_malformed_entries(entry: dict[str, str]) -> None:
    with pytest.raises(RoleValidationError):
        collect_grants([entry], scope=RoleScope.ACCOUNT)
