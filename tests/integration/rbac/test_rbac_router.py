"""HTTP surface for permission checks, role templates and assignments."""

from __future__ import annotations

from uuid import uuid4

import pytest
from fastapi import FastAPI
from httpx import AsyncClient
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from conftest import SeededIdentity
from servicevault_api.core.rbac.registry import PERMISSIONS
from servicevault_api.infra.db import get_engine, get_session
from servicevault_api.settings import get_settings

pytestmark = pytest.mark.asyncio

API = "/api/v1"


def _grant(resource: str, action: str, scope: str) -> dict[str, str]:
    return {"resource": resource, "action": action, "scope": scope}


async def _create_template(
    client: AsyncClient,
    seed: SeededIdentity,
    *,
    scope: str = "account",
    permissions: list[dict[str, str]] | None = None,
) -> dict:
    response = await client.post(
        f"{API}/role-templates",
        headers=seed.headers(seed.super_admin_id),
        json={
            "name": f"Template {uuid4().hex[:8]}",
            "scope": scope,
            "permissions": permissions or [],
        },
    )
    assert response.status_code == 201, response.text
    return response.json()


# ---------------------------------------------------------------------------
# Caller identity
# ---------------------------------------------------------------------------


async def test_permissions_require_a_caller(async_client: AsyncClient) -> None:
    header = get_settings().actor_header

    missing = await async_client.get(f"{API}/me/permissions")
    malformed = await async_client.get(f"{API}/me/permissions", headers={header: "nope"})
    unknown = await async_client.get(f"{API}/me/permissions", headers={header: str(uuid4())})

    assert (missing.status_code, missing.json()["detail"]) == (401, "Authentication required")
    assert (malformed.status_code, malformed.json()["detail"]) == (401, "Invalid user identifier")
    assert (unknown.status_code, unknown.json()["detail"]) == (401, "Unknown or inactive user")


async def test_super_admin_snapshot_is_the_universal_grant(
    async_client: AsyncClient, seed_identity: SeededIdentity
) -> None:
    response = await async_client.get(
        f"{API}/me/permissions",
        headers=seed_identity.headers(seed_identity.super_admin_id),
    )

    assert response.status_code == 200
    payload = response.json()
    assert payload["is_super_admin"] is True
    assert payload["permissions"] == [_grant("*", "*", "global")]
    assert "account_id" not in payload


async def test_member_snapshot_depends_on_account(
    async_client: AsyncClient, seed_identity: SeededIdentity
) -> None:
    headers = seed_identity.headers(seed_identity.account_user_id)

    scoped = await async_client.get(
        f"{API}/me/permissions",
        headers=headers,
        params={"account_id": str(seed_identity.subsidiary_id)},
    )
    unscoped = await async_client.get(f"{API}/me/permissions", headers=headers)
    parent = await async_client.get(
        f"{API}/me/permissions",
        headers=headers,
        params={"account_id": str(seed_identity.organization_id)},
    )

    assert scoped.status_code == 200
    assert scoped.json()["account_id"] == str(seed_identity.subsidiary_id)
    permissions = scoped.json()["permissions"]
    assert _grant("tickets", "view", "account") in permissions
    assert _grant("tickets", "create", "own") in permissions
    assert unscoped.json()["permissions"] == []
    assert parent.json()["permissions"] == []


async def test_account_admin_inherits_into_subsidiary(
    async_client: AsyncClient, seed_identity: SeededIdentity
) -> None:
    response = await async_client.get(
        f"{API}/me/permissions",
        headers=seed_identity.headers(seed_identity.account_admin_id),
        params={"account_id": str(seed_identity.subsidiary_id)},
    )

    assert response.status_code == 200
    permissions = response.json()["permissions"]
    assert _grant("tickets", "*", "subsidiary") in permissions
    assert all(entry["scope"] == "subsidiary" for entry in permissions)


async def test_malformed_account_query_is_rejected(
    async_client: AsyncClient, seed_identity: SeededIdentity
) -> None:
    response = await async_client.get(
        f"{API}/me/permissions",
        headers=seed_identity.headers(seed_identity.account_user_id),
        params={"account_id": "not-a-uuid"},
    )

    assert response.status_code == 422


# ---------------------------------------------------------------------------
# Checks
# ---------------------------------------------------------------------------


async def test_single_check(async_client: AsyncClient, seed_identity: SeededIdentity) -> None:
    headers = seed_identity.headers(seed_identity.account_user_id)
    account_id = str(seed_identity.subsidiary_id)

    granted = await async_client.post(
        f"{API}/permissions/check",
        headers=headers,
        json={"resource": "tickets", "action": "view", "account_id": account_id},
    )
    denied = await async_client.post(
        f"{API}/permissions/check",
        headers=headers,
        json={"resource": "billing", "action": "view", "account_id": account_id},
    )

    assert granted.status_code == 200
    assert granted.json() == {
        "resource": "tickets",
        "action": "view",
        "account_id": account_id,
        "granted": True,
    }
    assert denied.json()["granted"] is False


async def test_unregistered_check_is_a_validation_error(
    async_client: AsyncClient, seed_identity: SeededIdentity
) -> None:
    response = await async_client.post(
        f"{API}/permissions/check",
        headers=seed_identity.headers(seed_identity.super_admin_id),
        json={"resource": "tickets", "action": "approve"},
    )

    assert response.status_code == 422
    assert "not registered" in response.json()["detail"]


async def test_batch_check_keeps_request_order(
    async_client: AsyncClient, seed_identity: SeededIdentity
) -> None:
    subsidiary = str(seed_identity.subsidiary_id)
    other = str(seed_identity.other_account_id)

    response = await async_client.post(
        f"{API}/permissions/check-batch",
        headers=seed_identity.headers(seed_identity.account_admin_id),
        json={
            "checks": [
                {"resource": "billing", "action": "view", "account_id": subsidiary},
                {"resource": "billing", "action": "view", "account_id": other},
                {"resource": "billing", "action": "update", "account_id": subsidiary},
                {"resource": "users", "action": "invite", "account_id": subsidiary},
            ]
        },
    )

    assert response.status_code == 200
    assert [item["granted"] for item in response.json()["results"]] == [
        True,
        False,
        False,
        True,
    ]


async def test_empty_batch_is_rejected(
    async_client: AsyncClient, seed_identity: SeededIdentity
) -> None:
    response = await async_client.post(
        f"{API}/permissions/check-batch",
        headers=seed_identity.headers(seed_identity.account_user_id),
        json={"checks": []},
    )

    assert response.status_code == 422


async def test_catalog_requires_role_template_access(
    async_client: AsyncClient, seed_identity: SeededIdentity
) -> None:
    forbidden = await async_client.get(
        f"{API}/permissions/catalog",
        headers=seed_identity.headers(seed_identity.outsider_id),
    )
    allowed = await async_client.get(
        f"{API}/permissions/catalog",
        headers=seed_identity.headers(seed_identity.super_admin_id),
    )

    assert forbidden.status_code == 403
    assert forbidden.json()["detail"] == "Forbidden"
    assert allowed.status_code == 200
    assert len(allowed.json()) == len(PERMISSIONS)


# ---------------------------------------------------------------------------
# Role templates
# ---------------------------------------------------------------------------


async def test_role_template_lifecycle(
    async_client: AsyncClient, seed_identity: SeededIdentity
) -> None:
    headers = seed_identity.headers(seed_identity.super_admin_id)
    created = await _create_template(
        async_client,
        seed_identity,
        permissions=[_grant("reports", "view", "account"), _grant("reports", "view", "account")],
    )
    assert created["is_system"] is False
    assert created["permissions"] == [_grant("reports", "view", "account")]

    updated = await async_client.patch(
        f"{API}/role-templates/{created['id']}",
        headers=headers,
        json={"permissions": [_grant("reports", "*", "subsidiary")], "description": "Reporting"},
    )
    assert updated.status_code == 200
    assert updated.json()["permissions"] == [_grant("reports", "*", "subsidiary")]
    assert updated.json()["description"] == "Reporting"

    deleted = await async_client.delete(f"{API}/role-templates/{created['id']}", headers=headers)
    assert deleted.status_code == 204

    missing = await async_client.get(f"{API}/role-templates/{created['id']}", headers=headers)
    assert missing.status_code == 404


async def test_role_template_conflicts_and_validation(
    async_client: AsyncClient, seed_identity: SeededIdentity
) -> None:
    headers = seed_identity.headers(seed_identity.super_admin_id)
    created = await _create_template(async_client, seed_identity)

    duplicate = await async_client.post(
        f"{API}/role-templates", headers=headers, json={"name": created["name"]}
    )
    global_grant = await async_client.post(
        f"{API}/role-templates",
        headers=headers,
        json={
            "name": f"Global {uuid4().hex[:8]}",
            "permissions": [_grant("tickets", "view", "global")],
        },
    )
    unknown_action = await async_client.post(
        f"{API}/role-templates",
        headers=headers,
        json={
            "name": f"Unknown {uuid4().hex[:8]}",
            "permissions": [_grant("tickets", "approve", "account")],
        },
    )

    assert duplicate.status_code == 409
    assert global_grant.status_code == 422
    assert unknown_action.status_code == 422


async def test_seeded_templates_cannot_be_changed(
    async_client: AsyncClient, seed_identity: SeededIdentity
) -> None:
    headers = seed_identity.headers(seed_identity.super_admin_id)
    template_id = seed_identity.account_user_template_id

    patched = await async_client.patch(
        f"{API}/role-templates/{template_id}", headers=headers, json={"name": "Renamed"}
    )
    deleted = await async_client.delete(f"{API}/role-templates/{template_id}", headers=headers)

    assert patched.status_code == 400
    assert deleted.status_code == 400


async def test_assigned_template_cannot_be_deleted(
    async_client: AsyncClient, seed_identity: SeededIdentity
) -> None:
    headers = seed_identity.headers(seed_identity.super_admin_id)
    template = await _create_template(
        async_client, seed_identity, permissions=[_grant("billing", "view", "account")]
    )
    assigned = await async_client.post(
        f"{API}/memberships/{seed_identity.account_user_membership_id}/roles",
        headers=headers,
        json={"role_template_id": template["id"]},
    )
    assert assigned.status_code == 201

    response = await async_client.delete(f"{API}/role-templates/{template['id']}", headers=headers)

    assert response.status_code == 409
    assert response.json()["detail"] == (
        "Cannot delete role template. It is currently assigned to 1 user(s)."
    )


async def test_role_templates_require_permission(
    async_client: AsyncClient, seed_identity: SeededIdentity
) -> None:
    headers = seed_identity.headers(seed_identity.account_admin_id)

    listing = await async_client.get(f"{API}/role-templates", headers=headers)
    creation = await async_client.post(
        f"{API}/role-templates", headers=headers, json={"name": f"Sneaky {uuid4().hex[:8]}"}
    )

    assert listing.status_code == 403
    assert creation.status_code == 403


async def test_list_role_templates_by_scope(
    async_client: AsyncClient, seed_identity: SeededIdentity
) -> None:
    response = await async_client.get(
        f"{API}/role-templates",
        headers=seed_identity.headers(seed_identity.super_admin_id),
        params={"scope": "system"},
    )

    assert response.status_code == 200
    templates = response.json()
    assert templates
    assert {template["scope"] for template in templates} == {"system"}
    assert str(seed_identity.super_admin_template_id) in {template["id"] for template in templates}


# ---------------------------------------------------------------------------
# System roles
# ---------------------------------------------------------------------------


async def test_grant_and_revoke_system_role(
    async_client: AsyncClient, seed_identity: SeededIdentity
) -> None:
    headers = seed_identity.headers(seed_identity.super_admin_id)
    template = await _create_template(
        async_client,
        seed_identity,
        scope="system",
        permissions=[_grant("reports", "view", "global")],
    )
    base = f"{API}/users/{seed_identity.outsider_id}/system-roles"

    granted = await async_client.post(
        base, headers=headers, json={"role_template_id": template["id"]}
    )
    duplicate = await async_client.post(
        base, headers=headers, json={"role_template_id": template["id"]}
    )
    listed = await async_client.get(base, headers=headers)

    assert granted.status_code == 201
    assert granted.json()["role_template"]["id"] == template["id"]
    assert duplicate.status_code == 409
    assert [item["role_template"]["id"] for item in listed.json()] == [template["id"]]

    check = await async_client.post(
        f"{API}/permissions/check",
        headers=seed_identity.headers(seed_identity.outsider_id),
        json={"resource": "reports", "action": "view", "account_id": str(uuid4())},
    )
    assert check.json()["granted"] is True

    revoked = await async_client.delete(f"{base}/{template['id']}", headers=headers)
    again = await async_client.delete(f"{base}/{template['id']}", headers=headers)
    assert revoked.status_code == 204
    assert again.status_code == 404


async def test_system_role_assignment_errors(
    async_client: AsyncClient, seed_identity: SeededIdentity
) -> None:
    headers = seed_identity.headers(seed_identity.super_admin_id)
    base = f"{API}/users/{seed_identity.outsider_id}/system-roles"

    wrong_scope = await async_client.post(
        base,
        headers=headers,
        json={"role_template_id": str(seed_identity.account_user_template_id)},
    )
    unknown_role = await async_client.post(
        base, headers=headers, json={"role_template_id": str(uuid4())}
    )
    unknown_user = await async_client.post(
        f"{API}/users/{uuid4()}/system-roles",
        headers=headers,
        json={"role_template_id": str(seed_identity.super_admin_template_id)},
    )
    not_allowed = await async_client.post(
        base,
        headers=seed_identity.headers(seed_identity.account_admin_id),
        json={"role_template_id": str(seed_identity.super_admin_template_id)},
    )

    assert wrong_scope.status_code == 422
    assert unknown_role.status_code == 404
    assert unknown_user.status_code == 404
    assert not_allowed.status_code == 403


# ---------------------------------------------------------------------------
# Memberships
# ---------------------------------------------------------------------------


async def test_account_admin_manages_subsidiary_memberships(
    async_client: AsyncClient, seed_identity: SeededIdentity
) -> None:
    headers = seed_identity.headers(seed_identity.account_admin_id)
    base = f"{API}/accounts/{seed_identity.subsidiary_id}/memberships"

    created = await async_client.post(
        base,
        headers=headers,
        json={
            "user_id": str(seed_identity.outsider_id),
            "role_template_ids": [str(seed_identity.account_user_template_id)],
        },
    )
    duplicate = await async_client.post(
        base, headers=headers, json={"user_id": str(seed_identity.outsider_id)}
    )
    listed = await async_client.get(base, headers=headers)

    assert created.status_code == 201
    membership = created.json()
    assert membership["account_id"] == str(seed_identity.subsidiary_id)
    assert [role["id"] for role in membership["roles"]] == [
        str(seed_identity.account_user_template_id)
    ]
    assert duplicate.status_code == 409
    assert membership["id"] in {item["id"] for item in listed.json()}

    check = await async_client.post(
        f"{API}/permissions/check",
        headers=seed_identity.headers(seed_identity.outsider_id),
        json={
            "resource": "tickets",
            "action": "view",
            "account_id": str(seed_identity.subsidiary_id),
        },
    )
    assert check.json()["granted"] is True

    removed = await async_client.delete(f"{base}/{membership['id']}", headers=headers)
    assert removed.status_code == 204


async def test_membership_changes_outside_reach_are_forbidden(
    async_client: AsyncClient, seed_identity: SeededIdentity
) -> None:
    admin_headers = seed_identity.headers(seed_identity.account_admin_id)

    other_account = await async_client.post(
        f"{API}/accounts/{seed_identity.other_account_id}/memberships",
        headers=admin_headers,
        json={"user_id": str(seed_identity.outsider_id)},
    )
    member_listing = await async_client.get(
        f"{API}/accounts/{seed_identity.subsidiary_id}/memberships",
        headers=seed_identity.headers(seed_identity.account_user_id),
    )

    assert other_account.status_code == 403
    assert member_listing.status_code == 403


async def test_membership_must_belong_to_the_account(
    async_client: AsyncClient, seed_identity: SeededIdentity
) -> None:
    response = await async_client.delete(
        f"{API}/accounts/{seed_identity.organization_id}/memberships/"
        f"{seed_identity.account_user_membership_id}",
        headers=seed_identity.headers(seed_identity.super_admin_id),
    )

    assert response.status_code == 404


async def test_membership_rejects_system_templates(
    async_client: AsyncClient, seed_identity: SeededIdentity
) -> None:
    response = await async_client.post(
        f"{API}/accounts/{seed_identity.other_account_id}/memberships",
        headers=seed_identity.headers(seed_identity.super_admin_id),
        json={
            "user_id": str(seed_identity.outsider_id),
            "role_template_ids": [str(seed_identity.super_admin_template_id)],
        },
    )

    assert response.status_code == 422


async def test_membership_roles_can_be_added_and_removed(
    async_client: AsyncClient, seed_identity: SeededIdentity
) -> None:
    headers = seed_identity.headers(seed_identity.account_admin_id)
    base = f"{API}/memberships/{seed_identity.account_user_membership_id}/roles"
    template_id = str(seed_identity.account_admin_template_id)

    added = await async_client.post(base, headers=headers, json={"role_template_id": template_id})
    duplicate = await async_client.post(
        base, headers=headers, json={"role_template_id": template_id}
    )
    assert added.status_code == 201
    assert added.json()["role_template"]["name"] == "Account Administrator"
    assert duplicate.status_code == 409

    check = await async_client.post(
        f"{API}/permissions/check",
        headers=seed_identity.headers(seed_identity.account_user_id),
        json={
            "resource": "billing",
            "action": "view",
            "account_id": str(seed_identity.subsidiary_id),
        },
    )
    assert check.json()["granted"] is True

    removed = await async_client.delete(f"{base}/{template_id}", headers=headers)
    again = await async_client.delete(f"{base}/{template_id}", headers=headers)
    assert removed.status_code == 204
    assert again.status_code == 404


async def test_membership_roles_require_manage_permission(
    async_client: AsyncClient, seed_identity: SeededIdentity
) -> None:
    response = await async_client.post(
        f"{API}/memberships/{seed_identity.account_user_membership_id}/roles",
        headers=seed_identity.headers(seed_identity.account_user_id),
        json={"role_template_id": str(seed_identity.account_admin_template_id)},
    )
    missing = await async_client.post(
        f"{API}/memberships/{uuid4()}/roles",
        headers=seed_identity.headers(seed_identity.super_admin_id),
        json={"role_template_id": str(seed_identity.account_admin_template_id)},
    )

    assert response.status_code == 403
    assert missing.status_code == 404


async def test_effective_permissions_of_another_user(
    async_client: AsyncClient, seed_identity: SeededIdentity
) -> None:
    path = f"{API}/users/{seed_identity.account_user_id}/effective-permissions"
    params = {"account_id": str(seed_identity.subsidiary_id)}

    allowed = await async_client.get(
        path, headers=seed_identity.headers(seed_identity.account_admin_id), params=params
    )
    forbidden = await async_client.get(
        path, headers=seed_identity.headers(seed_identity.outsider_id), params=params
    )

    assert allowed.status_code == 200
    assert allowed.json()["user_id"] == str(seed_identity.account_user_id)
    assert _grant("tickets", "view", "account") in allowed.json()["permissions"]
    assert forbidden.status_code == 403


async def test_all_permission_membership_roles_require_a_super_admin(
    async_client: AsyncClient, seed_identity: SeededIdentity
) -> None:
    created = await async_client.post(
        f"{API}/role-templates",
        headers=seed_identity.headers(seed_identity.super_admin_id),
        json={
            "name": f"Account owner {uuid4().hex[:8]}",
            "scope": "account",
            "inherit_all_permissions": True,
        },
    )
    assert created.status_code == 201, created.text
    owner_id = created.json()["id"]
    headers = seed_identity.headers(seed_identity.account_admin_id)

    granted = await async_client.post(
        f"{API}/memberships/{seed_identity.account_user_membership_id}/roles",
        headers=headers,
        json={"role_template_id": owner_id},
    )
    membership = await async_client.post(
        f"{API}/accounts/{seed_identity.subsidiary_id}/memberships",
        headers=headers,
        json={"user_id": str(seed_identity.outsider_id), "role_template_ids": [owner_id]},
    )
    check = await async_client.post(
        f"{API}/permissions/check",
        headers=seed_identity.headers(seed_identity.account_user_id),
        json={
            "resource": "billing",
            "action": "delete",
            "account_id": str(seed_identity.subsidiary_id),
        },
    )

    assert granted.status_code == 403
    assert membership.status_code == 403
    assert check.json()["granted"] is False

    by_root = await async_client.post(
        f"{API}/memberships/{seed_identity.account_user_membership_id}/roles",
        headers=seed_identity.headers(seed_identity.super_admin_id),
        json={"role_template_id": owner_id},
    )
    revoked = await async_client.delete(
        f"{API}/memberships/{seed_identity.account_user_membership_id}/roles/{owner_id}",
        headers=headers,
    )
    assert by_root.status_code == 201
    assert revoked.status_code == 403


async def test_memberships_without_roles_get_the_default_role(
    async_client: AsyncClient, seed_identity: SeededIdentity
) -> None:
    response = await async_client.post(
        f"{API}/accounts/{seed_identity.other_account_id}/memberships",
        headers=seed_identity.headers(seed_identity.super_admin_id),
        json={"user_id": str(seed_identity.outsider_id)},
    )

    assert response.status_code == 201
    assert [role["name"] for role in response.json()["roles"]] == ["Account User"]


class _UnavailableSession(AsyncSession):
    """Session whose queries fail as if the database went away."""

    async def execute(self, *args, **kwargs):
        raise OperationalError("SELECT", {}, Exception("database is locked"))


async def test_store_outage_is_a_503_not_a_denial(
    app: FastAPI, async_client: AsyncClient, seed_identity: SeededIdentity
) -> None:
    async def _unavailable_session():
        # Principal lookups use Session.get, so authentication still succeeds.
        session = _UnavailableSession(get_engine(get_settings()), expire_on_commit=False)
        try:
            yield session
        finally:
            await session.close()

    app.dependency_overrides[get_session] = _unavailable_session
    try:
        snapshot = await async_client.get(
            f"{API}/me/permissions",
            headers=seed_identity.headers(seed_identity.account_user_id),
        )
        check = await async_client.post(
            f"{API}/permissions/check",
            headers=seed_identity.headers(seed_identity.account_user_id),
            json={"resource": "tickets", "action": "view"},
        )
    finally:
        app.dependency_overrides.pop(get_session, None)

    assert snapshot.status_code == 503
    assert snapshot.json() == {"detail": "Permission store unavailable"}
    assert check.status_code == 503
