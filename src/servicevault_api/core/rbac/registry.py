"""Canonical permission catalog and default role templates.

The catalog is the single list of ``resource``/``action`` pairs the product
recognises. Role template tuples and permission checks are validated against
it; ``*`` is accepted in grants only.
"""

from __future__ import annotations

from collections.abc import Iterable

from servicevault_api.core.rbac.types import (
    WILDCARD,
    GrantScope,
    PermissionDef,
    PermissionTuple,
    RoleScope,
    RoleTemplateDef,
)


def _resource(resource: str, label: str, actions: Iterable[tuple[str, str]]) -> tuple[PermissionDef, ...]:
    return tuple(
        PermissionDef(
            resource=resource,
            action=action,
            label=f"{label}: {action}",
            description=description,
        )
        for action, description in actions
    )


PERMISSIONS: tuple[PermissionDef, ...] = (
    *_resource(
        "time-entries",
        "Time entries",
        (
            ("view", "View time entries"),
            ("create", "Create new time entries"),
            ("update", "Edit existing time entries"),
            ("delete", "Delete time entries"),
            ("approve", "Approve time entries for invoicing"),
            ("reject", "Reject time entries"),
        ),
    ),
    *_resource(
        "billing",
        "Billing",
        (
            ("view", "View billing rates and revenue information"),
            ("create", "Create billing rates and invoices"),
            ("update", "Update billing rates"),
            ("delete", "Delete billing rates"),
        ),
    ),
    *_resource(
        "reports",
        "Reports",
        (
            ("view", "View reports and analytics"),
            ("export", "Export reports and data"),
        ),
    ),
    *_resource(
        "tickets",
        "Tickets",
        (
            ("view", "View tickets"),
            ("create", "Create new tickets"),
            ("update", "Edit existing tickets"),
            ("delete", "Delete tickets"),
            ("assign", "Assign tickets to users"),
        ),
    ),
    *_resource(
        "accounts",
        "Accounts",
        (
            ("view", "View accounts"),
            ("create", "Create new accounts"),
            ("update", "Edit existing accounts"),
            ("delete", "Delete accounts"),
        ),
    ),
    *_resource(
        "users",
        "Users",
        (
            ("view", "View user lists and account users"),
            ("create", "Create new account users"),
            ("update", "Edit user information"),
            ("delete", "Remove users from accounts"),
            ("invite", "Send user invitations"),
            ("manage", "Manage user status and role assignments"),
        ),
    ),
    *_resource(
        "email",
        "Email",
        (
            ("send", "Send emails through the system"),
            ("templates", "Manage email templates"),
            ("settings", "Configure SMTP and email settings"),
            ("queue", "View and manage the email queue"),
        ),
    ),
    *_resource(
        "settings",
        "Settings",
        (
            ("view", "View system settings"),
            ("update", "Update system settings"),
        ),
    ),
    *_resource(
        "system",
        "System",
        (
            ("admin", "Full system administration access"),
            ("backup", "Create and restore backups"),
            ("logs", "View system logs"),
        ),
    ),
    *_resource(
        "role-templates",
        "Role templates",
        (
            ("view", "View role templates"),
            ("create", "Create role templates"),
            ("update", "Edit role templates"),
            ("delete", "Delete role templates"),
        ),
    ),
)

PERMISSION_REGISTRY: dict[tuple[str, str], PermissionDef] = {
    (definition.resource, definition.action): definition for definition in PERMISSIONS
}

RESOURCES: frozenset[str] = frozenset(definition.resource for definition in PERMISSIONS)


def is_registered(resource: str, action: str) -> bool:
    """Return True when ``resource``/``action`` is a concrete catalog entry."""

    return (resource, action) in PERMISSION_REGISTRY


def is_grantable(resource: str, action: str) -> bool:
    """Return True when the pair may appear in a role template.

    Grants accept ``(resource, action)``, ``(resource, *)`` and ``(*, *)``.
    """

    if resource == WILDCARD:
        return action == WILDCARD
    if action == WILDCARD:
        return resource in RESOURCES
    return is_registered(resource, action)


# ---- Default role templates --------------------------------------------------

SUPER_ADMIN_TEMPLATE = "Super Admin"
ACCOUNT_ADMIN_TEMPLATE = "Account Administrator"
ACCOUNT_USER_TEMPLATE = "Account User"


def _grants(scope: GrantScope, *pairs: tuple[str, str]) -> tuple[PermissionTuple, ...]:
    return tuple(PermissionTuple(resource, action, scope) for resource, action in pairs)


DEFAULT_ROLE_TEMPLATES: tuple[RoleTemplateDef, ...] = (
    RoleTemplateDef(
        name=SUPER_ADMIN_TEMPLATE,
        description="Unrestricted access to every account and resource.",
        scope=RoleScope.SYSTEM,
        inherit_all_permissions=True,
    ),
    RoleTemplateDef(
        name=ACCOUNT_ADMIN_TEMPLATE,
        description="Manages an account and all of its subsidiaries.",
        scope=RoleScope.ACCOUNT,
        permissions=_grants(
            GrantScope.SUBSIDIARY,
            ("accounts", "view"),
            ("accounts", "update"),
            ("users", WILDCARD),
            ("tickets", WILDCARD),
            ("time-entries", WILDCARD),
            ("billing", "view"),
            ("reports", WILDCARD),
        ),
    ),
    RoleTemplateDef(
        name=ACCOUNT_USER_TEMPLATE,
        description="Customer user who can raise tickets and see their own time.",
        scope=RoleScope.ACCOUNT,
        permissions=(
            *_grants(GrantScope.ACCOUNT, ("accounts", "view"), ("tickets", "view")),
            *_grants(
                GrantScope.OWN,
                ("tickets", "create"),
                ("tickets", "update"),
                ("time-entries", "view"),
            ),
        ),
    ),
)

DEFAULT_ROLE_TEMPLATE_BY_NAME: dict[str, RoleTemplateDef] = {
    definition.name: definition for definition in DEFAULT_ROLE_TEMPLATES
}


__all__ = [
    "ACCOUNT_ADMIN_TEMPLATE",
    "ACCOUNT_USER_TEMPLATE",
    "DEFAULT_ROLE_TEMPLATES",
    "DEFAULT_ROLE_TEMPLATE_BY_NAME",
    "PERMISSIONS",
    "PERMISSION_REGISTRY",
    "RESOURCES",
    "SUPER_ADMIN_TEMPLATE",
    "is_grantable",
    "is_registered",
]
