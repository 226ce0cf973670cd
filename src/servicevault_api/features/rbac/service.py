"""Service layer for permission checks and role administration."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import Any
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from servicevault_api.common.domains import email_domain
from servicevault_api.common.ids import parse_uuid
from servicevault_api.common.logging import log_context
from servicevault_api.core.models import (
    Account,
    Membership,
    MembershipRoleAssignment,
    Permission,
    RoleTemplate,
    RoleTemplatePermission,
    SystemRoleAssignment,
    User,
)
from servicevault_api.core.models.rbac import (
    ROLE_TEMPLATE_DESCRIPTION_MAX,
    ROLE_TEMPLATE_NAME_MAX,
)
from servicevault_api.core.rbac.policy import grants_beyond_own, matching_grants
from servicevault_api.core.rbac.registry import (
    ACCOUNT_USER_TEMPLATE,
    DEFAULT_ROLE_TEMPLATES,
    PERMISSIONS,
    is_grantable,
    is_registered,
)
from servicevault_api.core.rbac.types import (
    ACCOUNT_GRANT_SCOPES,
    GrantScope,
    PermissionTuple,
    RoleScope,
)

from .exceptions import (
    AssignmentNotFoundError,
    DuplicateAssignmentError,
    DuplicateMembershipError,
    LastSuperAdminError,
    PermissionDeniedError,
    PermissionValidationError,
    RoleConflictError,
    RoleImmutableError,
    RoleInUseError,
    RoleNotFoundError,
    RoleValidationError,
    ScopeMismatchError,
    SubjectNotFoundError,
)
from .repository import PermissionRepository
from .resolver import ResolvedPermissions, accessible_accounts, resolve_permissions

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# DTOs
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PermissionCheck:
    """One entry of a batch check."""

    resource: str
    action: str
    account_id: UUID | str | None = None


@dataclass(frozen=True)
class PermissionCheckResult:
    resource: str
    action: str
    account_id: UUID | None
    granted: bool


# ---------------------------------------------------------------------------
# Input normalisation
# ---------------------------------------------------------------------------


def _require_id(value: UUID | str | None, *, field: str) -> UUID:
    parsed = parse_uuid(value)
    if parsed is None:
        raise PermissionValidationError(f"{field} must be a valid identifier")
    return parsed


def _optional_id(value: UUID | str | None, *, field: str) -> UUID | None:
    if value is None:
        return None
    return _require_id(value, field=field)


def _normalize_check(resource: str | None, action: str | None) -> tuple[str, str]:
    resource_value = (resource or "").strip()
    action_value = (action or "").strip()
    if not resource_value:
        raise PermissionValidationError("resource is required")
    if not action_value:
        raise PermissionValidationError("action is required")
    if not is_registered(resource_value, action_value):
        raise PermissionValidationError(
            f"Permission '{resource_value}:{action_value}' is not registered"
        )
    return resource_value, action_value


def _normalize_role_name(value: str | None) -> str:
    candidate = (value or "").strip()
    if not candidate:
        raise RoleValidationError("Role template name is required")
    if len(candidate) > ROLE_TEMPLATE_NAME_MAX:
        raise RoleValidationError(
            f"Role template name must be {ROLE_TEMPLATE_NAME_MAX} characters or less"
        )
    return candidate


def _normalize_description(value: str | None) -> str | None:
    if value is None:
        return None
    candidate = value.strip()
    if len(candidate) > ROLE_TEMPLATE_DESCRIPTION_MAX:
        raise RoleValidationError(
            f"Description must be {ROLE_TEMPLATE_DESCRIPTION_MAX} characters or less"
        )
    return candidate or None


def collect_grants(
    permissions: Iterable[PermissionTuple | dict[str, Any]],
    *,
    scope: RoleScope,
) -> tuple[PermissionTuple, ...]:
    """Validate and deduplicate role template tuples, preserving order."""

    collected: list[PermissionTuple] = []
    seen: set[PermissionTuple] = set()
    for entry in permissions:
        if isinstance(entry, PermissionTuple):
            resource, action, grant_scope = entry.resource, entry.action, entry.scope
        else:
            resource = entry.get("resource")
            action = entry.get("action")
            grant_scope = entry.get("scope", GrantScope.ACCOUNT)
        resource = str(resource or "").strip()
        action = str(action or "").strip()
        if not resource or not action:
            raise RoleValidationError("Permission resource and action are required")
        try:
            grant_scope = GrantScope(grant_scope)
        except ValueError as exc:
            raise RoleValidationError(f"Unknown permission scope '{grant_scope}'") from exc
        if not is_grantable(resource, action):
            raise RoleValidationError(f"Permission '{resource}:{action}' is not registered")
        if scope is RoleScope.ACCOUNT and grant_scope not in ACCOUNT_GRANT_SCOPES:
            raise RoleValidationError("Account role templates cannot grant global scope")
        grant = PermissionTuple(resource, action, grant_scope)
        if grant not in seen:
            seen.add(grant)
            collected.append(grant)
    return tuple(collected)


def _permission_row(grant: PermissionTuple) -> RoleTemplatePermission:
    return RoleTemplatePermission(
        resource=grant.resource,
        action=grant.action,
        scope=grant.scope,
    )


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class RbacService:
    """Entry point for permission checks and role administration."""

    def __init__(self, *, session: AsyncSession) -> None:
        self._session = session
        self._repository = PermissionRepository(session=session)

    # -- Registry sync -----------------------------------------------------
    async def sync_permission_registry(self) -> None:
        """Upsert the canonical permission catalog into the database."""

        logger.debug("rbac.permissions.sync.start")

        result = await self._session.execute(select(Permission))
        existing = {
            (permission.resource, permission.action): permission
            for permission in result.scalars().all()
        }
        desired = {(definition.resource, definition.action) for definition in PERMISSIONS}

        for definition in PERMISSIONS:
            current = existing.get((definition.resource, definition.action))
            if current is None:
                self._session.add(
                    Permission(
                        resource=definition.resource,
                        action=definition.action,
                        label=definition.label,
                        description=definition.description,
                    )
                )
                continue
            current.label = definition.label
            current.description = definition.description

        stale = [existing[key] for key in set(existing) - desired]
        for permission in stale:
            await self._session.delete(permission)

        await self._session.flush()

        logger.debug(
            "rbac.permissions.sync.success",
            extra=log_context(total=len(PERMISSIONS), removed=len(stale)),
        )

    async def sync_default_role_templates(self) -> None:
        """Ensure the seeded role templates exist with their canonical tuples."""

        logger.debug("rbac.role_templates.sync.start")

        for definition in DEFAULT_ROLE_TEMPLATES:
            template = await self.get_role_template_by_name(definition.name)
            if template is None:
                template = RoleTemplate(name=definition.name, permissions=[])
                self._session.add(template)
            template.description = definition.description
            template.scope = definition.scope
            template.inherit_all_permissions = definition.inherit_all_permissions
            template.is_system = definition.is_system
            await self._session.flush([template])
            await self._replace_template_grants(template, definition.permissions)

        logger.debug(
            "rbac.role_templates.sync.success",
            extra=log_context(total=len(DEFAULT_ROLE_TEMPLATES)),
        )

    async def sync_registry(self) -> None:
        """Sync both the permission catalog and the seeded role templates."""

        await self.sync_permission_registry()
        await self.sync_default_role_templates()

    async def list_permissions(self) -> list[Permission]:
        stmt = select(Permission).order_by(Permission.resource, Permission.action)
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    # -- Resolution ----------------------------------------------------------
    async def resolve(
        self,
        user_id: UUID | str,
        account_id: UUID | str | None = None,
    ) -> ResolvedPermissions:
        """Return the deduplicated permission set for ``user_id``.

        Unknown users and unknown accounts resolve to an empty contribution.
        """

        user_uuid = _require_id(user_id, field="user_id")
        account_uuid = _optional_id(account_id, field="account_id")

        grants = await self._repository.load_user_grants(user_uuid)
        tree = await self._repository.load_account_tree()
        resolved = resolve_permissions(grants, tree, account_uuid)

        logger.debug(
            "rbac.resolve",
            extra=log_context(
                user_id=user_uuid,
                account_id=account_uuid,
                super_admin=resolved.is_super_admin,
                granted=len(resolved.permissions),
            ),
        )
        return resolved

    async def has_permission(
        self,
        user_id: UUID | str,
        resource: str,
        action: str,
        account_id: UUID | str | None = None,
    ) -> bool:
        """Return True when ``user_id`` may perform ``action`` on ``resource``."""

        resource_value, action_value = _normalize_check(resource, action)
        resolved = await self.resolve(user_id, account_id)
        granted = resolved.allows(resource_value, action_value)
        if not granted:
            logger.debug(
                "rbac.check.denied",
                extra=log_context(
                    user_id=resolved.user_id,
                    account_id=resolved.account_id,
                    resource=resource_value,
                    action=action_value,
                ),
            )
        return granted

    async def check_many(
        self,
        user_id: UUID | str,
        checks: Sequence[PermissionCheck],
    ) -> list[PermissionCheckResult]:
        """Evaluate ``checks`` in order, resolving once per distinct account."""

        user_uuid = _require_id(user_id, field="user_id")
        normalized = [
            (
                *_normalize_check(check.resource, check.action),
                _optional_id(check.account_id, field="account_id"),
            )
            for check in checks
        ]
        if not normalized:
            return []

        grants = await self._repository.load_user_grants(user_uuid)
        tree = await self._repository.load_account_tree()
        resolved_by_account: dict[UUID | None, ResolvedPermissions] = {}

        results: list[PermissionCheckResult] = []
        for resource, action, account_uuid in normalized:
            resolved = resolved_by_account.get(account_uuid)
            if resolved is None:
                resolved = resolve_permissions(grants, tree, account_uuid)
                resolved_by_account[account_uuid] = resolved
            results.append(
                PermissionCheckResult(
                    resource=resource,
                    action=action,
                    account_id=account_uuid,
                    granted=resolved.allows(resource, action),
                )
            )
        return results

    async def is_super_admin(self, user_id: UUID | str) -> bool:
        user_uuid = _require_id(user_id, field="user_id")
        grants = await self._repository.load_user_grants(user_uuid)
        return grants.is_super_admin

    async def accessible_account_ids(self, user_id: UUID | str) -> list[UUID]:
        """Accounts the user may act in (every account for super-admins)."""

        user_uuid = _require_id(user_id, field="user_id")
        grants = await self._repository.load_user_grants(user_uuid)
        tree = await self._repository.load_account_tree()
        return accessible_accounts(grants, tree)

    async def can_access_resource(
        self,
        user_id: UUID | str,
        resource: str,
        action: str,
        *,
        account_id: UUID | str | None = None,
        owner_id: UUID | str | None = None,
    ) -> bool:
        """Like :meth:`has_permission`, honouring ``own``-scoped grants.

        When every grant covering the request is ``own``-scoped, access is
        allowed only for the record's owner.
        """

        resource_value, action_value = _normalize_check(resource, action)
        resolved = await self.resolve(user_id, account_id)
        if resolved.is_super_admin:
            return True
        grants = matching_grants(resolved.permissions, resource_value, action_value)
        if not grants:
            return False
        if grants_beyond_own(grants):
            return True
        return parse_uuid(owner_id) == resolved.user_id

    # -- Role templates ------------------------------------------------------
    async def list_role_templates(self, *, scope: RoleScope | None = None) -> list[RoleTemplate]:
        stmt = (
            select(RoleTemplate)
            .options(selectinload(RoleTemplate.permissions))
            .order_by(RoleTemplate.name)
        )
        if scope is not None:
            stmt = stmt.where(RoleTemplate.scope == scope)
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def get_role_template(self, role_template_id: UUID | str) -> RoleTemplate | None:
        role_uuid = parse_uuid(role_template_id)
        if role_uuid is None:
            return None
        stmt = (
            select(RoleTemplate)
            .where(RoleTemplate.id == role_uuid)
            .options(selectinload(RoleTemplate.permissions))
            .execution_options(populate_existing=True)
            .limit(1)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_role_template_by_name(self, name: str) -> RoleTemplate | None:
        stmt = (
            select(RoleTemplate)
            .where(RoleTemplate.name == name)
            .options(selectinload(RoleTemplate.permissions))
            .limit(1)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def create_role_template(
        self,
        *,
        name: str,
        description: str | None = None,
        scope: RoleScope = RoleScope.ACCOUNT,
        permissions: Sequence[PermissionTuple | dict[str, Any]] = (),
        inherit_all_permissions: bool = False,
        actor_id: UUID | None = None,
    ) -> RoleTemplate:
        normalized_name = _normalize_role_name(name)
        scope = RoleScope(scope)
        grants = collect_grants(permissions, scope=scope)
        if inherit_all_permissions:
            await self._ensure_super_admin_actor(
                actor_id, "Only super administrators can create super admin role templates"
            )

        if await self.get_role_template_by_name(normalized_name) is not None:
            raise RoleConflictError("A role template with this name already exists")

        template = RoleTemplate(
            name=normalized_name,
            description=_normalize_description(description),
            scope=scope,
            inherit_all_permissions=inherit_all_permissions,
            is_system=False,
            permissions=[_permission_row(grant) for grant in grants],
        )
        self._session.add(template)
        try:
            async with self._session.begin_nested():
                await self._session.flush()
        except IntegrityError as exc:
            raise RoleConflictError("A role template with this name already exists") from exc

        logger.info(
            "rbac.role_template.create.success",
            extra=log_context(role_id=template.id, actor_id=actor_id, scope=scope.value),
        )
        return template

    async def update_role_template(
        self,
        *,
        role_template_id: UUID | str,
        name: str | None = None,
        description: str | None = None,
        permissions: Sequence[PermissionTuple | dict[str, Any]] | None = None,
        inherit_all_permissions: bool | None = None,
        actor_id: UUID | None = None,
    ) -> RoleTemplate:
        """Patch a role template; ``None`` leaves a field unchanged."""

        template = await self.get_role_template(role_template_id)
        if template is None:
            raise RoleNotFoundError("Role template not found")
        if template.is_system:
            raise RoleImmutableError("System role templates cannot be edited")

        toggles_inherit_all = (
            inherit_all_permissions is not None
            and inherit_all_permissions != template.inherit_all_permissions
        )
        if toggles_inherit_all:
            await self._ensure_super_admin_actor(
                actor_id, "Only super administrators can change super admin role templates"
            )
        grants = (
            collect_grants(permissions, scope=RoleScope(template.scope))
            if permissions is not None
            else None
        )
        normalized_name = _normalize_role_name(name) if name is not None else None
        if normalized_name is not None and normalized_name != template.name:
            clash = await self.get_role_template_by_name(normalized_name)
            if clash is not None and clash.id != template.id:
                raise RoleConflictError("A role template with this name already exists")

        if normalized_name is not None:
            template.name = normalized_name
        if description is not None:
            template.description = _normalize_description(description)
        if toggles_inherit_all:
            template.inherit_all_permissions = bool(inherit_all_permissions)

        if grants is not None:
            await self._replace_template_grants(template, grants)
        else:
            await self._session.flush()

        logger.info(
            "rbac.role_template.update.success",
            extra=log_context(role_id=template.id, actor_id=actor_id),
        )
        return template

    async def delete_role_template(
        self,
        *,
        role_template_id: UUID | str,
        actor_id: UUID | None = None,
    ) -> None:
        """Delete an unused role template.

        Rejected with :class:`RoleInUseError` while any system or membership
        assignment references it.
        """

        template = await self.get_role_template(role_template_id)
        if template is None:
            raise RoleNotFoundError("Role template not found")
        if template.is_system:
            raise RoleImmutableError("System role templates cannot be deleted")

        usage = await self.count_role_template_assignments(template.id)
        if usage:
            logger.info(
                "rbac.role_template.delete.conflict",
                extra=log_context(role_id=template.id, actor_id=actor_id, assignments=usage),
            )
            raise RoleInUseError(usage)

        await self._session.delete(template)
        await self._session.flush()
        logger.info(
            "rbac.role_template.delete.success",
            extra=log_context(role_id=template.id, actor_id=actor_id),
        )

    async def count_role_template_assignments(self, role_template_id: UUID) -> int:
        system_count = await self._session.execute(
            select(func.count())
            .select_from(SystemRoleAssignment)
            .where(SystemRoleAssignment.role_template_id == role_template_id)
        )
        membership_count = await self._session.execute(
            select(func.count())
            .select_from(MembershipRoleAssignment)
            .where(MembershipRoleAssignment.role_template_id == role_template_id)
        )
        return int(system_count.scalar_one() or 0) + int(membership_count.scalar_one() or 0)

    async def _replace_template_grants(
        self,
        template: RoleTemplate,
        grants: Sequence[PermissionTuple],
    ) -> None:
        """Diff the template's tuples against ``grants``; orphans are deleted."""

        current = {entry.as_tuple(): entry for entry in template.permissions}
        desired = set(grants)
        for grant, entry in current.items():
            if grant not in desired:
                template.permissions.remove(entry)
        for grant in grants:
            if grant not in current:
                template.permissions.append(_permission_row(grant))
        await self._session.flush()

    # -- System role assignments --------------------------------------------
    async def list_system_roles(self, user_id: UUID | str) -> list[SystemRoleAssignment]:
        user_uuid = _require_id(user_id, field="user_id")
        stmt = (
            select(SystemRoleAssignment)
            .where(SystemRoleAssignment.user_id == user_uuid)
            .options(
                selectinload(SystemRoleAssignment.role_template).selectinload(
                    RoleTemplate.permissions
                )
            )
            .order_by(SystemRoleAssignment.created_at)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def grant_system_role(
        self,
        *,
        user_id: UUID | str,
        role_template_id: UUID | str,
        actor_id: UUID | None = None,
    ) -> SystemRoleAssignment:
        template = await self.get_role_template(role_template_id)
        if template is None:
            raise RoleNotFoundError("Role template not found")
        if template.scope != RoleScope.SYSTEM:
            raise ScopeMismatchError("Only system role templates can be assigned as system roles")

        user_uuid = _require_id(user_id, field="user_id")
        if await self._session.get(User, user_uuid) is None:
            raise SubjectNotFoundError("User not found")

        if template.inherit_all_permissions:
            await self._ensure_super_admin_actor(
                actor_id, "Only super administrators can assign super admin system roles"
            )

        existing = await self._system_assignment(user_uuid, template.id)
        if existing is not None:
            raise DuplicateAssignmentError("User already has this system role")

        assignment = SystemRoleAssignment(user_id=user_uuid, role_template=template)
        self._session.add(assignment)
        try:
            async with self._session.begin_nested():
                await self._session.flush([assignment])
        except IntegrityError as exc:
            logger.debug(
                "rbac.system_role.grant.conflict",
                extra=log_context(user_id=user_uuid, role_id=template.id),
            )
            raise DuplicateAssignmentError("User already has this system role") from exc

        logger.info(
            "rbac.system_role.grant.success",
            extra=log_context(user_id=user_uuid, role_id=template.id, actor_id=actor_id),
        )
        return assignment

    async def revoke_system_role(
        self,
        *,
        user_id: UUID | str,
        role_template_id: UUID | str,
        actor_id: UUID | None = None,
    ) -> None:
        user_uuid = _require_id(user_id, field="user_id")
        role_uuid = parse_uuid(role_template_id)
        assignment = (
            await self._system_assignment(user_uuid, role_uuid) if role_uuid else None
        )
        if assignment is None:
            raise AssignmentNotFoundError("System role assignment not found")

        template = assignment.role_template
        if template.inherit_all_permissions:
            await self._ensure_super_admin_actor(
                actor_id, "Only super administrators can remove super admin system roles"
            )
            if await self._count_super_admin_assignments() <= 1:
                raise LastSuperAdminError()

        await self._session.delete(assignment)
        await self._session.flush()
        logger.info(
            "rbac.system_role.revoke.success",
            extra=log_context(user_id=user_uuid, role_id=template.id, actor_id=actor_id),
        )

    async def _system_assignment(
        self, user_id: UUID, role_template_id: UUID
    ) -> SystemRoleAssignment | None:
        stmt = (
            select(SystemRoleAssignment)
            .where(
                SystemRoleAssignment.user_id == user_id,
                SystemRoleAssignment.role_template_id == role_template_id,
            )
            .options(selectinload(SystemRoleAssignment.role_template))
            .limit(1)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def _count_super_admin_assignments(self) -> int:
        stmt = (
            select(func.count())
            .select_from(SystemRoleAssignment)
            .join(RoleTemplate, RoleTemplate.id == SystemRoleAssignment.role_template_id)
            .where(RoleTemplate.inherit_all_permissions.is_(True))
        )
        result = await self._session.execute(stmt)
        return int(result.scalar_one() or 0)

    async def _ensure_super_admin_actor(self, actor_id: UUID | None, message: str) -> None:
        # A missing actor means a trusted internal caller (CLI, startup sync).
        if actor_id is None:
            return
        if not await self.is_super_admin(actor_id):
            logger.info(
                "rbac.privileged_change.denied",
                extra=log_context(actor_id=actor_id, detail=message),
            )
            raise PermissionDeniedError(message)

    async def would_remove_last_super_admin(self, user_id: UUID) -> bool:
        """True when ``user_id`` holds every remaining super admin assignment."""

        stmt = (
            select(SystemRoleAssignment.user_id)
            .join(RoleTemplate, RoleTemplate.id == SystemRoleAssignment.role_template_id)
            .where(RoleTemplate.inherit_all_permissions.is_(True))
        )
        holders = set((await self._session.execute(stmt)).scalars().all())
        return bool(holders) and holders == {user_id}

    # -- Memberships ---------------------------------------------------------
    async def get_membership(self, membership_id: UUID | str) -> Membership | None:
        membership_uuid = parse_uuid(membership_id)
        if membership_uuid is None:
            return None
        stmt = (
            select(Membership)
            .where(Membership.id == membership_uuid)
            .options(
                selectinload(Membership.roles)
                .selectinload(MembershipRoleAssignment.role_template)
                .selectinload(RoleTemplate.permissions)
            )
            .execution_options(populate_existing=True)
            .limit(1)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_memberships(self, account_id: UUID | str) -> list[Membership]:
        account_uuid = _require_id(account_id, field="account_id")
        stmt = (
            select(Membership)
            .where(Membership.account_id == account_uuid)
            .options(
                selectinload(Membership.roles).selectinload(
                    MembershipRoleAssignment.role_template
                )
            )
            .order_by(Membership.created_at)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def create_membership(
        self,
        *,
        user_id: UUID | str,
        account_id: UUID | str,
        role_template_ids: Sequence[UUID | str] | None = None,
        actor_id: UUID | None = None,
    ) -> Membership:
        """Create a membership and its initial role rows in one flush.

        ``role_template_ids=None`` assigns the seeded Account User role; an
        explicit empty sequence creates a membership without roles.
        """

        user_uuid = _require_id(user_id, field="user_id")
        account_uuid = _require_id(account_id, field="account_id")
        if await self._session.get(User, user_uuid) is None:
            raise SubjectNotFoundError("User not found")
        if await self._session.get(Account, account_uuid) is None:
            raise SubjectNotFoundError("Account not found")

        existing = await self._session.execute(
            select(Membership.id)
            .where(Membership.user_id == user_uuid, Membership.account_id == account_uuid)
            .limit(1)
        )
        if existing.scalar_one_or_none() is not None:
            raise DuplicateMembershipError()

        if role_template_ids is None:
            templates = [await self._default_membership_template()]
        else:
            templates = [
                await self._account_template(role_template_id)
                for role_template_id in role_template_ids
            ]
        if any(template.inherit_all_permissions for template in templates):
            await self._ensure_super_admin_actor(
                actor_id, "Only super administrators can assign all-permission roles"
            )

        membership = Membership(user_id=user_uuid, account_id=account_uuid)
        membership.roles = [
            MembershipRoleAssignment(role_template=template)
            for template in {template.id: template for template in templates}.values()
        ]
        self._session.add(membership)
        try:
            async with self._session.begin_nested():
                await self._session.flush()
        except IntegrityError as exc:
            logger.debug(
                "rbac.membership.create.conflict",
                extra=log_context(user_id=user_uuid, account_id=account_uuid),
            )
            raise DuplicateMembershipError() from exc

        logger.info(
            "rbac.membership.create.success",
            extra=log_context(
                user_id=user_uuid,
                account_id=account_uuid,
                membership_id=membership.id,
                actor_id=actor_id,
            ),
        )
        return await self.get_membership(membership.id)  # type: ignore[return-value]

    async def auto_assign_user_to_accounts(
        self,
        *,
        user_id: UUID | str,
        email: str,
        actor_id: UUID | None = None,
    ) -> list[UUID]:
        """Add ``user_id`` to every account claiming the domain of ``email``.

        New memberships receive the seeded Account User role. Accounts the
        user already belongs to are skipped. Returns the newly joined account
        ids.
        """

        user_uuid = _require_id(user_id, field="user_id")
        domain = email_domain(email)
        if domain is None:
            return []

        result = await self._session.execute(
            select(Account)
            .where(Account.domains.is_not(None), Account.domains.contains(domain))
            .order_by(Account.name, Account.id)
        )
        # LIKE narrows the candidates; the CSV entries must match exactly.
        candidates = [
            account for account in result.scalars().all() if domain in account.domain_list
        ]
        if not candidates:
            return []
        joined = await self._session.execute(
            select(Membership.account_id).where(Membership.user_id == user_uuid)
        )
        already_member = set(joined.scalars().all())

        assigned: list[UUID] = []
        for account in candidates:
            if account.id in already_member:
                continue
            try:
                await self.create_membership(
                    user_id=user_uuid, account_id=account.id, actor_id=actor_id
                )
            except DuplicateMembershipError:
                continue
            assigned.append(account.id)

        if assigned:
            logger.info(
                "rbac.membership.auto_assign.success",
                extra=log_context(
                    user_id=user_uuid,
                    domain=domain,
                    accounts=len(assigned),
                    actor_id=actor_id,
                ),
            )
        return assigned

    async def delete_membership(
        self,
        *,
        membership_id: UUID | str,
        account_id: UUID | str | None = None,
        actor_id: UUID | None = None,
    ) -> None:
        membership = await self.get_membership(membership_id)
        if membership is None:
            raise AssignmentNotFoundError("Membership not found")
        if account_id is not None and membership.account_id != parse_uuid(account_id):
            raise ScopeMismatchError("Membership does not belong to this account")
        if any(role.role_template.inherit_all_permissions for role in membership.roles):
            await self._ensure_super_admin_actor(
                actor_id, "Only super administrators can remove all-permission roles"
            )

        await self._session.delete(membership)
        await self._session.flush()
        logger.info(
            "rbac.membership.delete.success",
            extra=log_context(
                membership_id=membership.id,
                user_id=membership.user_id,
                account_id=membership.account_id,
                actor_id=actor_id,
            ),
        )

    async def grant_membership_role(
        self,
        *,
        membership_id: UUID | str,
        role_template_id: UUID | str,
        actor_id: UUID | None = None,
    ) -> MembershipRoleAssignment:
        membership = await self.get_membership(membership_id)
        if membership is None:
            raise AssignmentNotFoundError("Membership not found")
        template = await self._account_template(role_template_id)
        if template.inherit_all_permissions:
            await self._ensure_super_admin_actor(
                actor_id, "Only super administrators can assign all-permission roles"
            )

        if any(role.role_template_id == template.id for role in membership.roles):
            raise DuplicateAssignmentError("Role is already assigned to this membership")

        assignment = MembershipRoleAssignment(
            membership_id=membership.id,
            role_template=template,
        )
        self._session.add(assignment)
        try:
            async with self._session.begin_nested():
                await self._session.flush([assignment])
        except IntegrityError as exc:
            raise DuplicateAssignmentError("Role is already assigned to this membership") from exc
        logger.info(
            "rbac.membership_role.grant.success",
            extra=log_context(
                membership_id=membership.id,
                account_id=membership.account_id,
                role_id=template.id,
                actor_id=actor_id,
            ),
        )
        return assignment

    async def revoke_membership_role(
        self,
        *,
        membership_id: UUID | str,
        role_template_id: UUID | str,
        actor_id: UUID | None = None,
    ) -> None:
        membership_uuid = parse_uuid(membership_id)
        role_uuid = parse_uuid(role_template_id)
        assignment = None
        if membership_uuid is not None and role_uuid is not None:
            result = await self._session.execute(
                select(MembershipRoleAssignment)
                .where(
                    MembershipRoleAssignment.membership_id == membership_uuid,
                    MembershipRoleAssignment.role_template_id == role_uuid,
                )
                .options(selectinload(MembershipRoleAssignment.role_template))
                .limit(1)
            )
            assignment = result.scalar_one_or_none()
        if assignment is None:
            raise AssignmentNotFoundError("Membership role assignment not found")
        if assignment.role_template.inherit_all_permissions:
            await self._ensure_super_admin_actor(
                actor_id, "Only super administrators can remove all-permission roles"
            )

        await self._session.delete(assignment)
        await self._session.flush()
        logger.info(
            "rbac.membership_role.revoke.success",
            extra=log_context(membership_id=membership_uuid, role_id=role_uuid, actor_id=actor_id),
        )

    async def _default_membership_template(self) -> RoleTemplate:
        template = await self.get_role_template_by_name(ACCOUNT_USER_TEMPLATE)
        if template is None:
            raise RoleNotFoundError(f"Default role template '{ACCOUNT_USER_TEMPLATE}' not found")
        return template

    async def _account_template(self, role_template_id: UUID | str) -> RoleTemplate:
        template = await self.get_role_template(role_template_id)
        if template is None:
            raise RoleNotFoundError("Role template not found")
        if template.scope != RoleScope.ACCOUNT:
            raise ScopeMismatchError("System role templates cannot be assigned to memberships")
        return template


__all__ = [
    "PermissionCheck",
    "PermissionCheckResult",
    "RbacService",
    "collect_grants",
]
