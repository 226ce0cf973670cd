"""HTTP endpoints for permission checks, role templates and assignments."""

from __future__ import annotations

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, HTTPException, Path, Query, Response, Security, status

from servicevault_api.app.dependencies import (
    PrincipalDep,
    RbacServiceDep,
    ensure_permission,
    require_permission,
)
from servicevault_api.core.models import (
    Membership,
    MembershipRoleAssignment,
    RoleTemplate,
    SystemRoleAssignment,
    User,
)
from servicevault_api.core.rbac.types import PermissionTuple, RoleScope

from .exceptions import (
    AssignmentNotFoundError,
    PermissionDeniedError,
    PermissionValidationError,
    ReferentialViolationError,
    RoleConflictError,
    RoleImmutableError,
    RoleNotFoundError,
    RoleValidationError,
    ScopeMismatchError,
    SubjectNotFoundError,
)
from .resolver import ResolvedPermissions
from .schemas import (
    MembershipCreate,
    MembershipOut,
    MembershipRoleAssignmentCreate,
    MembershipRoleAssignmentOut,
    PermissionBatchCheckRequest,
    PermissionBatchCheckResponse,
    PermissionCheckRequest,
    PermissionCheckResponse,
    PermissionOut,
    PermissionSnapshotOut,
    PermissionTupleOut,
    RoleTemplateCreate,
    RoleTemplateOut,
    RoleTemplateSummary,
    RoleTemplateUpdate,
    SystemRoleAssignmentCreate,
    SystemRoleAssignmentOut,
)
from .service import PermissionCheck

router = APIRouter(tags=["rbac"])

RoleTemplatePath = Annotated[UUID, Path(description="Role template identifier")]
UserPath = Annotated[UUID, Path(description="User identifier")]
AccountPath = Annotated[UUID, Path(description="Account identifier")]
MembershipPath = Annotated[UUID, Path(description="Membership identifier")]
AccountQuery = Annotated[
    UUID | None,
    Query(description="Resolve within this account"),
]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _serialize_snapshot(resolved: ResolvedPermissions) -> PermissionSnapshotOut:
    return PermissionSnapshotOut(
        user_id=resolved.user_id,
        account_id=resolved.account_id,
        is_super_admin=resolved.is_super_admin,
        permissions=[PermissionTupleOut.from_tuple(grant) for grant in resolved.sorted_permissions()],
    )


def _serialize_template(template: RoleTemplate) -> RoleTemplateOut:
    return RoleTemplateOut(
        id=template.id,
        name=template.name,
        description=template.description,
        scope=template.scope,
        inherit_all_permissions=template.inherit_all_permissions,
        is_system=template.is_system,
        permissions=[
            PermissionTupleOut.from_tuple(grant)
            for grant in sorted(template.permission_tuples(), key=PermissionTuple.sort_key)
        ],
        created_at=template.created_at,
        updated_at=template.updated_at,
    )


def _summarize_template(template: RoleTemplate) -> RoleTemplateSummary:
    return RoleTemplateSummary(
        id=template.id,
        name=template.name,
        scope=template.scope,
        inherit_all_permissions=template.inherit_all_permissions,
    )


def _serialize_system_role(assignment: SystemRoleAssignment) -> SystemRoleAssignmentOut:
    return SystemRoleAssignmentOut(
        id=assignment.id,
        user_id=assignment.user_id,
        role_template=_summarize_template(assignment.role_template),
        created_at=assignment.created_at,
    )


def _serialize_membership(membership: Membership) -> MembershipOut:
    return MembershipOut(
        id=membership.id,
        user_id=membership.user_id,
        account_id=membership.account_id,
        roles=[_summarize_template(role.role_template) for role in membership.roles],
        created_at=membership.created_at,
    )


def _serialize_membership_role(
    assignment: MembershipRoleAssignment,
) -> MembershipRoleAssignmentOut:
    return MembershipRoleAssignmentOut(
        id=assignment.id,
        membership_id=assignment.membership_id,
        role_template=_summarize_template(assignment.role_template),
        created_at=assignment.created_at,
    )


async def _load_membership(service: RbacServiceDep, membership_id: UUID) -> Membership:
    membership = await service.get_membership(membership_id)
    if membership is None:
        raise HTTPException(status.HTTP_404_NOT_FOUND, detail="Membership not found")
    return membership


# ---------------------------------------------------------------------------
# Caller permissions
# ---------------------------------------------------------------------------


@router.get(
    "/me/permissions",
    response_model=PermissionSnapshotOut,
    response_model_exclude_none=True,
    summary="Resolve the caller's effective permissions",
)
async def read_my_permissions(
    principal: PrincipalDep,
    service: RbacServiceDep,
    account_id: AccountQuery = None,
) -> PermissionSnapshotOut:
    resolved = await service.resolve(principal.id, account_id)
    return _serialize_snapshot(resolved)


@router.post(
    "/permissions/check",
    response_model=PermissionCheckResponse,
    response_model_exclude_none=True,
    summary="Check a single permission for the caller",
)
async def check_permission(
    payload: PermissionCheckRequest,
    principal: PrincipalDep,
    service: RbacServiceDep,
) -> PermissionCheckResponse:
    try:
        granted = await service.has_permission(
            principal.id, payload.resource, payload.action, payload.account_id
        )
    except PermissionValidationError as exc:
        raise HTTPException(status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    return PermissionCheckResponse(
        resource=payload.resource,
        action=payload.action,
        account_id=payload.account_id,
        granted=granted,
    )


@router.post(
    "/permissions/check-batch",
    response_model=PermissionBatchCheckResponse,
    response_model_exclude_none=True,
    summary="Check several permissions for the caller",
)
async def check_permissions_batch(
    payload: PermissionBatchCheckRequest,
    principal: PrincipalDep,
    service: RbacServiceDep,
) -> PermissionBatchCheckResponse:
    checks = [
        PermissionCheck(resource=item.resource, action=item.action, account_id=item.account_id)
        for item in payload.checks
    ]
    try:
        results = await service.check_many(principal.id, checks)
    except PermissionValidationError as exc:
        raise HTTPException(status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    return PermissionBatchCheckResponse(
        results=[
            PermissionCheckResponse(
                resource=result.resource,
                action=result.action,
                account_id=result.account_id,
                granted=result.granted,
            )
            for result in results
        ]
    )


@router.get(
    "/permissions/catalog",
    response_model=list[PermissionOut],
    summary="List the permission catalog",
)
async def list_permission_catalog(
    service: RbacServiceDep,
    _actor: Annotated[User, Security(require_permission("role-templates", "view"))],
) -> list[PermissionOut]:
    permissions = await service.list_permissions()
    return [
        PermissionOut(
            resource=permission.resource,
            action=permission.action,
            label=permission.label,
            description=permission.description,
        )
        for permission in permissions
    ]


# ---------------------------------------------------------------------------
# Role templates
# ---------------------------------------------------------------------------


@router.get(
    "/role-templates",
    response_model=list[RoleTemplateOut],
    response_model_exclude_none=True,
    summary="List role templates",
)
async def list_role_templates(
    service: RbacServiceDep,
    _actor: Annotated[User, Security(require_permission("role-templates", "view"))],
    scope: Annotated[RoleScope | None, Query(description="Filter by template scope")] = None,
) -> list[RoleTemplateOut]:
    templates = await service.list_role_templates(scope=scope)
    return [_serialize_template(template) for template in templates]


@router.post(
    "/role-templates",
    response_model=RoleTemplateOut,
    response_model_exclude_none=True,
    status_code=status.HTTP_201_CREATED,
    summary="Create a role template",
    responses={
        status.HTTP_403_FORBIDDEN: {
            "description": "Caller lacks permission to create this role template.",
        },
        status.HTTP_409_CONFLICT: {
            "description": "Role template name already exists.",
        },
        status.HTTP_422_UNPROCESSABLE_ENTITY: {
            "description": "Role template payload is invalid.",
        },
    },
)
async def create_role_template(
    payload: RoleTemplateCreate,
    service: RbacServiceDep,
    actor: Annotated[User, Security(require_permission("role-templates", "create"))],
) -> RoleTemplateOut:
    try:
        template = await service.create_role_template(
            name=payload.name,
            description=payload.description,
            scope=RoleScope(payload.scope),
            permissions=[entry.as_tuple() for entry in payload.permissions],
            inherit_all_permissions=payload.inherit_all_permissions,
            actor_id=actor.id,
        )
    except RoleConflictError as exc:
        raise HTTPException(status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except RoleValidationError as exc:
        raise HTTPException(status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    except PermissionDeniedError as exc:
        raise HTTPException(status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc

    return _serialize_template(template)


@router.get(
    "/role-templates/{role_template_id}",
    response_model=RoleTemplateOut,
    response_model_exclude_none=True,
    summary="Retrieve a role template",
)
async def read_role_template(
    role_template_id: RoleTemplatePath,
    service: RbacServiceDep,
    _actor: Annotated[User, Security(require_permission("role-templates", "view"))],
) -> RoleTemplateOut:
    template = await service.get_role_template(role_template_id)
    if template is None:
        raise HTTPException(status.HTTP_404_NOT_FOUND, detail="Role template not found")
    return _serialize_template(template)


@router.patch(
    "/role-templates/{role_template_id}",
    response_model=RoleTemplateOut,
    response_model_exclude_none=True,
    summary="Update a role template",
    responses={
        status.HTTP_400_BAD_REQUEST: {"description": "Role template is not editable."},
        status.HTTP_404_NOT_FOUND: {"description": "Role template not found."},
        status.HTTP_409_CONFLICT: {"description": "Role template name already exists."},
    },
)
async def update_role_template(
    role_template_id: RoleTemplatePath,
    payload: RoleTemplateUpdate,
    service: RbacServiceDep,
    actor: Annotated[User, Security(require_permission("role-templates", "update"))],
) -> RoleTemplateOut:
    try:
        template = await service.update_role_template(
            role_template_id=role_template_id,
            name=payload.name,
            description=payload.description,
            permissions=(
                [entry.as_tuple() for entry in payload.permissions]
                if payload.permissions is not None
                else None
            ),
            inherit_all_permissions=payload.inherit_all_permissions,
            actor_id=actor.id,
        )
    except RoleNotFoundError as exc:
        raise HTTPException(status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except RoleImmutableError as exc:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except RoleConflictError as exc:
        raise HTTPException(status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except RoleValidationError as exc:
        raise HTTPException(status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    except PermissionDeniedError as exc:
        raise HTTPException(status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc

    return _serialize_template(template)


@router.delete(
    "/role-templates/{role_template_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a role template",
    responses={
        status.HTTP_409_CONFLICT: {"description": "Role template is still assigned."},
    },
)
async def delete_role_template(
    role_template_id: RoleTemplatePath,
    service: RbacServiceDep,
    actor: Annotated[User, Security(require_permission("role-templates", "delete"))],
) -> Response:
    try:
        await service.delete_role_template(role_template_id=role_template_id, actor_id=actor.id)
    except RoleNotFoundError as exc:
        raise HTTPException(status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except RoleImmutableError as exc:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except ReferentialViolationError as exc:
        raise HTTPException(status.HTTP_409_CONFLICT, detail=str(exc)) from exc

    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ---------------------------------------------------------------------------
# Users: effective permissions and system roles
# ---------------------------------------------------------------------------


@router.get(
    "/users/{user_id}/effective-permissions",
    response_model=PermissionSnapshotOut,
    response_model_exclude_none=True,
    summary="Resolve another user's effective permissions",
)
async def read_user_permissions(
    user_id: UserPath,
    service: RbacServiceDep,
    _actor: Annotated[
        User, Security(require_permission("users", "view", account_param="account_id"))
    ],
    account_id: AccountQuery = None,
) -> PermissionSnapshotOut:
    resolved = await service.resolve(user_id, account_id)
    return _serialize_snapshot(resolved)


@router.get(
    "/users/{user_id}/system-roles",
    response_model=list[SystemRoleAssignmentOut],
    summary="List a user's system roles",
)
async def list_system_roles(
    user_id: UserPath,
    service: RbacServiceDep,
    _actor: Annotated[User, Security(require_permission("users", "view"))],
) -> list[SystemRoleAssignmentOut]:
    assignments = await service.list_system_roles(user_id)
    return [_serialize_system_role(assignment) for assignment in assignments]


@router.post(
    "/users/{user_id}/system-roles",
    response_model=SystemRoleAssignmentOut,
    status_code=status.HTTP_201_CREATED,
    summary="Grant a system role to a user",
)
async def grant_system_role(
    user_id: UserPath,
    payload: SystemRoleAssignmentCreate,
    service: RbacServiceDep,
    actor: Annotated[User, Security(require_permission("users", "manage"))],
) -> SystemRoleAssignmentOut:
    try:
        assignment = await service.grant_system_role(
            user_id=user_id,
            role_template_id=payload.role_template_id,
            actor_id=actor.id,
        )
    except (RoleNotFoundError, SubjectNotFoundError) as exc:
        raise HTTPException(status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except ScopeMismatchError as exc:
        raise HTTPException(status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    except PermissionDeniedError as exc:
        raise HTTPException(status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc
    except ReferentialViolationError as exc:
        raise HTTPException(status.HTTP_409_CONFLICT, detail=str(exc)) from exc

    return _serialize_system_role(assignment)


@router.delete(
    "/users/{user_id}/system-roles/{role_template_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Revoke a system role from a user",
)
async def revoke_system_role(
    user_id: UserPath,
    role_template_id: RoleTemplatePath,
    service: RbacServiceDep,
    actor: Annotated[User, Security(require_permission("users", "manage"))],
) -> Response:
    try:
        await service.revoke_system_role(
            user_id=user_id,
            role_template_id=role_template_id,
            actor_id=actor.id,
        )
    except AssignmentNotFoundError as exc:
        raise HTTPException(status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except PermissionDeniedError as exc:
        raise HTTPException(status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc
    except ReferentialViolationError as exc:
        raise HTTPException(status.HTTP_409_CONFLICT, detail=str(exc)) from exc

    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ---------------------------------------------------------------------------
# Memberships
# ---------------------------------------------------------------------------


@router.get(
    "/accounts/{account_id}/memberships",
    response_model=list[MembershipOut],
    summary="List account memberships",
)
async def list_memberships(
    account_id: AccountPath,
    service: RbacServiceDep,
    _actor: Annotated[
        User, Security(require_permission("users", "view", account_param="account_id"))
    ],
) -> list[MembershipOut]:
    memberships = await service.list_memberships(account_id)
    return [_serialize_membership(membership) for membership in memberships]


@router.post(
    "/accounts/{account_id}/memberships",
    response_model=MembershipOut,
    status_code=status.HTTP_201_CREATED,
    summary="Add a user to an account",
    responses={
        status.HTTP_409_CONFLICT: {"description": "User is already a member of this account."},
    },
)
async def create_membership(
    account_id: AccountPath,
    payload: MembershipCreate,
    service: RbacServiceDep,
    actor: Annotated[
        User, Security(require_permission("users", "manage", account_param="account_id"))
    ],
) -> MembershipOut:
    try:
        membership = await service.create_membership(
            user_id=payload.user_id,
            account_id=account_id,
            role_template_ids=payload.role_template_ids,
            actor_id=actor.id,
        )
    except (RoleNotFoundError, SubjectNotFoundError) as exc:
        raise HTTPException(status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except PermissionDeniedError as exc:
        raise HTTPException(status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc
    except ScopeMismatchError as exc:
        raise HTTPException(status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    except ReferentialViolationError as exc:
        raise HTTPException(status.HTTP_409_CONFLICT, detail=str(exc)) from exc

    return _serialize_membership(membership)


@router.delete(
    "/accounts/{account_id}/memberships/{membership_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Remove a user from an account",
)
async def delete_membership(
    account_id: AccountPath,
    membership_id: MembershipPath,
    service: RbacServiceDep,
    actor: Annotated[
        User, Security(require_permission("users", "manage", account_param="account_id"))
    ],
) -> Response:
    try:
        await service.delete_membership(
            membership_id=membership_id,
            account_id=account_id,
            actor_id=actor.id,
        )
    except (AssignmentNotFoundError, ScopeMismatchError) as exc:
        raise HTTPException(status.HTTP_404_NOT_FOUND, detail="Membership not found") from exc
    except PermissionDeniedError as exc:
        raise HTTPException(status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc

    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/memberships/{membership_id}/roles",
    response_model=MembershipRoleAssignmentOut,
    status_code=status.HTTP_201_CREATED,
    summary="Assign an account role to a membership",
)
async def grant_membership_role(
    membership_id: MembershipPath,
    payload: MembershipRoleAssignmentCreate,
    principal: PrincipalDep,
    service: RbacServiceDep,
) -> MembershipRoleAssignmentOut:
    membership = await _load_membership(service, membership_id)
    await ensure_permission(
        service, principal, "users", "manage", account_id=membership.account_id
    )
    try:
        assignment = await service.grant_membership_role(
            membership_id=membership.id,
            role_template_id=payload.role_template_id,
            actor_id=principal.id,
        )
    except (RoleNotFoundError, AssignmentNotFoundError) as exc:
        raise HTTPException(status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except PermissionDeniedError as exc:
        raise HTTPException(status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc
    except ScopeMismatchError as exc:
        raise HTTPException(status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    except ReferentialViolationError as exc:
        raise HTTPException(status.HTTP_409_CONFLICT, detail=str(exc)) from exc

    return _serialize_membership_role(assignment)


@router.delete(
    "/memberships/{membership_id}/roles/{role_template_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Remove an account role from a membership",
)
async def revoke_membership_role(
    membership_id: MembershipPath,
    role_template_id: RoleTemplatePath,
    principal: PrincipalDep,
    service: RbacServiceDep,
) -> Response:
    membership = await _load_membership(service, membership_id)
    await ensure_permission(
        service, principal, "users", "manage", account_id=membership.account_id
    )
    try:
        await service.revoke_membership_role(
            membership_id=membership.id,
            role_template_id=role_template_id,
            actor_id=principal.id,
        )
    except AssignmentNotFoundError as exc:
        raise HTTPException(status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except PermissionDeniedError as exc:
        raise HTTPException(status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc

    return Response(status_code=status.HTTP_204_NO_CONTENT)


__all__ = ["router"]
