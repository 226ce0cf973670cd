"""HTTP endpoints for accounts and the account hierarchy."""

from __future__ import annotations

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Path, Response, Security, status

from servicevault_api.app.dependencies import (
    PrincipalDep,
    RbacServiceDep,
    SessionDep,
    ensure_permission,
    require_permission,
)
from servicevault_api.core.models import User
from servicevault_api.core.rbac.types import AccountType
from servicevault_api.features.rbac.exceptions import AccountHierarchyError

from .schemas import AccountCreate, AccountDomainsUpdate, AccountOut, AccountParentUpdate
from .service import AccountNotFoundError, AccountsService, AccountValidationError

router = APIRouter(prefix="/accounts", tags=["accounts"])

AccountPath = Annotated[UUID, Path(description="Account identifier")]


def get_accounts_service(session: SessionDep) -> AccountsService:
    return AccountsService(session=session)


AccountsServiceDep = Annotated[AccountsService, Depends(get_accounts_service)]


@router.get(
    "",
    response_model=list[AccountOut],
    response_model_exclude_none=True,
    summary="List accounts visible to the caller",
)
async def list_accounts(
    principal: PrincipalDep,
    rbac: RbacServiceDep,
    service: AccountsServiceDep,
) -> list[AccountOut]:
    """Super admins see every account; others see memberships and subsidiaries."""

    visible = None
    if not await rbac.is_super_admin(principal.id):
        visible = await rbac.accessible_account_ids(principal.id)
    accounts = await service.list_accounts(visible)
    return [AccountOut.model_validate(account) for account in accounts]


@router.post(
    "",
    response_model=AccountOut,
    response_model_exclude_none=True,
    status_code=status.HTTP_201_CREATED,
    summary="Create an account",
)
async def create_account(
    payload: AccountCreate,
    principal: PrincipalDep,
    rbac: RbacServiceDep,
    service: AccountsServiceDep,
) -> AccountOut:
    # Subsidiaries are authorised against their parent account.
    await ensure_permission(rbac, principal, "accounts", "create", account_id=payload.parent_id)
    try:
        account = await service.create_account(
            name=payload.name,
            account_type=AccountType(payload.account_type),
            parent_id=payload.parent_id,
            domains=payload.domains,
            actor_id=principal.id,
        )
    except AccountNotFoundError as exc:
        raise HTTPException(status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except AccountValidationError as exc:
        raise HTTPException(status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    return AccountOut.model_validate(account)


@router.get(
    "/{account_id}",
    response_model=AccountOut,
    response_model_exclude_none=True,
    summary="Retrieve an account",
)
async def read_account(
    account_id: AccountPath,
    service: AccountsServiceDep,
    _actor: Annotated[
        User, Security(require_permission("accounts", "view", account_param="account_id"))
    ],
) -> AccountOut:
    account = await service.get_account(account_id)
    if account is None:
        raise HTTPException(status.HTTP_404_NOT_FOUND, detail="Account not found")
    return AccountOut.model_validate(account)


@router.patch(
    "/{account_id}/parent",
    response_model=AccountOut,
    response_model_exclude_none=True,
    summary="Move an account within the hierarchy",
    responses={
        status.HTTP_409_CONFLICT: {"description": "The move would create a cycle."},
    },
)
async def update_account_parent(
    account_id: AccountPath,
    payload: AccountParentUpdate,
    service: AccountsServiceDep,
    rbac: RbacServiceDep,
    actor: Annotated[
        User, Security(require_permission("accounts", "update", account_param="account_id"))
    ],
) -> AccountOut:
    """Requires ``accounts:update`` on the moved account and on its destination.

    Promoting an account to the top level is authorised without account
    context, so only system grants allow it.
    """

    await ensure_permission(rbac, actor, "accounts", "update", account_id=payload.parent_id)
    try:
        account = await service.set_parent(
            account_id=account_id,
            parent_id=payload.parent_id,
            actor_id=actor.id,
        )
    except AccountNotFoundError as exc:
        raise HTTPException(status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except AccountHierarchyError as exc:
        raise HTTPException(status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    return AccountOut.model_validate(account)


@router.put(
    "/{account_id}/domains",
    response_model=AccountOut,
    response_model_exclude_none=True,
    summary="Replace the email domains that auto-assign new users",
)
async def update_account_domains(
    account_id: AccountPath,
    payload: AccountDomainsUpdate,
    service: AccountsServiceDep,
    actor: Annotated[
        User, Security(require_permission("accounts", "update", account_param="account_id"))
    ],
) -> AccountOut:
    try:
        account = await service.set_domains(
            account_id=account_id,
            domains=payload.domains,
            actor_id=actor.id,
        )
    except AccountNotFoundError as exc:
        raise HTTPException(status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except AccountValidationError as exc:
        raise HTTPException(status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    return AccountOut.model_validate(account)


@router.delete(
    "/{account_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete an account without subsidiaries",
)
async def delete_account(
    account_id: AccountPath,
    service: AccountsServiceDep,
    actor: Annotated[
        User, Security(require_permission("accounts", "delete", account_param="account_id"))
    ],
) -> Response:
    try:
        await service.delete_account(account_id=account_id, actor_id=actor.id)
    except AccountNotFoundError as exc:
        raise HTTPException(status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except AccountHierarchyError as exc:
        raise HTTPException(status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)


__all__ = ["router"]
