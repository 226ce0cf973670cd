"""HTTP endpoints for user records."""

from __future__ import annotations

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Path, Response, Security, status

from servicevault_api.app.dependencies import SessionDep, require_permission
from servicevault_api.core.models import User
from servicevault_api.features.rbac.exceptions import LastSuperAdminError

from .schemas import DomainAssignmentOut, UserCreate, UserOut
from .service import UserConflictError, UserNotFoundError, UsersService

router = APIRouter(prefix="/users", tags=["users"])

UserPath = Annotated[UUID, Path(description="User identifier")]


def get_users_service(session: SessionDep) -> UsersService:
    return UsersService(session=session)


UsersServiceDep = Annotated[UsersService, Depends(get_users_service)]


@router.get(
    "",
    response_model=list[UserOut],
    response_model_exclude_none=True,
    summary="List users",
)
async def list_users(
    service: UsersServiceDep,
    _actor: Annotated[User, Security(require_permission("users", "view"))],
) -> list[UserOut]:
    users = await service.list_users()
    return [UserOut.model_validate(user) for user in users]


@router.post(
    "",
    response_model=UserOut,
    response_model_exclude_none=True,
    status_code=status.HTTP_201_CREATED,
    summary="Create a user",
)
async def create_user(
    payload: UserCreate,
    service: UsersServiceDep,
    actor: Annotated[User, Security(require_permission("users", "create"))],
) -> UserOut:
    try:
        user = await service.create_user(
            email=payload.email,
            display_name=payload.display_name,
            is_active=payload.is_active,
            auto_assign=payload.auto_assign,
            actor_id=actor.id,
        )
    except UserConflictError as exc:
        raise HTTPException(status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    return UserOut.model_validate(user)


@router.get(
    "/{user_id}",
    response_model=UserOut,
    response_model_exclude_none=True,
    summary="Retrieve a user",
)
async def read_user(
    user_id: UserPath,
    service: UsersServiceDep,
    _actor: Annotated[User, Security(require_permission("users", "view"))],
) -> UserOut:
    user = await service.get_user(user_id)
    if user is None:
        raise HTTPException(status.HTTP_404_NOT_FOUND, detail="User not found")
    return UserOut.model_validate(user)


@router.post(
    "/{user_id}/domain-assignment",
    response_model=DomainAssignmentOut,
    summary="Add a user to the accounts claiming their email domain",
)
async def assign_user_by_domain(
    user_id: UserPath,
    service: UsersServiceDep,
    actor: Annotated[User, Security(require_permission("users", "manage"))],
) -> DomainAssignmentOut:
    try:
        account_ids = await service.assign_by_domain(user_id=user_id, actor_id=actor.id)
    except UserNotFoundError as exc:
        raise HTTPException(status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return DomainAssignmentOut(user_id=user_id, account_ids=account_ids)


@router.delete(
    "/{user_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a user",
    responses={
        status.HTTP_409_CONFLICT: {
            "description": "User holds the last super administrator role.",
        },
    },
)
async def delete_user(
    user_id: UserPath,
    service: UsersServiceDep,
    actor: Annotated[User, Security(require_permission("users", "delete"))],
) -> Response:
    try:
        await service.delete_user(user_id=user_id, actor_id=actor.id)
    except UserNotFoundError as exc:
        raise HTTPException(status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except LastSuperAdminError as exc:
        raise HTTPException(status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)


__all__ = ["router"]
