"""FastAPI dependencies shared by the feature routers.

Caller identity comes from a trusted upstream header (``SV_ACTOR_HEADER``).
Authorization goes through :class:`RbacService`.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Annotated
from uuid import UUID

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from servicevault_api.common.ids import parse_uuid
from servicevault_api.common.logging import log_context
from servicevault_api.core.models import User
from servicevault_api.features.rbac.service import RbacService
from servicevault_api.infra.db.session import get_session
from servicevault_api.settings import Settings, get_settings

logger = logging.getLogger(__name__)

SessionDep = Annotated[AsyncSession, Depends(get_session)]

PermissionDependency = Callable[..., Awaitable[User]]


def get_app_settings(request: Request) -> Settings:
    return getattr(request.app.state, "settings", None) or get_settings()


SettingsDep = Annotated[Settings, Depends(get_app_settings)]


def get_rbac_service(session: SessionDep) -> RbacService:
    """Return a request-scoped RBAC service."""

    return RbacService(session=session)


RbacServiceDep = Annotated[RbacService, Depends(get_rbac_service)]


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail)


async def get_current_principal(
    request: Request,
    session: SessionDep,
    settings: SettingsDep,
) -> User:
    """Return the active user named by the actor header."""

    raw = request.headers.get(settings.actor_header)
    if raw is None or not raw.strip():
        raise _unauthorized("Authentication required")
    user_id = parse_uuid(raw)
    if user_id is None:
        raise _unauthorized("Invalid user identifier")

    user = await session.get(User, user_id)
    if user is None or not user.is_active:
        logger.info("auth.principal.rejected", extra=log_context(user_id=user_id))
        raise _unauthorized("Unknown or inactive user")
    return user


PrincipalDep = Annotated[User, Depends(get_current_principal)]


def _account_from_request(request: Request, account_param: str | None) -> UUID | None:
    if not account_param:
        return None
    candidate = request.path_params.get(account_param) or request.query_params.get(account_param)
    if candidate is None:
        return None
    parsed = parse_uuid(candidate)
    if parsed is None:
        raise HTTPException(
            status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"{account_param} must be a valid identifier",
        )
    return parsed


async def ensure_permission(
    service: RbacService,
    principal: User,
    resource: str,
    action: str,
    *,
    account_id: UUID | None = None,
) -> None:
    """Raise 403 unless ``principal`` holds ``resource:action``."""

    allowed = await service.has_permission(principal.id, resource, action, account_id)
    if not allowed:
        logger.info(
            "rbac.request.forbidden",
            extra=log_context(
                user_id=principal.id,
                account_id=account_id,
                resource=resource,
                action=action,
            ),
        )
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")


def require_permission(
    resource: str,
    action: str,
    *,
    account_param: str | None = None,
) -> PermissionDependency:
    """Return a dependency enforcing ``resource:action``.

    With ``account_param`` the check runs in the account named by that path
    or query parameter.
    """

    async def dependency(
        request: Request,
        principal: PrincipalDep,
        service: RbacServiceDep,
    ) -> User:
        account_id = _account_from_request(request, account_param)
        await ensure_permission(service, principal, resource, action, account_id=account_id)
        return principal

    return dependency


__all__ = [
    "PrincipalDep",
    "RbacServiceDep",
    "SessionDep",
    "SettingsDep",
    "ensure_permission",
    "get_app_settings",
    "get_current_principal",
    "get_rbac_service",
    "require_permission",
]
