"""Business logic for user records."""

from __future__ import annotations

import logging
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from servicevault_api.common.logging import log_context
from servicevault_api.core.models import User
from servicevault_api.features.rbac.exceptions import LastSuperAdminError
from servicevault_api.features.rbac.service import RbacService

logger = logging.getLogger(__name__)


class UserError(ValueError):
    """Base class for user management errors."""


class UserNotFoundError(UserError):
    pass


class UserConflictError(UserError):
    """Raised when the email address is already registered."""


def _canonical_email(value: str) -> str:
    return value.strip().lower()


class UsersService:
    """Create, list and remove users."""

    def __init__(self, *, session: AsyncSession) -> None:
        self._session = session

    async def get_user(self, user_id: UUID) -> User | None:
        return await self._session.get(User, user_id)

    async def get_by_email(self, email: str) -> User | None:
        stmt = select(User).where(func.lower(User.email) == _canonical_email(email)).limit(1)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_users(self) -> list[User]:
        result = await self._session.execute(select(User).order_by(User.email))
        return list(result.scalars().all())

    async def create_user(
        self,
        *,
        email: str,
        display_name: str | None = None,
        is_active: bool = True,
        auto_assign: bool = True,
        actor_id: UUID | None = None,
    ) -> User:
        """Register a user.

        With ``auto_assign`` the user also joins every account that claims
        their email domain.
        """

        canonical = _canonical_email(email)
        if await self.get_by_email(canonical) is not None:
            raise UserConflictError("A user with this email already exists")

        user = User(
            email=canonical,
            display_name=(display_name or "").strip() or None,
            is_active=is_active,
        )
        self._session.add(user)
        try:
            async with self._session.begin_nested():
                await self._session.flush([user])
        except IntegrityError as exc:
            raise UserConflictError("A user with this email already exists") from exc

        logger.info(
            "users.create.success",
            extra=log_context(user_id=user.id, actor_id=actor_id),
        )
        if auto_assign:
            await RbacService(session=self._session).auto_assign_user_to_accounts(
                user_id=user.id, email=canonical, actor_id=actor_id
            )
        return user

    async def assign_by_domain(self, *, user_id: UUID, actor_id: UUID | None = None) -> list[UUID]:
        user = await self.get_user(user_id)
        if user is None:
            raise UserNotFoundError("User not found")
        rbac = RbacService(session=self._session)
        return await rbac.auto_assign_user_to_accounts(
            user_id=user.id, email=user.email, actor_id=actor_id
        )

    async def delete_user(self, *, user_id: UUID, actor_id: UUID | None = None) -> None:
        """Delete a user with their memberships and role assignments.

        Refused when the user holds the last remaining super admin role.
        """

        user = await self.get_user(user_id)
        if user is None:
            raise UserNotFoundError("User not found")

        rbac = RbacService(session=self._session)
        if await rbac.would_remove_last_super_admin(user.id):
            logger.info(
                "users.delete.last_super_admin",
                extra=log_context(user_id=user.id, actor_id=actor_id),
            )
            raise LastSuperAdminError()

        await self._session.delete(user)
        await self._session.flush()
        logger.info(
            "users.delete.success",
            extra=log_context(user_id=user_id, actor_id=actor_id),
        )


__all__ = [
    "UserConflictError",
    "UserError",
    "UserNotFoundError",
    "UsersService",
]
