"""Read model for permission resolution.

Exposes the two joined reads the resolver needs (system roles with their
templates and tuples; memberships with their role templates and tuples) plus
the account tree. Store failures surface as
:class:`PermissionStoreUnavailableError`.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from servicevault_api.common.logging import log_context
from servicevault_api.core.models import (
    Account,
    Membership,
    MembershipRoleAssignment,
    RoleTemplate,
    SystemRoleAssignment,
)
from servicevault_api.core.rbac.types import RoleScope

from .exceptions import PermissionStoreUnavailableError
from .hierarchy import AccountTree
from .resolver import MembershipGrants, RoleGrant, UserGrants

logger = logging.getLogger(__name__)


def role_grant_from_template(template: RoleTemplate) -> RoleGrant:
    return RoleGrant(
        role_template_id=template.id,
        name=template.name,
        scope=RoleScope(template.scope),
        inherit_all_permissions=bool(template.inherit_all_permissions),
        permissions=template.permission_tuples(),
    )


@contextmanager
def _store_errors(operation: str, **context: object) -> Iterator[None]:
    try:
        yield
    except SQLAlchemyError as exc:
        logger.error(
            "rbac.store.read_failed",
            extra=log_context(operation=operation, **context),
            exc_info=True,
        )
        raise PermissionStoreUnavailableError(
            f"Permission data could not be read ({operation})"
        ) from exc


class PermissionRepository:
    """Loads grant snapshots for the resolver."""

    def __init__(self, *, session: AsyncSession) -> None:
        self._session = session

    async def load_user_grants(self, user_id: UUID) -> UserGrants:
        with _store_errors("load_user_grants", user_id=user_id):
            system_stmt = (
                select(SystemRoleAssignment)
                .where(SystemRoleAssignment.user_id == user_id)
                .options(
                    selectinload(SystemRoleAssignment.role_template).selectinload(
                        RoleTemplate.permissions
                    )
                )
                .execution_options(populate_existing=True)
            )
            system_rows = (await self._session.execute(system_stmt)).scalars().all()

            membership_stmt = (
                select(Membership)
                .where(Membership.user_id == user_id)
                .options(
                    selectinload(Membership.roles)
                    .selectinload(MembershipRoleAssignment.role_template)
                    .selectinload(RoleTemplate.permissions)
                )
                .execution_options(populate_existing=True)
            )
            membership_rows = (await self._session.execute(membership_stmt)).scalars().all()

        return UserGrants(
            user_id=user_id,
            system_roles=tuple(
                role_grant_from_template(assignment.role_template)
                for assignment in system_rows
            ),
            memberships=tuple(
                MembershipGrants(
                    membership_id=membership.id,
                    account_id=membership.account_id,
                    roles=tuple(
                        role_grant_from_template(assignment.role_template)
                        for assignment in membership.roles
                    ),
                )
                for membership in membership_rows
            ),
        )

    async def load_account_tree(self) -> AccountTree:
        with _store_errors("load_account_tree"):
            result = await self._session.execute(select(Account.id, Account.parent_id))
            rows = result.all()
        return AccountTree((account_id, parent_id) for account_id, parent_id in rows)


__all__ = ["PermissionRepository", "role_grant_from_template"]
