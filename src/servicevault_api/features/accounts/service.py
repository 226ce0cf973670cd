"""Business logic for the account hierarchy."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from servicevault_api.common.domains import (
    DomainValidationError,
    format_domains,
    normalize_domains,
)
from servicevault_api.common.logging import log_context
from servicevault_api.core.models import Account
from servicevault_api.core.rbac.types import AccountType
from servicevault_api.features.rbac.exceptions import AccountHierarchyError
from servicevault_api.features.rbac.repository import PermissionRepository

logger = logging.getLogger(__name__)


class AccountNotFoundError(ValueError):
    pass


class AccountValidationError(ValueError):
    pass


def _normalize_name(value: str | None) -> str:
    candidate = (value or "").strip()
    if not candidate:
        raise AccountValidationError("Account name is required")
    return candidate


def _normalize_domains(values: Iterable[str] | None) -> str | None:
    try:
        return format_domains(normalize_domains(values))
    except DomainValidationError as exc:
        raise AccountValidationError(str(exc)) from exc


class AccountsService:
    """Create accounts and maintain the parent/child tree."""

    def __init__(self, *, session: AsyncSession) -> None:
        self._session = session
        self._repository = PermissionRepository(session=session)

    async def get_account(self, account_id: UUID) -> Account | None:
        return await self._session.get(Account, account_id)

    async def list_accounts(self, account_ids: list[UUID] | None = None) -> list[Account]:
        """Return accounts ordered by name; ``account_ids`` restricts the result."""

        stmt = select(Account).order_by(Account.name, Account.id)
        if account_ids is not None:
            if not account_ids:
                return []
            stmt = stmt.where(Account.id.in_(account_ids))
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def create_account(
        self,
        *,
        name: str,
        account_type: AccountType = AccountType.ORGANIZATION,
        parent_id: UUID | None = None,
        domains: Iterable[str] | None = None,
        actor_id: UUID | None = None,
    ) -> Account:
        normalized = _normalize_name(name)
        stored_domains = _normalize_domains(domains)
        if parent_id is not None and await self.get_account(parent_id) is None:
            raise AccountNotFoundError("Parent account not found")

        account = Account(
            name=normalized,
            account_type=AccountType(account_type),
            parent_id=parent_id,
            domains=stored_domains,
        )
        self._session.add(account)
        await self._session.flush([account])
        logger.info(
            "accounts.create.success",
            extra=log_context(account_id=account.id, actor_id=actor_id, parent_id=parent_id),
        )
        return account

    async def set_parent(
        self,
        *,
        account_id: UUID,
        parent_id: UUID | None,
        actor_id: UUID | None = None,
    ) -> Account:
        """Move ``account_id`` under ``parent_id`` (or to the top level).

        The new parent may not be the account itself or any of its
        descendants.
        """

        account = await self.get_account(account_id)
        if account is None:
            raise AccountNotFoundError("Account not found")
        if parent_id is not None and await self.get_account(parent_id) is None:
            raise AccountNotFoundError("Parent account not found")

        tree = await self._repository.load_account_tree()
        if tree.would_create_cycle(account.id, parent_id):
            logger.info(
                "accounts.reparent.cycle",
                extra=log_context(account_id=account.id, parent_id=parent_id, actor_id=actor_id),
            )
            raise AccountHierarchyError(
                "An account cannot be moved under itself or one of its subsidiaries"
            )

        account.parent_id = parent_id
        await self._session.flush([account])
        logger.info(
            "accounts.reparent.success",
            extra=log_context(account_id=account.id, parent_id=parent_id, actor_id=actor_id),
        )
        return account

    async def set_domains(
        self,
        *,
        account_id: UUID,
        domains: Iterable[str],
        actor_id: UUID | None = None,
    ) -> Account:
        """Replace the email domains used to auto-assign new users."""

        account = await self.get_account(account_id)
        if account is None:
            raise AccountNotFoundError("Account not found")
        account.domains = _normalize_domains(domains)
        await self._session.flush([account])
        logger.info(
            "accounts.domains.update.success",
            extra=log_context(
                account_id=account.id, domains=len(account.domain_list), actor_id=actor_id
            ),
        )
        return account

    async def delete_account(self, *, account_id: UUID, actor_id: UUID | None = None) -> None:
        account = await self.get_account(account_id)
        if account is None:
            raise AccountNotFoundError("Account not found")

        children = await self._session.execute(
            select(func.count()).select_from(Account).where(Account.parent_id == account.id)
        )
        if int(children.scalar_one() or 0):
            raise AccountHierarchyError("Cannot delete an account that has subsidiaries")

        await self._session.delete(account)
        await self._session.flush()
        logger.info(
            "accounts.delete.success",
            extra=log_context(account_id=account_id, actor_id=actor_id),
        )


__all__ = [
    "AccountNotFoundError",
    "AccountValidationError",
    "AccountsService",
]
