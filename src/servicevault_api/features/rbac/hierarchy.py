"""Account tree walks over pre-loaded ``(id, parent_id)`` rows."""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Iterable, Iterator
from uuid import UUID

from servicevault_api.common.logging import log_context

logger = logging.getLogger(__name__)


class AccountTree:
    """In-memory parent/child index of accounts.

    Walks carry a visited set so that corrupt data containing a cycle ends the
    walk instead of looping forever.
    """

    def __init__(self, edges: Iterable[tuple[UUID, UUID | None]] = ()) -> None:
        self._parent: dict[UUID, UUID | None] = {}
        self._children: dict[UUID, list[UUID]] = {}
        for account_id, parent_id in edges:
            self._parent[account_id] = parent_id
            if parent_id is not None:
                self._children.setdefault(parent_id, []).append(account_id)

    def __contains__(self, account_id: object) -> bool:
        return account_id in self._parent

    def __iter__(self) -> Iterator[UUID]:
        return iter(self._parent)

    def ancestors(self, account_id: UUID) -> list[UUID]:
        """Return the parent chain of ``account_id``, nearest first."""

        chain: list[UUID] = []
        visited = {account_id}
        current = self._parent.get(account_id)
        while current is not None:
            if current in visited:
                logger.warning(
                    "rbac.hierarchy.cycle",
                    extra=log_context(account_id=account_id, repeated=str(current)),
                )
                break
            visited.add(current)
            chain.append(current)
            current = self._parent.get(current)
        return chain

    def descendants(self, account_id: UUID) -> list[UUID]:
        """Return every account below ``account_id`` in breadth-first order."""

        found: list[UUID] = []
        visited = {account_id}
        queue = deque(self._children.get(account_id, ()))
        while queue:
            current = queue.popleft()
            if current in visited:
                logger.warning(
                    "rbac.hierarchy.cycle",
                    extra=log_context(account_id=account_id, repeated=str(current)),
                )
                continue
            visited.add(current)
            found.append(current)
            queue.extend(self._children.get(current, ()))
        return found

    def would_create_cycle(self, account_id: UUID, parent_id: UUID | None) -> bool:
        """True when making ``parent_id`` the parent of ``account_id`` closes a loop."""

        if parent_id is None:
            return False
        if parent_id == account_id:
            return True
        return account_id in self.ancestors(parent_id)


__all__ = ["AccountTree"]
