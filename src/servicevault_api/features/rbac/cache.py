"""Client-side cache of resolved permission snapshots.

The cache is a convenience for UI clients: it answers visibility questions
without a round trip. It is never authoritative, since the server re-checks
every mutating request.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable, Mapping
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID

from servicevault_api.common.ids import parse_uuid
from servicevault_api.common.logging import log_context
from servicevault_api.common.time import utc_now
from servicevault_api.core.rbac.policy import grants_permission
from servicevault_api.core.rbac.types import GrantScope, PermissionTuple
from servicevault_api.settings import DEFAULT_PERMISSION_CACHE_TTL

from .resolver import ResolvedPermissions

logger = logging.getLogger(__name__)

CacheKey = tuple[str, UUID | None]
SnapshotLoader = Callable[[], Awaitable["PermissionSnapshot"]]


@dataclass(frozen=True)
class PermissionSnapshot:
    """Resolved permissions as delivered to a client."""

    user_id: UUID
    account_id: UUID | None
    is_super_admin: bool
    permissions: frozenset[PermissionTuple]

    @classmethod
    def from_resolved(cls, resolved: ResolvedPermissions) -> PermissionSnapshot:
        return cls(
            user_id=resolved.user_id,
            account_id=resolved.account_id,
            is_super_admin=resolved.is_super_admin,
            permissions=resolved.permissions,
        )

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> PermissionSnapshot:
        """Build a snapshot from a ``GET /me/permissions`` response body."""

        user_id = parse_uuid(payload.get("user_id"))
        if user_id is None:
            raise ValueError("Permission snapshot is missing user_id")
        return cls(
            user_id=user_id,
            account_id=parse_uuid(payload.get("account_id")),
            is_super_admin=bool(payload.get("is_super_admin", False)),
            permissions=frozenset(
                PermissionTuple(
                    str(entry["resource"]),
                    str(entry["action"]),
                    GrantScope(entry.get("scope", GrantScope.ACCOUNT)),
                )
                for entry in payload.get("permissions", ())
            ),
        )

    def allows(self, resource: str, action: str) -> bool:
        if self.is_super_admin:
            return True
        return grants_permission(self.permissions, resource, action)


@dataclass
class _Entry:
    snapshot: PermissionSnapshot
    expires_at: datetime


class PermissionCache:
    """Read-through TTL cache keyed by ``(session_key, account_id)``.

    Concurrent misses on one key share a single load; loads for different
    keys run independently. Expired entries are pruned whenever a load
    stores a new snapshot.
    """

    def __init__(
        self,
        *,
        ttl: timedelta = DEFAULT_PERMISSION_CACHE_TTL,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        if ttl <= timedelta(0):
            raise ValueError("Permission cache TTL must be positive")
        self._ttl = ttl
        self._clock = clock
        self._entries: dict[CacheKey, _Entry] = {}
        self._key_locks: dict[CacheKey, asyncio.Lock] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def ttl(self) -> timedelta:
        return self._ttl

    def peek(self, session_key: str, account_id: UUID | None = None) -> PermissionSnapshot | None:
        """Return a fresh cached snapshot without loading."""

        entry = self._entries.get((session_key, account_id))
        if entry is None or entry.expires_at <= self._clock():
            return None
        return entry.snapshot

    async def get_or_load(
        self,
        session_key: str,
        account_id: UUID | None,
        loader: SnapshotLoader,
    ) -> PermissionSnapshot:
        """Return the cached snapshot, calling ``loader`` on a miss or expiry.

        Loader errors propagate and leave the cache untouched.
        """

        cached = self.peek(session_key, account_id)
        if cached is not None:
            return cached

        key = (session_key, account_id)
        async with self._lock:
            key_lock = self._key_locks.setdefault(key, asyncio.Lock())
        async with key_lock:
            # Another waiter may have filled the entry while we queued.
            cached = self.peek(session_key, account_id)
            if cached is not None:
                return cached
            snapshot = await loader()
            async with self._lock:
                self._prune_expired()
                self._entries[key] = _Entry(
                    snapshot=snapshot, expires_at=self._clock() + self._ttl
                )
            logger.debug(
                "rbac.cache.load",
                extra=log_context(user_id=snapshot.user_id, account_id=account_id),
            )
            return snapshot

    async def invalidate_user(self, user_id: UUID) -> int:
        """Drop every snapshot belonging to ``user_id`` (role change)."""

        async with self._lock:
            return self._drop(
                key for key, entry in self._entries.items() if entry.snapshot.user_id == user_id
            )

    async def invalidate_session(self, session_key: str) -> int:
        """Drop every snapshot cached for ``session_key`` (re-authentication)."""

        async with self._lock:
            return self._drop(key for key in self._entries if key[0] == session_key)

    async def clear(self) -> None:
        async with self._lock:
            self._entries.clear()
            self._key_locks = {
                key: lock for key, lock in self._key_locks.items() if lock.locked()
            }

    def _prune_expired(self) -> None:
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if entry.expires_at <= now]
        for key in expired:
            self._entries.pop(key, None)
        # Locks for keys that are neither cached nor loading are dropped too.
        self._key_locks = {
            key: lock
            for key, lock in self._key_locks.items()
            if key in self._entries or lock.locked()
        }
        if expired:
            logger.debug("rbac.cache.prune", extra=log_context(entries=len(expired)))

    def _drop(self, keys: Iterable[CacheKey]) -> int:
        doomed = list(keys)
        for key in doomed:
            self._entries.pop(key, None)
            lock = self._key_locks.get(key)
            if lock is not None and not lock.locked():
                del self._key_locks[key]
        if doomed:
            logger.debug("rbac.cache.invalidate", extra=log_context(entries=len(doomed)))
        return len(doomed)


__all__ = ["PermissionCache", "PermissionSnapshot"]
