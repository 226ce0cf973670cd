"""Tests for the client-side permission snapshot cache."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta
from uuid import UUID, uuid4

import pytest

from servicevault_api.core.rbac.types import GrantScope, PermissionTuple
from servicevault_api.features.rbac.cache import PermissionCache, PermissionSnapshot


class FakeClock:
    def __init__(self) -> None:
        self.now = datetime(2026, 1, 1, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now += delta


def _snapshot(user_id: UUID, account_id: UUID | None = None) -> PermissionSnapshot:
    return PermissionSnapshot(
        user_id=user_id,
        account_id=account_id,
        is_super_admin=False,
        permissions=frozenset({PermissionTuple("tickets", "view", GrantScope.ACCOUNT)}),
    )


class CountingLoader:
    def __init__(self, snapshot: PermissionSnapshot) -> None:
        self.snapshot = snapshot
        self.calls = 0

    async def __call__(self) -> PermissionSnapshot:
        self.calls += 1
        return self.snapshot


@pytest.mark.asyncio
async def test_second_lookup_is_served_from_cache() -> None:
    cache = PermissionCache(ttl=timedelta(minutes=5), clock=FakeClock())
    loader = CountingLoader(_snapshot(uuid4()))

    first = await cache.get_or_load("session-a", None, loader)
    second = await cache.get_or_load("session-a", None, loader)

    assert first is second
    assert loader.calls == 1
    assert len(cache) == 1


@pytest.mark.asyncio
async def test_entries_are_keyed_by_account() -> None:
    cache = PermissionCache(clock=FakeClock())
    user_id = uuid4()
    account_a, account_b = uuid4(), uuid4()
    loader_a = CountingLoader(_snapshot(user_id, account_a))
    loader_b = CountingLoader(_snapshot(user_id, account_b))

    await cache.get_or_load("session-a", account_a, loader_a)
    await cache.get_or_load("session-a", account_b, loader_b)

    assert loader_a.calls == loader_b.calls == 1
    assert cache.peek("session-a", account_a).account_id == account_a
    assert cache.peek("session-a", account_b).account_id == account_b


@pytest.mark.asyncio
async def test_expired_entries_are_reloaded() -> None:
    clock = FakeClock()
    cache = PermissionCache(ttl=timedelta(minutes=5), clock=clock)
    loader = CountingLoader(_snapshot(uuid4()))

    await cache.get_or_load("session-a", None, loader)
    clock.advance(timedelta(minutes=5))

    assert cache.peek("session-a") is None
    await cache.get_or_load("session-a", None, loader)
    assert loader.calls == 2


@pytest.mark.asyncio
async def test_expired_entries_are_pruned_when_a_new_snapshot_is_stored() -> None:
    clock = FakeClock()
    cache = PermissionCache(ttl=timedelta(minutes=5), clock=clock)
    for session_key in ("a", "b", "c"):
        await cache.get_or_load(session_key, None, CountingLoader(_snapshot(uuid4())))
    clock.advance(timedelta(minutes=6))

    await cache.get_or_load("d", None, CountingLoader(_snapshot(uuid4())))

    assert len(cache) == 1
    assert cache.peek("d") is not None


@pytest.mark.asyncio
async def test_slow_load_does_not_block_other_keys() -> None:
    cache = PermissionCache(clock=FakeClock())
    release = asyncio.Event()

    async def slow() -> PermissionSnapshot:
        await release.wait()
        return _snapshot(uuid4())

    pending = asyncio.create_task(cache.get_or_load("slow", None, slow))
    await asyncio.sleep(0)

    fast = await asyncio.wait_for(
        cache.get_or_load("fast", None, CountingLoader(_snapshot(uuid4()))), timeout=1
    )

    assert fast is not None
    assert not pending.done()
    release.set()
    await pending
    assert len(cache) == 2


@pytest.mark.asyncio
async def test_concurrent_misses_on_one_key_share_a_load() -> None:
    cache = PermissionCache(clock=FakeClock())
    release = asyncio.Event()
    calls = 0
    snapshot = _snapshot(uuid4())

    async def gated() -> PermissionSnapshot:
        nonlocal calls
        calls += 1
        await release.wait()
        return snapshot

    waiters = [asyncio.create_task(cache.get_or_load("shared", None, gated)) for _ in range(3)]
    await asyncio.sleep(0)
    release.set()
    results = await asyncio.gather(*waiters)

    assert calls == 1
    assert all(result is snapshot for result in results)


@pytest.mark.asyncio
async def test_role_change_drops_every_snapshot_of_that_user() -> None:
    cache = PermissionCache(clock=FakeClock())
    user_id, other_id = uuid4(), uuid4()
    await cache.get_or_load("session-a", None, CountingLoader(_snapshot(user_id)))
    account_id = uuid4()
    await cache.get_or_load(
        "session-a", account_id, CountingLoader(_snapshot(user_id, account_id))
    )
    await cache.get_or_load("session-b", None, CountingLoader(_snapshot(other_id)))

    dropped = await cache.invalidate_user(user_id)

    assert dropped == 2
    assert cache.peek("session-a") is None
    assert cache.peek("session-b") is not None


@pytest.mark.asyncio
async def test_reauthentication_drops_the_old_session() -> None:
    cache = PermissionCache(clock=FakeClock())
    user_id = uuid4()
    await cache.get_or_load("old", None, CountingLoader(_snapshot(user_id)))

    assert await cache.invalidate_session("old") == 1
    assert await cache.invalidate_session("old") == 0
    assert len(cache) == 0


@pytest.mark.asyncio
async def test_loader_errors_propagate_and_leave_cache_untouched() -> None:
    cache = PermissionCache(clock=FakeClock())

    async def failing() -> PermissionSnapshot:
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError, match="boom"):
        await cache.get_or_load("session-a", None, failing)

    assert len(cache) == 0


@pytest.mark.asyncio
async def test_clear_empties_the_cache() -> None:
    cache = PermissionCache(clock=FakeClock())
    await cache.get_or_load("session-a", None, CountingLoader(_snapshot(uuid4())))

    await cache.clear()

    assert len(cache) == 0


def test_ttl_must_be_positive() -> None:
    with pytest.raises(ValueError):
        PermissionCache(ttl=timedelta(0))


def test_snapshot_from_payload_and_wildcards() -> None:
    user_id = uuid4()
    snapshot = PermissionSnapshot.from_payload(
        {
            "user_id": str(user_id),
            "is_super_admin": False,
            "permissions": [
                {"resource": "tickets", "action": "*", "scope": "subsidiary"},
                {"resource": "reports", "action": "view", "scope": "own"},
            ],
        }
    )

    assert snapshot.user_id == user_id
    assert snapshot.account_id is None
    assert snapshot.allows("tickets", "assign") is True
    assert snapshot.allows("reports", "view") is True
    assert snapshot.allows("reports", "export") is False


def test_snapshot_from_payload_requires_user_id() -> None:
    with pytest.raises(ValueError):
        PermissionSnapshot.from_payload({"permissions": []})


def test_super_admin_snapshot_allows_everything() -> None:
    snapshot = PermissionSnapshot(
        user_id=uuid4(), account_id=None, is_super_admin=True, permissions=frozenset()
    )

    assert snapshot.allows("system", "backup") is True
