"""HTTP client that mirrors the caller's permissions for UI visibility checks."""

from __future__ import annotations

import logging
from uuid import UUID

import httpx

from servicevault_api.common.ids import parse_uuid
from servicevault_api.common.logging import log_context
from servicevault_api.core.rbac.registry import is_registered
from servicevault_api.settings import Settings, get_settings

from .cache import PermissionCache, PermissionSnapshot
from .exceptions import PermissionStoreUnavailableError, PermissionValidationError

logger = logging.getLogger(__name__)

ME_PERMISSIONS_PATH = "/api/v1/me/permissions"


class PermissionsClient:
    """Fetches ``/me/permissions`` once per session and account, then answers locally.

    Answers are for showing or hiding UI only. The server re-checks every
    mutating request.
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        *,
        user_id: UUID | str,
        session_key: str,
        cache: PermissionCache | None = None,
        settings: Settings | None = None,
    ) -> None:
        parsed = parse_uuid(user_id)
        if parsed is None:
            raise PermissionValidationError("user_id must be a valid identifier")
        if not session_key:
            raise PermissionValidationError("session_key is required")
        self._settings = settings or get_settings()
        self._http = http
        self._user_id = parsed
        self._session_key = session_key
        self._cache = cache or PermissionCache(ttl=self._settings.permission_cache_ttl)

    @property
    def user_id(self) -> UUID:
        return self._user_id

    @property
    def session_key(self) -> str:
        return self._session_key

    @property
    def cache(self) -> PermissionCache:
        return self._cache

    async def snapshot(self, account_id: UUID | str | None = None) -> PermissionSnapshot:
        account_uuid = _optional_account(account_id)
        return await self._cache.get_or_load(
            self._session_key,
            account_uuid,
            lambda: self._fetch(account_uuid),
        )

    async def has_permission(
        self,
        resource: str,
        action: str,
        account_id: UUID | str | None = None,
    ) -> bool:
        resource = (resource or "").strip()
        action = (action or "").strip()
        if not resource or not action:
            raise PermissionValidationError("resource and action are required")
        if not is_registered(resource, action):
            raise PermissionValidationError(f"Permission '{resource}:{action}' is not registered")
        snapshot = await self.snapshot(account_id)
        return snapshot.allows(resource, action)

    async def refresh(self) -> None:
        """Forget everything cached; the next check refetches."""

        await self._cache.clear()

    async def notify_role_change(self, user_id: UUID | str | None = None) -> None:
        """Drop cached snapshots after a role or membership change."""

        target = parse_uuid(user_id) if user_id is not None else self._user_id
        if target is None:
            raise PermissionValidationError("user_id must be a valid identifier")
        await self._cache.invalidate_user(target)

    async def reauthenticate(self, session_key: str) -> None:
        """Switch to a new session key, discarding snapshots of the old one."""

        if not session_key:
            raise PermissionValidationError("session_key is required")
        await self._cache.invalidate_session(self._session_key)
        self._session_key = session_key

    async def _fetch(self, account_id: UUID | None) -> PermissionSnapshot:
        params = {"account_id": str(account_id)} if account_id is not None else None
        headers = {self._settings.actor_header: str(self._user_id)}
        try:
            response = await self._http.get(ME_PERMISSIONS_PATH, params=params, headers=headers)
        except httpx.HTTPError as exc:
            logger.warning(
                "rbac.client.fetch_failed",
                extra=log_context(user_id=self._user_id, account_id=account_id, error=str(exc)),
            )
            raise PermissionStoreUnavailableError("Permission snapshot could not be fetched") from exc

        if response.status_code == httpx.codes.UNPROCESSABLE_ENTITY:
            raise PermissionValidationError(_detail(response))
        if response.is_server_error:
            raise PermissionStoreUnavailableError(_detail(response))
        response.raise_for_status()
        return PermissionSnapshot.from_payload(response.json())


def _optional_account(account_id: UUID | str | None) -> UUID | None:
    if account_id is None:
        return None
    parsed = parse_uuid(account_id)
    if parsed is None:
        raise PermissionValidationError("account_id must be a valid identifier")
    return parsed


def _detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    detail = body.get("detail") if isinstance(body, dict) else None
    return str(detail or response.reason_phrase)


__all__ = ["ME_PERMISSIONS_PATH", "PermissionsClient"]
