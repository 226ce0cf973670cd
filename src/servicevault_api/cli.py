"""`servicevault-api` command line interface."""

from __future__ import annotations

import asyncio
import json
from typing import Annotated

import typer
import uvicorn

from servicevault_api.common.logging import setup_logging
from servicevault_api.features.rbac.exceptions import (
    PermissionStoreUnavailableError,
    PermissionValidationError,
)
from servicevault_api.features.rbac.resolver import ResolvedPermissions
from servicevault_api.features.rbac.service import RbacService
from servicevault_api.infra.db import apply_migrations, get_sessionmaker, reset_database_state
from servicevault_api.settings import get_settings

app = typer.Typer(
    add_completion=False,
    no_args_is_help=True,
    help="Service Vault access API (serve, migrate, sync-registry, check, resolve).",
)

AccountOption = Annotated[
    str | None,
    typer.Option("--account", "-a", help="Evaluate within this account id."),
]


async def _run_with_service(operation, *, commit: bool = False):
    settings = get_settings()
    session_factory = get_sessionmaker(settings)
    try:
        async with session_factory() as session:
            service = RbacService(session=session)
            result = await operation(service)
            if commit:
                await session.commit()
            return result
    finally:
        reset_database_state()


def _fail(message: str) -> typer.Exit:
    typer.echo(f"error: {message}", err=True)
    return typer.Exit(code=1)


@app.command(help="Run the API with uvicorn.")
def serve(
    host: Annotated[str | None, typer.Option(help="Bind host.")] = None,
    port: Annotated[int | None, typer.Option(help="Bind port.")] = None,
    reload: Annotated[bool, typer.Option(help="Reload on code changes.")] = False,
) -> None:
    settings = get_settings()
    uvicorn.run(
        "servicevault_api.main:create_app",
        factory=True,
        host=host or settings.server_host,
        port=port or settings.server_port,
        reload=reload,
        log_level=settings.logging_level.lower(),
    )


@app.command(help="Apply database migrations.")
def migrate(
    revision: Annotated[str, typer.Argument(help="Target revision.")] = "head",
) -> None:
    settings = get_settings()
    setup_logging(settings)
    apply_migrations(settings, revision=revision)
    typer.echo(f"migrated to {revision}")


@app.command(name="sync-registry", help="Sync the permission catalog and seeded role templates.")
def sync_registry() -> None:
    setup_logging(get_settings())

    async def _sync(service: RbacService) -> None:
        await service.sync_registry()

    asyncio.run(_run_with_service(_sync, commit=True))
    typer.echo("permission registry synced")


@app.command(help="Check whether USER may perform ACTION on RESOURCE.")
def check(
    user: Annotated[str, typer.Argument(help="User id.")],
    resource: Annotated[str, typer.Argument(help="Resource, e.g. tickets.")],
    action: Annotated[str, typer.Argument(help="Action, e.g. view.")],
    account: AccountOption = None,
) -> None:
    async def _check(service: RbacService) -> bool:
        return await service.has_permission(user, resource, action, account)

    try:
        granted = asyncio.run(_run_with_service(_check))
    except (PermissionValidationError, PermissionStoreUnavailableError) as exc:
        raise _fail(str(exc)) from exc

    typer.echo("granted" if granted else "denied")
    if not granted:
        raise typer.Exit(code=2)


@app.command(help="Print the effective permissions of USER as JSON.")
def resolve(
    user: Annotated[str, typer.Argument(help="User id.")],
    account: AccountOption = None,
) -> None:
    async def _resolve(service: RbacService) -> ResolvedPermissions:
        return await service.resolve(user, account)

    try:
        resolved = asyncio.run(_run_with_service(_resolve))
    except (PermissionValidationError, PermissionStoreUnavailableError) as exc:
        raise _fail(str(exc)) from exc

    payload = {
        "user_id": str(resolved.user_id),
        "account_id": str(resolved.account_id) if resolved.account_id else None,
        "is_super_admin": resolved.is_super_admin,
        "permissions": [
            {"resource": grant.resource, "action": grant.action, "scope": grant.scope.value}
            for grant in resolved.sorted_permissions()
        ],
    }
    typer.echo(json.dumps(payload, indent=2))


def main() -> None:
    app()


__all__ = ["app", "main"]
