"""Shared pytest fixtures for Service Vault tests."""

from __future__ import annotations

import os
from collections.abc import AsyncIterator, Iterator
from dataclasses import dataclass
from pathlib import Path
from uuid import UUID, uuid4

import pytest
import pytest_asyncio
from alembic import command
from alembic.config import Config
from asgi_lifespan import LifespanManager
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from servicevault_api.core.rbac.registry import (
    ACCOUNT_ADMIN_TEMPLATE,
    ACCOUNT_USER_TEMPLATE,
    SUPER_ADMIN_TEMPLATE,
)
from servicevault_api.core.rbac.types import AccountType
from servicevault_api.features.accounts.service import AccountsService
from servicevault_api.features.rbac.service import RbacService
from servicevault_api.features.users.service import UsersService
from servicevault_api.infra.db import (
    apply_migrations,
    get_sessionmaker,
    render_sync_url,
    reset_database_state,
)
from servicevault_api.main import create_app
from servicevault_api.settings import Settings, get_settings, reload_settings

_ENV_VARS = ("SV_DATABASE_DSN", "SV_LOGGING_LEVEL")


def pytest_collection_modifyitems(config, items) -> None:
    for item in items:
        path_str = str(Path(str(item.fspath)))
        if "/tests/integration/" in path_str:
            item.add_marker(pytest.mark.integration)
        elif "/tests/unit/" in path_str:
            item.add_marker(pytest.mark.unit)


def _alembic_config(settings: Settings) -> Config:
    config = Config(str(settings.alembic_ini_path))
    config.set_main_option("script_location", str(settings.alembic_migrations_dir))
    config.set_main_option("sqlalchemy.url", render_sync_url(settings))
    config.attributes["configure_logger"] = False
    return config


@pytest.fixture(scope="session")
def _database_url(tmp_path_factory: pytest.TempPathFactory) -> str:
    """Provide a file-backed SQLite database URL for the test session."""

    db_path = tmp_path_factory.mktemp("servicevault-db") / "servicevault.sqlite"
    return f"sqlite+aiosqlite:///{db_path}"


@pytest.fixture(scope="session", autouse=True)
def _configure_database(_database_url: str) -> Iterator[None]:
    """Apply Alembic migrations against the ephemeral test database."""

    os.environ["SV_DATABASE_DSN"] = _database_url
    os.environ["SV_LOGGING_LEVEL"] = "WARNING"
    settings = reload_settings()
    assert settings.database_dsn == _database_url
    reset_database_state()
    apply_migrations(settings)

    yield

    reset_database_state()
    command.downgrade(_alembic_config(settings), "base")
    for env_var in _ENV_VARS:
        os.environ.pop(env_var, None)
    reload_settings()


@pytest.fixture(scope="session")
def app(_configure_database: None) -> FastAPI:
    """Return an application instance for integration-style tests."""

    return create_app()


@pytest_asyncio.fixture()
async def async_client(app: FastAPI) -> AsyncIterator[AsyncClient]:
    """Provide an HTTPX async client bound to the running application."""

    async with LifespanManager(app):
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://testserver") as client:
            yield client


@pytest_asyncio.fixture()
async def session() -> AsyncIterator[AsyncSession]:
    """Session with the registry synced; everything it writes is rolled back."""

    session_factory = get_sessionmaker(get_settings())
    async with session_factory() as bootstrap:
        await RbacService(session=bootstrap).sync_registry()
        await bootstrap.commit()

    async with session_factory() as db_session:
        try:
            yield db_session
        finally:
            await db_session.rollback()


@dataclass(frozen=True)
class SeededIdentity:
    """Committed users, accounts and role assignments for HTTP tests.

    ``organization`` owns ``subsidiary``; ``other_account`` is unrelated.
    ``account_admin`` administers ``organization`` and ``account_user`` is a
    plain member of ``subsidiary``.
    """

    super_admin_id: UUID
    account_admin_id: UUID
    account_user_id: UUID
    outsider_id: UUID
    organization_id: UUID
    subsidiary_id: UUID
    other_account_id: UUID
    account_user_membership_id: UUID
    super_admin_template_id: UUID
    account_admin_template_id: UUID
    account_user_template_id: UUID

    def headers(self, user_id: UUID) -> dict[str, str]:
        return {get_settings().actor_header: str(user_id)}


@pytest_asyncio.fixture()
async def seed_identity() -> SeededIdentity:
    """Create baseline users, accounts and memberships for identity tests."""

    session_factory = get_sessionmaker(get_settings())
    async with session_factory() as db_session:
        rbac = RbacService(session=db_session)
        users = UsersService(session=db_session)
        accounts = AccountsService(session=db_session)
        await rbac.sync_registry()

        suffix = uuid4().hex[:8]
        super_admin = await users.create_user(email=f"root+{suffix}@example.test")
        account_admin = await users.create_user(email=f"admin+{suffix}@example.test")
        account_user = await users.create_user(email=f"member+{suffix}@example.test")
        outsider = await users.create_user(email=f"outsider+{suffix}@example.test")

        organization = await accounts.create_account(name=f"Acme {suffix}")
        subsidiary = await accounts.create_account(
            name=f"Acme West {suffix}",
            account_type=AccountType.SUBSIDIARY,
            parent_id=organization.id,
        )
        other_account = await accounts.create_account(name=f"Globex {suffix}")

        super_template = await rbac.get_role_template_by_name(SUPER_ADMIN_TEMPLATE)
        admin_template = await rbac.get_role_template_by_name(ACCOUNT_ADMIN_TEMPLATE)
        user_template = await rbac.get_role_template_by_name(ACCOUNT_USER_TEMPLATE)
        assert super_template and admin_template and user_template

        await rbac.grant_system_role(user_id=super_admin.id, role_template_id=super_template.id)
        await rbac.create_membership(
            user_id=account_admin.id,
            account_id=organization.id,
            role_template_ids=[admin_template.id],
        )
        membership = await rbac.create_membership(
            user_id=account_user.id,
            account_id=subsidiary.id,
            role_template_ids=[user_template.id],
        )
        await db_session.commit()

        return SeededIdentity(
            super_admin_id=super_admin.id,
            account_admin_id=account_admin.id,
            account_user_id=account_user.id,
            outsider_id=outsider.id,
            organization_id=organization.id,
            subsidiary_id=subsidiary.id,
            other_account_id=other_account.id,
            account_user_membership_id=membership.id,
            super_admin_template_id=super_template.id,
            account_admin_template_id=admin_template.id,
            account_user_template_id=user_template.id,
        )
