"""FastAPI lifespan helpers for the Service Vault application."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.routing import Lifespan
from sqlalchemy import text
from sqlalchemy.engine import make_url

from servicevault_api.features.rbac.service import RbacService
from servicevault_api.infra.db import get_engine, get_sessionmaker, reset_database_state
from servicevault_api.settings import Settings

logger = logging.getLogger(__name__)


def create_application_lifespan(
    *,
    settings: Settings,
) -> Lifespan[FastAPI]:
    """Return the FastAPI lifespan handler used by the app factory."""

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        app.state.settings = settings
        safe_url = make_url(settings.database_dsn).render_as_string(hide_password=True)
        engine = get_engine(settings)

        try:
            # Fail fast if the schema hasn't been migrated.
            try:
                async with engine.connect() as connection:
                    await connection.execute(text("SELECT 1 FROM alembic_version"))
            except Exception as exc:
                logger.error(
                    "db.schema.missing",
                    extra={"database_url": safe_url},
                    exc_info=True,
                )
                raise RuntimeError(
                    "Database schema is not initialized. "
                    "Run `servicevault-api migrate` before starting the API."
                ) from exc

            if settings.sync_registry_on_startup:
                await _sync_rbac_registry(settings)

            yield
        finally:
            reset_database_state()

    return lifespan


async def _sync_rbac_registry(settings: Settings) -> None:
    session_factory = get_sessionmaker(settings)
    async with session_factory() as session:
        try:
            async with session.begin():
                await RbacService(session=session).sync_registry()
        except Exception:
            logger.warning("rbac.registry.sync.failed", exc_info=True)
            return
    logger.info("rbac.registry.sync.complete")


__all__ = ["create_application_lifespan"]
