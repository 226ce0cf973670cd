"""Async engine management."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from alembic import command
from alembic.config import Config
from sqlalchemy import event, text
from sqlalchemy.engine import URL, make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.pool import NullPool, StaticPool

from servicevault_api.settings import Settings, get_settings

_ENGINE: AsyncEngine | None = None
_ENGINE_KEY: tuple[Any, ...] | None = None

logger = logging.getLogger(__name__)


def build_database_url(settings: Settings) -> URL:
    return make_url(settings.database_dsn)


def _cache_key(settings: Settings) -> tuple[Any, ...]:
    url = build_database_url(settings)
    return (
        url.render_as_string(hide_password=False),
        settings.database_echo,
        settings.database_pool_size,
        settings.database_max_overflow,
        settings.database_pool_timeout,
        settings.database_sqlite_begin_mode,
    )


def is_sqlite_memory_url(url: URL) -> bool:
    database = (url.database or "").strip()
    if not database or database == ":memory:":
        return True
    if database.startswith("file:"):
        query = dict(url.query or {})
        if query.get("mode") == "memory":
            return True
    return False


def ensure_sqlite_database_directory(url: URL) -> None:
    """Ensure a filesystem-backed SQLite database can be created."""

    database = (url.database or "").strip()
    if not database or database == ":memory:" or database.startswith("file:"):
        return
    path = Path(database)
    if not path.is_absolute():
        path = Path.cwd() / path
    path.parent.mkdir(parents=True, exist_ok=True)


def _create_engine(settings: Settings) -> AsyncEngine:
    url = build_database_url(settings)
    engine_kwargs: dict[str, Any] = {"echo": settings.database_echo}

    if url.get_backend_name() == "sqlite":
        engine_kwargs["connect_args"] = {
            "check_same_thread": False,
            "timeout": settings.database_pool_timeout,
        }
        if is_sqlite_memory_url(url):
            engine_kwargs["poolclass"] = StaticPool
        else:
            ensure_sqlite_database_directory(url)
            engine_kwargs["poolclass"] = NullPool
    else:
        engine_kwargs["pool_pre_ping"] = True
        engine_kwargs["pool_size"] = settings.database_pool_size
        engine_kwargs["max_overflow"] = settings.database_max_overflow
        engine_kwargs["pool_timeout"] = settings.database_pool_timeout

    engine = create_async_engine(url.render_as_string(hide_password=False), **engine_kwargs)

    if url.get_backend_name() == "sqlite":
        begin_mode = settings.database_sqlite_begin_mode

        @event.listens_for(engine.sync_engine, "connect")
        def _set_sqlite_pragma(dbapi_connection, _connection_record) -> None:
            if begin_mode:
                # SQLAlchemy emits BEGIN itself so SAVEPOINTs nest correctly.
                dbapi_connection.isolation_level = None
            cursor = dbapi_connection.cursor()
            try:
                cursor.execute("PRAGMA foreign_keys=ON")
                cursor.execute("PRAGMA busy_timeout=30000")
            finally:
                cursor.close()

        if begin_mode:

            @event.listens_for(engine.sync_engine, "begin")
            def _sqlite_begin(connection) -> None:
                connection.exec_driver_sql(f"BEGIN {begin_mode}")

    return engine


def get_engine(settings: Settings | None = None) -> AsyncEngine:
    """Return a cached async engine matching the active settings."""

    global _ENGINE, _ENGINE_KEY
    settings = settings or get_settings()
    key = _cache_key(settings)
    if _ENGINE is None or _ENGINE_KEY != key:
        if _ENGINE is not None:
            _ENGINE.sync_engine.dispose()
        _ENGINE = _create_engine(settings)
        _ENGINE_KEY = key
    return _ENGINE


def engine_cache_key(settings: Settings) -> tuple[Any, ...]:
    """Expose the cache key used for engine/session reuse."""

    return _cache_key(settings)


def reset_database_state() -> None:
    """Dispose the cached engine and associated session factory."""

    global _ENGINE, _ENGINE_KEY
    if _ENGINE is not None:
        _ENGINE.sync_engine.dispose()
    _ENGINE = None
    _ENGINE_KEY = None

    from . import session as session_module

    session_module.reset_session_state()


def render_sync_url(database: Settings | str) -> str:
    """Return a synchronous SQLAlchemy URL for Alembic migrations."""

    if isinstance(database, Settings):
        url = build_database_url(database)
    else:
        url = make_url(database)
    backend = url.get_backend_name()
    driver = "postgresql+psycopg" if backend == "postgresql" else backend
    return url.set(drivername=driver).render_as_string(hide_password=False)


def _load_alembic_config(settings: Settings) -> Config:
    config = Config(str(settings.alembic_ini_path))
    config.set_main_option("script_location", str(settings.alembic_migrations_dir))
    config.set_main_option("sqlalchemy.url", render_sync_url(settings).replace("%", "%%"))
    config.attributes["configure_logger"] = False
    return config


def apply_migrations(settings: Settings | None = None, *, revision: str = "head") -> None:
    """Upgrade the configured database to ``revision`` using Alembic."""

    resolved = settings or get_settings()
    url = build_database_url(resolved)
    if url.get_backend_name() == "sqlite":
        ensure_sqlite_database_directory(url)
    logger.info(
        "db.migrate.start",
        extra={"database_url": url.render_as_string(hide_password=True), "revision": revision},
    )
    command.upgrade(_load_alembic_config(resolved), revision)
    logger.info("db.migrate.complete", extra={"revision": revision})


async def check_database_ready(settings: Settings | None = None) -> None:
    """Verify database connectivity without running migrations."""

    engine = get_engine(settings or get_settings())
    try:
        async with engine.connect() as connection:
            await connection.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        logger.warning("database.readiness.failed", exc_info=exc)
        raise


__all__ = [
    "apply_migrations",
    "build_database_url",
    "check_database_ready",
    "engine_cache_key",
    "ensure_sqlite_database_directory",
    "get_engine",
    "is_sqlite_memory_url",
    "render_sync_url",
    "reset_database_state",
]
