"""Database plumbing: engine, sessions, declarative base and migrations."""

from .base import NAMING_CONVENTION, Base, PrimaryKeyMixin, TimestampsMixin, metadata
from .engine import (
    apply_migrations,
    build_database_url,
    check_database_ready,
    get_engine,
    render_sync_url,
    reset_database_state,
)
from .session import get_session, get_sessionmaker, reset_session_state

__all__ = [
    "Base",
    "NAMING_CONVENTION",
    "PrimaryKeyMixin",
    "TimestampsMixin",
    "metadata",
    "apply_migrations",
    "build_database_url",
    "check_database_ready",
    "get_engine",
    "render_sync_url",
    "reset_database_state",
    "get_session",
    "get_sessionmaker",
    "reset_session_state",
]
