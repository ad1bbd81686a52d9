"""Database engine and session management for conversation history."""

from __future__ import annotations

import os

from sqlalchemy import Engine
from sqlmodel import Session as DBSession
from sqlmodel import SQLModel, create_engine

from waypoint.settings import settings

# Lazy-initialized engine
_engine: Engine | None = None


def get_db_url() -> str:
    """Return the SQLite URL inside the configured data dir."""
    db_path = os.path.join(settings.data_dir(), "history.db")
    return f"sqlite:///{db_path}"


def _get_engine() -> Engine:
    """Get or create the database engine."""
    global _engine
    if _engine is None:
        os.makedirs(settings.data_dir(), exist_ok=True)
        _engine = create_engine(
            get_db_url(),
            echo=False,
            connect_args={"check_same_thread": False},
        )
    return _engine


def reset_engine() -> None:
    """Drop the cached engine so the next use picks up the current data dir.

    Used by tests after pointing WAYPOINT_DATA_DIR at a temporary directory.
    """
    global _engine
    if _engine is not None:
        _engine.dispose()
        _engine = None


def get_session() -> DBSession:
    """Get a new database session."""
    return DBSession(_get_engine())


def init_db() -> None:
    """Create all tables if they don't exist."""
    # Table classes must be imported so they register on the metadata.
    from waypoint import history  # noqa: F401

    SQLModel.metadata.create_all(bind=_get_engine())


__all__ = [
    "get_session",
    "get_db_url",
    "init_db",
    "reset_engine",
]
