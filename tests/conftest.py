"""Shared fixtures for waypoint tests."""

from __future__ import annotations

import pytest

from waypoint.db import reset_engine
from waypoint.history import SqlConversationHistory


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture(autouse=True)
def _isolated_env(tmp_path, monkeypatch):
    """Keep tests away from the operator's real data dir and settings."""
    monkeypatch.setenv("WAYPOINT_DATA_DIR", str(tmp_path / "data"))
    for name in ("WAYPOINT_API_URL", "WAYPOINT_API_TOKEN", "WAYPOINT_REPO_HOSTS", "WAYPOINT_POLL_INTERVAL_MS"):
        monkeypatch.delenv(name, raising=False)
    reset_engine()
    yield
    reset_engine()


@pytest.fixture
def fresh_history() -> SqlConversationHistory:
    """A history store backed by a fresh SQLite file under tmp_path."""
    return SqlConversationHistory()
