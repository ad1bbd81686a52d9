"""Environment-driven settings, read at call time so tests can override them."""

from __future__ import annotations

import os
from pathlib import Path


class Settings:
    """Accessors for WAYPOINT_* environment variables."""

    def data_dir(self) -> str:
        value = os.environ.get("WAYPOINT_DATA_DIR", "").strip()
        if value:
            return os.path.expanduser(value)
        return str(Path.home() / ".waypoint")

    def api_url(self) -> str:
        value = os.environ.get("WAYPOINT_API_URL", "").strip()
        return (value or "http://127.0.0.1:8080/api/v1").rstrip("/")

    def api_token(self) -> str:
        return os.environ.get("WAYPOINT_API_TOKEN", "").strip()

    def poll_interval_s(self) -> float:
        """Polling interval in seconds (configured in milliseconds)."""
        raw = os.environ.get("WAYPOINT_POLL_INTERVAL_MS", "2000")
        try:
            value = int(raw)
        except ValueError:
            value = 2000
        return max(value, 1) / 1000.0

    def http_timeout_s(self) -> float:
        raw = os.environ.get("WAYPOINT_HTTP_TIMEOUT_SECONDS", "30")
        try:
            return float(raw)
        except ValueError:
            return 30.0

    def repo_hosts(self) -> list[str]:
        """Allowed repository hosts; empty means any well-formed host."""
        raw = os.environ.get("WAYPOINT_REPO_HOSTS", "")
        return [h.strip().lower() for h in raw.split(",") if h.strip()]

    def log_level(self) -> str:
        return os.environ.get("WAYPOINT_LOG_LEVEL", "INFO").strip().upper() or "INFO"

    def log_format(self) -> str:
        return os.environ.get("WAYPOINT_LOG_FORMAT", "console").strip().lower()


settings = Settings()
