"""structlog configuration shared by the console and library code."""

from __future__ import annotations

import logging
import re
import sys
from typing import Any, Callable

import structlog

from waypoint.settings import settings

_SENSITIVE_KEYS = ("authorization", "token", "password", "secret", "api_key")
_BEARER_RE = re.compile(r"(Bearer\s+)[A-Za-z0-9._~+/=-]+", re.IGNORECASE)
REDACTED = "[REDACTED]"


def _redact(value: Any) -> Any:
    if isinstance(value, dict):
        return {
            k: REDACTED if _is_sensitive(k) else _redact(v) for k, v in value.items()
        }
    if isinstance(value, (list, tuple)):
        return type(value)(_redact(v) for v in value)
    if isinstance(value, str):
        return _BEARER_RE.sub(rf"\1{REDACTED}", value)
    return value


def _is_sensitive(key: Any) -> bool:
    return isinstance(key, str) and any(s in key.lower() for s in _SENSITIVE_KEYS)


def make_log_redactor() -> Callable[[Any, str, dict], dict]:
    """Return a structlog processor that masks credentials in event dicts."""

    def redactor(logger: Any, method_name: str, event_dict: dict) -> dict:
        return _redact(event_dict)

    return redactor


def configure_logging() -> None:
    """Configure structlog (and stdlib logging) from WAYPOINT_LOG_* settings."""
    level_name = settings.log_level()
    level = logging.getLevelName(level_name)
    if not isinstance(level, int):
        level = logging.INFO

    logging.basicConfig(stream=sys.stderr, level=level, format="%(message)s")

    if settings.log_format() == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            make_log_redactor(),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )
