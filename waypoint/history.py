"""Conversation history persistence.

The controller treats history as best-effort: every call it makes through
``ConversationHistory`` is wrapped so that a failing store is logged and
otherwise ignored.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from threading import Lock
from typing import Protocol, Sequence

import structlog
from pydantic import ValidationError
from sqlmodel import Field, SQLModel, select

from waypoint.db import get_session as get_db_session
from waypoint.db import init_db
from waypoint.models import SavedConversation, TimelineMessage, conversation_title

logger = structlog.get_logger("waypoint.history")

_TS_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


class ConversationRecord(SQLModel, table=True):
    """One saved timeline, keyed by the conversation id it was started under."""

    __tablename__ = "conversations"

    id: str = Field(primary_key=True)
    repository_ref: str = ""
    title: str = ""
    message_count: int = 0
    timeline: str = "[]"
    saved_at: str = Field(index=True)


class ConversationHistory(Protocol):
    """Capability interface for durable conversation history."""

    def save(
        self, conversation_id: str, repository_ref: str, timeline: Sequence[TimelineMessage]
    ) -> None: ...

    def load_all(self) -> list[SavedConversation]: ...

    def delete(self, conversation_id: str) -> bool: ...


class SqlConversationHistory:
    """SQLite-backed history store living in the configured data dir."""

    def __init__(self) -> None:
        self._db_lock = Lock()
        init_db()

    def _now(self) -> str:
        return datetime.now(timezone.utc).strftime(_TS_FORMAT)

    def _parse_ts(self, value: str) -> datetime:
        return datetime.strptime(value, _TS_FORMAT).replace(tzinfo=timezone.utc)

    def save(
        self, conversation_id: str, repository_ref: str, timeline: Sequence[TimelineMessage]
    ) -> None:
        """Insert or overwrite the saved timeline for a conversation."""
        items = list(timeline)
        record = ConversationRecord(
            id=conversation_id,
            repository_ref=repository_ref,
            title=conversation_title(items),
            message_count=len(items),
            timeline=json.dumps([m.model_dump(mode="json") for m in items]),
            saved_at=self._now(),
        )
        with self._db_lock:
            with get_db_session() as db:
                db.merge(record)
                db.commit()
        logger.debug("Conversation saved", conversation_id=conversation_id, messages=len(items))

    def load_all(self) -> list[SavedConversation]:
        """Return saved conversations, most recently saved first.

        Rows that no longer decode are skipped.
        """
        with self._db_lock:
            with get_db_session() as db:
                rows = db.exec(
                    select(ConversationRecord).order_by(ConversationRecord.saved_at.desc())
                ).all()
        saved: list[SavedConversation] = []
        for row in rows:
            try:
                timeline = [TimelineMessage.model_validate(item) for item in json.loads(row.timeline)]
                saved_at = self._parse_ts(row.saved_at)
            except (json.JSONDecodeError, ValidationError, ValueError, TypeError):
                logger.warning("Skipping unreadable saved conversation", conversation_id=row.id)
                continue
            saved.append(
                SavedConversation(
                    id=row.id,
                    repository_ref=row.repository_ref,
                    timeline=timeline,
                    saved_at=saved_at,
                )
            )
        return saved

    def delete(self, conversation_id: str) -> bool:
        """Remove a saved conversation; returns False if it did not exist."""
        with self._db_lock:
            with get_db_session() as db:
                record = db.get(ConversationRecord, conversation_id)
                if record is None:
                    return False
                db.delete(record)
                db.commit()
        logger.info("Saved conversation deleted", conversation_id=conversation_id)
        return True
