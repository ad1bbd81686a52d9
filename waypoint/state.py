"""Conversation state machine.

``transition`` is a pure function: it takes the current ConversationSession
and one event and returns the next session value. Side effects (HTTP calls,
polling, persistence) belong to the controller.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Union

from waypoint.models import (
    ConversationSession,
    RunStatus,
    SavedConversation,
    StatusSnapshot,
    TimelineMessage,
    utcnow,
)


@dataclass(frozen=True)
class OperatorMessageSent:
    """Operator submitted text: starts a run, or answers one waiting for input."""
    content: str
    timestamp: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class SnapshotReceived:
    """A status snapshot arrived from start, respond or a poll."""
    snapshot: StatusSnapshot
    received_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class TransportFailed:
    """A start, respond or poll call failed below the workflow layer."""
    message: str
    timestamp: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class ConversationReset:
    """Operator started a new conversation."""


@dataclass(frozen=True)
class ConversationRestored:
    """Operator reopened a saved timeline."""
    saved: SavedConversation


@dataclass(frozen=True)
class RepositorySelected:
    """Operator chose the repository for the next new run."""
    repository_ref: str


Event = Union[
    OperatorMessageSent,
    SnapshotReceived,
    TransportFailed,
    ConversationReset,
    ConversationRestored,
    RepositorySelected,
]


def parse_timestamp(value: str | None, received_at: datetime) -> datetime:
    """Parse a snapshot timestamp, falling back to the moment of receipt.

    Accepts ISO-8601 (with or without ``Z``/offset) and epoch seconds or
    milliseconds. Naive values are taken as UTC.
    """
    if value is None or not str(value).strip():
        return received_at
    text = str(value).strip()
    try:
        number = float(text)
    except ValueError:
        number = None
    if number is not None:
        if abs(number) > 1e11:
            number = number / 1000.0
        try:
            return datetime.fromtimestamp(number, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return received_at
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return received_at
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def can_send(session: ConversationSession) -> bool:
    """Return True if the session accepts a new operator message."""
    return session.accepting_input and not session.is_run_active


def transition(session: ConversationSession, event: Event) -> ConversationSession:
    """Apply one event and return the resulting session."""
    if isinstance(event, OperatorMessageSent):
        return _operator_message(session, event)
    if isinstance(event, SnapshotReceived):
        return _snapshot(session, event)
    if isinstance(event, TransportFailed):
        return _transport_failed(session, event)
    if isinstance(event, ConversationReset):
        return ConversationSession(repository_ref=session.repository_ref)
    if isinstance(event, ConversationRestored):
        saved = event.saved
        return ConversationSession(
            repository_ref=saved.repository_ref,
            timeline=list(saved.timeline),
            history_key=saved.id,
        )
    if isinstance(event, RepositorySelected):
        return session.model_copy(update={"repository_ref": event.repository_ref.strip()})
    raise TypeError(f"Unknown conversation event: {event!r}")


def _operator_message(
    session: ConversationSession, event: OperatorMessageSent
) -> ConversationSession:
    if not can_send(session):
        return session
    message = TimelineMessage(role="operator", content=event.content, timestamp=event.timestamp)
    return session.model_copy(
        update={
            "timeline": [*session.timeline, message],
            "is_run_active": True,
            "accepting_input": False,
            "status": RunStatus.RUNNING,
        }
    )


def _snapshot(session: ConversationSession, event: SnapshotReceived) -> ConversationSession:
    snapshot = event.snapshot
    # Late responses for a run we already left are dropped.
    if not session.is_run_active:
        return session
    if session.conversation_id is not None and snapshot.conversation_id != session.conversation_id:
        return session

    timeline = reconcile(session.timeline, snapshot, event.received_at)
    conversation_id = session.conversation_id or snapshot.conversation_id
    update: dict = {
        "timeline": timeline,
        "status": snapshot.status,
        "history_key": session.history_key or snapshot.conversation_id,
    }
    if snapshot.status == RunStatus.RUNNING:
        update.update(conversation_id=conversation_id, is_run_active=True, accepting_input=False)
    elif snapshot.status == RunStatus.WAITING_FOR_INPUT:
        update.update(conversation_id=conversation_id, is_run_active=False, accepting_input=True)
    else:
        update.update(conversation_id=None, is_run_active=False, accepting_input=True)
    return session.model_copy(update=update)


def reconcile(
    timeline: list[TimelineMessage], snapshot: StatusSnapshot, received_at: datetime
) -> list[TimelineMessage]:
    """Fold a snapshot into the timeline.

    Successive updates from the same agent replace the last agent entry in
    place (keeping its id); anything else appends a new agent entry.
    """
    timestamp = parse_timestamp(snapshot.timestamp, received_at)
    last = timeline[-1] if timeline else None
    if last is not None and last.role == "agent" and last.agent_name == snapshot.agent_name:
        updated = last.model_copy(
            update={
                "content": snapshot.display_text,
                "status": snapshot.status,
                "progress": snapshot.progress,
                "timestamp": timestamp,
            }
        )
        return [*timeline[:-1], updated]
    entry = TimelineMessage(
        role="agent",
        content=snapshot.display_text,
        agent_name=snapshot.agent_name,
        status=snapshot.status,
        progress=snapshot.progress,
        timestamp=timestamp,
    )
    return [*timeline, entry]


def _transport_failed(session: ConversationSession, event: TransportFailed) -> ConversationSession:
    entry = TimelineMessage(
        role="agent",
        content=f"Error: {event.message}",
        status=RunStatus.FAILED,
        timestamp=event.timestamp,
    )
    timeline = [*session.timeline, entry]
    return session.model_copy(
        update={
            "timeline": timeline,
            "history_key": session.history_key or timeline[0].id,
            "conversation_id": None,
            "is_run_active": False,
            "accepting_input": True,
            "status": RunStatus.FAILED,
        }
    )
