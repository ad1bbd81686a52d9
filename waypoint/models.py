"""Pydantic models for workflow snapshots, the timeline and saved sessions."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

# Older orchestrator builds report the waiting state under this name.
_LEGACY_STATUS_NAMES = {"WAITING_FOR_DEVELOPER": "WAITING_FOR_INPUT"}


class RunStatus(str, Enum):
    """Lifecycle states reported by the remote workflow."""
    RUNNING = "RUNNING"
    WAITING_FOR_INPUT = "WAITING_FOR_INPUT"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (RunStatus.COMPLETED, RunStatus.FAILED)


class StatusSnapshot(BaseModel):
    """One reported state of a run, as returned by start/status/respond."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    conversation_id: str = Field(
        min_length=1,
        validation_alias=AliasChoices("conversation_id", "conversationId"),
    )
    status: RunStatus
    message: str = ""
    agent_name: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("agent_name", "agentName", "currentAgent"),
    )
    progress: Optional[float] = None
    error: Optional[str] = None
    timestamp: Optional[str] = None

    @field_validator("status", mode="before")
    @classmethod
    def _normalize_status(cls, value: object) -> object:
        if isinstance(value, str):
            name = value.strip().upper()
            return _LEGACY_STATUS_NAMES.get(name, name)
        return value

    @field_validator("message", mode="before")
    @classmethod
    def _message_default(cls, value: object) -> object:
        return "" if value is None else value

    @field_validator("agent_name", mode="before")
    @classmethod
    def _blank_agent_is_none(cls, value: object) -> object:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("progress")
    @classmethod
    def _clamp_progress(cls, value: Optional[float]) -> Optional[float]:
        if value is None:
            return None
        return min(max(value, 0.0), 1.0)

    @field_validator("timestamp", mode="before")
    @classmethod
    def _timestamp_to_str(cls, value: object) -> object:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value

    @property
    def display_text(self) -> str:
        """Text shown for this snapshot; falls back to the error field."""
        if self.message.strip():
            return self.message
        return self.error or ""


def new_message_id() -> str:
    return f"msg_{uuid.uuid4().hex[:12]}"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TimelineMessage(BaseModel):
    """An operator- or agent-authored entry in the conversation timeline."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_message_id)
    role: Literal["operator", "agent"]
    content: str
    agent_name: Optional[str] = None
    status: Optional[RunStatus] = None
    progress: Optional[float] = None
    timestamp: datetime = Field(default_factory=utcnow)


class ConversationSession(BaseModel):
    """The single live conversation owned by the controller."""

    conversation_id: Optional[str] = None
    repository_ref: str = ""
    timeline: list[TimelineMessage] = Field(default_factory=list)
    accepting_input: bool = True
    is_run_active: bool = False
    status: Optional[RunStatus] = None
    history_key: Optional[str] = None

    @property
    def is_idle(self) -> bool:
        return self.conversation_id is None and not self.is_run_active

    @property
    def should_poll(self) -> bool:
        return self.conversation_id is not None and self.is_run_active


def conversation_title(timeline: list[TimelineMessage]) -> str:
    """Derive a display title from the first operator message."""
    for message in timeline:
        if message.role == "operator":
            content = message.content
            if len(content) > 50:
                return content[:50] + "..."
            return content
    return "Untitled Conversation"


class SavedConversation(BaseModel):
    """A timeline persisted by the history store."""

    id: str
    repository_ref: str
    timeline: list[TimelineMessage]
    saved_at: datetime

    @property
    def title(self) -> str:
        return conversation_title(self.timeline)
