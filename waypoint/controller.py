"""Conversation controller: the owner of the live session and its side effects.

The controller feeds operator actions and workflow snapshots through the pure
state machine in ``waypoint.state``, keeps exactly one polling cycle running
while a run is in flight, saves timelines at checkpoints, and broadcasts
timeline changes to subscriber queues for whatever renders them.
"""

from __future__ import annotations

import asyncio
from contextlib import contextmanager
from functools import partial
from pathlib import Path
from typing import Iterable, Sequence

import structlog

from waypoint.client import WorkflowApi
from waypoint.errors import InputValidationError, TransportError
from waypoint.history import ConversationHistory
from waypoint.log_detection import is_valid_log_file, split_requirement_and_logs
from waypoint.models import ConversationSession, SavedConversation, StatusSnapshot
from waypoint.poller import PollingHandle, StatusPoller
from waypoint.settings import settings
from waypoint.state import (
    ConversationReset,
    ConversationRestored,
    Event,
    OperatorMessageSent,
    RepositorySelected,
    SnapshotReceived,
    TransportFailed,
    can_send,
    transition,
)
from waypoint.validation import is_valid_repository_ref

logger = structlog.get_logger("waypoint.controller")


@contextmanager
def _conversation_logging_context(conversation_id: str | None):
    structlog.contextvars.bind_contextvars(conversation_id=conversation_id)
    try:
        yield
    finally:
        structlog.contextvars.unbind_contextvars("conversation_id")


class ConversationController:
    """Drives one operator conversation against the remote workflow.

    Args:
        client: Workflow API used for start/status/respond.
        history: Optional persistence bridge; failures are logged, never raised.
        repository_ref: Repository new runs are started against.
        poll_interval_s: Status polling interval (defaults to settings).
        allowed_hosts: Repository hosts accepted for new runs (defaults to settings).
    """

    def __init__(
        self,
        client: WorkflowApi,
        history: ConversationHistory | None = None,
        *,
        repository_ref: str = "",
        poll_interval_s: float | None = None,
        allowed_hosts: Iterable[str] | None = None,
    ) -> None:
        self._client = client
        self._history = history
        self._poller = StatusPoller(client, poll_interval_s)
        self._handle: PollingHandle | None = None
        self._allowed_hosts = (
            settings.repo_hosts() if allowed_hosts is None else list(allowed_hosts)
        )
        self._subscribers: list[asyncio.Queue] = []
        # Bumped whenever the operator abandons the session, so responses to
        # requests issued before that point are dropped.
        self._generation = 0
        self._session = ConversationSession(repository_ref=repository_ref.strip())

    @property
    def session(self) -> ConversationSession:
        return self._session

    @property
    def polling_handle(self) -> PollingHandle | None:
        return self._handle

    # ------------------------------------------------------------------
    # Subscribers
    # ------------------------------------------------------------------

    def new_subscriber(self) -> asyncio.Queue:
        """Register a queue that receives timeline and state events."""
        queue: asyncio.Queue = asyncio.Queue()
        self._subscribers.append(queue)
        return queue

    def remove_subscriber(self, queue: asyncio.Queue) -> None:
        if queue in self._subscribers:
            self._subscribers.remove(queue)

    def _emit(self, event_type: str, data: dict) -> None:
        event = {"type": event_type, "data": data}
        for queue in list(self._subscribers):
            queue.put_nowait(event)

    # ------------------------------------------------------------------
    # Operator actions
    # ------------------------------------------------------------------

    def set_repository_ref(self, repository_ref: str) -> None:
        """Select the repository used when the next new run is started."""
        self._apply(RepositorySelected(repository_ref))

    async def send_message(
        self,
        text: str,
        log_files: Sequence[Path] = (),
        target_class: str | None = None,
    ) -> None:
        """Send operator text as a new run or as a response to a waiting run.

        ``log_files`` and ``target_class`` only apply when a new run is started.

        Raises:
            InputValidationError: the message, repository reference or an
                attached file was rejected. Nothing is dispatched and the
                session is left untouched.
        """
        content = text.strip()
        if not content:
            raise InputValidationError("Message cannot be empty", field="message")
        session = self._session
        if not can_send(session):
            raise InputValidationError(
                "The workflow is still running; wait for it to ask for input", field="message"
            )

        conversation_id = session.conversation_id
        if conversation_id is None:
            if not is_valid_repository_ref(session.repository_ref, self._allowed_hosts):
                raise InputValidationError(
                    "Enter a valid repository reference (host/owner/name)",
                    field="repository_ref",
                )
            for path in log_files:
                if not is_valid_log_file(path.name):
                    raise InputValidationError(
                        f"Unsupported log file type: {path.name}", field="log_files"
                    )
                if not path.is_file():
                    raise InputValidationError(
                        f"Log file not found: {path.name}", field="log_files"
                    )

        generation = self._generation
        self._apply(OperatorMessageSent(content), sync_polling=False)
        with _conversation_logging_context(conversation_id):
            try:
                if conversation_id is None:
                    split = split_requirement_and_logs(content)
                    logger.info(
                        "Dispatching new run",
                        repository_ref=session.repository_ref,
                        has_logs=split.logs is not None,
                        log_files=len(log_files),
                    )
                    snapshot = await self._client.start_workflow(
                        split.requirement,
                        session.repository_ref,
                        logs=split.logs,
                        log_files=log_files,
                        target_class=target_class or None,
                    )
                else:
                    logger.info("Dispatching response to waiting run")
                    snapshot = await self._client.respond(conversation_id, content)
            except TransportError as exc:
                if generation != self._generation:
                    return
                logger.warning("Dispatch failed", error=exc.message)
                self._apply(TransportFailed(exc.message))
                return

            if generation != self._generation:
                logger.info("Discarding response for an abandoned conversation")
                return
            if conversation_id is not None and snapshot.conversation_id != conversation_id:
                logger.warning(
                    "Workflow acknowledged another conversation",
                    acknowledged_id=snapshot.conversation_id,
                )
                self._apply(
                    TransportFailed(
                        "Workflow acknowledged a different conversation "
                        f"({snapshot.conversation_id}, expected {conversation_id})"
                    )
                )
                return
            self._apply(SnapshotReceived(snapshot))

    def start_new_conversation(self) -> None:
        """Flush the current timeline to history and reset to an empty session."""
        self._save(self._session)
        self._generation += 1
        self._apply(ConversationReset())
        logger.info("Started new conversation")

    def restore(self, saved: SavedConversation) -> None:
        """Replace the live session with a saved timeline (read-only, idle)."""
        self._save(self._session)
        self._generation += 1
        self._apply(ConversationRestored(saved))
        logger.info("Restored conversation", history_key=saved.id)

    def saved_conversations(self) -> list[SavedConversation]:
        if self._history is None:
            return []
        try:
            return self._history.load_all()
        except Exception:
            logger.exception("Failed to load conversation history")
            return []

    def delete_saved(self, conversation_id: str) -> bool:
        if self._history is None:
            return False
        try:
            return self._history.delete(conversation_id)
        except Exception:
            logger.exception("Failed to delete saved conversation", history_key=conversation_id)
            return False

    def close(self) -> None:
        """Cancel polling and flush the current timeline."""
        self._poller.cancel_all()
        self._handle = None
        self._save(self._session)

    # ------------------------------------------------------------------
    # Poller callbacks
    # ------------------------------------------------------------------

    def _on_poll_snapshot(self, snapshot: StatusSnapshot) -> None:
        with _conversation_logging_context(snapshot.conversation_id):
            if snapshot.conversation_id != self._session.conversation_id:
                logger.debug("Discarding snapshot for another conversation")
                return
            logger.debug(
                "Status snapshot",
                status=snapshot.status.value,
                agent_name=snapshot.agent_name,
                progress=snapshot.progress,
            )
            self._apply(SnapshotReceived(snapshot))

    def _on_poll_error(self, conversation_id: str, exc: TransportError) -> None:
        with _conversation_logging_context(conversation_id):
            session = self._session
            if session.conversation_id != conversation_id or not session.is_run_active:
                logger.debug("Ignoring poll failure for an inactive run")
                return
            self._apply(TransportFailed(exc.message))

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _apply(self, event: Event, *, sync_polling: bool = True) -> ConversationSession:
        before = self._session
        after = transition(before, event)
        if after is before:
            return before
        self._session = after
        self._publish(before, after, event)
        if sync_polling:
            self._sync_polling()
        if before.is_run_active and not after.is_run_active:
            self._save(after)
        return after

    def _publish(
        self, before: ConversationSession, after: ConversationSession, event: Event
    ) -> None:
        if isinstance(event, (ConversationReset, ConversationRestored)):
            self._emit(
                "session_reset",
                {"timeline": [m.model_dump(mode="json") for m in after.timeline]},
            )
        elif after.timeline is not before.timeline and after.timeline:
            last = after.timeline[-1]
            self._emit(
                "timeline",
                {
                    "message": last.model_dump(mode="json"),
                    "replaced": len(after.timeline) == len(before.timeline),
                },
            )
        state_fields = ("conversation_id", "is_run_active", "accepting_input", "status", "repository_ref")
        if any(getattr(before, name) != getattr(after, name) for name in state_fields):
            self._emit("session_state", after.model_dump(mode="json", include=set(state_fields)))

    def _sync_polling(self) -> None:
        """Keep one polling cycle alive exactly while the run is active."""
        session = self._session
        if session.should_poll:
            handle = self._handle
            if (
                handle is not None
                and not handle.cancelled
                and handle.conversation_id == session.conversation_id
            ):
                return
            self._cancel_polling()
            conversation_id = session.conversation_id
            self._handle = self._poller.start(
                conversation_id,
                self._on_poll_snapshot,
                partial(self._on_poll_error, conversation_id),
            )
        else:
            self._cancel_polling()

    def _cancel_polling(self) -> None:
        handle = self._handle
        self._handle = None
        if handle is not None:
            self._poller.cancel(handle.conversation_id)
            handle.cancel()

    def _save(self, session: ConversationSession) -> None:
        if self._history is None or not session.timeline:
            return
        # Runs that failed before the remote side assigned an id are keyed locally.
        history_key = session.history_key or session.timeline[0].id
        try:
            self._history.save(history_key, session.repository_ref, session.timeline)
        except Exception:
            logger.exception("Failed to save conversation history", history_key=history_key)
