"""Tests for the conversation state machine."""

from datetime import datetime, timezone

import pytest

from fakes import REPO, snap
from waypoint.models import ConversationSession, RunStatus, SavedConversation, TimelineMessage
from waypoint.state import (
    ConversationReset,
    ConversationRestored,
    OperatorMessageSent,
    RepositorySelected,
    SnapshotReceived,
    TransportFailed,
    can_send,
    parse_timestamp,
    reconcile,
    transition,
)

RECEIVED = datetime(2026, 1, 1, 9, 0, tzinfo=timezone.utc)


def _idle() -> ConversationSession:
    return ConversationSession(repository_ref=REPO)


def _dispatched(text: str = "Add retries") -> ConversationSession:
    return transition(_idle(), OperatorMessageSent(text))


def _running(conversation_id: str = "conv_1") -> ConversationSession:
    return transition(_dispatched(), SnapshotReceived(snap(conversation_id=conversation_id)))


class TestOperatorMessage:
    """Test OperatorMessageSent."""

    def test_appends_and_locks_input(self) -> None:
        session = _dispatched("Add retries")
        assert [m.role for m in session.timeline] == ["operator"]
        assert session.timeline[0].content == "Add retries"
        assert session.is_run_active
        assert not session.accepting_input
        assert session.status is RunStatus.RUNNING
        assert not can_send(session)

    def test_ignored_while_run_active(self) -> None:
        session = _running()
        assert transition(session, OperatorMessageSent("again")) is session


class TestSnapshotReceived:
    """Test snapshot reconciliation and flag updates."""

    def test_running_adopts_conversation_id(self) -> None:
        session = _running("conv_9")
        assert session.conversation_id == "conv_9"
        assert session.history_key == "conv_9"
        assert session.is_run_active
        assert not session.accepting_input
        assert session.should_poll

    def test_waiting_for_input_reopens_composer(self) -> None:
        session = transition(_running(), SnapshotReceived(snap("WAITING_FOR_INPUT", message="Which table?")))
        assert session.conversation_id == "conv_1"
        assert not session.is_run_active
        assert session.accepting_input
        assert not session.should_poll
        assert can_send(session)

    @pytest.mark.parametrize("status", ["COMPLETED", "FAILED"])
    def test_terminal_clears_conversation(self, status: str) -> None:
        session = transition(_running(), SnapshotReceived(snap(status)))
        assert session.conversation_id is None
        assert session.history_key == "conv_1"
        assert not session.is_run_active
        assert session.accepting_input
        assert session.status is RunStatus(status)

    def test_same_agent_snapshots_coalesce(self) -> None:
        session = _dispatched()
        for progress, message in [(0.1, "a"), (0.5, "b"), (0.9, "c")]:
            session = transition(
                session, SnapshotReceived(snap(agent="Coder", progress=progress, message=message))
            )
        agents = [m for m in session.timeline if m.role == "agent"]
        assert len(agents) == 1
        assert agents[0].content == "c"
        assert agents[0].progress == 0.9

    def test_coalescing_keeps_entry_id(self) -> None:
        first = transition(_dispatched(), SnapshotReceived(snap(agent="Coder", message="a")))
        second = transition(first, SnapshotReceived(snap(agent="Coder", message="b")))
        assert first.timeline[-1].id == second.timeline[-1].id
        assert len(second.timeline) == len(first.timeline)

    def test_agent_change_appends(self) -> None:
        session = transition(_dispatched(), SnapshotReceived(snap(agent="Planner")))
        session = transition(session, SnapshotReceived(snap(agent="Coder")))
        assert [m.agent_name for m in session.timeline if m.role == "agent"] == ["Planner", "Coder"]

    def test_operator_message_breaks_coalescing(self) -> None:
        session = transition(_running(), SnapshotReceived(snap("WAITING_FOR_INPUT", agent="Planner")))
        session = transition(session, OperatorMessageSent("use the orders table"))
        session = transition(session, SnapshotReceived(snap(agent="Planner", message="ok")))
        assert [m.role for m in session.timeline] == ["operator", "agent", "operator", "agent"]

    def test_snapshot_for_another_conversation_discarded(self) -> None:
        session = _running("conv_1")
        assert transition(session, SnapshotReceived(snap(conversation_id="conv_2"))) is session

    def test_snapshot_while_idle_discarded(self) -> None:
        session = _idle()
        assert transition(session, SnapshotReceived(snap())) is session

    def test_snapshot_after_terminal_discarded(self) -> None:
        done = transition(_running(), SnapshotReceived(snap("COMPLETED")))
        assert transition(done, SnapshotReceived(snap("RUNNING"))) is done

    def test_snapshot_timestamp_used(self) -> None:
        session = transition(
            _dispatched(), SnapshotReceived(snap(timestamp="2026-02-03T04:05:06Z"), received_at=RECEIVED)
        )
        assert session.timeline[-1].timestamp == datetime(2026, 2, 3, 4, 5, 6, tzinfo=timezone.utc)

    def test_error_text_shown_when_message_empty(self) -> None:
        failed = snap("FAILED", message="").model_copy(update={"error": "tests failed"})
        session = transition(_running(), SnapshotReceived(failed))
        assert session.timeline[-1].content == "tests failed"


class TestTransportFailed:
    """Test TransportFailed."""

    def test_appends_error_entry_and_unlocks(self) -> None:
        session = transition(_running(), TransportFailed("connection refused"))
        last = session.timeline[-1]
        assert last.role == "agent"
        assert last.content == "Error: connection refused"
        assert last.status is RunStatus.FAILED
        assert session.conversation_id is None
        assert not session.is_run_active
        assert session.accepting_input
        assert session.status is RunStatus.FAILED


class TestResetRestoreAndRepository:
    """Test session-level events."""

    def test_reset_keeps_repository(self) -> None:
        session = transition(_running(), ConversationReset())
        assert session.timeline == []
        assert session.repository_ref == REPO
        assert session.is_idle
        assert session.history_key is None

    def test_restore_is_idle_and_read_only(self) -> None:
        saved = SavedConversation(
            id="conv_old",
            repository_ref="https://github.com/acme/old",
            timeline=[TimelineMessage(role="operator", content="old request")],
            saved_at=RECEIVED,
        )
        session = transition(_running(), ConversationRestored(saved))
        assert session.conversation_id is None
        assert session.history_key == "conv_old"
        assert session.repository_ref == "https://github.com/acme/old"
        assert [m.content for m in session.timeline] == ["old request"]
        assert not session.is_run_active

    def test_repository_selected(self) -> None:
        session = transition(_idle(), RepositorySelected("  https://github.com/acme/other "))
        assert session.repository_ref == "https://github.com/acme/other"

    def test_unknown_event_rejected(self) -> None:
        with pytest.raises(TypeError):
            transition(_idle(), object())


class TestReconcile:
    """Test reconcile directly."""

    def test_both_agents_absent_counts_as_same(self) -> None:
        timeline = reconcile([], snap(agent=None, message="a"), RECEIVED)
        timeline = reconcile(timeline, snap(agent=None, message="b"), RECEIVED)
        assert [m.content for m in timeline] == ["b"]

    def test_does_not_mutate_input(self) -> None:
        timeline = reconcile([], snap(message="a"), RECEIVED)
        before = list(timeline)
        reconcile(timeline, snap(message="b"), RECEIVED)
        assert timeline == before


class TestParseTimestamp:
    """Test parse_timestamp."""

    @pytest.mark.parametrize(
        "value,expected",
        [
            ("2026-01-01T12:00:00Z", datetime(2026, 1, 1, 12, tzinfo=timezone.utc)),
            ("2026-01-01T12:00:00", datetime(2026, 1, 1, 12, tzinfo=timezone.utc)),
            ("1767268800", datetime(2026, 1, 1, 12, tzinfo=timezone.utc)),
            ("1767268800000", datetime(2026, 1, 1, 12, tzinfo=timezone.utc)),
        ],
    )
    def test_parses(self, value: str, expected: datetime) -> None:
        assert parse_timestamp(value, RECEIVED) == expected

    def test_offset_preserved(self) -> None:
        parsed = parse_timestamp("2026-01-01T14:00:00+02:00", RECEIVED)
        assert parsed == datetime(2026, 1, 1, 12, tzinfo=timezone.utc)

    @pytest.mark.parametrize("value", [None, "", "yesterday"])
    def test_falls_back_to_receipt(self, value) -> None:
        assert parse_timestamp(value, RECEIVED) is RECEIVED
