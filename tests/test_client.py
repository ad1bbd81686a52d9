"""Tests for WorkflowClient against an in-process stand-in orchestrator."""

import httpx
import pytest

from fakes import REPO, build_orchestrator_app
from waypoint.client import WorkflowClient
from waypoint.errors import TransportError
from waypoint.models import RunStatus

BASE_URL = "http://testserver/api/v1"


@pytest.fixture
def app():
    return build_orchestrator_app()


@pytest.fixture
def client(app) -> WorkflowClient:
    return WorkflowClient(BASE_URL, token="", transport=httpx.ASGITransport(app=app))


class TestStartWorkflow:
    """Test start_workflow request encoding."""

    @pytest.mark.anyio
    async def test_plain_request_sent_as_json(self, app, client) -> None:
        snapshot = await client.start_workflow("Add pagination", REPO)
        assert snapshot.conversation_id == "conv_42"
        assert snapshot.status is RunStatus.RUNNING
        assert snapshot.agent_name == "Planner"
        [request] = app.state.requests
        assert request["body"] == {"requirement": "Add pagination", "repoUrl": REPO}
        assert request["headers"]["content-type"].startswith("application/json")
        assert "authorization" not in request["headers"]

    @pytest.mark.anyio
    async def test_target_class_included(self, app, client) -> None:
        await client.start_workflow("Add tests", REPO, target_class="com.acme.OrderService")
        assert app.state.requests[0]["body"]["targetClass"] == "com.acme.OrderService"

    @pytest.mark.anyio
    async def test_pasted_logs_sent_as_form(self, app, client) -> None:
        await client.start_workflow("Fix the crash", REPO, logs="ERROR: segfault")
        [request] = app.state.requests
        assert request["body"] == {
            "requirement": "Fix the crash",
            "repoUrl": REPO,
            "logsPasted": "ERROR: segfault",
        }
        assert request["files"] == []

    @pytest.mark.anyio
    async def test_log_files_sent_as_multipart(self, app, client, tmp_path) -> None:
        log_file = tmp_path / "server.log"
        log_file.write_text("ERROR: boom\n")
        await client.start_workflow("Fix the crash", REPO, log_files=[log_file])
        [request] = app.state.requests
        assert request["headers"]["content-type"].startswith("multipart/form-data")
        assert request["files"] == ["server.log"]
        assert "logsPasted" not in request["body"]

    @pytest.mark.anyio
    async def test_unreadable_log_file(self, app, client, tmp_path) -> None:
        with pytest.raises(TransportError) as exc_info:
            await client.start_workflow("Fix the crash", REPO, log_files=[tmp_path / "gone.log"])
        assert exc_info.value.message.startswith("Cannot read log file gone.log")
        assert app.state.requests == []

    @pytest.mark.anyio
    async def test_bearer_token(self, app) -> None:
        client = WorkflowClient(BASE_URL, token="s3cret", transport=httpx.ASGITransport(app=app))
        await client.start_workflow("Add pagination", REPO)
        assert app.state.requests[0]["headers"]["authorization"] == "Bearer s3cret"

    @pytest.mark.anyio
    async def test_server_error_becomes_transport_error(self, client) -> None:
        with pytest.raises(TransportError) as exc_info:
            await client.start_workflow("explode", REPO)
        assert exc_info.value.status_code == 500
        assert "orchestrator exploded" in exc_info.value.message


class TestStatusAndRespond:
    """Test get_status and respond."""

    @pytest.mark.anyio
    async def test_get_status(self, app, client) -> None:
        app.state.statuses["conv_42"] = {
            "conversationId": "conv_42",
            "status": "WAITING_FOR_DEVELOPER",
            "message": "Which table?",
            "agentName": "Planner",
        }
        snapshot = await client.get_status("conv_42")
        assert snapshot.status is RunStatus.WAITING_FOR_INPUT
        assert snapshot.message == "Which table?"

    @pytest.mark.anyio
    async def test_unknown_conversation(self, client) -> None:
        with pytest.raises(TransportError) as exc_info:
            await client.get_status("missing")
        assert exc_info.value.status_code == 404
        assert exc_info.value.message == (
            "GET /workflows/missing/status failed (404): Conversation not found"
        )

    @pytest.mark.anyio
    async def test_malformed_payload(self, client) -> None:
        with pytest.raises(TransportError) as exc_info:
            await client.get_status("garbled")
        assert "invalid status payload" in exc_info.value.message
        assert exc_info.value.status_code is None

    @pytest.mark.anyio
    async def test_respond(self, app, client) -> None:
        snapshot = await client.respond("conv_42", "use the orders table")
        assert snapshot.agent_name == "Coder"
        assert snapshot.message == "Got it: use the orders table"
        assert app.state.requests[0]["body"] == {"response": "use the orders table"}


class TestTransportFailures:
    """Test failures below the HTTP layer."""

    @pytest.mark.anyio
    async def test_connection_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        client = WorkflowClient(BASE_URL, transport=httpx.MockTransport(handler))
        with pytest.raises(TransportError) as exc_info:
            await client.get_status("conv_1")
        assert exc_info.value.status_code is None
        assert "connection refused" in exc_info.value.message

    @pytest.mark.anyio
    async def test_plain_text_error_body(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(503, text="upstream down")

        client = WorkflowClient(BASE_URL, transport=httpx.MockTransport(handler))
        with pytest.raises(TransportError) as exc_info:
            await client.respond("conv_1", "ok")
        assert exc_info.value.message == "POST /workflows/conv_1/respond failed (503): upstream down"

    @pytest.mark.anyio
    async def test_non_json_success_body(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text="<html>proxy</html>")

        client = WorkflowClient(BASE_URL, transport=httpx.MockTransport(handler))
        with pytest.raises(TransportError):
            await client.get_status("conv_1")

    def test_base_url_from_settings(self, monkeypatch) -> None:
        monkeypatch.setenv("WAYPOINT_API_URL", "https://orchestrator.example/api/v1/")
        assert WorkflowClient().base_url == "https://orchestrator.example/api/v1"
