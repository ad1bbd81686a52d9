"""Async HTTP client for the remote workflow orchestrator."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Protocol, Sequence

import httpx
import structlog
from pydantic import ValidationError

from waypoint.errors import TransportError
from waypoint.models import StatusSnapshot
from waypoint.settings import settings

logger = structlog.get_logger("waypoint.client")


class WorkflowApi(Protocol):
    """The three calls the controller and poller make against the orchestrator."""

    async def start_workflow(
        self,
        requirement: str,
        repository_ref: str,
        logs: str | None = None,
        log_files: Sequence[Path] = (),
        target_class: str | None = None,
    ) -> StatusSnapshot: ...

    async def get_status(self, conversation_id: str) -> StatusSnapshot: ...

    async def respond(self, conversation_id: str, text: str) -> StatusSnapshot: ...


class WorkflowClient:
    """httpx-backed client for ``/workflows`` endpoints.

    Every failure (connection, HTTP status, malformed body) is raised as a
    TransportError with a message suitable for the operator.
    """

    def __init__(
        self,
        base_url: str | None = None,
        *,
        token: str | None = None,
        timeout_s: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = (base_url or settings.api_url()).rstrip("/")
        self._token = settings.api_token() if token is None else token
        self._timeout_s = settings.http_timeout_s() if timeout_s is None else timeout_s
        self._transport = transport

    @property
    def base_url(self) -> str:
        return self._base_url

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        return headers

    async def start_workflow(
        self,
        requirement: str,
        repository_ref: str,
        logs: str | None = None,
        log_files: Sequence[Path] = (),
        target_class: str | None = None,
    ) -> StatusSnapshot:
        """Start a new workflow run.

        Requests carrying logs are sent as form data (multipart when files
        are attached); plain requests are sent as JSON.
        """
        fields: dict[str, str] = {"requirement": requirement, "repoUrl": repository_ref}
        if target_class:
            fields["targetClass"] = target_class
        if logs or log_files:
            if logs:
                fields["logsPasted"] = logs
            files = []
            for path in log_files:
                try:
                    content = path.read_bytes()
                except OSError as e:
                    raise TransportError(f"Cannot read log file {path.name}: {e.strerror or e}") from e
                files.append(("logFiles", (path.name, content, "text/plain")))
            logger.info(
                "Starting workflow with logs",
                repository_ref=repository_ref,
                pasted_log_chars=len(logs or ""),
                log_files=len(files),
            )
            return await self._request(
                "POST", "/workflows/start", data=fields, files=files or None
            )
        logger.info("Starting workflow", repository_ref=repository_ref)
        return await self._request("POST", "/workflows/start", json=fields)

    async def get_status(self, conversation_id: str) -> StatusSnapshot:
        return await self._request("GET", f"/workflows/{conversation_id}/status")

    async def respond(self, conversation_id: str, text: str) -> StatusSnapshot:
        """Send an operator response to a run that is waiting for input."""
        logger.info("Responding to workflow", conversation_id=conversation_id)
        return await self._request(
            "POST", f"/workflows/{conversation_id}/respond", json={"response": text}
        )

    async def _request(self, method: str, path: str, **kwargs: Any) -> StatusSnapshot:
        url = f"{self._base_url}{path}"
        try:
            async with httpx.AsyncClient(
                transport=self._transport, timeout=self._timeout_s
            ) as client:
                response = await client.request(method, url, headers=self._headers(), **kwargs)
                response.raise_for_status()
        except httpx.HTTPStatusError as e:
            message = _error_message(e.response)
            logger.warning(
                "Workflow API returned an error",
                method=method,
                path=path,
                status_code=e.response.status_code,
            )
            raise TransportError(
                f"{method} {path} failed ({e.response.status_code}): {message}",
                status_code=e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            logger.warning("Workflow API unreachable", method=method, path=path, error=str(e))
            raise TransportError(f"{method} {path} failed: {str(e) or type(e).__name__}") from e

        try:
            return StatusSnapshot.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            logger.warning("Malformed workflow status payload", method=method, path=path)
            raise TransportError(f"{method} {path} returned an invalid status payload") from e


def _error_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.text.strip() or response.reason_phrase
    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str) and error:
            return error
        for key in ("message", "detail"):
            if payload.get(key):
                return str(payload[key])
    return response.text.strip() or response.reason_phrase
