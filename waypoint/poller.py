"""Status polling for in-flight workflow runs."""

from __future__ import annotations

import asyncio
from typing import Callable

import structlog

from waypoint.client import WorkflowApi
from waypoint.errors import TransportError
from waypoint.models import StatusSnapshot
from waypoint.settings import settings

logger = structlog.get_logger("waypoint.poller")

SnapshotCallback = Callable[[StatusSnapshot], None]
TransportErrorCallback = Callable[[TransportError], None]


def _current_task() -> asyncio.Task | None:
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None


class PollingHandle:
    """Owned handle for one polling cycle.

    ``cancel()`` is idempotent and takes effect immediately: no further fetch
    is scheduled and a response still in flight is dropped.
    """

    def __init__(self, conversation_id: str) -> None:
        self.conversation_id = conversation_id
        self.fetch_count = 0
        self._task: asyncio.Task | None = None
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def active(self) -> bool:
        return not self._cancelled and self._task is not None and not self._task.done()

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        task = self._task
        # A callback running inside the poll task cancels cooperatively; the
        # loop checks the flag before scheduling the next fetch.
        if task is not None and not task.done() and task is not _current_task():
            task.cancel()
        logger.debug("Polling cancelled", conversation_id=self.conversation_id)

    def _finish(self) -> None:
        self._cancelled = True


class StatusPoller:
    """Runs at most one polling cycle per conversation on asyncio tasks."""

    def __init__(self, client: WorkflowApi, interval_s: float | None = None) -> None:
        self._client = client
        self._interval_s = settings.poll_interval_s() if interval_s is None else interval_s
        self._handles: dict[str, PollingHandle] = {}

    @property
    def interval_s(self) -> float:
        return self._interval_s

    def start(
        self,
        conversation_id: str,
        on_snapshot: SnapshotCallback,
        on_transport_error: TransportErrorCallback,
        interval_s: float | None = None,
    ) -> PollingHandle:
        """Begin polling; the first fetch is issued immediately.

        Any cycle already running for the same conversation is cancelled first.
        Must be called with a running event loop.
        """
        previous = self._handles.pop(conversation_id, None)
        if previous:
            previous.cancel()
        interval = self._interval_s if interval_s is None else interval_s
        handle = PollingHandle(conversation_id)
        handle._task = asyncio.create_task(
            self._run(handle, on_snapshot, on_transport_error, interval)
        )
        self._handles[conversation_id] = handle
        logger.info("Polling started", conversation_id=conversation_id, interval_s=interval)
        return handle

    def get_handle(self, conversation_id: str) -> PollingHandle | None:
        return self._handles.get(conversation_id)

    def cancel(self, conversation_id: str) -> None:
        handle = self._handles.pop(conversation_id, None)
        if handle:
            handle.cancel()

    def cancel_all(self) -> None:
        for conversation_id in list(self._handles):
            self.cancel(conversation_id)

    async def _run(
        self,
        handle: PollingHandle,
        on_snapshot: SnapshotCallback,
        on_transport_error: TransportErrorCallback,
        interval_s: float,
    ) -> None:
        loop = asyncio.get_running_loop()
        conversation_id = handle.conversation_id
        next_at = loop.time()
        try:
            while not handle.cancelled:
                handle.fetch_count += 1
                try:
                    snapshot = await self._client.get_status(conversation_id)
                except TransportError as exc:
                    if handle.cancelled:
                        return
                    handle._finish()
                    logger.warning(
                        "Status poll failed; polling stopped",
                        conversation_id=conversation_id,
                        error=exc.message,
                    )
                    on_transport_error(exc)
                    return
                except Exception as exc:
                    if handle.cancelled:
                        return
                    handle._finish()
                    logger.exception("Unexpected status poll failure", conversation_id=conversation_id)
                    on_transport_error(TransportError(str(exc) or type(exc).__name__))
                    return

                if handle.cancelled:
                    logger.debug("Discarding late status response", conversation_id=conversation_id)
                    return
                if snapshot.status.is_terminal:
                    handle._finish()
                    logger.info(
                        "Run reached terminal status; polling stopped",
                        conversation_id=conversation_id,
                        status=snapshot.status.value,
                    )
                try:
                    on_snapshot(snapshot)
                except Exception:
                    handle._finish()
                    logger.exception(
                        "Snapshot handler failed; polling stopped", conversation_id=conversation_id
                    )
                    return
                if handle.cancelled:
                    return

                next_at = max(next_at + interval_s, loop.time())
                await asyncio.sleep(next_at - loop.time())
        except asyncio.CancelledError:
            pass
        finally:
            handle._finish()
            if self._handles.get(conversation_id) is handle:
                del self._handles[conversation_id]
