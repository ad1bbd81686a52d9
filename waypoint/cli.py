#!/usr/bin/env python3
"""Line-oriented operator console for a remote workflow.

Type a request to start a run; paste logs with ``/paste``. Commands:
``/repo <ref>``, ``/attach <file>``, ``/new``, ``/history``, ``/restore <n>``,
``/delete <n>``, ``/target <class>``, ``/status``, ``/quit``.
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

import structlog

from waypoint.client import WorkflowClient
from waypoint.controller import ConversationController
from waypoint.errors import InputValidationError
from waypoint.history import SqlConversationHistory
from waypoint.log_detection import count_log_lines, format_file_size, split_requirement_and_logs
from waypoint.logging import configure_logging
from waypoint.validation import repository_display

logger = structlog.get_logger("waypoint.cli")

PASTE_TERMINATOR = "."


def format_event(event: dict) -> str | None:
    """Render one controller event as a console line, or None to skip it."""
    event_type = event.get("type")
    data = event.get("data", {})
    if event_type == "timeline":
        message = data.get("message", {})
        if message.get("role") != "agent":
            return None
        agent = message.get("agent_name") or "workflow"
        parts = [message.get("status") or ""]
        progress = message.get("progress")
        if progress is not None:
            parts.append(f"{round(progress * 100)}%")
        meta = " ".join(p for p in parts if p)
        prefix = "  ~ " if data.get("replaced") else ""
        return f"{prefix}[{agent}] {message.get('content', '')}" + (f" ({meta})" if meta else "")
    if event_type == "session_state":
        if data.get("status") == "WAITING_FOR_INPUT":
            return "-- the workflow is waiting for your input --"
        if data.get("status") in ("COMPLETED", "FAILED") and not data.get("is_run_active"):
            return f"-- run {data['status'].lower()} --"
        return None
    if event_type == "session_reset":
        count = len(data.get("timeline", []))
        return f"-- conversation reset ({count} messages) --"
    return None


async def _print_events(queue: asyncio.Queue) -> None:
    while True:
        event = await queue.get()
        line = format_event(event)
        if line:
            print(line, flush=True)


async def _read_line(prompt: str) -> str | None:
    try:
        return await asyncio.to_thread(input, prompt)
    except EOFError:
        return None


async def _read_paste() -> str | None:
    print(f"Paste text; finish with a line containing only '{PASTE_TERMINATOR}'.")
    lines: list[str] = []
    while True:
        line = await _read_line("")
        if line is None:
            break
        if line == PASTE_TERMINATOR:
            break
        lines.append(line)
    return "\n".join(lines) if lines else None


async def run_console(
    controller: ConversationController, target_class: str | None = None
) -> None:
    queue = controller.new_subscriber()
    printer = asyncio.create_task(_print_events(queue))
    attachments: list[Path] = []
    try:
        while True:
            line = await _read_line("> ")
            if line is None:
                break
            command, _, arg = line.strip().partition(" ")
            arg = arg.strip()
            if command in ("/quit", "/exit"):
                break
            if command == "/repo":
                controller.set_repository_ref(arg)
                print(f"Repository: {repository_display(arg)}")
                continue
            if command == "/target":
                target_class = arg or None
                print(f"Target class: {target_class or '-'}")
                continue
            if command == "/attach":
                path = Path(arg).expanduser()
                if not path.is_file():
                    print(f"No such file: {arg}")
                    continue
                attachments.append(path)
                print(f"Attached {path.name} ({format_file_size(path.stat().st_size)})")
                continue
            if command == "/new":
                controller.start_new_conversation()
                attachments.clear()
                continue
            if command == "/status":
                session = controller.session
                print(
                    f"conversation={session.conversation_id or '-'} "
                    f"status={session.status.value if session.status else '-'} "
                    f"accepting_input={session.accepting_input}"
                )
                continue
            if command == "/history":
                saved = controller.saved_conversations()
                if not saved:
                    print("No saved conversations yet")
                for index, conversation in enumerate(saved, start=1):
                    print(
                        f"{index:>3}. {conversation.title}  "
                        f"[{repository_display(conversation.repository_ref)}, "
                        f"{len(conversation.timeline)} messages]"
                    )
                continue
            if command in ("/restore", "/delete"):
                saved = controller.saved_conversations()
                try:
                    conversation = saved[int(arg) - 1]
                except (ValueError, IndexError):
                    print("Unknown conversation number")
                    continue
                if command == "/restore":
                    controller.restore(conversation)
                elif controller.delete_saved(conversation.id):
                    print("Deleted")
                continue

            text = line
            if command == "/paste":
                text = await _read_paste() or ""
            if not text.strip():
                continue
            if controller.session.conversation_id is None:
                split = split_requirement_and_logs(text)
                if split.logs:
                    print(f"Detected {count_log_lines(split.logs)} log lines; sending them separately.")
            try:
                await controller.send_message(
                    text, log_files=list(attachments), target_class=target_class
                )
            except InputValidationError as exc:
                print(f"{exc.field}: {exc.message}")
                continue
            attachments.clear()
    finally:
        printer.cancel()
        controller.remove_subscriber(queue)
        controller.close()


def main() -> int:
    parser = argparse.ArgumentParser(prog="waypoint", description="Operator console for a remote workflow")
    parser.add_argument("--repo", default="", help="Repository reference, e.g. github.com/owner/name")
    parser.add_argument("--api-url", default=None, help="Workflow API base URL")
    parser.add_argument("--token", default=None, help="Bearer token for the workflow API")
    parser.add_argument("--target-class", default=None, help="Class new runs should focus on")
    parser.add_argument("--interval-ms", type=int, default=None, help="Status polling interval")
    parser.add_argument("--no-history", action="store_true", help="Do not save conversations")
    args = parser.parse_args()

    configure_logging()
    client = WorkflowClient(args.api_url, token=args.token)
    history = None
    if not args.no_history:
        try:
            history = SqlConversationHistory()
        except Exception:
            logger.exception("Conversation history unavailable; continuing without it")
    interval_s = args.interval_ms / 1000.0 if args.interval_ms else None
    controller = ConversationController(
        client, history, repository_ref=args.repo, poll_interval_s=interval_s
    )
    logger.info("Console started", api_url=client.base_url)
    try:
        asyncio.run(run_console(controller, args.target_class))
    except KeyboardInterrupt:
        return 130
    return 0


if __name__ == "__main__":
    sys.exit(main())
