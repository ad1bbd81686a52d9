"""Heuristics for spotting pasted diagnostic output in operator text.

Detection is a cascade of independent regular expressions combined with a
logical OR. It is deliberately loose: prose that mentions "failed" counts as
log-bearing, and proprietary log formats may slip through.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import PurePath

# (name, pattern) pairs; any match anywhere in the text classifies it as a log.
LOG_PATTERNS: tuple[tuple[str, re.Pattern[str]], ...] = (
    # JVM stack frames
    ("jvm_stack_frame", re.compile(r"at\s+[\w.$]+\([\w.]+:\d+\)")),
    ("indented_at_frame", re.compile(r"^\s+at\s+", re.MULTILINE)),
    # Exception banners
    ("exception_keyword", re.compile(r"Exception|Error|Throwable", re.IGNORECASE)),
    ("caused_by", re.compile(r"Caused by:", re.IGNORECASE)),
    ("exception_in_thread", re.compile(r"Exception in thread", re.IGNORECASE)),
    # Leveled lines with timestamps
    (
        "timestamped_level",
        re.compile(
            r"\d{4}-\d{2}-\d{2}[\sT]\d{2}:\d{2}:\d{2}.*?(ERROR|WARN|FATAL|Exception)",
            re.IGNORECASE,
        ),
    ),
    (
        "bracketed_timestamp_level",
        re.compile(r"\[\d{4}-\d{2}-\d{2}.*?\]\s*(ERROR|WARN|FATAL)", re.IGNORECASE),
    ),
    ("level_prefix", re.compile(r"^(ERROR|WARN|FATAL|SEVERE)[:|\s]", re.MULTILINE)),
    ("dated_level_line", re.compile(r"^\d{4}-\d{2}-\d{2}.*?(ERROR|WARN|FATAL)", re.MULTILINE)),
    # Python tracebacks
    ("python_traceback", re.compile(r"Traceback \(most recent call last\)", re.IGNORECASE)),
    ("python_frame", re.compile(r'File ".*?", line \d+')),
    # Node stack traces
    ("node_error_frame", re.compile(r"Error:\s+.*?\n\s+at\s+")),
    ("node_stack_frame", re.compile(r"^\s+at\s+.*?\(.*?:\d+:\d+\)", re.MULTILINE)),
    # .NET stack traces
    (
        "dotnet_stack_frame",
        re.compile(r"at\s+[\w.]+\.[\w.]+\(.*?\)\s+in\s+.*?:line\s+\d+"),
    ),
    # Generic
    ("bracketed_level", re.compile(r"\[ERROR\]|\[WARN\]|\[FATAL\]")),
    ("failure_vocabulary", re.compile(r"failed|failure|crashed|crash", re.IGNORECASE)),
)

# Narrower per-line test used for counting and for finding where logs begin.
LOG_LINE_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"^\s+at\s+"),
    re.compile(r"^(ERROR|WARN|FATAL|INFO|DEBUG)[:|\s]"),
    re.compile(r"Exception|Error|Throwable"),
    re.compile(r"Caused by:|at\s+[\w.$]+\("),
    re.compile(r"Traceback \(most recent call last\)"),
    re.compile(r'^\s*File ".*?", line \d+'),
)

_DATED_LEVEL_LINE = re.compile(r"\d{4}-\d{2}-\d{2}.*?(ERROR|WARN|FATAL)")

LOG_FILE_EXTENSIONS = (".log", ".txt", ".out", ".err")


@dataclass(frozen=True)
class SplitResult:
    """Operator text divided into the request and an optional log tail."""

    requirement: str
    logs: str | None


def matching_patterns(text: str) -> list[str]:
    """Return the names of every classifier pattern that fires on text."""
    if not text or not text.strip():
        return []
    return [name for name, pattern in LOG_PATTERNS if pattern.search(text)]


def is_likely_log(text: str) -> bool:
    """Return True if text appears to contain logs, stack traces or exceptions."""
    if not text or not text.strip():
        return False
    return any(pattern.search(text) for _, pattern in LOG_PATTERNS)


def is_log_line(line: str) -> bool:
    """Return True if a single line looks like a log or stack trace line."""
    return any(pattern.search(line) for pattern in LOG_LINE_PATTERNS)


def _starts_logs(line: str) -> bool:
    return is_log_line(line) or bool(_DATED_LEVEL_LINE.search(line))


def count_log_lines(text: str) -> int:
    """Count log-looking lines, falling back to the total line count.

    Returns 0 when the text does not classify as a log at all.
    """
    if not is_likely_log(text):
        return 0
    lines = text.split("\n")
    count = sum(1 for line in lines if is_log_line(line))
    return count or len(lines)


def _trim_blank_lines(text: str) -> str:
    lines = text.splitlines(keepends=True)
    while lines and not lines[0].strip():
        lines.pop(0)
    while lines and not lines[-1].strip():
        lines.pop()
    return "".join(lines).rstrip("\r\n")


def split_requirement_and_logs(text: str) -> SplitResult:
    """Split text into a leading request and a trailing block of logs.

    Lines are collected into the request until the first log-looking line;
    everything from there to the end is treated as logs. Logs interleaved with
    prose after that point are not separated out.
    """
    lines = text.splitlines(keepends=True)
    log_start: int | None = None
    for index, line in enumerate(lines):
        if _starts_logs(line.rstrip("\r\n")):
            log_start = index
            break

    prefix_end = len(lines) if log_start is None else log_start
    requirement = _trim_blank_lines("".join(lines[:prefix_end]))
    span_end = prefix_end
    if not requirement:
        first = next((i for i, line in enumerate(lines) if line.strip()), None)
        if first is None:
            return SplitResult(requirement=text[:100], logs=None)
        requirement = lines[first].rstrip("\r\n")
        span_end = first + 1

    if log_start is None or not is_likely_log(text):
        return SplitResult(requirement=requirement, logs=None)
    logs = _trim_blank_lines("".join(lines[span_end:]))
    return SplitResult(requirement=requirement, logs=logs or None)


def is_valid_log_file(filename: str) -> bool:
    """Return True if the file name has an accepted log attachment extension."""
    return PurePath(filename).name.lower().endswith(LOG_FILE_EXTENSIONS)


def format_file_size(size: int) -> str:
    """Render a byte count for display, e.g. ``1.5 KB``."""
    if size <= 0:
        return "0 Bytes"
    units = ["Bytes", "KB", "MB", "GB"]
    index = 0
    while index < len(units) - 1 and size >= 1024 ** (index + 1):
        index += 1
    value = round(size / (1024 ** index), 2)
    text = f"{value:.2f}".rstrip("0").rstrip(".")
    return f"{text} {units[index]}"
