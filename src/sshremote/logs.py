"""Separates sentinel-tagged log lines from real diagnostic text on stderr."""

import json
import logging
from collections.abc import Callable, Iterable
from logging import getLogger
from typing import Any

from sshremote.types import LogEvent

logger = getLogger(__name__)

# Must match LOG_SENTINEL in the runner programs
LOG_SENTINEL = "__SSH_REMOTE_LOG__"
PROVENANCE_MARKER = "[remote]"

type LogObserver = Callable[[LogEvent], None]

_remote_logger = getLogger("sshremote.remote")

_LEVELS: dict[str, int] = {
    "log": logging.INFO,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
}


def _to_event(payload: Any) -> LogEvent:
    if not isinstance(payload, dict):
        return LogEvent(type="log", args=[payload])
    level = payload.get("type")
    args = payload.get("args", [])
    return LogEvent(
        type=level if level in _LEVELS else "log",
        args=args if isinstance(args, list) else [args],
    )


def demux(diagnostic: bytes | str) -> tuple[list[LogEvent], str]:
    """
    Split a diagnostic stream into log events and residual error text.

    A line is a log event iff it starts with LOG_SENTINEL and the rest of it
    parses as JSON. Sentinel lines that do not parse are dropped.

    Args:
        diagnostic: The full stderr output of a call

    Returns:
        Log events in arrival order, and the remaining lines joined by newlines
        with surrounding whitespace removed
    """
    if isinstance(diagnostic, bytes):
        diagnostic = diagnostic.decode(errors="replace")

    events: list[LogEvent] = []
    residual: list[str] = []
    for line in diagnostic.splitlines():
        if not line.startswith(LOG_SENTINEL):
            residual.append(line)
            continue
        try:
            payload = json.loads(line[len(LOG_SENTINEL) :])
        except json.JSONDecodeError:
            logger.debug(f"Dropping malformed log line: {line!r}")
            continue
        events.append(_to_event(payload))

    return events, "\n".join(residual).strip()


def _format_arg(arg: Any) -> str:
    return arg if isinstance(arg, str) else json.dumps(arg, default=str)


def log_to_logger(event: LogEvent) -> None:
    """Default observer: re-log the event on the ``sshremote.remote`` logger."""
    message = " ".join(_format_arg(arg) for arg in event.args)
    _remote_logger.log(_LEVELS[event.type], f"{PROVENANCE_MARKER} {message}")


def forward(events: Iterable[LogEvent], observer: LogObserver) -> None:
    """Hand each event to ``observer``. A failing observer never affects the call."""
    for event in events:
        try:
            observer(event)
        except Exception:
            logger.warning(f"Log observer failed on {event.type} event", exc_info=True)
