"""Logging as GitHub Actions workflow commands.

Log records are rendered as ``::notice::INFO message key=value%0A`` so the
runner surfaces them as annotations. Structured attributes are passed with
``extra={"attrs": {...}}`` and an annotation title with
``extra={"title": "..."}``.
"""

from __future__ import annotations

import logging
import sys
from typing import TextIO

NEWLINE = "%0A"

_COMMANDS = {
    logging.DEBUG: ("debug", "DEBUG"),
    logging.INFO: ("notice", "INFO"),
    logging.WARNING: ("warning", "WARN"),
    logging.ERROR: ("error", "ERROR"),
}


def _command_for(levelno: int) -> tuple[str, str]:
    if levelno >= logging.ERROR:
        return _COMMANDS[logging.ERROR]
    if levelno >= logging.WARNING:
        return _COMMANDS[logging.WARNING]
    if levelno >= logging.INFO:
        return _COMMANDS[logging.INFO]
    return _COMMANDS[logging.DEBUG]


class WorkflowCommandFormatter(logging.Formatter):
    """Format records as GitHub workflow commands."""

    def format(self, record: logging.LogRecord) -> str:
        command, level = _command_for(record.levelno)
        title = getattr(record, "title", "")
        parts = [f"::{command}"]
        if title:
            parts.append(f" title={title} ")
        message = record.getMessage().replace("\n", NEWLINE)
        parts.append(f"::{level} {message}")
        for key, value in (getattr(record, "attrs", None) or {}).items():
            parts.append(f" {key}={value}")
        parts.append(NEWLINE)
        if record.exc_info and record.exc_info[1] is not None:
            parts.append("error=" + str(record.exc_info[1]).replace("\n", NEWLINE))
        return "".join(parts)


def configure_logging(level: int = logging.INFO, stream: TextIO | None = None) -> logging.Handler:
    """Route the ``mu`` logger to stdout as workflow commands.

    Returns:
        The installed handler.
    """
    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(WorkflowCommandFormatter())
    root = logging.getLogger("mu")
    for existing in list(root.handlers):
        if isinstance(existing.formatter, WorkflowCommandFormatter):
            root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level)
    root.propagate = False
    return handler
