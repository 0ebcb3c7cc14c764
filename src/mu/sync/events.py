"""GitHub Actions event payloads that trigger mu."""

from __future__ import annotations

import json
import logging
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, ValidationError

logger = logging.getLogger(__name__)


class UnsupportedEventError(Exception):
    """The workflow was triggered by an event mu does not handle."""


class PullRequestAction(str, Enum):
    OPENED = "opened"
    SYNCHRONIZE = "synchronize"
    REOPENED = "reopened"
    CLOSED = "closed"


class _Payload(BaseModel):
    model_config = ConfigDict(extra="ignore")


class _Number(_Payload):
    number: int


class _Comment(_Payload):
    id: int
    body: str = ""


class PullRequestEvent(_Payload):
    """``pull_request`` event."""

    action: str
    number: int


class IssueCommentEvent(_Payload):
    """``issue_comment`` event on a pull request."""

    action: str
    issue: _Number
    comment: _Comment

    @property
    def number(self) -> int:
        return self.issue.number


Event = PullRequestEvent | IssueCommentEvent


def load_event(name: str, path: Path) -> Event:
    """Load the triggering event from the runner's event payload file.

    Args:
        name: Value of GITHUB_EVENT_NAME.
        path: Value of GITHUB_EVENT_PATH.

    Returns:
        The parsed event.

    Raises:
        UnsupportedEventError: If the event is neither ``pull_request`` nor
            ``issue_comment``, or its payload cannot be read.
    """
    if name not in ("pull_request", "issue_comment"):
        raise UnsupportedEventError(f"unsupported event type: {name}")

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        if name == "pull_request":
            return PullRequestEvent.model_validate(data)
        return IssueCommentEvent.model_validate(data)
    except (OSError, ValueError, ValidationError) as e:
        raise UnsupportedEventError(f"failed to load {name} event from {path}: {e}") from e
