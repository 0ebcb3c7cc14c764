"""Commit statuses reporting per-project command results."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from mu.core.commands import CommandKind
from mu.sync.github_client import CommitState, CommitStatus

if TYPE_CHECKING:
    from mu.sync.github_client import GitHubClient

logger = logging.getLogger(__name__)

PENDING_DESCRIPTION = "in progress..."
FAILURE_DESCRIPTION = "failed."
APPLY_SUCCESS_DESCRIPTION = "Apply succeeded."
MAX_DESCRIPTION_LENGTH = 140


def status_context(kind: CommandKind, project: str) -> str:
    """Context string of a project's status, e.g. ``mu/plan: network``."""
    return f"mu/{kind.value}: {project}"


class StatusReporter:
    """Publishes pending/success/failure statuses on a pull request's head commit."""

    def __init__(self, client: GitHubClient, target_url: str = "") -> None:
        self.client = client
        self.target_url = target_url

    async def _publish(self, sha: str, kind: CommandKind, project: str, state: CommitState, description: str) -> None:
        if len(description) > MAX_DESCRIPTION_LENGTH:
            description = description[: MAX_DESCRIPTION_LENGTH - 3] + "..."
        status = CommitStatus(
            sha=sha,
            state=state,
            context=status_context(kind, project),
            description=description,
            target_url=self.target_url,
        )
        await self.client.create_commit_status(status)

    async def pending(self, sha: str, kind: CommandKind, project: str) -> None:
        await self._publish(sha, kind, project, CommitState.PENDING, PENDING_DESCRIPTION)

    async def success(self, sha: str, kind: CommandKind, project: str, result: str = "") -> None:
        """Mark a project as done.

        Plan statuses carry the plan's result line; apply statuses a fixed text.
        """
        description = APPLY_SUCCESS_DESCRIPTION if kind is CommandKind.APPLY else result
        await self._publish(sha, kind, project, CommitState.SUCCESS, description)

    async def failure(self, sha: str, kind: CommandKind, project: str) -> None:
        await self._publish(sha, kind, project, CommitState.FAILURE, FAILURE_DESCRIPTION)
