"""Project locks backed by repository labels.

A project is locked by the label ``mu_lock_<project>`` attached to the
pull request holding it; the label description records the holder as
``PR: #<number>``. Label names are unique per repository, so creating the
label is the atomic claim. Whoever loses the race gets an
already-exists error and reports the winner read back from the label.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from mu.core.commands import CommandKind
from mu.core.errors import AlreadyLockedError, MultipleLockLabelsError
from mu.sync.github_client import GitHubAlreadyExistsError
from mu.utils.actions import label_url

if TYPE_CHECKING:
    from mu.sync.github_client import GitHubClient, GitHubPullRequest

logger = logging.getLogger(__name__)

LOCK_LABEL_PREFIX = "mu_lock_"


def lock_label(project: str) -> str:
    return LOCK_LABEL_PREFIX + project


def lock_holder(number: int) -> str:
    """Label description identifying the pull request that holds a lock."""
    return f"PR: #{number}"


class ProjectLockManager:
    """Acquires and releases project locks for one pull request."""

    def __init__(self, client: GitHubClient, repository: str | None = None) -> None:
        """Initialize the lock manager.

        Args:
            client: GitHubClient used for label and comment calls.
            repository: owner/repo, used to link the lock label in notices;
                read from GITHUB_REPOSITORY when None.
        """
        self.client = client
        self.repository = repository

    async def acquire(self, project: str, number: int, kind: CommandKind, color: str = "") -> None:
        """Lock ``project`` for pull request ``number``.

        Acquiring a lock the pull request already holds succeeds without
        side effects.

        Args:
            project: Project name.
            number: Pull request number.
            kind: Command being run, used in the contention notice.
            color: Lock label color.

        Raises:
            AlreadyLockedError: If another pull request holds the lock. A
                notice is posted on ``number`` first.
        """
        label = lock_label(project)
        holder = await self.client.find_pull_request_by_label(label)
        if holder is not None:
            if holder.number == number:
                logger.debug(f"Lock {label} already held by #{number}")
                return
            await self._notify_locked(number, kind, lock_holder(holder.number))
            raise AlreadyLockedError(project, lock_holder(holder.number))

        try:
            await self.client.create_label(label, lock_holder(number), color)
        except GitHubAlreadyExistsError:
            existing = await self.client.get_label(label)
            current = existing.description if existing else ""
            if current != lock_holder(number):
                await self._notify_locked(number, kind, current)
                raise AlreadyLockedError(project, current) from None
            # Left unattached by an earlier create whose response was lost.
            logger.warning(f"Adopting unattached lock label {label}", extra={"attrs": {"pr": number}})

        await self.client.add_labels(number, [label])
        logger.info(f"Locked {project}", extra={"attrs": {"pr": number, "label": label}})

    async def release(self, project: str, pull_request: GitHubPullRequest) -> None:
        """Release ``project`` if ``pull_request`` holds it.

        Raises:
            MultipleLockLabelsError: If more than one open pull request
                carries the lock label. The label is left in place.
        """
        label = lock_label(project)
        if not pull_request.has_label(label):
            return

        holders = await self.client.list_pull_requests_by_label(label, limit=2)
        if len(holders) > 1:
            body = f":x: **Unlock failed**\nMultiple {label} labels exist.\n\n{label_url(label, self.repository)}"
            await self.client.create_issue_comment(pull_request.number, body)
            raise MultipleLockLabelsError(label)

        await self.client.delete_label(label)
        await self.client.create_issue_comment(pull_request.number, f":unlock: Unlocked the `{project}` project")
        logger.info(f"Unlocked {project}", extra={"attrs": {"pr": pull_request.number, "label": label}})

    async def _notify_locked(self, number: int, kind: CommandKind, holder: str) -> None:
        body = (
            f":lock: **{kind.value.title()} Failed** This project is currently locked by {holder}\n"
            "Remove lock label if not needed"
        )
        await self.client.create_issue_comment(number, body)
