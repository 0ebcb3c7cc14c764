"""Per pull request guard against overlapping runs.

While a command runs, the label ``mu_in_progress_<number>`` exists. A run
that finds the label already present posts a notice and does nothing.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, TypeVar

from mu.core.errors import InternalFailureError, MuError
from mu.sync.github_client import GitHubAlreadyExistsError, GitHubClientError, GitHubNotFoundError

if TYPE_CHECKING:
    from mu.sync.github_client import GitHubClient

logger = logging.getLogger(__name__)

T = TypeVar("T")

PROGRESS_LABEL_PREFIX = "mu_in_progress_"


def progress_label(number: int) -> str:
    return f"{PROGRESS_LABEL_PREFIX}{number}"


def in_progress_message(number: int) -> str:
    return (
        f"Error: The operation was canceled because #{number} is currently in progress. "
        f'Please remove the "{progress_label(number)}" label to retry.'
    )


class ProgressGuard:
    """Runs command bodies under the in-progress label of a pull request."""

    def __init__(self, client: GitHubClient) -> None:
        self.client = client

    async def run(self, number: int, sha: str, body: Callable[[], Awaitable[T]]) -> T | None:
        """Run ``body`` while holding the progress label of ``number``.

        The label is deleted when ``body`` finishes, however it finishes;
        a failure to delete it is only logged.

        Args:
            number: Pull request number.
            sha: Head commit, recorded in the label description.
            body: Coroutine function performing the command.

        Returns:
            What ``body`` returned, or None if another run is in progress.

        Raises:
            InternalFailureError: If ``body`` raised something other than a
                MuError or GitHubClientError.
        """
        label = progress_label(number)
        description = f"commit: {sha}" if sha else ""
        try:
            await self.client.create_label(label, description)
        except GitHubAlreadyExistsError:
            logger.warning(f"#{number} is already in progress, skipping", extra={"attrs": {"label": label}})
            await self.client.create_issue_comment(number, in_progress_message(number))
            return None
        except GitHubClientError:
            # The create may have reached GitHub before failing.
            await self._delete(label)
            raise

        try:
            await self.client.add_labels(number, [label])
            return await body()
        except (MuError, GitHubClientError):
            raise
        except Exception as e:
            raise InternalFailureError(f"internal failure: {e}") from e
        finally:
            await self._delete(label)

    async def _delete(self, label: str) -> None:
        try:
            await self.client.delete_label(label)
        except GitHubNotFoundError:
            logger.debug(f"Progress label {label} already gone")
        except GitHubClientError as e:
            logger.error(f"Failed to delete progress label {label}: {e}")
