"""GitHub API client and workflow event payloads."""

from mu.sync.events import Event, IssueCommentEvent, PullRequestEvent, UnsupportedEventError, load_event
from mu.sync.github_client import (
    GitHubAlreadyExistsError,
    GitHubClient,
    GitHubClientError,
    GitHubNotFoundError,
    GitHubRateLimitError,
)

__all__ = [
    "Event",
    "GitHubAlreadyExistsError",
    "GitHubClient",
    "GitHubClientError",
    "GitHubNotFoundError",
    "GitHubRateLimitError",
    "IssueCommentEvent",
    "PullRequestEvent",
    "UnsupportedEventError",
    "load_event",
]
