"""GitHub API client using httpx.

This module provides an async HTTP client for the GitHub REST and GraphQL
APIs used by mu: labels, pull requests, comments, reviews, commit
statuses and Actions artifacts. Uses GITHUB_TOKEN environment variable
for authentication when no token is passed explicitly.
"""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import AsyncIterator
from contextlib import aclosing
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any
from urllib.parse import quote

import httpx

logger = logging.getLogger(__name__)

# GitHub API constants
GITHUB_API_BASE = "https://api.github.com"
DEFAULT_TIMEOUT = 30.0
MAX_RETRIES = 3
MAX_READ_ATTEMPTS = 5
INITIAL_BACKOFF = 1.0  # seconds
PER_PAGE = 100
ACTION_BOT_LOGIN = "github-actions"
MERGEABLE_STATES = frozenset({"clean", "unstable", "has_hooks"})


class GitHubClientError(Exception):
    """Base exception for GitHub client errors."""


class GitHubAuthError(GitHubClientError):
    """Authentication with GitHub failed."""


class GitHubRateLimitError(GitHubClientError):
    """GitHub API rate limit exceeded."""

    def __init__(self, message: str, reset_at: int | None = None) -> None:
        super().__init__(message)
        self.reset_at = reset_at  # Unix timestamp when rate limit resets


class GitHubNotFoundError(GitHubClientError):
    """Requested resource not found."""


class GitHubAlreadyExistsError(GitHubClientError):
    """The resource being created already exists (422 already_exists)."""


class CommitState(str, Enum):
    """State of a commit status."""

    ERROR = "error"
    FAILURE = "failure"
    PENDING = "pending"
    SUCCESS = "success"


@dataclass
class GitHubLabel:
    """Represents a GitHub label."""

    name: str
    description: str = ""
    color: str = ""


@dataclass
class GitHubPullRequest:
    """Represents a GitHub pull request."""

    number: int
    title: str = ""
    head_sha: str = ""
    mergeable_state: str = ""
    labels: list[GitHubLabel] = field(default_factory=list)
    id: int = 0

    @property
    def is_mergeable(self) -> bool:
        # https://github.com/octokit/octokit.net/issues/1763
        return self.mergeable_state in MERGEABLE_STATES

    def has_label(self, name: str) -> bool:
        return any(label.name == name for label in self.labels)


@dataclass
class GitHubReview:
    """A pull request review."""

    user_login: str
    state: str

    @property
    def is_approval(self) -> bool:
        return self.state.lower() in ("approve", "approved")


@dataclass
class GitHubComment:
    """A pull request comment as returned by the GraphQL API."""

    id: str  # GraphQL node id
    body: str
    author_login: str = ""
    is_minimized: bool = False


@dataclass
class GitHubArtifact:
    """A GitHub Actions artifact."""

    id: int
    name: str


@dataclass
class CommitStatus:
    """A commit status to publish."""

    sha: str
    state: CommitState
    context: str
    description: str = ""
    target_url: str = ""


def count_approvals(reviews: list[GitHubReview]) -> int:
    """Count approving reviews."""
    return sum(1 for review in reviews if review.is_approval)


def _parse_pull_request(data: dict[str, Any]) -> GitHubPullRequest:
    return GitHubPullRequest(
        id=data.get("id", 0),
        number=data["number"],
        title=data.get("title", ""),
        head_sha=(data.get("head") or {}).get("sha", ""),
        mergeable_state=data.get("mergeable_state") or "",
        labels=[
            GitHubLabel(name=label["name"], description=label.get("description") or "", color=label.get("color") or "")
            for label in data.get("labels", [])
        ],
    )


_LIST_COMMENTS_QUERY = """
query($owner: String!, $name: String!, $number: Int!, $cursor: String) {
  repository(owner: $owner, name: $name) {
    pullRequest(number: $number) {
      comments(first: 100, after: $cursor) {
        nodes {
          id
          body
          isMinimized
          author { login }
        }
        pageInfo { endCursor hasNextPage }
      }
    }
  }
}
"""

_MINIMIZE_COMMENT_MUTATION = """
mutation($input: MinimizeCommentInput!) {
  minimizeComment(input: $input) {
    minimizedComment { isMinimized }
  }
}
"""


class GitHubClient:
    """Async GitHub API client.

    Implements rate limit detection and retry logic with exponential backoff.
    List endpoints are followed through the ``Link: rel="next"`` header until
    the last page.
    """

    def __init__(
        self,
        repo: str,
        token: str | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the GitHub client.

        Args:
            repo: Repository in 'owner/repo' format.
            token: GitHub token. If None, reads from GITHUB_TOKEN env var.
            timeout: Request timeout in seconds.
            transport: Optional httpx transport, used by tests.

        Raises:
            GitHubAuthError: If no token is provided or found in environment.
        """
        self.repo = repo
        self.owner, _, self.name = repo.partition("/")
        self.timeout = timeout
        self._transport = transport

        self._token = token or os.getenv("GITHUB_TOKEN")
        if not self._token:
            raise GitHubAuthError("No GitHub token provided. Set GITHUB_TOKEN environment variable or pass token parameter.")

        # Build headers - never log the token!
        self._headers = {
            "Accept": "application/vnd.github+json",
            "Authorization": f"Bearer {self._token}",
            "X-GitHub-Api-Version": "2022-11-28",
        }

        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> GitHubClient:
        """Enter async context manager."""
        self._client = httpx.AsyncClient(
            base_url=GITHUB_API_BASE,
            headers=self._headers,
            timeout=self.timeout,
            transport=self._transport,
        )
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Exit async context manager."""
        if self._client:
            await self._client.aclose()
            self._client = None

    @property
    def client(self) -> httpx.AsyncClient:
        """Get the HTTP client, ensuring it's initialized."""
        if self._client is None:
            raise RuntimeError("GitHubClient must be used as async context manager")
        return self._client

    async def _request(
        self,
        method: str,
        endpoint: str,
        *,
        max_attempts: int = MAX_RETRIES,
        retry_server_errors: bool = False,
        retry_transport_errors: bool = True,
        **kwargs: Any,
    ) -> httpx.Response:
        """Make an HTTP request with retry logic.

        Args:
            method: HTTP method (GET, POST, PATCH, etc.).
            endpoint: API endpoint (e.g., "/repos/owner/repo/labels") or absolute URL.
            max_attempts: Total number of attempts for retryable failures.
            retry_server_errors: Also retry 5xx responses.
            retry_transport_errors: Retry timeouts and connection failures.
                Disable for requests that must not be sent twice, since the
                first attempt may have reached the server.
            **kwargs: Additional arguments passed to httpx request.

        Returns:
            httpx.Response object.

        Raises:
            GitHubAuthError: If authentication fails.
            GitHubRateLimitError: If rate limit is exceeded after retries.
            GitHubNotFoundError: If resource is not found. Never retried.
            GitHubAlreadyExistsError: If the resource being created already exists.
            GitHubClientError: For other API errors.
        """
        backoff = INITIAL_BACKOFF

        for attempt in range(max_attempts):
            last_attempt = attempt >= max_attempts - 1
            try:
                response = await self.client.request(method, endpoint, **kwargs)

                # Handle rate limiting
                if response.status_code in (403, 429):
                    remaining = response.headers.get("X-RateLimit-Remaining", "0")
                    if response.status_code == 429 or remaining == "0":
                        reset_at = int(response.headers.get("X-RateLimit-Reset", "0"))
                        if not last_attempt:
                            wait_time = min(backoff * (2**attempt), 60)
                            logger.warning(f"Rate limit hit, waiting {wait_time:.1f}s (attempt {attempt + 1}/{max_attempts})")
                            await asyncio.sleep(wait_time)
                            continue
                        raise GitHubRateLimitError(
                            f"GitHub API rate limit exceeded. Resets at {reset_at}",
                            reset_at=reset_at,
                        )

                if response.status_code == 401:
                    raise GitHubAuthError("GitHub authentication failed. Check your token.")

                if response.status_code == 404:
                    raise GitHubNotFoundError(f"Resource not found: {endpoint}")

                if response.status_code == 422 and _is_already_exists(response):
                    raise GitHubAlreadyExistsError(f"Resource already exists: {endpoint}")

                if response.status_code >= 500 and retry_server_errors and not last_attempt:
                    wait_time = backoff * (2**attempt)
                    logger.warning(f"GitHub API error {response.status_code}, retrying in {wait_time:.1f}s")
                    await asyncio.sleep(wait_time)
                    continue

                if response.status_code >= 400:
                    error_body = response.text
                    logger.error(f"GitHub API error {response.status_code}: {error_body}")
                    raise GitHubClientError(f"GitHub API error {response.status_code}: {error_body[:200]}")

                return response

            except httpx.TimeoutException as e:
                if retry_transport_errors and not last_attempt:
                    wait_time = backoff * (2**attempt)
                    logger.warning(f"Request timeout, retrying in {wait_time:.1f}s")
                    await asyncio.sleep(wait_time)
                    continue
                raise GitHubClientError(f"Request timeout after {attempt + 1} attempts") from e

            except httpx.HTTPError as e:
                if retry_transport_errors and not last_attempt:
                    wait_time = backoff * (2**attempt)
                    logger.warning(f"HTTP error: {e}, retrying in {wait_time:.1f}s")
                    await asyncio.sleep(wait_time)
                    continue
                raise GitHubClientError(f"HTTP error after {attempt + 1} attempts: {e}") from e

        # Should not reach here, but just in case
        raise GitHubClientError("Max retries exceeded")

    async def _paginate(
        self,
        endpoint: str,
        *,
        params: dict[str, Any] | None = None,
        key: str | None = None,
        **request_options: Any,
    ) -> AsyncIterator[Any]:
        """Yield items from every page of a list endpoint.

        Args:
            endpoint: First page endpoint.
            params: Query parameters for the first page.
            key: Key holding the item list when the payload is an object.
            **request_options: Retry options forwarded to ``_request``.
        """
        url: str | None = endpoint
        query: dict[str, Any] | None = {"per_page": PER_PAGE, **(params or {})}
        while url:
            response = await self._request("GET", url, params=query, **request_options)
            data = response.json()
            for item in data[key] if key else data:
                yield item
            url = response.links.get("next", {}).get("url")
            query = None  # the next link already carries the query string

    async def _graphql(self, query: str, variables: dict[str, Any]) -> dict[str, Any]:
        response = await self._request("POST", "/graphql", json={"query": query, "variables": variables})
        payload = response.json()
        if payload.get("errors"):
            messages = "; ".join(error.get("message", "") for error in payload["errors"])
            raise GitHubClientError(f"GraphQL error: {messages}")
        return payload["data"]

    # =========================================================================
    # Comment Operations
    # =========================================================================

    async def create_issue_comment(self, number: int, body: str) -> int:
        """Add a comment to an issue or pull request.

        Args:
            number: The issue or pull request number.
            body: Comment body text.

        Returns:
            Comment ID.
        """
        endpoint = f"/repos/{self.repo}/issues/{number}/comments"
        response = await self._request("POST", endpoint, json={"body": body})
        return response.json()["id"]

    async def hide_issue_comment(self, node_id: str) -> None:
        """Minimize a comment as outdated.

        Args:
            node_id: GraphQL node id of the comment.
        """
        variables = {"input": {"subjectId": node_id, "classifier": "OUTDATED"}}
        await self._graphql(_MINIMIZE_COMMENT_MUTATION, variables)

    async def create_comment_reaction(self, comment_id: int, content: str) -> None:
        """React to an issue comment with an emoji (e.g. "+1", "eyes", "rocket")."""
        endpoint = f"/repos/{self.repo}/issues/comments/{comment_id}/reactions"
        await self._request("POST", endpoint, json={"content": content})

    async def list_pull_request_comments(self, number: int) -> list[GitHubComment]:
        """List every comment on a pull request.

        Args:
            number: The pull request number.

        Returns:
            Comments in creation order.
        """
        comments: list[GitHubComment] = []
        variables: dict[str, Any] = {"owner": self.owner, "name": self.name, "number": number, "cursor": None}
        while True:
            data = await self._graphql(_LIST_COMMENTS_QUERY, variables)
            connection = data["repository"]["pullRequest"]["comments"]
            for node in connection["nodes"]:
                comments.append(
                    GitHubComment(
                        id=node["id"],
                        body=node.get("body", ""),
                        author_login=(node.get("author") or {}).get("login", ""),
                        is_minimized=node.get("isMinimized", False),
                    )
                )
            page_info = connection["pageInfo"]
            if not page_info["hasNextPage"]:
                return comments
            variables["cursor"] = page_info["endCursor"]

    # =========================================================================
    # Label Operations
    # =========================================================================

    async def get_label(self, name: str) -> GitHubLabel | None:
        """Get a label by name.

        Args:
            name: Label name.

        Returns:
            GitHubLabel if found, None otherwise.
        """
        endpoint = f"/repos/{self.repo}/labels/{quote(name, safe='')}"
        try:
            response = await self._request("GET", endpoint)
        except GitHubNotFoundError:
            return None
        data = response.json()
        return GitHubLabel(name=data["name"], description=data.get("description") or "", color=data.get("color") or "")

    async def create_label(self, name: str, description: str = "", color: str = "") -> GitHubLabel:
        """Create a new label.

        Label names are unique per repository, so creation doubles as an
        atomic claim: exactly one concurrent caller succeeds.

        Args:
            name: Label name.
            description: Label description.
            color: Hex color (without #). GitHub picks one when empty.

        Returns:
            Created GitHubLabel.

        Raises:
            GitHubAlreadyExistsError: If a label with this name exists.
            GitHubClientError: On a timeout or connection failure. The request
                is not re-sent, so the label may or may not exist afterwards.
        """
        payload = {"name": name, "description": description}
        if color:
            payload["color"] = color
        response = await self._request("POST", f"/repos/{self.repo}/labels", json=payload, retry_transport_errors=False)
        data = response.json()
        return GitHubLabel(name=data["name"], description=data.get("description") or "", color=data.get("color") or "")

    async def delete_label(self, name: str) -> None:
        """Delete a label from the repository (and thereby from every issue)."""
        await self._request("DELETE", f"/repos/{self.repo}/labels/{quote(name, safe='')}")

    async def add_labels(self, number: int, labels: list[str]) -> list[str]:
        """Add labels to an issue or pull request (preserves existing labels).

        Returns:
            List of all label names after update.
        """
        endpoint = f"/repos/{self.repo}/issues/{number}/labels"
        response = await self._request("POST", endpoint, json={"labels": labels})
        return [label["name"] for label in response.json()]

    # =========================================================================
    # Pull Request Operations
    # =========================================================================

    async def get_pull_request(self, number: int) -> GitHubPullRequest:
        """Get a pull request by number.

        Transient failures are retried up to MAX_READ_ATTEMPTS times; a 404
        is raised immediately.
        """
        endpoint = f"/repos/{self.repo}/pulls/{number}"
        response = await self._request("GET", endpoint, max_attempts=MAX_READ_ATTEMPTS, retry_server_errors=True)
        return _parse_pull_request(response.json())

    async def iter_open_pull_requests(self) -> AsyncIterator[GitHubPullRequest]:
        """Yield open pull requests, oldest first."""
        params = {"state": "open", "sort": "created", "direction": "asc"}
        async for data in self._paginate(f"/repos/{self.repo}/pulls", params=params):
            yield _parse_pull_request(data)

    async def list_pull_requests_by_label(self, label: str, limit: int) -> list[GitHubPullRequest]:
        """List up to ``limit`` open pull requests carrying ``label``."""
        found: list[GitHubPullRequest] = []
        async with aclosing(self.iter_open_pull_requests()) as pull_requests:
            async for pr in pull_requests:
                if pr.has_label(label):
                    found.append(pr)
                if len(found) >= limit:
                    break
        return found

    async def find_pull_request_by_label(self, label: str) -> GitHubPullRequest | None:
        """Find the first open pull request carrying ``label``."""
        found = await self.list_pull_requests_by_label(label, limit=1)
        return found[0] if found else None

    async def list_files(self, number: int) -> list[str]:
        """List files changed by a pull request.

        Renamed files contribute both the new and the previous path. Each
        page is retried like ``get_pull_request``.
        """
        files: list[str] = []
        endpoint = f"/repos/{self.repo}/pulls/{number}/files"
        async for item in self._paginate(endpoint, max_attempts=MAX_READ_ATTEMPTS, retry_server_errors=True):
            files.append(item["filename"])
            if item.get("status") == "renamed" and item.get("previous_filename"):
                files.append(item["previous_filename"])
        return files

    async def list_reviews(self, number: int) -> list[GitHubReview]:
        """List reviews submitted on a pull request."""
        endpoint = f"/repos/{self.repo}/pulls/{number}/reviews"
        return [
            GitHubReview(user_login=(item.get("user") or {}).get("login", ""), state=item.get("state", ""))
            async for item in self._paginate(endpoint)
        ]

    async def create_commit_status(self, status: CommitStatus) -> None:
        """Publish a commit status."""
        endpoint = f"/repos/{self.repo}/statuses/{status.sha}"
        payload = {
            "state": status.state.value,
            "target_url": status.target_url or None,
            "description": status.description,
            "context": status.context,
        }
        await self._request("POST", endpoint, json=payload)

    # =========================================================================
    # Artifact Operations
    # =========================================================================

    async def iter_artifacts(self) -> AsyncIterator[GitHubArtifact]:
        """Yield every Actions artifact in the repository."""
        async for item in self._paginate(f"/repos/{self.repo}/actions/artifacts", key="artifacts"):
            yield GitHubArtifact(id=item["id"], name=item["name"])

    async def download_artifact(self, artifact_id: int, destination: Path) -> Path:
        """Download an artifact's zip archive to ``destination``.

        GitHub answers with a redirect to a pre-signed storage URL, which is
        fetched without the API credentials.
        """
        endpoint = f"/repos/{self.repo}/actions/artifacts/{artifact_id}/zip"
        response = await self._request("GET", endpoint, follow_redirects=False)
        location = response.headers.get("Location")
        if response.status_code == 200 or not location:
            destination.write_bytes(response.content)
            return destination

        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport, follow_redirects=True) as storage:
            async with storage.stream("GET", location) as download:
                if download.status_code != 200:
                    raise GitHubClientError(f"unexpected status downloading artifact {artifact_id}: {download.status_code}")
                with destination.open("wb") as f:
                    async for chunk in download.aiter_bytes():
                        f.write(chunk)
        return destination

    async def delete_artifact(self, artifact_id: int) -> None:
        """Delete an artifact by id."""
        await self._request("DELETE", f"/repos/{self.repo}/actions/artifacts/{artifact_id}")


def _is_already_exists(response: httpx.Response) -> bool:
    try:
        errors = response.json().get("errors") or []
    except ValueError:
        return False
    return any(isinstance(error, dict) and error.get("code") == "already_exists" for error in errors)
