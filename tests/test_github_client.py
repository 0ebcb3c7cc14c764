"""Tests for the GitHub API client."""

from __future__ import annotations

import json
from collections.abc import Callable
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from mu.sync.github_client import (
    CommitState,
    CommitStatus,
    GitHubAlreadyExistsError,
    GitHubAuthError,
    GitHubClient,
    GitHubClientError,
    GitHubNotFoundError,
    GitHubRateLimitError,
    GitHubReview,
    count_approvals,
)

Handler = Callable[[httpx.Request], httpx.Response]


def _client(handler: Handler) -> GitHubClient:
    return GitHubClient("octo/infra", token="test-token", transport=httpx.MockTransport(handler))


@pytest.fixture(autouse=True)
def no_sleep():
    with patch("mu.sync.github_client.asyncio.sleep", new_callable=AsyncMock) as sleep:
        yield sleep


# =============================================================================
# Construction
# =============================================================================


class TestGitHubClientInit:
    """Test GitHubClient initialization."""

    def test_init_with_token(self) -> None:
        client = GitHubClient("owner/repo", token="test-token")
        assert client.repo == "owner/repo"
        assert client.owner == "owner"
        assert client.name == "repo"
        assert client._headers["Authorization"] == "Bearer test-token"

    def test_init_from_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test token is read from GITHUB_TOKEN."""
        monkeypatch.setenv("GITHUB_TOKEN", "env-token")
        client = GitHubClient("owner/repo")
        assert client._headers["Authorization"] == "Bearer env-token"

    def test_init_without_token_raises(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("GITHUB_TOKEN", raising=False)
        with pytest.raises(GitHubAuthError):
            GitHubClient("owner/repo")

    def test_client_requires_context_manager(self) -> None:
        client = GitHubClient("owner/repo", token="t")
        with pytest.raises(RuntimeError):
            _ = client.client


# =============================================================================
# Request handling
# =============================================================================


class TestRequest:
    """Test retry and error mapping in _request."""

    @pytest.mark.asyncio
    async def test_not_found_is_not_retried(self) -> None:
        calls: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(404, json={"message": "Not Found"})

        async with _client(handler) as client:
            with pytest.raises(GitHubNotFoundError):
                await client.get_pull_request(7)
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_pull_request_read_retries_server_errors(self, no_sleep: AsyncMock) -> None:
        """Test get_pull_request retries 5xx responses until success."""
        responses = iter(
            [
                httpx.Response(502),
                httpx.Response(503),
                httpx.Response(
                    200,
                    json={
                        "id": 99,
                        "number": 7,
                        "title": "Add vpc",
                        "head": {"sha": "abc123"},
                        "mergeable_state": "clean",
                        "labels": [{"name": "mu_lock_network", "description": "PR: #7", "color": "aaaaaa"}],
                    },
                ),
            ]
        )

        async with _client(lambda request: next(responses)) as client:
            pr = await client.get_pull_request(7)

        assert pr.number == 7
        assert pr.id == 99
        assert pr.head_sha == "abc123"
        assert pr.is_mergeable
        assert pr.has_label("mu_lock_network")
        assert pr.labels[0].description == "PR: #7"
        assert no_sleep.await_count == 2

    @pytest.mark.asyncio
    async def test_pull_request_read_gives_up_after_five_attempts(self) -> None:
        calls: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(500, text="boom")

        async with _client(handler) as client:
            with pytest.raises(GitHubClientError, match="500"):
                await client.get_pull_request(7)
        assert len(calls) == 5

    @pytest.mark.asyncio
    async def test_server_errors_not_retried_for_writes(self) -> None:
        calls: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(500, text="boom")

        async with _client(handler) as client:
            with pytest.raises(GitHubClientError):
                await client.create_issue_comment(7, "hi")
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_unauthorized(self) -> None:
        async with _client(lambda request: httpx.Response(401)) as client:
            with pytest.raises(GitHubAuthError):
                await client.get_label("x")

    @pytest.mark.asyncio
    async def test_rate_limit_exhausted(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(429, headers={"X-RateLimit-Reset": "1700000000"})

        async with _client(handler) as client:
            with pytest.raises(GitHubRateLimitError) as exc_info:
                await client.create_issue_comment(1, "x")
        assert exc_info.value.reset_at == 1700000000

    @pytest.mark.asyncio
    async def test_timeout_is_retried(self) -> None:
        attempts = {"n": 0}

        def handler(request: httpx.Request) -> httpx.Response:
            attempts["n"] += 1
            if attempts["n"] == 1:
                raise httpx.ReadTimeout("slow", request=request)
            return httpx.Response(201, json={"id": 555})

        async with _client(handler) as client:
            assert await client.create_issue_comment(1, "x") == 555
        assert attempts["n"] == 2


# =============================================================================
# Labels
# =============================================================================


class TestLabels:
    """Test label operations."""

    @pytest.mark.asyncio
    async def test_create_label_already_exists(self) -> None:
        """Test a 422 already_exists maps to GitHubAlreadyExistsError."""

        def handler(request: httpx.Request) -> httpx.Response:
            body = {"message": "Validation Failed", "errors": [{"resource": "Label", "code": "already_exists", "field": "name"}]}
            return httpx.Response(422, json=body)

        async with _client(handler) as client:
            with pytest.raises(GitHubAlreadyExistsError):
                await client.create_label("mu_lock_network", "PR: #1")

    @pytest.mark.asyncio
    async def test_create_label_is_not_resent_after_timeout(self) -> None:
        """Test a label create whose response is lost is reported, never repeated."""
        posts: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            posts.append(request.url.path)
            if len(posts) == 1:
                raise httpx.ReadTimeout("response lost", request=request)
            body = {"message": "Validation Failed", "errors": [{"resource": "Label", "code": "already_exists", "field": "name"}]}
            return httpx.Response(422, json=body)

        async with _client(handler) as client:
            with pytest.raises(GitHubClientError) as exc_info:
                await client.create_label("mu_in_progress_7", "commit: abc")

        assert not isinstance(exc_info.value, GitHubAlreadyExistsError)
        assert posts == ["/repos/octo/infra/labels"]

    @pytest.mark.asyncio
    async def test_other_validation_error_is_generic(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(422, json={"message": "Validation Failed", "errors": [{"code": "invalid"}]})

        async with _client(handler) as client:
            with pytest.raises(GitHubClientError) as exc_info:
                await client.create_label("bad name")
        assert not isinstance(exc_info.value, GitHubAlreadyExistsError)

    @pytest.mark.asyncio
    async def test_create_label_payload(self) -> None:
        seen: dict = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen.update(json.loads(request.content))
            seen["path"] = request.url.path
            return httpx.Response(201, json={"name": "mu_lock_a", "description": "PR: #3", "color": "ff0000"})

        async with _client(handler) as client:
            label = await client.create_label("mu_lock_a", "PR: #3", "ff0000")

        assert seen == {"name": "mu_lock_a", "description": "PR: #3", "color": "ff0000", "path": "/repos/octo/infra/labels"}
        assert label.description == "PR: #3"

    @pytest.mark.asyncio
    async def test_get_label_missing_returns_none(self) -> None:
        async with _client(lambda request: httpx.Response(404)) as client:
            assert await client.get_label("mu_lock_a") is None

    @pytest.mark.asyncio
    async def test_delete_label_quotes_name(self) -> None:
        seen: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request.url.raw_path.decode())
            return httpx.Response(204)

        async with _client(handler) as client:
            await client.delete_label("mu_lock_infra/network")
        assert seen == ["/repos/octo/infra/labels/mu_lock_infra%2Fnetwork"]


# =============================================================================
# Pull requests
# =============================================================================


class TestPullRequests:
    """Test pull request listing and pagination."""

    @pytest.mark.asyncio
    async def test_find_pull_request_by_label_follows_pages(self) -> None:
        """Test the Link header is followed to later pages."""
        page2 = "https://api.github.com/repos/octo/infra/pulls?state=open&page=2"

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.params.get("page") == "2":
                return httpx.Response(200, json=[{"number": 9, "labels": [{"name": "mu_lock_db"}]}])
            return httpx.Response(
                200,
                json=[{"number": 3, "labels": []}],
                headers={"Link": f'<{page2}>; rel="next"'},
            )

        async with _client(handler) as client:
            pr = await client.find_pull_request_by_label("mu_lock_db")

        assert pr is not None
        assert pr.number == 9

    @pytest.mark.asyncio
    async def test_find_pull_request_by_label_none(self) -> None:
        async with _client(lambda request: httpx.Response(200, json=[])) as client:
            assert await client.find_pull_request_by_label("mu_lock_db") is None

    @pytest.mark.asyncio
    async def test_list_pull_requests_by_label_limit(self) -> None:
        prs = [{"number": n, "labels": [{"name": "mu_lock_db"}]} for n in (1, 2, 3)]
        async with _client(lambda request: httpx.Response(200, json=prs)) as client:
            found = await client.list_pull_requests_by_label("mu_lock_db", limit=2)
        assert [pr.number for pr in found] == [1, 2]

    @pytest.mark.asyncio
    async def test_list_files_includes_previous_name_of_renames(self) -> None:
        files = [
            {"filename": "infra/network/main.tf", "status": "modified"},
            {"filename": "infra/db/new.tf", "status": "renamed", "previous_filename": "infra/old/db.tf"},
        ]
        async with _client(lambda request: httpx.Response(200, json=files)) as client:
            result = await client.list_files(4)
        assert result == ["infra/network/main.tf", "infra/db/new.tf", "infra/old/db.tf"]

    @pytest.mark.asyncio
    async def test_list_reviews_and_count_approvals(self) -> None:
        reviews = [
            {"user": {"login": "a"}, "state": "APPROVED"},
            {"user": {"login": "b"}, "state": "COMMENTED"},
            {"user": {"login": "c"}, "state": "APPROVED"},
        ]
        async with _client(lambda request: httpx.Response(200, json=reviews)) as client:
            result = await client.list_reviews(4)
        assert count_approvals(result) == 2

    def test_count_approvals_accepts_approve(self) -> None:
        assert count_approvals([GitHubReview("a", "approve"), GitHubReview("b", "CHANGES_REQUESTED")]) == 1


# =============================================================================
# Comments and statuses
# =============================================================================


class TestComments:
    """Test comment and status operations."""

    @pytest.mark.asyncio
    async def test_list_pull_request_comments_pages_through_graphql(self) -> None:
        pages = iter(
            [
                {
                    "data": {
                        "repository": {
                            "pullRequest": {
                                "comments": {
                                    "nodes": [{"id": "C1", "body": "first", "isMinimized": False, "author": {"login": "github-actions"}}],
                                    "pageInfo": {"endCursor": "cur", "hasNextPage": True},
                                }
                            }
                        }
                    }
                },
                {
                    "data": {
                        "repository": {
                            "pullRequest": {
                                "comments": {
                                    "nodes": [{"id": "C2", "body": "second", "isMinimized": True, "author": None}],
                                    "pageInfo": {"endCursor": None, "hasNextPage": False},
                                }
                            }
                        }
                    }
                },
            ]
        )
        cursors: list[str | None] = []

        def handler(request: httpx.Request) -> httpx.Response:
            cursors.append(json.loads(request.content)["variables"]["cursor"])
            return httpx.Response(200, json=next(pages))

        async with _client(handler) as client:
            comments = await client.list_pull_request_comments(12)

        assert [c.id for c in comments] == ["C1", "C2"]
        assert comments[0].author_login == "github-actions"
        assert comments[1].is_minimized
        assert comments[1].author_login == ""
        assert cursors == [None, "cur"]

    @pytest.mark.asyncio
    async def test_graphql_errors_raise(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"errors": [{"message": "Could not resolve to a node"}]})

        async with _client(handler) as client:
            with pytest.raises(GitHubClientError, match="Could not resolve"):
                await client.hide_issue_comment("C1")

    @pytest.mark.asyncio
    async def test_hide_issue_comment_marks_outdated(self) -> None:
        seen: dict = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen.update(json.loads(request.content)["variables"])
            return httpx.Response(200, json={"data": {"minimizeComment": {"minimizedComment": {"isMinimized": True}}}})

        async with _client(handler) as client:
            await client.hide_issue_comment("C1")
        assert seen == {"input": {"subjectId": "C1", "classifier": "OUTDATED"}}

    @pytest.mark.asyncio
    async def test_create_commit_status(self) -> None:
        with patch.object(GitHubClient, "_request", new_callable=AsyncMock) as mock_request:
            mock_request.return_value = MagicMock()
            async with GitHubClient("octo/infra", token="t") as client:
                await client.create_commit_status(
                    CommitStatus(sha="abc", state=CommitState.PENDING, context="mu/plan: network", description="in progress...")
                )

        mock_request.assert_awaited_once_with(
            "POST",
            "/repos/octo/infra/statuses/abc",
            json={"state": "pending", "target_url": None, "description": "in progress...", "context": "mu/plan: network"},
        )


# =============================================================================
# Artifacts
# =============================================================================


class TestArtifacts:
    """Test Actions artifact operations."""

    @pytest.mark.asyncio
    async def test_iter_artifacts(self) -> None:
        payload = {"total_count": 2, "artifacts": [{"id": 1, "name": "mu_a_default_1"}, {"id": 2, "name": "other"}]}
        async with _client(lambda request: httpx.Response(200, json=payload)) as client:
            artifacts = [artifact async for artifact in client.iter_artifacts()]
        assert [(a.id, a.name) for a in artifacts] == [(1, "mu_a_default_1"), (2, "other")]

    @pytest.mark.asyncio
    async def test_download_artifact_follows_location(self, tmp_path: Path) -> None:
        """Test the redirect target is fetched and written to disk."""
        storage = "https://storage.example.com/artifact.zip"

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.host == "storage.example.com":
                assert "authorization" not in request.headers
                return httpx.Response(200, content=b"PK-data")
            return httpx.Response(302, headers={"Location": storage})

        destination = tmp_path / "plan.zip"
        async with _client(handler) as client:
            result = await client.download_artifact(42, destination)

        assert result == destination
        assert destination.read_bytes() == b"PK-data"

    @pytest.mark.asyncio
    async def test_download_artifact_storage_failure(self, tmp_path: Path) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.host == "storage.example.com":
                return httpx.Response(403)
            return httpx.Response(302, headers={"Location": "https://storage.example.com/x.zip"})

        async with _client(handler) as client:
            with pytest.raises(GitHubClientError, match="403"):
                await client.download_artifact(42, tmp_path / "plan.zip")
