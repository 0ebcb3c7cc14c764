"""Shared fixtures for mu tests."""

from __future__ import annotations

from collections.abc import AsyncIterator, Callable
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from mu.config import ActionSettings, Project
from mu.sync.github_client import GitHubArtifact, GitHubClient
from mu.utils.actions import WorkflowIO


async def _aiter(items: list[Any]) -> AsyncIterator[Any]:
    for item in items:
        yield item


@pytest.fixture
def client() -> AsyncMock:
    """GitHubClient double with quiet defaults for every read."""
    mock = AsyncMock(spec=GitHubClient)
    mock.create_issue_comment.return_value = 1
    mock.find_pull_request_by_label.return_value = None
    mock.list_pull_requests_by_label.return_value = []
    mock.list_pull_request_comments.return_value = []
    mock.list_files.return_value = []
    mock.list_reviews.return_value = []
    mock.get_label.return_value = None
    mock.iter_artifacts = MagicMock(side_effect=lambda: _aiter([]))
    return mock


@pytest.fixture
def stub_artifacts(client: AsyncMock) -> Callable[[list[GitHubArtifact]], None]:
    """Make ``client.iter_artifacts`` yield the given artifacts on every call."""

    def _stub(artifacts: list[GitHubArtifact]) -> None:
        client.iter_artifacts = MagicMock(side_effect=lambda: _aiter(list(artifacts)))

    return _stub


@pytest.fixture
def make_project() -> Callable[..., Project]:
    def _make(name: str = "network", dir: str = "infra/network", **overrides: Any) -> Project:
        data: dict[str, Any] = {"name": name, "dir": dir, "plan": {"paths": ["**/*.tf"]}}
        data.update(overrides)
        return Project.model_validate(data)

    return _make


@pytest.fixture
def workflow(tmp_path: Path) -> WorkflowIO:
    output = tmp_path / "github_output"
    summary = tmp_path / "step_summary"
    output.touch()
    summary.touch()
    return WorkflowIO(output_path=output, summary_path=summary, stdout=MagicMock())


@pytest.fixture
def settings(tmp_path: Path) -> ActionSettings:
    return ActionSettings(
        repository="octo/infra",
        github_token="token",
        config_path=tmp_path / "mu.yaml",
        upload_artifact_dir=tmp_path / ".mu",
    )
