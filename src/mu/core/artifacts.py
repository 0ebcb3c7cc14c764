"""Plan file handoff between ``mu plan`` and ``mu apply`` runs.

A plan run cannot upload artifacts through the REST API, so it writes a
composite action that the workflow runs afterwards with
``actions/upload-artifact``. The apply run looks the artifact up by its
deterministic name, downloads the newest version and deletes every version
once applied.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

import yaml

if TYPE_CHECKING:
    from mu.sync.github_client import GitHubArtifact, GitHubClient

logger = logging.getLogger(__name__)

ARTIFACT_PREFIX = "mu_"
PLAN_FILE_SUFFIX = ".tfplan"
UPLOAD_ACTION_FILE = "action.yaml"
UPLOAD_ARTIFACT_ACTION = "actions/upload-artifact"


def _escape(project: str) -> str:
    return project.replace("/", "::")


def artifact_name(project: str, workspace: str, number: int) -> str:
    """Name of the artifact carrying a project's plan for a pull request."""
    return f"{ARTIFACT_PREFIX}{_escape(project)}_{workspace}_{number}"


def plan_filename(project: str, workspace: str, number: int) -> str:
    """File name terraform writes the plan to, relative to the project dir."""
    return f"{_escape(project)}_{workspace}_{number}{PLAN_FILE_SUFFIX}"


@dataclass(frozen=True)
class PlanArtifact:
    """A plan file waiting to be uploaded."""

    name: str
    path: str


class ArtifactHandoff:
    """Publishes, resolves, downloads and retires plan artifacts."""

    def __init__(self, client: GitHubClient, upload_dir: Path, upload_version: str = "v4") -> None:
        """Initialize the handoff.

        Args:
            client: GitHubClient for artifact listing, download and deletion.
            upload_dir: Directory receiving the generated upload action.
            upload_version: Version tag of actions/upload-artifact.
        """
        self.client = client
        self.upload_dir = upload_dir
        self.upload_version = upload_version

    def publish(self, project: str, workspace: str, number: int, plan_path: str) -> PlanArtifact:
        return PlanArtifact(name=artifact_name(project, workspace, number), path=plan_path)

    def write_upload_action(self, artifacts: list[PlanArtifact]) -> Path:
        """Write the composite action uploading ``artifacts``.

        Returns:
            Path of the written action file.
        """
        steps = [
            {
                "name": artifact.name,
                "uses": f"{UPLOAD_ARTIFACT_ACTION}@{self.upload_version}",
                "with": {"name": artifact.name, "path": artifact.path, "overwrite": True},
            }
            for artifact in artifacts
        ]
        action = {"runs": {"using": "composite", "steps": steps}}

        self.upload_dir.mkdir(parents=True, exist_ok=True)
        path = self.upload_dir / UPLOAD_ACTION_FILE
        with path.open("w", encoding="utf-8") as f:
            yaml.safe_dump(action, f, sort_keys=False, indent=2)
        logger.debug(f"Wrote upload action for {len(artifacts)} artifact(s) to {path}")
        return path

    async def resolve_latest(self, names: list[str]) -> dict[str, GitHubArtifact]:
        """Find the newest artifact for each name.

        Names without any artifact are absent from the result.
        """
        wanted = set(names)
        latest: dict[str, GitHubArtifact] = {}
        async for artifact in self.client.iter_artifacts():
            if artifact.name not in wanted:
                continue
            current = latest.get(artifact.name)
            if current is None or artifact.id > current.id:
                latest[artifact.name] = artifact
        return latest

    async def consume(self, artifact: GitHubArtifact, dest_dir: Path, filename: str) -> Path:
        """Download ``artifact`` to ``<dest_dir>/<filename>.zip``.

        The caller extracts the archive.
        """
        destination = dest_dir / f"{filename}.zip"
        await self.client.download_artifact(artifact.id, destination)
        logger.debug(f"Downloaded artifact {artifact.name} ({artifact.id}) to {destination}")
        return destination

    async def retire(self, names: list[str]) -> None:
        """Delete every version of the named artifacts."""
        if not names:
            return
        wanted = set(names)
        ids = [artifact.id async for artifact in self.client.iter_artifacts() if artifact.name in wanted]
        for artifact_id in ids:
            await self.client.delete_artifact(artifact_id)
        logger.debug(f"Deleted {len(ids)} artifact(s) for {sorted(wanted)}")
