"""GitHub Actions runner integration: outputs, step summary, log groups and URLs."""

from __future__ import annotations

import logging
import os
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import TextIO
from urllib.parse import quote

logger = logging.getLogger(__name__)

SERVER_URL = "https://github.com"


def run_url(repository: str | None = None, run_id: str | None = None) -> str:
    """URL of the current workflow run, or "" outside of Actions."""
    repository = repository if repository is not None else os.getenv("GITHUB_REPOSITORY", "")
    run_id = run_id if run_id is not None else os.getenv("GITHUB_RUN_ID", "")
    if not repository or not run_id:
        return ""
    return f"{SERVER_URL}/{repository}/actions/runs/{run_id}"


def label_url(label: str, repository: str | None = None) -> str:
    """URL of a repository label, or "" outside of Actions."""
    repository = repository if repository is not None else os.getenv("GITHUB_REPOSITORY", "")
    if not repository or not label:
        return ""
    return f"{SERVER_URL}/{repository}/labels/{quote(label, safe='')}"


class WorkflowIO:
    """Process-level output channels of a workflow step.

    Outputs and step summaries are appended to the files named by
    GITHUB_OUTPUT and GITHUB_STEP_SUMMARY; when a variable is unset the
    write is skipped.
    """

    def __init__(
        self,
        output_path: Path | None = None,
        summary_path: Path | None = None,
        stdout: TextIO | None = None,
    ) -> None:
        self.output_path = output_path
        self.summary_path = summary_path
        self.stdout = stdout or sys.stdout

    @classmethod
    def from_env(cls) -> WorkflowIO:
        output = os.getenv("GITHUB_OUTPUT")
        summary = os.getenv("GITHUB_STEP_SUMMARY")
        return cls(
            output_path=Path(output) if output else None,
            summary_path=Path(summary) if summary else None,
        )

    def set_output(self, key: str, value: str) -> None:
        if self.output_path is None:
            return
        self._append(self.output_path, f"{key}={value}\n")

    def add_step_summary(self, markdown: str) -> None:
        if self.summary_path is None:
            return
        self._append(self.summary_path, "".join(line + "\n" for line in markdown.splitlines()))

    @contextmanager
    def group(self, title: str) -> Iterator[None]:
        """Fold everything written inside the block under ``title`` in the run log."""
        self.stdout.write(f"::group::{title}\n")
        self.stdout.flush()
        try:
            yield
        finally:
            self.stdout.write("\n::endgroup::\n")
            self.stdout.flush()

    def _append(self, path: Path, text: str) -> None:
        with path.open("a", encoding="utf-8") as f:
            f.write(text)
