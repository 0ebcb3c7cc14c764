"""Error taxonomy for mu command execution.

Every failure the orchestrator can surface to the caller derives from
MuError, including the terraform runner's TerraformError and the archive
extractor's ArchiveError. Transport failures live with the GitHub client
(mu.sync.github_client.GitHubClientError) and configuration failures
with mu.config.ConfigError.
"""

from __future__ import annotations


class MuError(Exception):
    """Base exception for mu errors."""


class InvalidCommandError(MuError):
    """The comment is not a valid mu command."""


class AlreadyLockedError(MuError):
    """The project lock is held by another pull request."""

    def __init__(self, project: str, holder: str) -> None:
        super().__init__(f"already locked: project={project} holder={holder}")
        self.project = project
        self.holder = holder


class MultipleLockLabelsError(MuError):
    """More than one open pull request carries the same lock label."""

    def __init__(self, label: str) -> None:
        super().__init__(f"multiple lock labels: {label}")
        self.label = label


class ApprovalsRequiredError(MuError):
    """Not enough approving reviews to run apply."""

    def __init__(self, required: int, approvals: int) -> None:
        super().__init__(f"not enough approvals: require_approvals={required} count={approvals}")
        self.required = required
        self.approvals = approvals


class NotFoundPlanFileError(MuError):
    """No plan artifact exists for the project being applied."""

    def __init__(self, project: str) -> None:
        super().__init__(f"plan file is not found: {project}")
        self.project = project


class InitFailedError(MuError):
    """terraform init reported an error."""


class PlanFailedError(MuError):
    """terraform plan reported an error."""


class ApplyFailedError(MuError):
    """terraform apply reported an error."""


class ImportFailedError(MuError):
    """terraform import reported an error."""


class ForceUnlockFailedError(MuError):
    """terraform force-unlock reported an error."""


class InvalidForceUnlockError(MuError):
    """A force unlock was requested for more than one project."""


class InternalFailureError(MuError):
    """An unexpected exception escaped a command body."""


class MergeConflictError(MuError):
    """The pull request is not in a mergeable state."""

    def __init__(self, mergeable_state: str) -> None:
        super().__init__(f"conflict: {mergeable_state}")
        self.mergeable_state = mergeable_state
