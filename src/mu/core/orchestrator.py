"""Event handling: turns pull request events and mu comments into terraform runs."""

from __future__ import annotations

import json
import logging
import posixpath
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from pathlib import Path
from typing import TYPE_CHECKING, assert_never

from mu.config import Config, Project
from mu.core import messages
from mu.core.artifacts import ArtifactHandoff, PlanArtifact, artifact_name, plan_filename
from mu.core.chunker import split_message
from mu.core.commands import Apply, CommandKind, Help, Import, Plan, StateRm, Unlock, parse_command
from mu.core.errors import (
    ApplyFailedError,
    ApprovalsRequiredError,
    ForceUnlockFailedError,
    ImportFailedError,
    InitFailedError,
    InternalFailureError,
    InvalidCommandError,
    InvalidForceUnlockError,
    MergeConflictError,
    MuError,
    NotFoundPlanFileError,
    PlanFailedError,
)
from mu.core.locks import ProjectLockManager
from mu.core.progress import ProgressGuard, progress_label
from mu.core.status import StatusReporter
from mu.runners.terraform import TerraformOutput, TerraformRunner
from mu.sync.events import Event, IssueCommentEvent, PullRequestAction, PullRequestEvent
from mu.sync.github_client import ACTION_BOT_LOGIN, GitHubClientError, GitHubNotFoundError, count_approvals
from mu.utils.actions import WorkflowIO, run_url
from mu.utils.archive import decompress

if TYPE_CHECKING:
    from mu.config import ActionSettings
    from mu.sync.github_client import GitHubArtifact, GitHubClient, GitHubReview

logger = logging.getLogger(__name__)

TerraformFactory = Callable[[Project], TerraformRunner]


def default_terraform(project: Project) -> TerraformRunner:
    return TerraformRunner.streaming(
        Path(project.dir),
        version=project.terraform.version,
        exec_path=project.terraform.exec_path,
    )


def _with_workspace(project: Project, workspace: str) -> Project:
    """Apply a workspace given on the command line."""
    if not workspace or workspace == project.workspace:
        return project
    return project.model_copy(update={"workspace": workspace})


class Orchestrator:
    """Executes one GitHub event.

    Each run handles exactly one event. All coordination with concurrent
    runs goes through labels on the repository: the progress label guards
    a pull request, lock labels guard projects.
    """

    def __init__(
        self,
        settings: ActionSettings,
        client: GitHubClient,
        workflow: WorkflowIO | None = None,
        terraform_factory: TerraformFactory | None = None,
        target_url: str | None = None,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            settings: Action inputs.
            client: GitHubClient for the repository.
            workflow: Output channels of the workflow step.
            terraform_factory: Builds the terraform runner for a project.
            target_url: Link attached to commit statuses; defaults to the
                current workflow run.
        """
        self.settings = settings
        self.client = client
        self.workflow = workflow or WorkflowIO.from_env()
        self.terraform_factory = terraform_factory or default_terraform
        self.run_url = target_url if target_url is not None else run_url(settings.repository)

        self.locks = ProjectLockManager(client, settings.repository)
        self.progress = ProgressGuard(client)
        self.statuses = StatusReporter(client, self.run_url)
        self.artifacts = ArtifactHandoff(client, settings.upload_artifact_dir, settings.upload_artifact_version)

    def load_config(self) -> Config:
        return Config.load(self.settings.config_path, self.settings.default_terraform_version)

    # =========================================================================
    # Entry point
    # =========================================================================

    async def execute(self, event: Event) -> None:
        """Handle one event.

        Raises:
            MuError: If a command failed after reporting the failure.
            GitHubClientError: If the GitHub API failed.
            ConfigError: If the configuration document is invalid.
        """
        match event:
            case PullRequestEvent():
                await self._on_pull_request(event)
            case IssueCommentEvent():
                await self._on_issue_comment(event)
            case _:
                assert_never(event)

    async def _on_pull_request(self, event: PullRequestEvent) -> None:
        try:
            action = PullRequestAction(event.action)
        except ValueError:
            logger.debug(f"Ignoring pull_request action {event.action}")
            return

        config = self.load_config()
        pull_request = await self.client.get_pull_request(event.number)
        if action is PullRequestAction.CLOSED:
            await self.unlock(event.number, config, Unlock())
            return
        await self.auto_plan(event.number, pull_request.head_sha, config)

    async def _on_issue_comment(self, event: IssueCommentEvent) -> None:
        if event.action != "created":
            return
        try:
            command = parse_command(event.comment.body)
        except InvalidCommandError:
            return

        if self.settings.emoji_reaction:
            await self.client.create_comment_reaction(event.comment.id, self.settings.emoji_reaction)

        number = event.number
        if command.kind is not CommandKind.HELP and command.kind.value not in self.settings.allow_commands:
            await self.client.create_issue_comment(
                number, messages.unknown_command_message(command.kind.value, self.settings.allow_commands)
            )
            return

        pull_request = await self.client.get_pull_request(number)
        if not pull_request.is_mergeable:
            raise MergeConflictError(pull_request.mergeable_state)
        sha = pull_request.head_sha
        config = self.load_config()
        logger.info(f"Running mu {command.kind.value}", extra={"attrs": {"pr": number, "sha": sha}})

        match command:
            case Plan():
                await self.plan(number, sha, config, command)
            case Apply():
                await self.apply(number, sha, config, command)
            case Unlock():
                await self.unlock(number, config, command)
            case Help():
                await self.client.create_issue_comment(number, messages.help_message())
            case Import():
                await self.import_resource(number, sha, config, command)
            case StateRm():
                await self.state_rm(number, sha, config, command)
            case _:
                assert_never(command)

    # =========================================================================
    # Plan
    # =========================================================================

    async def auto_plan(self, number: int, sha: str, config: Config) -> None:
        """Plan every auto-plan project touched by the pull request."""
        files = await self.client.list_files(number)
        projects = [p for p in config.projects if p.plan.auto and p.has_modified_files(files)]
        if not projects:
            return

        async def body() -> None:
            planned = []
            for project in projects:
                planned.append((project, await self._plan_project(number, sha, project, Plan())))
            self._publish_plans(number, planned)

        await self.progress.run(number, sha, body)

    async def plan(self, number: int, sha: str, config: Config, command: Plan) -> None:
        async def body() -> None:
            files = await self.client.list_files(number)
            projects = config.find_projects(command.project, files)
            if not projects:
                await self.client.create_issue_comment(number, messages.NO_PROJECT_TO_PLAN)
                return

            planned = []
            for project in projects:
                if not project.has_modified_files(files):
                    logger.info(f"No modified files in project {project.name}, skipping plan")
                    continue
                project = _with_workspace(project, command.workspace)
                planned.append((project, await self._plan_project(number, sha, project, command)))
            if not planned:
                await self.client.create_issue_comment(number, messages.PROJECT_NOT_FOUND)
                return
            self._publish_plans(number, planned)

        await self.progress.run(number, sha, body)

    async def _plan_project(self, number: int, sha: str, project: Project, command: Plan) -> TerraformOutput:
        kind = CommandKind.PLAN
        async with self._failure_status(sha, kind, project):
            await self.statuses.pending(sha, kind, project.name)
            await self.locks.acquire(project.name, number, kind, project.lock_label_color)

            tf = await self._prepare_terraform(project)
            await self._init(number, project, tf, hide=(messages.INIT_MARKER, messages.PLAN_MARKER))

            filename = plan_filename(project.name, project.workspace, number)
            with self.workflow.group(f"mu plan --project={project.name} --workspace={project.workspace}"):
                output = await tf.plan(
                    vars=[*project.terraform.vars, *command.vars],
                    var_files=[*project.terraform.var_files, *command.var_files],
                    destroy=command.destroy,
                    out=filename,
                )
            self._summary(messages.step_summary("mu plan", project, output.raw_log))
            await self._hide_previous_results(number, messages.INIT_MARKER, messages.PLAN_MARKER)
            if output.has_error:
                await self._post(number, messages.plan_failed_message(project, output))
                raise PlanFailedError(f"plan failed: {project.name}")
            await self._post(number, messages.plan_succeeded_message(project, output))
            await self.statuses.success(sha, kind, project.name, output.result)
            return output

    def _publish_plans(self, number: int, planned: list[tuple[Project, TerraformOutput]]) -> None:
        uploads: list[PlanArtifact] = []
        for project, _ in planned:
            path = posixpath.join(project.dir, plan_filename(project.name, project.workspace, number))
            uploads.append(self.artifacts.publish(project.name, project.workspace, number, path))
        self._set_projects_output("plan", planned)
        self.artifacts.write_upload_action(uploads)
        self.workflow.set_output("upload_artifact", "true")

    # =========================================================================
    # Apply
    # =========================================================================

    async def apply(self, number: int, sha: str, config: Config, command: Apply) -> None:
        async def body() -> None:
            files = await self.client.list_files(number)
            reviews = await self.client.list_reviews(number)
            projects = [_with_workspace(p, command.workspace) for p in config.find_projects(command.project, files)]
            if not projects:
                await self.client.create_issue_comment(number, messages.NO_PROJECT_TO_APPLY)
                return

            names = {p.name: artifact_name(p.name, p.workspace, number) for p in projects}
            latest = await self.artifacts.resolve_latest(list(names.values()))

            applied = []
            for project in projects:
                if not project.has_modified_files(files):
                    logger.info(f"No modified files in project {project.name}, skipping apply")
                    continue
                artifact = latest.get(names[project.name])
                applied.append((project, await self._apply_project(number, sha, project, artifact, reviews)))
            if not applied:
                await self.client.create_issue_comment(number, messages.PROJECT_NOT_FOUND)
                return

            self._set_projects_output("apply", applied)
            await self.artifacts.retire([names[project.name] for project, _ in applied])

        await self.progress.run(number, sha, body)

    async def _apply_project(
        self,
        number: int,
        sha: str,
        project: Project,
        artifact: GitHubArtifact | None,
        reviews: list[GitHubReview],
    ) -> TerraformOutput:
        kind = CommandKind.APPLY
        async with self._failure_status(sha, kind, project):
            required = project.apply.require_approvals
            if required > 0:
                approvals = count_approvals(reviews)
                if required > approvals:
                    await self.client.create_issue_comment(number, messages.approvals_required_message(required))
                    raise ApprovalsRequiredError(required, approvals)

            await self.locks.acquire(project.name, number, kind, project.lock_label_color)
            await self.statuses.pending(sha, kind, project.name)

            if artifact is None:
                await self.client.create_issue_comment(number, messages.plan_file_missing_message(project.name))
                raise NotFoundPlanFileError(project.name)

            project_dir = Path(project.dir)
            filename = plan_filename(project.name, project.workspace, number)
            archive = await self.artifacts.consume(artifact, project_dir, filename)
            decompress(project_dir, archive)

            tf = await self._prepare_terraform(project)
            await self._init(number, project, tf, hide=(messages.INIT_MARKER, messages.APPLY_MARKER))

            with self.workflow.group(f"mu apply --project={project.name} --workspace={project.workspace}"):
                output = await tf.apply(filename)
            self._summary(messages.step_summary("mu apply", project, output.raw_log))
            await self._hide_previous_results(number, messages.INIT_MARKER, messages.APPLY_MARKER)
            if output.has_error:
                await self._post(number, messages.apply_failed_message(project, output))
                raise ApplyFailedError(f"apply failed: {project.name}")
            await self._post(number, messages.apply_succeeded_message(project, output))
            await self.statuses.success(sha, kind, project.name)
            return output

    # =========================================================================
    # Import / state rm
    # =========================================================================

    async def _single_project(self, number: int, config: Config, name: str, workspace: str) -> Project | None:
        files = await self.client.list_files(number)
        projects = config.find_projects(name, files)
        if len(projects) != 1:
            await self.client.create_issue_comment(number, messages.SINGLE_PROJECT_ONLY)
            return None
        return _with_workspace(projects[0], workspace)

    async def import_resource(self, number: int, sha: str, config: Config, command: Import) -> None:
        async def body() -> None:
            project = await self._single_project(number, config, command.project, command.workspace)
            if project is None:
                return

            tf = await self._prepare_terraform(project)
            await self._init(number, project, tf)
            with self.workflow.group(f"mu import --project={project.name} --workspace={project.workspace}"):
                output = await tf.import_resource(
                    command.address,
                    command.id,
                    vars=[*project.terraform.vars, *command.vars],
                    var_files=[*project.terraform.var_files, *command.var_files],
                )
            self._summary(messages.step_summary("mu import", project, output.result))
            await self._post(number, messages.import_message(project.name, command.address, command.id, output.result))
            if output.has_error:
                raise ImportFailedError(f"import failed: {project.name} {command.address}")

        await self.progress.run(number, sha, body)

    async def state_rm(self, number: int, sha: str, config: Config, command: StateRm) -> None:
        async def body() -> None:
            project = await self._single_project(number, config, command.project, command.workspace)
            if project is None:
                return

            tf = await self._prepare_terraform(project)
            await self._init(number, project, tf)
            sections = []
            for address in command.addresses:
                title = f"mu state --project={project.name} --workspace={project.workspace} rm {address}"
                with self.workflow.group(title):
                    output = await tf.state_rm(address, dry_run=command.dry_run)
                self._summary(messages.state_rm_summary(project, address, output.result))
                sections.append(messages.state_rm_message(address, output.result) + "\n")
            await self._post(number, "".join(sections))

        await self.progress.run(number, sha, body)

    # =========================================================================
    # Unlock
    # =========================================================================

    async def unlock(self, number: int, config: Config, command: Unlock) -> None:
        """Release locks, force-unlock terraform state if asked and drop plan artifacts.

        Runs outside the progress guard so a stuck progress label can be
        cleared; the label is deleted at the end.
        """
        if command.project:
            project = config.get_project(command.project)
            projects = [project] if project else []
        else:
            files = await self.client.list_files(number)
            projects = [p for p in config.projects if p.has_modified_files(files)]
        projects = [_with_workspace(p, command.workspace) for p in projects]
        if not projects:
            return

        pull_request = await self.client.get_pull_request(number)
        if len(projects) > 1 and command.force_unlock_id:
            raise InvalidForceUnlockError("force unlock requires a single project")

        names = []
        for project in projects:
            if command.force_unlock_id:
                await self._force_unlock(number, project, command.force_unlock_id)
            await self.locks.release(project.name, pull_request)
            names.append(artifact_name(project.name, project.workspace, number))

        await self.artifacts.retire(names)
        try:
            await self.client.delete_label(progress_label(number))
        except GitHubNotFoundError:
            pass

    async def _force_unlock(self, number: int, project: Project, lock_id: str) -> None:
        tf = await self._prepare_terraform(project)
        await self._init(number, project, tf)
        with self.workflow.group(f"mu unlock --force-unlock {lock_id}"):
            output = await tf.force_unlock(lock_id)
        self._summary(messages.step_summary("mu force unlock", project, output.result))
        await self._post(number, messages.force_unlock_message(output))
        if output.has_error:
            raise ForceUnlockFailedError(f"force unlock failed: {project.name}")

    # =========================================================================
    # Helpers
    # =========================================================================

    @asynccontextmanager
    async def _failure_status(self, sha: str, kind: CommandKind, project: Project) -> AsyncIterator[None]:
        """Mark the project's status as failed when the block raises."""
        try:
            yield
        except Exception as e:
            try:
                await self.statuses.failure(sha, kind, project.name)
            except GitHubClientError as status_error:
                logger.error(f"Failed to update commit status for {project.name}: {status_error}")
            if isinstance(e, (MuError, GitHubClientError)):
                raise
            raise InternalFailureError(f"internal failure: {e}") from e

    async def _prepare_terraform(self, project: Project) -> TerraformRunner:
        tf = self.terraform_factory(project)
        await tf.setup()
        await tf.compare_version(project.terraform.version)
        return tf

    async def _init(self, number: int, project: Project, tf: TerraformRunner, hide: tuple[str, ...] = ()) -> None:
        """Run terraform init and select the project's workspace.

        Raises:
            InitFailedError: If init reported an error, after posting it.
        """
        with self.workflow.group(f"mu init --project={project.name} --workspace={project.workspace}"):
            output = await tf.init(project.terraform.backend_config_path, project.terraform.backend_config)
        if output.has_error:
            self._summary(messages.init_failed_summary(project, output.raw_log))
            if hide:
                await self._hide_previous_results(number, *hide)
            await self._post(number, messages.init_failed_message(project, output))
            raise InitFailedError(f"init failed: {project.name}")
        await tf.switch_workspace(project.workspace)

    async def _hide_previous_results(self, number: int, *markers: str) -> None:
        """Minimize earlier result comments of this action that start with one of ``markers``."""
        for comment in await self.client.list_pull_request_comments(number):
            if comment.author_login != ACTION_BOT_LOGIN or comment.is_minimized:
                continue
            if not comment.body.startswith(markers):
                continue
            await self.client.hide_issue_comment(comment.id)

    async def _post(self, number: int, body: str) -> None:
        """Post ``body``, split over several comments when too long."""
        for chunk in split_message(body):
            await self.client.create_issue_comment(number, chunk)

    def _summary(self, markdown: str) -> None:
        if not self.settings.disable_summary_log:
            self.workflow.add_step_summary(markdown)

    def _set_projects_output(self, mode: str, results: list[tuple[Project, TerraformOutput]]) -> None:
        projects = [
            {
                "name": project.name,
                "dir": project.dir,
                "workspace": project.workspace,
                "mode": mode,
                "result": output.result,
                "action_url": self.run_url,
            }
            for project, output in results
        ]
        self.workflow.set_output("projects", json.dumps(projects, separators=(",", ":")))
