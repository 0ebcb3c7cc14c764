"""CLI interface for mu."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Annotated

import typer
from pydantic import ValidationError
from rich.console import Console

from mu.config import ActionSettings
from mu.core.orchestrator import Orchestrator
from mu.sync.events import Event, load_event
from mu.sync.github_client import GitHubClient
from mu.utils.actions import WorkflowIO
from mu.utils.log import configure_logging

__version__ = "0.1.0"

app = typer.Typer(
    name="mu",
    help="Terraform pull request automation for GitHub Actions.",
    no_args_is_help=True,
)
console = Console()
logger = logging.getLogger("mu.cli")


async def _execute(settings: ActionSettings, event: Event) -> None:
    async with GitHubClient(settings.repository, token=settings.github_token) as client:
        orchestrator = Orchestrator(settings, client, workflow=WorkflowIO.from_env())
        await orchestrator.execute(event)


@app.command()
def run(
    github_token: Annotated[
        str,
        typer.Option("--github-token", envvar="INPUT_GITHUB_TOKEN", help="Token used for the GitHub API", show_default=False),
    ] = "",
    config_path: Annotated[
        Path,
        typer.Option("--config-path", "-c", envvar="INPUT_CONFIG_PATH", help="Path to the mu configuration file"),
    ] = Path("mu.yaml"),
    repository: Annotated[
        str,
        typer.Option("--repository", envvar="GITHUB_REPOSITORY", help="owner/repo"),
    ] = "",
    event_name: Annotated[
        str,
        typer.Option("--event-name", envvar="GITHUB_EVENT_NAME", help="Name of the triggering event"),
    ] = "",
    event_path: Annotated[
        Path | None,
        typer.Option("--event-path", envvar="GITHUB_EVENT_PATH", help="Path to the event payload"),
    ] = None,
    default_terraform_version: Annotated[
        str,
        typer.Option("--default-terraform-version", envvar="INPUT_DEFAULT_TERRAFORM_VERSION"),
    ] = "",
    upload_artifact_version: Annotated[
        str,
        typer.Option("--upload-artifact-version", envvar="INPUT_UPLOAD_ARTIFACT_VERSION"),
    ] = "v4",
    upload_artifact_dir: Annotated[
        Path,
        typer.Option("--upload-artifact-dir", envvar="INPUT_UPLOAD_ARTIFACT_DIR"),
    ] = Path(".mu"),
    allow_commands: Annotated[
        str,
        typer.Option("--allow-commands", envvar="INPUT_ALLOW_COMMANDS", help="Comma-separated commands"),
    ] = "plan,apply,unlock,import,state",
    emoji_reaction: Annotated[
        str,
        typer.Option("--emoji-reaction", envvar="INPUT_EMOJI_REACTION", help="Reaction added to command comments"),
    ] = "",
    disable_summary_log: Annotated[
        bool,
        typer.Option("--disable-summary-log", envvar="INPUT_DISABLE_SUMMARY_LOG", help="Do not write step summaries"),
    ] = False,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Log debug messages"),
    ] = False,
) -> None:
    """Handle the GitHub event that triggered this workflow run."""
    configure_logging(logging.DEBUG if verbose else logging.INFO)
    console.print(f"mu (version={__version__})", highlight=False)

    try:
        settings = ActionSettings(
            repository=repository,
            github_token=github_token,
            config_path=config_path,
            default_terraform_version=default_terraform_version,
            upload_artifact_version=upload_artifact_version,
            upload_artifact_dir=upload_artifact_dir,
            allow_commands=allow_commands,
            emoji_reaction=emoji_reaction,
            disable_summary_log=disable_summary_log,
        )
    except ValidationError as e:
        logger.error(f"invalid action inputs: {e}")
        raise typer.Exit(1) from e

    if "/" not in settings.repository:
        logger.error(f"invalid repository: {settings.repository!r}")
        raise typer.Exit(1)

    try:
        event = load_event(event_name, event_path or Path())
        asyncio.run(_execute(settings, event))
    except Exception as e:
        logger.error(str(e))
        raise typer.Exit(1) from e


@app.command()
def version() -> None:
    """Show the mu version."""
    console.print(f"mu {__version__}")


if __name__ == "__main__":
    app()
