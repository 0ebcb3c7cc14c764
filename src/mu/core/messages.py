"""Markdown bodies for pull request comments and step summaries."""

from __future__ import annotations

import re
from collections.abc import Iterable

from mu.config import Project
from mu.runners.terraform import CommandOutput, TerraformOutput

INIT_MARKER = "<!-- mu:init -->"
PLAN_MARKER = "<!-- mu:plan -->"
APPLY_MARKER = "<!-- mu:apply -->"

_DIFF_KEYWORD = re.compile(r"^( +)([-+~])", re.MULTILINE)
_DIFF_TILDE = re.compile(r"^~", re.MULTILINE)

HELP_TEXT = """Mu
Terraform Pull Request Automation

Usage:
  mu <command> [options] -- [terraform options]

Examples:
  # show mu help
  mu help

  # run plan in the project passing the -var flag to terraform
  mu plan -p <project> -- -var name=test

  # apply the plan for the project
  mu apply -p <project>

Commands:
  plan     Runs 'terraform plan' for the changes in this pull request.
           To plan a specific project, use the -p flags.

  apply    Runs 'terraform apply' on all unapplied plans from this pull request.
           To only apply a specific plan, use the -p flags.

  unlock   Removes all mu locks and discards all plans for this pull request.

  import   Runs 'terraform import' for a single project.

  state    Runs 'terraform state rm' for a single project.

  help     View help.

"""

NO_PROJECT_TO_PLAN = "There is no project to run `mu plan` on."
NO_PROJECT_TO_APPLY = "There is no project to plan."
PROJECT_NOT_FOUND = "The specified project could not be found."
SINGLE_PROJECT_ONLY = "Please limit to one target project."


# =============================================================================
# Helpers
# =============================================================================


def format_alert(kind: str, text: str) -> str:
    """Quote ``text`` as a GitHub alert block (``> [!KIND]``); empty text yields ""."""
    if not text:
        return ""
    lines = [f"> [!{kind.upper()}]\n"]
    lines.extend(f"> {line}\n" for line in text.splitlines())
    return "".join(lines)


def diff_markdown(text: str) -> str:
    """Move terraform's change symbols to column 0 so a ``diff`` fence colors them.

    ``~`` becomes ``!`` since diff highlighting has no update marker.
    """
    text = _DIFF_KEYWORD.sub(r"\2\1", text)
    return _DIFF_TILDE.sub("!", text)


def _diff_block(changed_result: str) -> str:
    if not changed_result:
        return ""
    return "".join(diff_markdown(line) + "\n" for line in changed_result.splitlines())


def _project_line(project: Project) -> str:
    return f"project: `{project.name}` dir: `{project.dir}` workspace: `{project.workspace}`\n"


def _next_step(description: str, command: str) -> str:
    return f"- {description}, comment:\n  ```\n  {command}\n  ```\n"


# =============================================================================
# Command replies
# =============================================================================


def help_message() -> str:
    return "```\n" + HELP_TEXT + "```\n"


def unknown_command_message(command: str, allow_commands: Iterable[str]) -> str:
    return (
        "```\n"
        f'Error: unknown command "{command}".\n'
        "Run 'mu help' for usage.\n"
        f"Available commands: {', '.join(allow_commands)}\n"
        "```\n"
    )


def init_failed_message(project: Project, output: TerraformOutput) -> str:
    return INIT_MARKER + "\n:x: **Init Failed**\n" + _project_line(project) + format_alert("CAUTION", output.result)


def plan_succeeded_message(project: Project, output: TerraformOutput) -> str:
    """Plan result with the resource diff and the follow-up commands."""
    parts = [
        PLAN_MARKER,
        "\n:white_check_mark: **Plan Result**\n",
        _project_line(project),
        "\n```\n",
        output.result,
        "\n```\n\n\n",
    ]
    diff = _diff_block(output.changed_result)
    if diff:
        parts += ["<details><summary>Show Output</summary>\n\n", "```diff\n", diff, "\n```\n</details>\n\n"]
    parts += [
        "**next step**\n",
        _next_step("To apply this plan", f"mu apply -p {project.name}"),
        _next_step("To delete this plan and lock", f"mu unlock -p {project.name}"),
        _next_step("To plan this project again", f"mu plan -p {project.name}"),
    ]
    warning = format_alert("WARNING", output.warning)
    if warning:
        parts += [warning, "\n\n"]
    return "".join(parts)


def plan_failed_message(project: Project, output: TerraformOutput) -> str:
    return PLAN_MARKER + "\n:x: **Plan Failed**\n" + _project_line(project) + format_alert("CAUTION", output.result)


def apply_succeeded_message(project: Project, output: TerraformOutput) -> str:
    parts = [
        APPLY_MARKER,
        "\n:white_check_mark: **Apply Result**\n",
        _project_line(project),
        "\n```\n",
        output.result,
        "\n```\n",
    ]
    warning = format_alert("WARNING", output.warning)
    if warning:
        parts += [warning, "\n\n"]
    return "".join(parts)


def apply_failed_message(project: Project, output: TerraformOutput) -> str:
    return APPLY_MARKER + "\n:x: **Apply Failed**\n" + _project_line(project) + format_alert("CAUTION", output.result)


def plan_file_missing_message(project_name: str) -> str:
    return (
        f"{PLAN_MARKER}\nThe plan file for the `{project_name}` project is not in the Actions Artifacts. "
        "Please run `mu plan` again."
    )


def approvals_required_message(required: int) -> str:
    return f":x: At least {required} approvals are required before running `mu apply`."


def force_unlock_message(output: CommandOutput) -> str:
    title = ":x: **Force Unlock Failed**\n" if output.has_error else ":white_check_mark: **Force Unlock**\n"
    return title + "\n```\n" + output.result + "\n```\n"


def import_message(project_name: str, address: str, resource_id: str, log: str) -> str:
    return f"## mu import -p {project_name}\n**Address**:{address}**Id**:{resource_id}\n```\n{log}\n```\n"


def state_rm_message(address: str, log: str) -> str:
    return f"### {address}\n```\n{log}\n```\n"


# =============================================================================
# Step summaries
# =============================================================================


def step_summary(title: str, project: Project, log: str) -> str:
    """Collapsible terraform log for the workflow step summary."""
    return (
        f"## {title}\n\n"
        f"project: `{project.name}` workspace: `{project.workspace}`\n"
        "<details><summary>Show Output</summary>\n"
        f"\n```\n{log}\n```\n"
        "</details>\n"
    )


def init_failed_summary(project: Project, log: str) -> str:
    return (
        f"## {project.name}\n\n"
        ":x: **Init Failed**\n"
        f"project={project.name} workspace={project.workspace}\n"
        "<details><summary>Show Output</summary>\n"
        f"\n```\n{log}\n```\n"
        "</details>\n"
    )


def state_rm_summary(project: Project, address: str, log: str) -> str:
    return (
        "## mu state rm\n\n"
        f"**address: {address}**\n"
        f"project: `{project.name}` workspace: `{project.workspace}`\n"
        "<details><summary>Show Output</summary>\n"
        f"\n```\n{log}\n```\n"
        "</details>\n"
    )
