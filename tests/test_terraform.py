"""Tests for the terraform runner and its output parsers."""

from __future__ import annotations

import json
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest

from mu.runners.terraform import (
    TerraformError,
    TerraformNotFoundError,
    TerraformRunner,
    TerraformVersionMismatchError,
    _Completed,
    parse_apply_output,
    parse_plan_output,
)

PLAN_LOG = """\
Terraform used the selected providers to generate the following execution
plan. Resource actions are indicated with the following symbols:
  + create
  ~ update in-place

Terraform will perform the following actions:

  # null_resource.a will be created
  + resource "null_resource" "a" {
      + id = (known after apply)
    }

Plan: 1 to add, 0 to change, 0 to destroy.

Saved the plan to: plan.tfplan
"""

DESTROY_LOG = """\
Terraform will perform the following actions:

  # null_resource.a will be destroyed
  - resource "null_resource" "a" {}

Plan: 0 to add, 0 to change, 1 to destroy.
"""

NO_CHANGES_LOG = """\
null_resource.a: Refreshing state... [id=123]

No changes. Your infrastructure matches the configuration.
"""

WARNING_LOG = """\
╷
│ Warning: Argument is deprecated
│
│   with aws_s3_bucket.b,
│   on main.tf line 3:
│
│ Use the aws_s3_bucket_acl resource instead.
╵

Terraform will perform the following actions:

  ~ resource "aws_s3_bucket" "b" {}

Plan: 0 to add, 1 to change, 0 to destroy.
"""

ERROR_LOG = """\
╷
│ Error: Unsupported argument
│
│   on main.tf line 5, in resource "null_resource" "a":
│    5:   bogus = 1
│
│ An argument named "bogus" is not expected here.
╵
"""

APPLY_LOG = """\
null_resource.a: Creating...
null_resource.a: Creation complete after 0s [id=42]

Apply complete! Resources: 1 added, 0 changed, 0 destroyed.
"""

# =============================================================================
# Parsers
# =============================================================================


class TestParsePlanOutput:
    """Test parse_plan_output."""

    def test_plan_with_changes(self) -> None:
        out = parse_plan_output(PLAN_LOG)

        assert out.result == "Plan: 1 to add, 0 to change, 0 to destroy."
        assert out.changed_result.startswith('  # null_resource.a will be created\n  + resource "null_resource" "a" {')
        assert "Plan:" not in out.changed_result
        assert not out.has_error
        assert not out.has_destroy
        assert not out.has_parse_error
        assert out.raw_log == PLAN_LOG

    def test_plan_with_destroy(self) -> None:
        out = parse_plan_output(DESTROY_LOG)
        assert out.has_destroy
        assert out.result == "Plan: 0 to add, 0 to change, 1 to destroy."

    def test_no_changes(self) -> None:
        out = parse_plan_output(NO_CHANGES_LOG)

        assert out.has_no_changes
        assert out.result == "No changes. Your infrastructure matches the configuration."
        assert out.changed_result == ""

    def test_warning_is_extracted(self) -> None:
        out = parse_plan_output(WARNING_LOG)

        assert out.warning.startswith("Warning: Argument is deprecated")
        assert "Use the aws_s3_bucket_acl resource instead." in out.warning
        assert out.result == "Plan: 0 to add, 1 to change, 0 to destroy."
        assert not out.has_error

    def test_error(self) -> None:
        out = parse_plan_output(ERROR_LOG)

        assert out.has_error
        assert out.result.startswith("Error: Unsupported argument")
        assert 'An argument named "bogus" is not expected here.' in out.result
        assert "│" not in out.result

    def test_unrecognized_output(self) -> None:
        assert parse_plan_output("something unexpected\n").has_parse_error

    def test_outputs_only_change(self) -> None:
        log = "Changes to Outputs:\n  + url = \"x\"\n\nPlan: 0 to add, 0 to change, 0 to destroy.\n"
        out = parse_plan_output(log)
        assert out.changed_result.startswith("Changes to Outputs:")


class TestParseApplyOutput:
    """Test parse_apply_output."""

    def test_apply(self) -> None:
        out = parse_apply_output(APPLY_LOG)
        assert out.result == "Apply complete! Resources: 1 added, 0 changed, 0 destroyed."
        assert not out.has_error

    def test_apply_error(self) -> None:
        assert parse_apply_output(ERROR_LOG).has_error


# =============================================================================
# Runner
# =============================================================================


def _completed(returncode: int = 0, stdout: str = "", stderr: str = "") -> _Completed:
    return _Completed(returncode=returncode, stdout=stdout, stderr=stderr)


@pytest.fixture
def runner(tmp_path: Path) -> TerraformRunner:
    return TerraformRunner(tmp_path, version="1.9.0", exec_path="/usr/bin/terraform")


class TestTerraformRunner:
    """Test TerraformRunner command construction and error handling."""

    @pytest.mark.asyncio
    async def test_setup_not_found(self, tmp_path: Path) -> None:
        runner = TerraformRunner(tmp_path, exec_path="definitely-not-terraform-xyz")
        with patch("mu.runners.terraform.shutil.which", return_value=None):
            with pytest.raises(TerraformNotFoundError):
                await runner.setup()

    @pytest.mark.asyncio
    async def test_setup_resolves_path(self, tmp_path: Path) -> None:
        runner = TerraformRunner(tmp_path)
        with patch("mu.runners.terraform.shutil.which", return_value="/opt/bin/terraform"):
            await runner.setup()
        assert runner.exec_path == "/opt/bin/terraform"

    @pytest.mark.asyncio
    async def test_exec_requires_setup(self, tmp_path: Path) -> None:
        with pytest.raises(TerraformError):
            await TerraformRunner(tmp_path)._exec("version")

    @pytest.mark.asyncio
    async def test_version_info(self, runner: TerraformRunner) -> None:
        payload = {"terraform_version": "1.9.0", "provider_selections": {"registry.terraform.io/hashicorp/null": "3.2.2"}}
        with patch.object(runner, "_exec", new_callable=AsyncMock, return_value=_completed(stdout=json.dumps(payload))) as mock_exec:
            version, providers = await runner.version_info()

        assert version == "1.9.0"
        assert providers == {"registry.terraform.io/hashicorp/null": "3.2.2"}
        mock_exec.assert_awaited_once_with("version", "-json", echo=False)

    @pytest.mark.asyncio
    async def test_compare_version_mismatch(self, runner: TerraformRunner) -> None:
        with patch.object(runner, "_exec", new_callable=AsyncMock, return_value=_completed(stdout='{"terraform_version": "1.5.0"}')):
            with pytest.raises(TerraformVersionMismatchError):
                await runner.compare_version("1.9.0")

    @pytest.mark.asyncio
    async def test_compare_version_skipped_for_latest(self, tmp_path: Path) -> None:
        runner = TerraformRunner(tmp_path, version="LATEST", exec_path="/usr/bin/terraform")
        with patch.object(runner, "_exec", new_callable=AsyncMock) as mock_exec:
            await runner.compare_version("1.9.0")
        mock_exec.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_switch_workspace_creates_when_missing(self, runner: TerraformRunner) -> None:
        with patch.object(runner, "_exec", new_callable=AsyncMock, side_effect=[_completed(1, stderr="missing"), _completed()]) as mock_exec:
            await runner.switch_workspace("dev")

        assert [call.args[:2] for call in mock_exec.await_args_list] == [("workspace", "select"), ("workspace", "new")]

    @pytest.mark.asyncio
    async def test_switch_to_default_is_noop(self, runner: TerraformRunner) -> None:
        with patch.object(runner, "_exec", new_callable=AsyncMock) as mock_exec:
            await runner.switch_workspace("default")
            await runner.switch_workspace("")
        mock_exec.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_switch_workspace_failure(self, runner: TerraformRunner) -> None:
        with patch.object(runner, "_exec", new_callable=AsyncMock, return_value=_completed(1, stderr="denied")):
            with pytest.raises(TerraformError, match="workspace dev"):
                await runner.switch_workspace("dev")

    @pytest.mark.asyncio
    async def test_init_with_backend_config(self, runner: TerraformRunner) -> None:
        with patch.object(runner, "_exec", new_callable=AsyncMock, return_value=_completed(stdout="Terraform has been successfully initialized!\n")) as mock_exec:
            await runner.init("backend.hcl", {"bucket": "state"})

        assert mock_exec.await_args.args == (
            "init",
            "-input=false",
            "-no-color",
            "-backend-config=backend.hcl",
            "-backend-config=bucket=state",
            "-reconfigure",
        )

    @pytest.mark.asyncio
    async def test_plan_arguments(self, runner: TerraformRunner) -> None:
        with patch.object(runner, "_exec", new_callable=AsyncMock, return_value=_completed(stdout=PLAN_LOG)) as mock_exec:
            out = await runner.plan(vars=["a=1"], var_files=["prod.tfvars"], destroy=True, out="p.tfplan")

        assert mock_exec.await_args.args == (
            "plan",
            "-input=false",
            "-no-color",
            "-var=a=1",
            "-var-file=prod.tfvars",
            "-out=p.tfplan",
            "-destroy",
        )
        assert out.result == "Plan: 1 to add, 0 to change, 0 to destroy."

    @pytest.mark.asyncio
    async def test_failed_plan_is_parsed_from_stderr(self, runner: TerraformRunner) -> None:
        with patch.object(runner, "_exec", new_callable=AsyncMock, return_value=_completed(1, stdout="progress\n", stderr=ERROR_LOG)):
            out = await runner.plan()

        assert out.has_error
        assert out.raw_log == "progress\n" + ERROR_LOG

    @pytest.mark.asyncio
    async def test_failure_without_diagnostic_raises(self, runner: TerraformRunner) -> None:
        with patch.object(runner, "_exec", new_callable=AsyncMock, return_value=_completed(1)):
            with pytest.raises(TerraformError):
                await runner.plan()
        with patch.object(runner, "_exec", new_callable=AsyncMock, return_value=_completed(1, stderr="killed\n")):
            with pytest.raises(TerraformError, match="killed"):
                await runner.apply("p.tfplan")

    @pytest.mark.asyncio
    async def test_apply_arguments(self, runner: TerraformRunner) -> None:
        with patch.object(runner, "_exec", new_callable=AsyncMock, return_value=_completed(stdout=APPLY_LOG)) as mock_exec:
            out = await runner.apply("p.tfplan")

        assert mock_exec.await_args.args == ("apply", "-input=false", "-no-color", "-auto-approve", "p.tfplan")
        assert out.result.startswith("Apply complete!")

    @pytest.mark.asyncio
    async def test_plain_commands(self, runner: TerraformRunner) -> None:
        with patch.object(runner, "_exec", new_callable=AsyncMock, return_value=_completed(stdout="ok")) as mock_exec:
            await runner.force_unlock("lock-id")
            await runner.import_resource("aws_instance.web", "i-1", vars=["a=1"])
            out = await runner.state_rm("module.a", dry_run=True)

        assert [call.args for call in mock_exec.await_args_list] == [
            ("force-unlock", "-force", "-no-color", "lock-id"),
            ("import", "-input=false", "-no-color", "-var=a=1", "aws_instance.web", "i-1"),
            ("state", "rm", "-dry-run", "module.a"),
        ]
        assert out.result == "ok"
        assert not out.has_error

    @pytest.mark.asyncio
    async def test_plain_command_error(self, runner: TerraformRunner) -> None:
        with patch.object(runner, "_exec", new_callable=AsyncMock, return_value=_completed(1, stderr="Error: no lock")):
            out = await runner.force_unlock("lock-id")
        assert out.has_error
        assert out.result == "Error: no lock"
