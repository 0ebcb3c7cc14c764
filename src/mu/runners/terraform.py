"""Terraform CLI runner.

Runs terraform as an asyncio subprocess inside a project directory and
turns its human-readable output into a TerraformOutput: the one-line
result, the resource changes, warnings and whether an error was reported.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import re
import shutil
import sys
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import TextIO

from mu.config import DEFAULT_WORKSPACE, LATEST_VERSION
from mu.core.errors import MuError

logger = logging.getLogger(__name__)

_PLAN_RESULT = re.compile(r"^Plan: (\d+) to (?:add|import)")
_PLAN_DESTROY = re.compile(r"(\d+) to destroy")
_NO_CHANGES = re.compile(r"^No changes\.")
_APPLY_RESULT = re.compile(r"^Apply complete!")
_CHANGES_START = "Terraform will perform the following actions:"
_OUTPUTS_START = "Changes to Outputs:"
_BOX_START = "╷"
_BOX_END = "╵"
_BOX_LINE = "│"


class TerraformError(MuError):
    """terraform could not be run or failed without a readable diagnostic."""


class TerraformNotFoundError(TerraformError):
    """No terraform binary is available."""


class TerraformVersionMismatchError(TerraformError):
    """The installed terraform is not the version the project requires."""


@dataclass
class TerraformOutput:
    """Parsed output of init, plan or apply."""

    result: str = ""
    changed_result: str = ""
    warning: str = ""
    has_error: bool = False
    has_no_changes: bool = False
    has_destroy: bool = False
    has_parse_error: bool = False
    raw_log: str = ""


@dataclass
class CommandOutput:
    """Output of commands whose text is shown as-is (force-unlock, import, state rm)."""

    result: str = ""
    has_error: bool = False


@dataclass
class _Completed:
    returncode: int
    stdout: str
    stderr: str
    args: list[str] = field(default_factory=list)


# =============================================================================
# Output parsing
# =============================================================================


def _unbox(lines: list[str]) -> tuple[list[str], list[list[str]]]:
    """Strip diagnostic box drawing.

    Returns:
        The plain lines and the content of every ``╷ ... ╵`` box.
    """
    plain: list[str] = []
    boxes: list[list[str]] = []
    current: list[str] | None = None
    for line in lines:
        stripped = line.rstrip()
        if stripped == _BOX_START:
            current = []
            continue
        if stripped == _BOX_END:
            if current is not None:
                boxes.append(current)
            current = None
            continue
        if stripped.startswith(_BOX_LINE):
            stripped = stripped[len(_BOX_LINE) :]
            stripped = stripped[1:] if stripped.startswith(" ") else stripped
        plain.append(stripped)
        if current is not None:
            current.append(stripped)
    return plain, boxes


def _diagnostics(plain: list[str], boxes: list[list[str]], severity: str) -> str:
    prefix = f"{severity}: "
    blocks = ["\n".join(box).strip() for box in boxes if box and box[0].startswith(prefix)]
    if blocks:
        return "\n\n".join(blocks)
    for i, line in enumerate(plain):
        if line.startswith(prefix):
            return "\n".join(plain[i:]).strip()
    return ""


def _parse(log: str, result_pattern: re.Pattern[str]) -> TerraformOutput:
    plain, boxes = _unbox(log.splitlines())
    out = TerraformOutput(raw_log=log)

    error = _diagnostics(plain, boxes, "Error")
    if error:
        out.result = error
        out.has_error = True
        return out

    out.warning = _diagnostics(plain, boxes, "Warning")

    result_index = -1
    for i, line in enumerate(plain):
        if result_pattern.match(line):
            result_index = i
            out.result = line.strip()
            break
        if _NO_CHANGES.match(line):
            result_index = i
            out.result = line.strip()
            out.has_no_changes = True
            break
    if result_index < 0:
        out.has_parse_error = True
        return out

    if (match := _PLAN_DESTROY.search(out.result)) and int(match.group(1)) > 0:
        out.has_destroy = True

    start = -1
    for i, line in enumerate(plain[:result_index]):
        if line.startswith(_CHANGES_START):
            start = i + 1
            break
        if line.startswith(_OUTPUTS_START) and start < 0:
            start = i
    if start >= 0:
        out.changed_result = "\n".join(plain[start:result_index]).strip("\n")
    return out


def parse_plan_output(log: str) -> TerraformOutput:
    """Parse the output of ``terraform plan`` (also used for ``init``)."""
    return _parse(log, _PLAN_RESULT)


def parse_apply_output(log: str) -> TerraformOutput:
    """Parse the output of ``terraform apply``."""
    return _parse(log, _APPLY_RESULT)


# =============================================================================
# Runner
# =============================================================================


class TerraformRunner:
    """Runs terraform commands in one working directory."""

    def __init__(
        self,
        work_dir: Path,
        version: str = LATEST_VERSION,
        exec_path: str = "",
        stream: TextIO | None = None,
    ) -> None:
        """Initialize the runner.

        Args:
            work_dir: Project directory terraform runs in.
            version: Required version, or "latest" to accept any.
            exec_path: terraform binary; looked up on PATH when empty.
            stream: Where to echo terraform output while it runs.
        """
        self.work_dir = work_dir
        self.version = (version or LATEST_VERSION).lower()
        self.exec_path = exec_path
        self.stream = stream

    @classmethod
    def streaming(cls, work_dir: Path, version: str = LATEST_VERSION, exec_path: str = "") -> TerraformRunner:
        """Runner that echoes terraform output to stdout."""
        return cls(work_dir, version=version, exec_path=exec_path, stream=sys.stdout)

    async def setup(self) -> None:
        """Resolve the terraform binary.

        Raises:
            TerraformNotFoundError: If no binary can be found.
        """
        candidate = self.exec_path or "terraform"
        resolved = shutil.which(candidate)
        if resolved is None:
            raise TerraformNotFoundError(f"terraform executable not found: {candidate}")
        self.exec_path = resolved
        logger.debug(f"Using terraform at {resolved} in {self.work_dir}")

    async def _exec(self, *args: str, echo: bool = True) -> _Completed:
        if not self.exec_path:
            raise TerraformError("setup() must be called before running terraform")

        env = {**os.environ, "TF_IN_AUTOMATION": "1", "TF_INPUT": "0"}
        process = await asyncio.create_subprocess_exec(
            self.exec_path,
            *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=self.work_dir,
            env=env,
        )

        async def collect(reader: asyncio.StreamReader | None) -> str:
            chunks: list[str] = []
            if reader is None:
                return ""
            while line := await reader.readline():
                text = line.decode("utf-8", errors="replace")
                chunks.append(text)
                if echo and self.stream is not None:
                    self.stream.write(text)
            return "".join(chunks)

        try:
            stdout, stderr = await asyncio.gather(collect(process.stdout), collect(process.stderr))
            returncode = await process.wait()
        except asyncio.CancelledError:
            process.kill()
            await process.wait()
            raise
        if self.stream is not None and echo:
            self.stream.flush()
        return _Completed(returncode=returncode, stdout=stdout, stderr=stderr, args=list(args))

    async def version_info(self) -> tuple[str, dict[str, str]]:
        """Return the terraform version and the selected provider versions."""
        completed = await self._exec("version", "-json", echo=False)
        if completed.returncode != 0:
            raise TerraformError(f"terraform version failed: {completed.stderr.strip()}")
        data = json.loads(completed.stdout)
        return data.get("terraform_version", ""), dict(data.get("provider_selections") or {})

    async def compare_version(self, version: str) -> None:
        """Check the installed terraform against ``version``.

        Skipped when ``version`` is empty or the runner accepts the latest version.

        Raises:
            TerraformVersionMismatchError: If the versions differ.
        """
        if not version or self.version == LATEST_VERSION:
            return
        installed, _ = await self.version_info()
        if installed != version:
            raise TerraformVersionMismatchError(f"terraform version mismatch: required={version} installed={installed}")

    async def switch_workspace(self, workspace: str) -> None:
        """Select ``workspace``, creating it when it does not exist."""
        if not workspace or workspace == DEFAULT_WORKSPACE:
            return
        selected = await self._exec("workspace", "select", "-no-color", workspace, echo=False)
        if selected.returncode == 0:
            return
        created = await self._exec("workspace", "new", "-no-color", workspace, echo=False)
        if created.returncode != 0:
            raise TerraformError(f"failed to switch to workspace {workspace}: {created.stderr.strip()}")

    async def _run_parsed(self, args: list[str], parse: Callable[[str], TerraformOutput]) -> TerraformOutput:
        """Run a command and parse its output.

        A failing command is parsed from stderr. When stderr is empty or holds
        no recognizable diagnostic the failure is raised instead.
        """
        completed = await self._exec(*args)
        if completed.returncode != 0:
            if not completed.stderr:
                raise TerraformError(f"terraform {args[0]} exited with {completed.returncode}")
            out = parse(completed.stderr)
            if not out.has_error:
                raise TerraformError(f"terraform {args[0]} exited with {completed.returncode}: {completed.stderr.strip()}")
            out.raw_log = completed.stdout + completed.stderr
            return out
        return parse(completed.stdout)

    async def init(self, backend_config_path: str = "", backend_config: dict[str, str] | None = None) -> TerraformOutput:
        args = ["init", "-input=false", "-no-color"]
        if backend_config_path:
            args.append(f"-backend-config={backend_config_path}")
        for key, value in (backend_config or {}).items():
            args.append(f"-backend-config={key}={value}")
        if backend_config_path or backend_config:
            args.append("-reconfigure")
        return await self._run_parsed(args, parse_plan_output)

    async def plan(
        self,
        vars: list[str] | None = None,
        var_files: list[str] | None = None,
        destroy: bool = False,
        out: str = "",
    ) -> TerraformOutput:
        args = ["plan", "-input=false", "-no-color"]
        args += [f"-var={v}" for v in vars or []]
        args += [f"-var-file={f}" for f in var_files or []]
        if out:
            args.append(f"-out={out}")
        if destroy:
            args.append("-destroy")
        return await self._run_parsed(args, parse_plan_output)

    async def apply(self, plan_file: str) -> TerraformOutput:
        args = ["apply", "-input=false", "-no-color", "-auto-approve", plan_file]
        return await self._run_parsed(args, parse_apply_output)

    async def _run_plain(self, args: list[str]) -> CommandOutput:
        completed = await self._exec(*args)
        if completed.returncode != 0:
            if not completed.stderr:
                raise TerraformError(f"terraform {args[0]} exited with {completed.returncode}")
            return CommandOutput(result=completed.stderr, has_error=True)
        return CommandOutput(result=completed.stdout)

    async def force_unlock(self, lock_id: str) -> CommandOutput:
        return await self._run_plain(["force-unlock", "-force", "-no-color", lock_id])

    async def import_resource(
        self,
        address: str,
        resource_id: str,
        vars: list[str] | None = None,
        var_files: list[str] | None = None,
    ) -> CommandOutput:
        args = ["import", "-input=false", "-no-color"]
        args += [f"-var={v}" for v in vars or []]
        args += [f"-var-file={f}" for f in var_files or []]
        args += [address, resource_id]
        return await self._run_plain(args)

    async def state_rm(self, address: str, dry_run: bool = False) -> CommandOutput:
        args = ["state", "rm"]
        if dry_run:
            args.append("-dry-run")
        args.append(address)
        return await self._run_plain(args)
