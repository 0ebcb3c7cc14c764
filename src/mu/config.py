"""Configuration management for mu.

Two layers of configuration exist:

- ``Config``: the repository's ``mu.yaml`` describing Terraform projects.
- ``ActionSettings``: per-run settings passed to the GitHub Action as inputs.
"""

from __future__ import annotations

import logging
import os
import posixpath
import re
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from mu.utils.patterns import has_matched_paths

logger = logging.getLogger(__name__)

LATEST_VERSION = "latest"
DEFAULT_WORKSPACE = "default"

_ENV_REFERENCE = re.compile(r"\$\{(\w+)\}|\$(\w+)")


class ConfigError(Exception):
    """The configuration document is missing or invalid."""


def expand_env(text: str) -> str:
    """Replace $VAR and ${VAR} with environment values; unset variables become empty."""
    return _ENV_REFERENCE.sub(lambda m: os.getenv(m.group(1) or m.group(2), ""), text)


class TerraformSettings(BaseModel):
    """How to run Terraform for a project."""

    version: str = Field(default="", description="Required Terraform version, or 'latest'")
    exec_path: str = Field(default="", description="Path to the terraform binary; resolved from PATH when empty")
    vars: list[str] = Field(default_factory=list, description="key=value pairs passed as -var")
    var_files: list[str] = Field(default_factory=list, description="Files passed as -var-file")
    backend_config_path: str = Field(default="", description="File passed as -backend-config on init")
    backend_config: dict[str, str] = Field(default_factory=dict, description="key=value pairs passed as -backend-config on init")


class PlanSettings(BaseModel):
    """When a project is planned."""

    paths: list[str] = Field(min_length=1, description="Patterns, relative to the project dir, that trigger a plan")
    auto: bool = Field(default=False, description="Plan automatically when a pull request changes matching files")

    @field_validator("paths")
    @classmethod
    def _non_empty_paths(cls, paths: list[str]) -> list[str]:
        if any(not p.strip() for p in paths):
            raise ValueError("plan paths must not be empty")
        return paths

    def has_matched_paths(self, base_dir: str, files: list[str]) -> bool:
        return has_matched_paths(base_dir, self.paths, files)


class ApplySettings(BaseModel):
    """Preconditions for apply."""

    require_approvals: int = Field(default=0, ge=0, description="Approving reviews required before apply")


class Project(BaseModel):
    """A Terraform root module managed by mu."""

    name: str = Field(min_length=1)
    dir: str = Field(min_length=1, description="Working directory, relative to the repository root")
    workspace: str = Field(default=DEFAULT_WORKSPACE)
    terraform: TerraformSettings = Field(default_factory=TerraformSettings)
    plan: PlanSettings
    apply: ApplySettings = Field(default_factory=ApplySettings)
    lock_label_color: str = Field(default="", description="Hex color of the lock label (without #)")

    @field_validator("dir")
    @classmethod
    def _clean_dir(cls, value: str) -> str:
        return posixpath.normpath(value)

    def has_modified_files(self, files: list[str]) -> bool:
        """Return whether the pull request touches this project."""
        return self.plan.has_matched_paths(self.dir, files)


class Config(BaseModel):
    """The ``mu.yaml`` document."""

    version: int
    projects: list[Project] = Field(min_length=1)

    @field_validator("version")
    @classmethod
    def _supported_version(cls, value: int) -> int:
        if value != 1:
            raise ValueError(f"unsupported config version: {value}")
        return value

    @model_validator(mode="after")
    def _unique_names(self) -> Config:
        seen: set[str] = set()
        for project in self.projects:
            if project.name in seen:
                raise ValueError(f"duplicate project name: {project.name}")
            seen.add(project.name)
        return self

    def get_project(self, name: str) -> Project | None:
        return next((p for p in self.projects if p.name == name), None)

    def find_projects(self, name: str, files: list[str]) -> list[Project]:
        """Select projects by name, or every project touched by ``files`` when no name is given."""
        if name:
            project = self.get_project(name)
            return [project] if project else []
        return [p for p in self.projects if p.has_modified_files(files)]

    @classmethod
    def load(cls, config_path: Path, default_terraform_version: str = "") -> Config:
        """Load and validate a configuration document.

        ``$VAR`` and ``${VAR}`` references are expanded from the environment
        before parsing. Projects without a Terraform version get
        ``default_terraform_version``, else ``latest``.

        Raises:
            ConfigError: If the file cannot be read or is invalid.
        """
        try:
            text = config_path.read_text(encoding="utf-8")
        except OSError as e:
            raise ConfigError(f"failed to read config {config_path}: {e}") from e

        try:
            data = yaml.safe_load(expand_env(text)) or {}
            config = cls.model_validate(data)
        except (yaml.YAMLError, ValidationError) as e:
            raise ConfigError(f"invalid config {config_path}: {e}") from e

        for project in config.projects:
            if not project.terraform.version:
                project.terraform.version = default_terraform_version or LATEST_VERSION
        logger.debug(f"Loaded {len(config.projects)} project(s) from {config_path}")
        return config


class ActionSettings(BaseModel):
    """Inputs of the GitHub Action run."""

    repository: str = Field(description="owner/repo")
    github_token: str = Field(min_length=1, repr=False)
    config_path: Path
    default_terraform_version: str = ""
    upload_artifact_version: str = "v4"
    upload_artifact_dir: Path = Path(".mu")
    allow_commands: list[str] = Field(default_factory=lambda: ["plan", "apply", "unlock", "import", "state"])
    emoji_reaction: str = ""
    disable_summary_log: bool = False

    @field_validator("allow_commands", mode="before")
    @classmethod
    def _split_commands(cls, value: object) -> object:
        if isinstance(value, str):
            return [c.strip().lower() for c in value.split(",") if c.strip()]
        return value
