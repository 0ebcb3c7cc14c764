"""Execution runners for terraform."""

from mu.runners.terraform import CommandOutput, TerraformError, TerraformOutput, TerraformRunner

__all__ = [
    "CommandOutput",
    "TerraformError",
    "TerraformOutput",
    "TerraformRunner",
]
