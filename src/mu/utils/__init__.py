"""Utility modules for mu."""

from mu.utils.actions import WorkflowIO, label_url, run_url
from mu.utils.patterns import has_matched_paths

__all__ = [
    "WorkflowIO",
    "has_matched_paths",
    "label_url",
    "run_url",
]
