"""Command parsing and the coordination primitives behind mu commands."""

from mu.core.chunker import split_message
from mu.core.commands import Apply, Command, CommandKind, Help, Import, Plan, StateRm, Unlock, parse_command
from mu.core.errors import (
    AlreadyLockedError,
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
    MultipleLockLabelsError,
    NotFoundPlanFileError,
    PlanFailedError,
)

__all__ = [
    "AlreadyLockedError",
    "Apply",
    "ApplyFailedError",
    "ApprovalsRequiredError",
    "Command",
    "CommandKind",
    "ForceUnlockFailedError",
    "Help",
    "Import",
    "ImportFailedError",
    "InitFailedError",
    "InternalFailureError",
    "InvalidCommandError",
    "InvalidForceUnlockError",
    "MergeConflictError",
    "MuError",
    "MultipleLockLabelsError",
    "NotFoundPlanFileError",
    "Plan",
    "PlanFailedError",
    "StateRm",
    "Unlock",
    "parse_command",
    "split_message",
]
