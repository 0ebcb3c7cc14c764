"""Parser for mu chat commands posted as pull request comments.

A command is a single line of the form::

    mu <verb> [flags] [args] [-- terraform flags]

Tokens are split with shell quoting rules. Flags follow the conventions of
terraform itself: one or two leading dashes, ``-name value`` or
``-name=value``, and flag parsing stops at the first positional argument.
"""

from __future__ import annotations

import logging
import shlex
from dataclasses import dataclass, field
from enum import Enum
from typing import ClassVar

from mu.core.errors import InvalidCommandError

logger = logging.getLogger(__name__)

INVOCATION = "mu"
PASSTHROUGH_SEPARATOR = "--"

_TRUE_VALUES = {"1", "t", "T", "TRUE", "true", "True"}
_FALSE_VALUES = {"0", "f", "F", "FALSE", "false", "False"}


class CommandKind(str, Enum):
    """Verbs understood by mu."""

    PLAN = "plan"
    APPLY = "apply"
    UNLOCK = "unlock"
    HELP = "help"
    IMPORT = "import"
    STATE = "state"


# =============================================================================
# Command variants
# =============================================================================


@dataclass(frozen=True)
class Plan:
    """``mu plan``."""

    kind: ClassVar[CommandKind] = CommandKind.PLAN

    project: str = ""
    workspace: str = ""
    vars: tuple[str, ...] = ()
    var_files: tuple[str, ...] = ()
    destroy: bool = False


@dataclass(frozen=True)
class Apply:
    """``mu apply``."""

    kind: ClassVar[CommandKind] = CommandKind.APPLY

    project: str = ""
    workspace: str = ""


@dataclass(frozen=True)
class Unlock:
    """``mu unlock``."""

    kind: ClassVar[CommandKind] = CommandKind.UNLOCK

    project: str = ""
    workspace: str = ""
    force_unlock_id: str = ""


@dataclass(frozen=True)
class Help:
    """``mu help``."""

    kind: ClassVar[CommandKind] = CommandKind.HELP


@dataclass(frozen=True)
class Import:
    """``mu import ADDRESS ID``."""

    kind: ClassVar[CommandKind] = CommandKind.IMPORT

    address: str
    id: str
    project: str = ""
    workspace: str = ""
    vars: tuple[str, ...] = ()
    var_files: tuple[str, ...] = ()


@dataclass(frozen=True)
class StateRm:
    """``mu state rm ADDRESS...``."""

    kind: ClassVar[CommandKind] = CommandKind.STATE

    addresses: tuple[str, ...]
    project: str = ""
    workspace: str = ""
    dry_run: bool = False


Command = Plan | Apply | Unlock | Help | Import | StateRm


# =============================================================================
# Flag parsing
# =============================================================================


class FlagError(ValueError):
    """A flag region could not be parsed."""


@dataclass
class _Flag:
    dest: str
    boolean: bool = False
    repeated: bool = False


@dataclass
class FlagSet:
    """Minimal flag parser with terraform/Go style semantics.

    Flags are registered under one or more names pointing at the same
    destination. ``parse`` returns the parsed values and the positional
    arguments left after the first non-flag token.
    """

    name: str
    _flags: dict[str, _Flag] = field(default_factory=dict)

    def string(self, dest: str, *names: str) -> FlagSet:
        for name in names:
            self._flags[name] = _Flag(dest)
        return self

    def boolean(self, dest: str, *names: str) -> FlagSet:
        for name in names:
            self._flags[name] = _Flag(dest, boolean=True)
        return self

    def repeated(self, dest: str, *names: str) -> FlagSet:
        for name in names:
            self._flags[name] = _Flag(dest, repeated=True)
        return self

    def parse(self, args: list[str]) -> tuple[dict[str, object], list[str]]:
        values: dict[str, object] = {}
        remaining = list(args)
        while remaining:
            token = remaining[0]
            if len(token) < 2 or not token.startswith("-"):
                break
            remaining.pop(0)
            if token == PASSTHROUGH_SEPARATOR:
                break

            name = token[2:] if token.startswith("--") else token[1:]
            if not name or name[0] in "-=":
                raise FlagError(f"{self.name}: bad flag syntax: {token}")
            name, has_value, value = name.partition("=")

            flag = self._flags.get(name)
            if flag is None:
                raise FlagError(f"{self.name}: flag provided but not defined: -{name}")

            if flag.boolean:
                if not has_value:
                    values[flag.dest] = True
                elif value in _TRUE_VALUES:
                    values[flag.dest] = True
                elif value in _FALSE_VALUES:
                    values[flag.dest] = False
                else:
                    raise FlagError(f"{self.name}: invalid boolean value {value!r} for -{name}")
                continue

            if not has_value:
                if not remaining:
                    raise FlagError(f"{self.name}: flag needs an argument: -{name}")
                value = remaining.pop(0)

            if flag.repeated:
                values.setdefault(flag.dest, [])
                values[flag.dest].append(value)  # type: ignore[union-attr]
            else:
                values[flag.dest] = value
        return values, remaining


def _target_flags(name: str) -> FlagSet:
    return FlagSet(name).string("project", "p", "project").string("workspace", "w", "workspace")


def _split_passthrough(args: list[str]) -> tuple[list[str], list[str]]:
    if PASSTHROUGH_SEPARATOR not in args:
        return args, []
    index = args.index(PASSTHROUGH_SEPARATOR)
    return args[:index], args[index + 1 :]


# =============================================================================
# Verb parsers
# =============================================================================


def _parse_plan(args: list[str]) -> Plan:
    command_args, passthrough = _split_passthrough(args)
    target, _ = _target_flags("plan").parse(command_args)
    opts, _ = (
        FlagSet("opts")
        .repeated("vars", "var")
        .repeated("var_files", "var-file")
        .boolean("destroy", "destroy")
        .parse(passthrough)
    )
    return Plan(
        project=str(target.get("project", "")),
        workspace=str(target.get("workspace", "")),
        vars=tuple(opts.get("vars", ())),  # type: ignore[arg-type]
        var_files=tuple(opts.get("var_files", ())),  # type: ignore[arg-type]
        destroy=bool(opts.get("destroy", False)),
    )


def _parse_apply(args: list[str]) -> Apply:
    target, _ = _target_flags("apply").parse(args)
    return Apply(project=str(target.get("project", "")), workspace=str(target.get("workspace", "")))


def _parse_unlock(args: list[str]) -> Unlock:
    command_args, _ = _split_passthrough(args)
    values, _ = _target_flags("unlock").string("force_unlock_id", "force-unlock").parse(command_args)
    return Unlock(
        project=str(values.get("project", "")),
        workspace=str(values.get("workspace", "")),
        force_unlock_id=str(values.get("force_unlock_id", "")),
    )


def _parse_import(args: list[str]) -> Import:
    command_args, passthrough = _split_passthrough(args)
    target, positional = _target_flags("import").parse(command_args)
    if len(positional) != 2:
        raise FlagError(f"import: expected ADDRESS and ID, got {len(positional)} argument(s)")
    opts, _ = FlagSet("opts").repeated("vars", "var").repeated("var_files", "var-file").parse(passthrough)
    return Import(
        address=positional[0],
        id=positional[1],
        project=str(target.get("project", "")),
        workspace=str(target.get("workspace", "")),
        vars=tuple(opts.get("vars", ())),  # type: ignore[arg-type]
        var_files=tuple(opts.get("var_files", ())),  # type: ignore[arg-type]
    )


def _parse_state(args: list[str]) -> StateRm:
    command_args, passthrough = _split_passthrough(args)
    target, positional = _target_flags("state").parse(command_args)
    if len(positional) < 2:
        raise FlagError("state: expected 'rm' followed by at least one address")
    if positional[0].lower() != "rm":
        raise FlagError(f"state: unsupported subcommand {positional[0]!r}")
    opts, _ = FlagSet("opts").boolean("dry_run", "dry-run").parse(passthrough)
    return StateRm(
        addresses=tuple(positional[1:]),
        project=str(target.get("project", "")),
        workspace=str(target.get("workspace", "")),
        dry_run=bool(opts.get("dry_run", False)),
    )


def parse_command(message: str) -> Command:
    """Parse a pull request comment into a command.

    Args:
        message: Raw comment body.

    Returns:
        One of the command variants.

    Raises:
        InvalidCommandError: If the comment is not a well-formed mu command.
    """
    message = message.strip()
    if "\r" in message or "\n" in message:
        raise InvalidCommandError("mu: invalid mu command: multi-line input")

    try:
        args = shlex.split(message)
    except ValueError as e:
        raise InvalidCommandError(f"mu: invalid mu command: {e}") from e

    if len(args) < 2 or args[0].lower() != INVOCATION:
        raise InvalidCommandError("mu: invalid mu command")

    try:
        kind = CommandKind(args[1].lower())
    except ValueError as e:
        raise InvalidCommandError(f"mu: invalid mu command: unknown verb {args[1]!r}") from e

    rest = args[2:]
    try:
        match kind:
            case CommandKind.PLAN:
                return _parse_plan(rest)
            case CommandKind.APPLY:
                return _parse_apply(rest)
            case CommandKind.UNLOCK:
                return _parse_unlock(rest)
            case CommandKind.HELP:
                return Help()
            case CommandKind.IMPORT:
                return _parse_import(rest)
            case CommandKind.STATE:
                return _parse_state(rest)
    except FlagError as e:
        raise InvalidCommandError(f"mu: invalid mu command: {e}") from e
    raise InvalidCommandError("mu: invalid mu command")
