"""Path patterns in the style of .dockerignore.

Patterns use ``*`` (any run of characters except ``/``), ``?`` (one such
character), ``**`` (any number of directories) and ``[...]`` character
classes. A leading ``!`` negates a pattern. Patterns are evaluated in
order and the last matching one wins. A file also matches when one of its
parent directories matches.
"""

from __future__ import annotations

import logging
import posixpath
import re
from dataclasses import dataclass

logger = logging.getLogger(__name__)


class PatternError(ValueError):
    """A pattern could not be compiled."""


def _translate(pattern: str) -> str:
    out = ["^"]
    i = 0
    n = len(pattern)
    while i < n:
        c = pattern[i]
        if c == "*":
            if pattern.startswith("**", i):
                i += 2
                if pattern.startswith("/", i):
                    i += 1
                    out.append("(?:.*/)?")
                else:
                    out.append(".*")
                continue
            out.append("[^/]*")
        elif c == "?":
            out.append("[^/]")
        elif c == "[":
            end = pattern.find("]", i + 1)
            if end == -1:
                raise PatternError(f"syntax error in pattern: {pattern}")
            body = pattern[i + 1 : end]
            if body.startswith("!"):
                body = "^" + body[1:]
            out.append(f"[{body}]")
            i = end
        elif c == "\\":
            i += 1
            if i >= n:
                raise PatternError(f"syntax error in pattern: {pattern}")
            out.append(re.escape(pattern[i]))
        else:
            out.append(re.escape(c))
        i += 1
    out.append("$")
    return "".join(out)


@dataclass(frozen=True)
class PathPattern:
    """One compiled pattern."""

    raw: str
    exclusion: bool
    regex: re.Pattern[str]

    @classmethod
    def compile(cls, pattern: str) -> PathPattern:
        pattern = pattern.strip()
        exclusion = pattern.startswith("!")
        if exclusion:
            pattern = pattern[1:]
        cleaned = posixpath.normpath(pattern) if pattern else pattern
        return cls(raw=cleaned, exclusion=exclusion, regex=re.compile(_translate(cleaned)))

    def match(self, path: str) -> bool:
        return self.regex.match(path) is not None


def join_patterns(base_dir: str, paths: list[str]) -> list[str]:
    """Anchor patterns at ``base_dir``, keeping the ``!`` prefix in front."""
    joined = []
    for path in paths:
        path = path.strip()
        exclusion = path.startswith("!")
        if exclusion:
            path = path[1:]
        pattern = posixpath.normpath(f"{base_dir}/{path}") if base_dir else posixpath.normpath(path)
        joined.append(("!" if exclusion else "") + pattern)
    return joined


def matches_or_parent_matches(patterns: list[PathPattern], path: str) -> bool:
    """Return whether ``path`` or one of its parent directories is selected."""
    path = posixpath.normpath(path)
    parent = posixpath.dirname(path) or "."
    parent_dirs = parent.split("/")

    matched = False
    for pattern in patterns:
        # Skip inclusions once matched, and exclusions until something matched.
        if pattern.exclusion != matched:
            continue
        match = pattern.match(path)
        if not match and parent != ".":
            for i in range(len(parent_dirs)):
                if pattern.match("/".join(parent_dirs[: i + 1])):
                    match = True
                    break
        if match:
            matched = not pattern.exclusion
    return matched


def has_matched_paths(base_dir: str, paths: list[str], files: list[str]) -> bool:
    """Return whether any of ``files`` is selected by ``paths`` anchored at ``base_dir``."""
    try:
        patterns = [PathPattern.compile(p) for p in join_patterns(base_dir, paths)]
    except (PatternError, re.error) as e:
        logger.warning(f"Ignoring invalid path patterns {paths}: {e}")
        return False
    return any(matches_or_parent_matches(patterns, f) for f in files)
