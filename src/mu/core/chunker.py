"""Split long markdown comments into pieces GitHub will accept.

GitHub rejects issue comments longer than MAX_COMMENT_LENGTH. Terraform
plans routinely exceed that, so results are split line by line. When a
split happens in the middle of a code fence or a ``<details>`` region the
region is closed at the end of the chunk and reopened, with the same
title, indentation and ``diff`` tag, at the top of the next one.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator
from dataclasses import dataclass

logger = logging.getLogger(__name__)

MAX_COMMENT_LENGTH = 65536
CONTINUATION_MARGIN = 5536
MAX_CHUNK_SIZE = MAX_COMMENT_LENGTH - CONTINUATION_MARGIN

CODE_FENCE = "```"
DIFF_TAG = "diff"
DETAILS_OPEN = "<details><summary>"
SUMMARY_CLOSE = "</summary>"
DETAILS_CLOSE = "</details>"
WARNING_MARKER = "> [!WARNING]"

CONTINUED_IN_NEXT = "\n**Warning** Continued in next comment.\n"
CONTINUED_FROM_PREVIOUS = "Continued from previous comment.\n\n"


def _size(text: str) -> int:
    return len(text.encode("utf-8"))


@dataclass
class _MarkdownState:
    """Structure open at the current position of the document."""

    in_details: bool = False
    summary_title: str = ""
    in_code_block: bool = False
    code_block_indent: str = ""
    is_diff: bool = False
    seen_warning: bool = False

    def advance(self, line: str) -> None:
        if line.startswith(DETAILS_OPEN):
            self.in_details = True
            title = line[len(DETAILS_OPEN) :]
            end = title.find(SUMMARY_CLOSE)
            self.summary_title = title[:end] if end >= 0 else title
        elif line.startswith(DETAILS_CLOSE):
            self.in_details = False
        elif CODE_FENCE in line and not self.in_code_block:
            self.in_code_block = True
            self.code_block_indent = line[: line.index(CODE_FENCE)]
            self.is_diff = CODE_FENCE + DIFF_TAG in line
        elif CODE_FENCE in line and self.in_code_block:
            self.in_code_block = False
            self.is_diff = False
        elif not self.seen_warning and line.startswith(WARNING_MARKER):
            # Only the marker line is carried over to later chunks, never the alert body.
            self.seen_warning = True

    def closing(self) -> str:
        """Text that closes every open region and ends the chunk."""
        parts = []
        if self.in_code_block:
            parts.append(f"{self.code_block_indent}{CODE_FENCE}\n\n")
        if self.in_details:
            parts.append(f"{DETAILS_CLOSE}\n")
        parts.append(CONTINUED_IN_NEXT)
        return "".join(parts)

    def opening(self) -> str:
        """Text that starts a continuation chunk and reopens open regions."""
        parts = [CONTINUED_FROM_PREVIOUS]
        if self.in_details:
            parts.append(f"{DETAILS_OPEN}{self.summary_title}{SUMMARY_CLOSE}\n\n")
        if self.in_code_block:
            parts.append(f"{self.code_block_indent}{CODE_FENCE}{DIFF_TAG if self.is_diff else ''}\n")
        if self.seen_warning:
            parts.append(f"{WARNING_MARKER}\n")
        return "".join(parts)

    def copy(self) -> _MarkdownState:
        return _MarkdownState(**vars(self))


def _lines(text: str) -> Iterator[str]:
    """Yield the lines of ``text``, split on ``\\n`` only.

    A trailing ``\\r`` is dropped from each line, and a final newline does
    not start an empty line.
    """
    if not text:
        return
    parts = text.split("\n")
    if text.endswith("\n"):
        parts.pop()
    for part in parts:
        yield part.removesuffix("\r")


def split_message(text: str | Iterable[str], max_chunk_size: int = MAX_CHUNK_SIZE) -> Iterator[str]:
    """Split a markdown message into comment-sized chunks.

    The size of a chunk counts everything written into it, including the
    continuation notices and the reopened fence or details header, and
    reserves room for the text needed to close it. Lines are never broken,
    so a line that does not fit into an otherwise empty chunk is emitted
    on its own; that is the only case where a chunk can exceed
    ``max_chunk_size``.

    Args:
        text: The message, or an iterable of lines without trailing newlines.
        max_chunk_size: Maximum size of each chunk in UTF-8 bytes.

    Yields:
        Chunks in order. Every chunk has balanced code fences and
        ``<details>`` regions.
    """
    lines = _lines(text) if isinstance(text, str) else text

    state = _MarkdownState()
    chunk: list[str] = []
    count = 0
    has_payload = False

    for line in lines:
        entry = line + "\n"
        after = state.copy()
        after.advance(line)

        if has_payload and count + _size(entry) + _size(after.closing()) > max_chunk_size:
            chunk.append(state.closing())
            yield "".join(chunk)
            header = state.opening()
            chunk = [header]
            count = _size(header)
            has_payload = False
            logger.debug(f"Split message: next chunk reopens with {header!r}")

        chunk.append(entry)
        count += _size(entry)
        has_payload = True
        state = after

    if has_payload:
        yield "".join(chunk)
