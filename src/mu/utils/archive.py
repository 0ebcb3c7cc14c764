"""Zip extraction for downloaded plan artifacts."""

from __future__ import annotations

import logging
import zipfile
from pathlib import Path

from mu.core.errors import MuError

logger = logging.getLogger(__name__)


class ArchiveError(MuError):
    """The archive is invalid or tries to write outside its destination."""


def decompress(dest: Path, archive: Path) -> list[Path]:
    """Extract a zip archive into ``dest``.

    Args:
        dest: Destination directory.
        archive: Path to the zip file.

    Returns:
        Paths of the extracted files.

    Raises:
        ArchiveError: If the archive is corrupt or a member would be
            written outside ``dest``.
    """
    root = dest.resolve()
    extracted: list[Path] = []
    try:
        with zipfile.ZipFile(archive) as zf:
            for member in zf.infolist():
                target = (root / member.filename).resolve()
                if not target.is_relative_to(root):
                    raise ArchiveError(f"illegal file path in archive: {member.filename}")
                if member.is_dir():
                    target.mkdir(parents=True, exist_ok=True)
                    continue
                target.parent.mkdir(parents=True, exist_ok=True)
                with zf.open(member) as src, target.open("wb") as out:
                    while chunk := src.read(1024 * 1024):
                        out.write(chunk)
                extracted.append(target)
    except zipfile.BadZipFile as e:
        raise ArchiveError(f"invalid zip archive {archive}: {e}") from e

    logger.debug(f"Extracted {len(extracted)} file(s) from {archive} into {dest}")
    return extracted
