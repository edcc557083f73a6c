"""Content tagging: make Nix treat a file as changed.

A tag is a trailing ``# TAGGED: <RFC3339 timestamp>`` line. Nix evaluates a
flake again when any input file changes, so rewriting the tag forces a fresh
evaluation even when nothing meaningful changed.

Tagging the manifest is always preceded by ``backup_file`` so the untagged
content stays recoverable under ``.concierge-backup/``.
"""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
from datetime import datetime
from pathlib import Path

from concierge.errors import TaggingError
from concierge.settings import BACKUP_DIR_NAME

logger = logging.getLogger(__name__)

TAG_PREFIX = "# TAGGED:"


def format_timestamp(timestamp: datetime) -> str:
    """RFC3339 rendering of an aware datetime."""
    if timestamp.tzinfo is None or timestamp.utcoffset() is None:
        raise ValueError(f"Timestamp must be timezone-aware: {timestamp!r}")
    return timestamp.isoformat()


def tag_line(timestamp: datetime) -> str:
    return f"{TAG_PREFIX} {format_timestamp(timestamp)}"


def content_lines(text: str) -> list[str]:
    r"""Split on ``\n`` only, dropping one trailing ``\r`` per line.

    Other characters Python treats as line boundaries (form feed, U+2028 and
    the like) stay inside their line.
    """
    if not text:
        return []
    lines = text.split("\n")
    if text.endswith("\n"):
        lines.pop()
    return [ln[:-1] if ln.endswith("\r") else ln for ln in lines]


def tag_file_content(path: str | Path, timestamp: datetime) -> None:
    """Replace any existing tag line in ``path`` with one for ``timestamp``.

    Content lines are kept in order; the result is joined with newlines and
    has no trailing newline. The file is swapped in atomically.
    """
    path = Path(path)
    line = tag_line(timestamp)

    if not path.is_file():
        raise TaggingError(
            f"Failed to write re-evaluation timestamp, path is not a file: {path}"
        )

    try:
        with open(path, encoding="utf-8", newline="") as f:
            lines = content_lines(f.read())
    except (OSError, UnicodeDecodeError) as e:
        raise TaggingError(f"Failed to read file contents {path}") from e

    kept = [ln for ln in lines if not ln.startswith(TAG_PREFIX)]
    kept.append(line)
    _atomic_write(path, "\n".join(kept))
    logger.debug("Tagged %s with %r", path, line)


def _atomic_write(path: Path, content: str) -> None:
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.")
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        shutil.copymode(path, tmp_name)
        os.replace(tmp_name, path)
    except OSError as e:
        Path(tmp_name).unlink(missing_ok=True)
        raise TaggingError(f"Failed to write content to file {path}") from e


def backup_path_for(path: str | Path, timestamp: datetime) -> Path:
    path = Path(path)
    return path.parent / BACKUP_DIR_NAME / f"{path.name}-{format_timestamp(timestamp)}"


def backup_file(path: str | Path, timestamp: datetime) -> Path:
    """Copy ``path`` to ``.concierge-backup/<name>-<timestamp>`` beside it.

    Returns:
        The path of the backup copy.

    Raises:
        TaggingError: The file cannot be copied, or a backup with the same
            timestamp already exists (backups are never overwritten).
    """
    path = Path(path)
    target = backup_path_for(path, timestamp)

    if not path.is_file():
        raise TaggingError(f"Failed to back up {path}, path is not a file")

    try:
        target.parent.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise TaggingError(f"Failed to create backup dir: {target.parent}") from e

    if target.exists():
        raise TaggingError(f"Backup already exists, refusing to overwrite: {target}")

    try:
        shutil.copy2(path, target)
    except OSError as e:
        raise TaggingError(f"Failed to copy file {path} to {target}") from e

    logger.info("Backed up %s to %s", path, target)
    return target
