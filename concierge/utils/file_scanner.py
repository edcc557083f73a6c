"""File scanner: find files by exact name in a config tree."""

from pathlib import Path


def search_files_with_name(root: str | Path, name: str) -> list[Path]:
    """Recursively find regular files under ``root`` whose name is exactly ``name``.

    Matching is on the whole file name, so ``docker-compose.yml`` does not
    match ``old-docker-compose.yml``. Each path appears once.
    """
    root = Path(root)
    files = []
    for item in root.rglob(name):
        if item.is_file() and item.name == name:
            files.append(item)
    return sorted(set(files))


def is_directory_empty(path: str | Path) -> bool:
    """True if ``path`` is a directory with no entries."""
    return next(Path(path).iterdir(), None) is None
