"""Convert per-host ``docker-compose.yml`` projects into Nix modules.

Each directory under ``systems/<hostname>`` holding a ``docker-compose.yml``
is converted with ``compose2nix``. A ``.compose2nix`` file in that directory
replaces the default command with its own whitespace-separated command line.
"""

from __future__ import annotations

import logging
from pathlib import Path

from concierge.deploy.runner import ProcessRunner
from concierge.errors import ServiceConversionError
from concierge.utils.file_scanner import search_files_with_name

logger = logging.getLogger(__name__)

COMPOSE_FILE = "docker-compose.yml"
OVERRIDE_FILE = ".compose2nix"


def host_systems_dir(config_path: str | Path, hostname: str) -> Path:
    return Path(config_path) / "systems" / hostname


def read_override(directory: Path) -> list[str] | None:
    """Tokens of ``.compose2nix`` in ``directory``; None if absent or empty.

    Raises:
        ServiceConversionError: The override exists but cannot be read.
    """
    override = directory / OVERRIDE_FILE
    if not override.is_file():
        return None
    try:
        tokens = override.read_text(encoding="utf-8").split()
    except (OSError, UnicodeDecodeError) as e:
        raise ServiceConversionError(f"Failed to read compose2nix override {override}") from e
    if not tokens:
        logger.info("%s is empty, will run compose2nix normally", override)
        return None
    return tokens


def conversion_command(directory: Path) -> list[str]:
    """The argv that converts the compose project in ``directory``."""
    custom = read_override(directory)
    if custom is not None:
        logger.info("Found %s in %s, running: %s", OVERRIDE_FILE, directory, custom)
        return custom
    return ["compose2nix", "-project", directory.name]


def convert_service_definitions(
    config_path: str | Path,
    hostname: str,
    runner: ProcessRunner,
) -> list[Path]:
    """Run the converter for every compose project of ``hostname``.

    Returns the directories that were converted, in sorted order.
    """
    root = host_systems_dir(config_path, hostname)
    if not root.is_dir():
        logger.info("No systems directory for host %s at %s", hostname, root)
        return []

    directories = sorted({path.parent for path in search_files_with_name(root, COMPOSE_FILE)})
    if not directories:
        logger.info("No %s files found.", COMPOSE_FILE)
        return []

    logger.info(
        "Converting %d compose project(s): %s",
        len(directories),
        ", ".join(str(d) for d in directories),
    )
    for directory in directories:
        runner.run_argv(conversion_command(directory), cwd=directory)
    return directories
