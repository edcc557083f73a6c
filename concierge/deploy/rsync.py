"""One-way rsync between the config dir and the install dir."""

from __future__ import annotations

import logging
import shlex
from enum import Enum
from pathlib import Path
from typing import Iterable

from concierge.deploy.runner import ProcessRunner
from concierge.errors import ProcessError, SyncError

logger = logging.getLogger(__name__)


class SyncMode(Enum):
    """How files only present in the destination are treated."""

    ADDITIVE = "additive"  # left alone
    MIRROR = "mirror"  # deleted, unless excluded


MODE_FLAGS = {
    SyncMode.ADDITIVE: ["-ahi"],
    SyncMode.MIRROR: ["-aim", "--delete"],
}

# Pulls only lock files back: descend into every dir, keep *.lock, drop the rest
LOCK_FILE_INCLUDES = ("*/", "*.lock")
LOCK_FILE_EXCLUDES = frozenset({"*"})


def _dir_arg(path: str | Path) -> str:
    # trailing slash copies the contents rather than the directory itself
    return str(path).rstrip("/") + "/"


def build_rsync_argv(
    source: str | Path,
    destination: str | Path,
    exclusions: Iterable[str],
    mode: SyncMode,
    includes: Iterable[str] = (),
    elevated: bool = False,
    protected: Iterable[str] = (),
) -> list[str]:
    """Assemble the rsync command line.

    rsync applies the first matching filter rule, so ``protected`` excludes
    come first, then includes, then the remaining excludes. Excluded paths
    are also never deleted in mirror mode. Patterns are sorted so the argv
    is deterministic.
    """
    argv = ["rsync", *MODE_FLAGS[mode]]
    argv += [f"--exclude={pattern}" for pattern in sorted(protected)]
    argv += [f"--include={pattern}" for pattern in includes]
    argv += [f"--exclude={pattern}" for pattern in sorted(exclusions)]
    argv += [_dir_arg(source), _dir_arg(destination)]
    if elevated:
        argv = ["sudo", *argv]
    return argv


class RsyncEngine:
    """Runs rsync through a ``ProcessRunner``.

    When ``via_nix_shell`` is set the command runs inside
    ``nix-shell -p rsync`` so rsync does not need to be installed globally.
    """

    def __init__(self, runner: ProcessRunner, via_nix_shell: bool = True):
        self.runner = runner
        self.via_nix_shell = via_nix_shell

    def command_for(self, rsync_argv: list[str]) -> list[str]:
        if self.via_nix_shell:
            return ["nix-shell", "-p", "rsync", "--run", shlex.join(rsync_argv)]
        return rsync_argv

    def sync(
        self,
        source: str | Path,
        destination: str | Path,
        exclusions: Iterable[str],
        mode: SyncMode,
        includes: Iterable[str] = (),
        elevated: bool = False,
        protected: Iterable[str] = (),
    ) -> None:
        """Copy ``source`` into ``destination``.

        Raises:
            SyncError: rsync could not be run or did not succeed.
        """
        rsync_argv = build_rsync_argv(
            source,
            destination,
            exclusions,
            mode,
            includes=includes,
            elevated=elevated,
            protected=protected,
        )
        logger.debug("Running rsync with command %s", shlex.join(rsync_argv))
        try:
            self.runner.run_argv(self.command_for(rsync_argv))
        except ProcessError as e:
            raise SyncError(f"Failed executing rsync from {source} to {destination}") from e

    def pull_lock_files(
        self,
        install_path: str | Path,
        config_path: str | Path,
        protected: Iterable[str] = (),
        elevated: bool = True,
    ) -> None:
        """Mirror ``*.lock`` files from the install dir back to the config dir.

        ``protected`` patterns (the sync exclusions) are matched before the
        directory include, so those trees are neither descended into nor
        touched by ``--delete``.
        """
        self.sync(
            install_path,
            config_path,
            LOCK_FILE_EXCLUDES,
            SyncMode.MIRROR,
            includes=LOCK_FILE_INCLUDES,
            elevated=elevated,
            protected=protected,
        )
