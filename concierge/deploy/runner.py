"""Process runner: run external commands with output streamed to the terminal.

Children inherit stdout and stderr, so whatever they print reaches the user
as it happens, even when the command later fails. There is no timeout and no
retry; the caller decides what a failure means.
"""

from __future__ import annotations

import logging
import subprocess
from pathlib import Path
from typing import Sequence

from concierge.errors import (
    ProcessFailedError,
    ProcessSignaledError,
    ProcessSpawnError,
)

logger = logging.getLogger(__name__)


class ProcessRunner:
    """Runs commands to completion and turns exit statuses into exceptions."""

    def run(
        self,
        command: str,
        args: Sequence[str] = (),
        cwd: str | Path | None = None,
    ) -> None:
        """Run ``command`` with ``args`` and wait for it to exit.

        Raises:
            ProcessSpawnError: The command could not be started.
            ProcessFailedError: It exited with a nonzero code.
            ProcessSignaledError: It was killed by a signal.
        """
        args = [str(a) for a in args]
        if cwd is not None:
            logger.debug("Running %s %s in %s", command, args, cwd)
        else:
            logger.debug("Running %s %s", command, args)

        try:
            proc = subprocess.Popen([command, *args], cwd=cwd)
        except OSError as e:
            raise ProcessSpawnError(
                f"Error spawning process {command} with args {args!r}: {e}",
                command,
                args,
            ) from e

        returncode = proc.wait()

        if returncode == 0:
            return
        if returncode < 0:
            raise ProcessSignaledError(command, args, -returncode)
        raise ProcessFailedError(command, args, returncode)

    def run_argv(self, argv: Sequence[str], cwd: str | Path | None = None) -> None:
        """``run`` with the command as the first element of ``argv``."""
        if not argv:
            raise ValueError("argv must contain at least the command")
        self.run(argv[0], list(argv[1:]), cwd=cwd)

    def succeeds(self, argv: Sequence[str]) -> bool:
        """Quietly probe whether ``argv`` runs and exits 0. Output is discarded."""
        try:
            result = subprocess.run(
                list(argv),
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
            )
        except OSError:
            return False
        return result.returncode == 0
