"""Install Nix when it is missing."""

from __future__ import annotations

import logging

from concierge.deploy.platforms import PlatformKind
from concierge.deploy.runner import ProcessRunner
from concierge.errors import UnsupportedPlatformError

logger = logging.getLogger(__name__)

INSTALLER_SCRIPT = (
    "curl --proto '=https' --tlsv1.2 -sSf -L https://install.determinate.systems/nix"
    " | sh -s -- install"
)

INSTALLABLE = {PlatformKind.NIXOS, PlatformKind.LINUX, PlatformKind.DARWIN}


def is_nix_installed(runner: ProcessRunner) -> bool:
    return runner.succeeds(["nix", "--version"])


def install_nix(runner: ProcessRunner, kind: PlatformKind) -> bool:
    """Run the Nix installer unless Nix is already present.

    Returns True if the installer ran. Extras such as nix-darwin are left to
    the configuration itself.
    """
    if is_nix_installed(runner):
        logger.debug("Nix is installed")
        return False

    if kind not in INSTALLABLE:
        raise UnsupportedPlatformError(
            "Unsupported operating system. Currently only macOS and Linux are supported."
        )

    logger.warning("Nix is NOT installed, running the installer")
    runner.run("sh", ["-c", INSTALLER_SCRIPT])
    return True
