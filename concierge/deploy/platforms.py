"""Platform detection and the build-and-apply command table.

Each supported platform registers a builder in ``PLATFORM_BUILDERS``. Adding a
platform means adding a ``PlatformKind`` member and one table entry; the
orchestrator never branches on the platform itself.
"""

from __future__ import annotations

import platform
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable

from concierge.errors import UnsupportedPlatformError


class PlatformKind(Enum):
    """Operating systems concierge knows about."""

    NIXOS = "nixos"
    DARWIN = "darwin"
    LINUX = "linux"  # Linux with Nix installed but not NixOS
    UNSUPPORTED = "unsupported"


@dataclass(frozen=True)
class BuildCommand:
    """The command that builds and switches to a configuration."""

    executable: str
    args: list[str] = field(default_factory=list)
    needs_elevation: bool = False

    def argv(self) -> list[str]:
        """Full argv including the ``sudo`` prefix when elevation is needed."""
        base = [self.executable, *self.args]
        return ["sudo", *base] if self.needs_elevation else base


def _nixos_builder(install_path: Path) -> BuildCommand:
    # nixos-rebuild reads /etc/nixos itself
    return BuildCommand("nixos-rebuild", ["switch"], needs_elevation=True)


def _darwin_builder(install_path: Path) -> BuildCommand:
    return BuildCommand("darwin-rebuild", ["switch", "--flake", str(install_path)])


PLATFORM_BUILDERS: dict[PlatformKind, Callable[[Path], BuildCommand]] = {
    PlatformKind.NIXOS: _nixos_builder,
    PlatformKind.DARWIN: _darwin_builder,
}

# Platforms where nix commands run as the invoking user
UNELEVATED_NIX = {PlatformKind.DARWIN}


def _read_os_release() -> dict[str, str]:
    try:
        return platform.freedesktop_os_release()
    except OSError:
        return {}


def detect_platform(
    system: Callable[[], str] = platform.system,
    os_release: Callable[[], dict[str, str]] = _read_os_release,
) -> PlatformKind:
    """Identify the running OS.

    ``system`` and ``os_release`` are injectable so detection can be tested
    without depending on the host.
    """
    name = system()
    if name == "Darwin":
        return PlatformKind.DARWIN
    if name == "Linux":
        distro = os_release().get("ID", "").strip().lower()
        return PlatformKind.NIXOS if distro == "nixos" else PlatformKind.LINUX
    return PlatformKind.UNSUPPORTED


def is_supported(kind: PlatformKind) -> bool:
    return kind in PLATFORM_BUILDERS


def build_command(kind: PlatformKind, install_path: str | Path) -> BuildCommand:
    """Look up the build-and-apply command for ``kind``.

    Raises:
        UnsupportedPlatformError: No builder is registered for ``kind``.
    """
    builder = PLATFORM_BUILDERS.get(kind)
    if builder is None:
        raise UnsupportedPlatformError(
            f"Unsupported OS: {kind.value}. Supported: "
            + ", ".join(sorted(k.value for k in PLATFORM_BUILDERS))
        )
    return builder(Path(install_path))


def elevation_prefix(kind: PlatformKind) -> list[str]:
    """``["sudo"]`` for platforms where nix commands need root, else ``[]``."""
    return [] if kind in UNELEVATED_NIX else ["sudo"]


def default_install_path(kind: PlatformKind) -> Path:
    if kind == PlatformKind.NIXOS:
        return Path("/etc/nixos")
    return Path("/etc/nix-config")
