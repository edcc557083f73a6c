"""Deployment settings, built once per invocation and never mutated.

Sources are merged lowest precedence first:
1. Built-in defaults (the install path depends on the detected platform)
2. The YAML settings file (``~/.config/concierge/settings.yaml``)
3. ``CONCIERGE_*`` environment variables
4. Command-line overrides
"""

from __future__ import annotations

import dataclasses
import logging
import os
import socket
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

import yaml

from concierge.deploy.platforms import PlatformKind, default_install_path, detect_platform
from concierge.errors import SettingsError

logger = logging.getLogger(__name__)

MANIFEST_NAME = "flake.nix"
BACKUP_DIR_NAME = ".concierge-backup"
DEFAULT_CONFIG_PATH = "~/.config/nix"
DEFAULT_SETTINGS_FILE = "~/.config/concierge/settings.yaml"
DEFAULT_EXCLUSIONS = frozenset({".gitignore", ".stfolder", ".git", BACKUP_DIR_NAME})

# Environment variable -> settings field
ENV_VARS = {
    "CONCIERGE_CONFIG_PATH": "config_path",
    "CONCIERGE_INSTALL_PATH": "install_path",
    "CONCIERGE_REPO_URL": "repo_url",
    "CONCIERGE_BRANCH": "branch",
    "CONCIERGE_HOSTNAME": "hostname",
}


@dataclass(frozen=True)
class Settings:
    """Everything a deployment needs to know, fixed for its whole duration."""

    config_path: Path
    install_path: Path
    sync_exclusions: frozenset[str] = DEFAULT_EXCLUSIONS
    force_evaluation: bool = False
    update: bool = False
    show_trace: bool = False
    fallback: bool = False
    update_input: str | None = None
    repo_url: str | None = None
    branch: str = "main"
    hostname: str = field(default_factory=socket.gethostname)
    convert_services: bool = True
    rsync_via_nix_shell: bool = True

    def __post_init__(self) -> None:
        object.__setattr__(self, "config_path", Path(self.config_path).expanduser())
        object.__setattr__(self, "install_path", Path(self.install_path).expanduser())
        object.__setattr__(self, "sync_exclusions", frozenset(self.sync_exclusions))

    @property
    def manifest_file(self) -> Path:
        return self.config_path / MANIFEST_NAME

    def with_overrides(self, **changes: Any) -> Settings:
        """Return a copy with ``changes`` applied; ``None`` values are ignored."""
        return dataclasses.replace(
            self, **{k: v for k, v in changes.items() if v is not None}
        )


_FIELD_NAMES = {f.name for f in dataclasses.fields(Settings)}
_BOOL_FIELDS = {f.name for f in dataclasses.fields(Settings) if f.type == "bool"}


def load_settings_file(path: str | Path) -> dict[str, Any]:
    """Read a YAML settings file. A missing file yields no settings."""
    path = Path(path).expanduser()
    if not path.exists():
        return {}
    try:
        with open(path) as f:
            data = yaml.safe_load(f)
    except (OSError, UnicodeDecodeError, yaml.YAMLError) as e:
        raise SettingsError(f"Failed to read settings file {path}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise SettingsError(f"Settings file {path} must contain a mapping")

    unknown = set(data) - _FIELD_NAMES
    if unknown:
        raise SettingsError(
            f"Unknown keys in settings file {path}: {', '.join(sorted(unknown))}"
        )
    for name in _BOOL_FIELDS & set(data):
        if not isinstance(data[name], bool):
            raise SettingsError(f"Setting '{name}' in {path} must be true or false")
    if "sync_exclusions" in data:
        extra = data["sync_exclusions"] or []
        if not isinstance(extra, list) or not all(isinstance(p, str) for p in extra):
            raise SettingsError(f"Setting 'sync_exclusions' in {path} must be a list of patterns")
        data["sync_exclusions"] = DEFAULT_EXCLUSIONS | set(extra)
    return data


def settings_from_env(env: Mapping[str, str]) -> dict[str, Any]:
    values: dict[str, Any] = {
        name: env[var] for var, name in ENV_VARS.items() if env.get(var)
    }
    extra = env.get("CONCIERGE_EXTRA_EXCLUSIONS", "")
    patterns = {p.strip() for p in extra.split(",") if p.strip()}
    if patterns:
        values["extra_exclusions"] = patterns
    return values


def load_settings(
    overrides: Mapping[str, Any] | None = None,
    env: Mapping[str, str] | None = None,
    settings_file: str | Path | None = None,
    platform_kind: PlatformKind | None = None,
) -> Settings:
    """Merge defaults, settings file, environment and overrides into ``Settings``.

    Args:
        overrides: Values from the command line. ``None`` entries are skipped
            so unset flags do not mask lower layers.
        env: Environment mapping, defaults to ``os.environ``.
        settings_file: YAML file path. Defaults to ``CONCIERGE_SETTINGS_FILE``
            or ``~/.config/concierge/settings.yaml``.
        platform_kind: Detected platform, used for the default install path.
    """
    env = os.environ if env is None else env
    kind = platform_kind or detect_platform()
    settings_file = settings_file or env.get("CONCIERGE_SETTINGS_FILE") or DEFAULT_SETTINGS_FILE

    merged: dict[str, Any] = {
        "config_path": DEFAULT_CONFIG_PATH,
        "install_path": default_install_path(kind),
    }
    merged.update(load_settings_file(settings_file))

    from_env = settings_from_env(env)
    extra = from_env.pop("extra_exclusions", set())
    merged.update(from_env)
    if extra:
        merged["sync_exclusions"] = frozenset(merged.get("sync_exclusions", DEFAULT_EXCLUSIONS)) | extra

    merged.update({k: v for k, v in (overrides or {}).items() if v is not None})

    try:
        settings = Settings(**merged)
    except TypeError as e:
        raise SettingsError(f"Invalid settings: {e}") from e

    logger.debug("Settings initialised: %s", settings)
    return settings
