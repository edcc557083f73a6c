"""Tests for settings loading and merging."""

import dataclasses
import tempfile
from pathlib import Path

import pytest
import yaml

from concierge.deploy.platforms import PlatformKind
from concierge.errors import SettingsError
from concierge.settings import DEFAULT_EXCLUSIONS, Settings, load_settings


def _write_yaml(tmpdir: str, data) -> Path:
    path = Path(tmpdir) / "settings.yaml"
    with open(path, "w") as f:
        yaml.dump(data, f)
    return path


def test_defaults_depend_on_platform():
    with tempfile.TemporaryDirectory() as tmpdir:
        missing = Path(tmpdir) / "none.yaml"
        nixos = load_settings(env={}, settings_file=missing, platform_kind=PlatformKind.NIXOS)
        darwin = load_settings(env={}, settings_file=missing, platform_kind=PlatformKind.DARWIN)

    assert nixos.install_path == Path("/etc/nixos")
    assert darwin.install_path == Path("/etc/nix-config")
    assert nixos.config_path == Path("~/.config/nix").expanduser()
    assert nixos.sync_exclusions == DEFAULT_EXCLUSIONS
    assert not nixos.force_evaluation and not nixos.update
    assert nixos.manifest_file.name == "flake.nix"


def test_precedence_file_env_overrides():
    with tempfile.TemporaryDirectory() as tmpdir:
        path = _write_yaml(
            tmpdir,
            {"config_path": "/from/file", "install_path": "/file/install", "branch": "file", "update": True},
        )
        env = {"CONCIERGE_INSTALL_PATH": "/env/install", "CONCIERGE_BRANCH": "env"}

        settings = load_settings(
            overrides={"branch": "cli", "update": None, "show_trace": True},
            env=env,
            settings_file=path,
            platform_kind=PlatformKind.NIXOS,
        )

    assert settings.config_path == Path("/from/file")
    assert settings.install_path == Path("/env/install")
    assert settings.branch == "cli"
    assert settings.update is True
    assert settings.show_trace is True


def test_settings_file_from_environment():
    with tempfile.TemporaryDirectory() as tmpdir:
        path = _write_yaml(tmpdir, {"repo_url": "git@github.com:me/nix.git"})
        settings = load_settings(
            env={"CONCIERGE_SETTINGS_FILE": str(path)}, platform_kind=PlatformKind.DARWIN
        )
    assert settings.repo_url == "git@github.com:me/nix.git"


def test_exclusions_extend_defaults():
    with tempfile.TemporaryDirectory() as tmpdir:
        path = _write_yaml(tmpdir, {"sync_exclusions": ["result"]})
        settings = load_settings(
            env={"CONCIERGE_EXTRA_EXCLUSIONS": "*.swp, .direnv"},
            settings_file=path,
            platform_kind=PlatformKind.NIXOS,
        )
    assert settings.sync_exclusions == DEFAULT_EXCLUSIONS | {"result", "*.swp", ".direnv"}


def test_unknown_key_is_rejected():
    with tempfile.TemporaryDirectory() as tmpdir:
        path = _write_yaml(tmpdir, {"instal_path": "/typo"})
        with pytest.raises(SettingsError, match="instal_path"):
            load_settings(env={}, settings_file=path, platform_kind=PlatformKind.NIXOS)


def test_non_bool_flag_is_rejected():
    with tempfile.TemporaryDirectory() as tmpdir:
        path = _write_yaml(tmpdir, {"update": "yes please"})
        with pytest.raises(SettingsError, match="update"):
            load_settings(env={}, settings_file=path, platform_kind=PlatformKind.NIXOS)


def test_scalar_exclusions_are_rejected():
    with tempfile.TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / "settings.yaml"
        path.write_text("sync_exclusions: result\n")
        with pytest.raises(SettingsError, match="sync_exclusions"):
            load_settings(env={}, settings_file=path, platform_kind=PlatformKind.NIXOS)


def test_non_string_exclusions_are_rejected():
    with tempfile.TemporaryDirectory() as tmpdir:
        path = _write_yaml(tmpdir, {"sync_exclusions": ["result", 3]})
        with pytest.raises(SettingsError, match="sync_exclusions"):
            load_settings(env={}, settings_file=path, platform_kind=PlatformKind.NIXOS)


def test_malformed_yaml_is_rejected():
    with tempfile.TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / "settings.yaml"
        path.write_text("config_path: [unclosed\n")
        with pytest.raises(SettingsError) as info:
            load_settings(env={}, settings_file=path, platform_kind=PlatformKind.NIXOS)
        assert isinstance(info.value.__cause__, yaml.YAMLError)


def test_settings_are_immutable():
    settings = Settings(config_path="~/cfg", install_path="/etc/nixos", hostname="h")
    assert settings.config_path == Path.home() / "cfg"
    with pytest.raises(dataclasses.FrozenInstanceError):
        settings.update = True

    updated = settings.with_overrides(update=True, branch=None)
    assert updated.update and not settings.update
    assert updated.branch == "main"
