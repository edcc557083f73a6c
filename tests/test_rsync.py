"""Tests for the rsync sync engine."""

import shlex

import pytest

from concierge.deploy.rsync import (
    LOCK_FILE_EXCLUDES,
    LOCK_FILE_INCLUDES,
    RsyncEngine,
    SyncMode,
    build_rsync_argv,
)
from concierge.errors import ProcessFailedError, SyncError
from tests.helpers import FakeRunner


def test_additive_argv():
    argv = build_rsync_argv(
        "/home/me/.config/nix",
        "/etc/nixos/",
        {".git", ".concierge-backup"},
        SyncMode.ADDITIVE,
    )
    assert argv == [
        "rsync",
        "-ahi",
        "--exclude=.concierge-backup",
        "--exclude=.git",
        "/home/me/.config/nix/",
        "/etc/nixos/",
    ]
    assert "--delete" not in argv


def test_mirror_argv_puts_includes_first_and_deletes():
    argv = build_rsync_argv(
        "/etc/nixos",
        "/home/me/.config/nix",
        LOCK_FILE_EXCLUDES,
        SyncMode.MIRROR,
        includes=LOCK_FILE_INCLUDES,
        elevated=True,
    )
    assert argv[:2] == ["sudo", "rsync"]
    assert "--delete" in argv
    assert argv.index("--include=*/") < argv.index("--include=*.lock") < argv.index("--exclude=*")
    assert argv[-2:] == ["/etc/nixos/", "/home/me/.config/nix/"]


def test_exclusion_order_does_not_matter():
    a = build_rsync_argv("src", "dst", [".git", ".stfolder"], SyncMode.ADDITIVE)
    b = build_rsync_argv("src", "dst", [".stfolder", ".git"], SyncMode.ADDITIVE)
    assert a == b


def test_sync_runs_inside_nix_shell():
    runner = FakeRunner()
    RsyncEngine(runner).sync("src", "dst", [".git"], SyncMode.ADDITIVE, elevated=True)

    command, args, _ = runner.calls[0]
    assert command == "nix-shell"
    assert args[:3] == ["-p", "rsync", "--run"]
    assert shlex.split(args[3]) == ["sudo", "rsync", "-ahi", "--exclude=.git", "src/", "dst/"]


def test_sync_runs_rsync_directly():
    runner = FakeRunner()
    RsyncEngine(runner, via_nix_shell=False).sync("src", "dst", [], SyncMode.ADDITIVE)
    assert runner.argvs() == [["rsync", "-ahi", "src/", "dst/"]]


def test_sync_failure_is_wrapped():
    runner = FakeRunner(fail_on="rsync")
    with pytest.raises(SyncError) as info:
        RsyncEngine(runner, via_nix_shell=False).sync("src", "dst", [], SyncMode.ADDITIVE)
    assert isinstance(info.value.__cause__, ProcessFailedError)


def test_pull_lock_files():
    runner = FakeRunner()
    RsyncEngine(runner, via_nix_shell=False).pull_lock_files("/etc/nixos", "/cfg")
    assert runner.argvs() == [
        [
            "sudo",
            "rsync",
            "-aim",
            "--delete",
            "--include=*/",
            "--include=*.lock",
            "--exclude=*",
            "/etc/nixos/",
            "/cfg/",
        ]
    ]


def test_pull_lock_files_keeps_exclusions_out_of_reach():
    runner = FakeRunner()
    RsyncEngine(runner, via_nix_shell=False).pull_lock_files(
        "/etc/nixos", "/cfg", protected={".git", ".concierge-backup"}
    )
    argv = runner.argvs()[0]
    assert argv[4:9] == [
        "--exclude=.concierge-backup",
        "--exclude=.git",
        "--include=*/",
        "--include=*.lock",
        "--exclude=*",
    ]
    assert argv.index("--exclude=.git") < argv.index("--include=*/")
