"""Deployment orchestrator: the ordered, fail-fast deployment sequence.

A deployment runs these steps, each only after the previous one returned:

1. Require ``flake.nix`` in the config dir (no side effects before this)
2. Detect the platform; an unsupported OS stops here, before anything changes
3. ``force_evaluation``: back up, then tag ``flake.nix``
4. ``convert_services``: run compose2nix for this host's compose projects
5. ``update``: tag every ``docker-compose.yml`` so images are pulled again
6. ``update_input``: refresh one flake input in the config dir
7. Sync config dir -> install dir (additive)
8. ``update``: ``nix flake update`` in the install dir
9. Build and apply with the platform's rebuild command
10. Mirror ``*.lock`` files from the install dir back to the config dir

Tagging happens before the sync so the tagged content is what gets built.
The global update runs before the build so new input versions are used.
Lock files come back last because only the builder changes them.

The first failing step raises ``DeploymentError`` naming the step. Nothing is
rolled back or retried; the deployment is safe to re-run once fixed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from datetime import datetime
from pathlib import Path
from typing import Callable

from concierge.deploy.compose import COMPOSE_FILE, convert_service_definitions
from concierge.deploy.platforms import (
    PlatformKind,
    build_command,
    detect_platform,
    elevation_prefix,
    is_supported,
)
from concierge.deploy.rsync import RsyncEngine, SyncMode
from concierge.deploy.runner import ProcessRunner
from concierge.deploy.tagger import backup_file, tag_file_content
from concierge.errors import (
    ConciergeError,
    DeploymentError,
    PreconditionError,
    UnsupportedPlatformError,
)
from concierge.settings import Settings
from concierge.utils.file_scanner import search_files_with_name

logger = logging.getLogger(__name__)


class Step(Enum):
    """Step names, as they appear in reports and errors."""

    BACKUP_MANIFEST = "backup-manifest"
    TAG_MANIFEST = "tag-manifest"
    CONVERT_SERVICES = "convert-services"
    TAG_SERVICES = "tag-service-definitions"
    UPDATE_INPUT = "update-input"
    SYNC_TO_INSTALL = "sync-to-install"
    GLOBAL_UPDATE = "global-update"
    BUILD_AND_APPLY = "build-and-apply"
    SYNC_LOCK_FILES = "sync-lock-files-back"


@dataclass
class DeploymentReport:
    """What a successful deployment did."""

    platform: PlatformKind
    started_at: datetime
    steps: list[Step] = field(default_factory=list)
    backup_path: Path | None = None
    tagged_files: list[Path] = field(default_factory=list)
    converted_dirs: list[Path] = field(default_factory=list)

    def summary(self) -> str:
        lines = [
            f"Platform:  {self.platform.value}",
            f"Started:   {self.started_at.isoformat()}",
            f"Steps:     {', '.join(step.value for step in self.steps)}",
        ]
        if self.backup_path:
            lines.append(f"Backup:    {self.backup_path}")
        if self.tagged_files:
            lines.append(f"Tagged:    {len(self.tagged_files)} file(s)")
        if self.converted_dirs:
            lines.append(f"Converted: {len(self.converted_dirs)} compose project(s)")
        return "\n".join(lines)


def _local_now() -> datetime:
    return datetime.now().astimezone()


class Deployer:
    """Runs one deployment of ``settings``.

    Collaborators are injectable so the sequence can be exercised without
    touching the system: ``runner`` runs every external command, ``syncer``
    copies between the two trees, ``detect`` identifies the platform and
    ``clock`` supplies the single timestamp used for backups and tags.
    """

    def __init__(
        self,
        settings: Settings,
        runner: ProcessRunner | None = None,
        syncer: RsyncEngine | None = None,
        detect: Callable[[], PlatformKind] = detect_platform,
        clock: Callable[[], datetime] = _local_now,
    ):
        self.settings = settings
        self.runner = runner or ProcessRunner()
        self.syncer = syncer or RsyncEngine(self.runner, via_nix_shell=settings.rsync_via_nix_shell)
        self.detect = detect
        self.clock = clock

    def deploy(self) -> DeploymentReport:
        s = self.settings
        logger.debug("Deploying Nix configuration with settings: %s", s)

        if not s.manifest_file.is_file():
            raise PreconditionError(
                f"Config source dir {s.config_path} does not contain {s.manifest_file.name}"
            )

        kind = self.detect()
        if not is_supported(kind):
            raise UnsupportedPlatformError(f"Unsupported OS: {kind.value}")

        report = DeploymentReport(platform=kind, started_at=self.clock())
        timestamp = report.started_at

        if s.force_evaluation:
            report.backup_path = self._step(
                report,
                Step.BACKUP_MANIFEST,
                f"Failed to backup {s.manifest_file.name} before tagging",
                lambda: backup_file(s.manifest_file, timestamp),
            )
            self._step(
                report,
                Step.TAG_MANIFEST,
                f"Failed to tag file to force evaluation: {s.manifest_file}",
                lambda: tag_file_content(s.manifest_file, timestamp),
            )
            report.tagged_files.append(s.manifest_file)

        if s.convert_services:
            report.converted_dirs = self._step(
                report,
                Step.CONVERT_SERVICES,
                f"Failed to use compose2nix to convert {COMPOSE_FILE} projects to .nix files",
                lambda: convert_service_definitions(s.config_path, s.hostname, self.runner),
            )

        if s.update:
            report.tagged_files.extend(
                self._step(
                    report,
                    Step.TAG_SERVICES,
                    f"Failed to tag {COMPOSE_FILE} files for update",
                    lambda: self._tag_service_definitions(timestamp),
                )
            )

        if s.update_input:
            self._step(
                report,
                Step.UPDATE_INPUT,
                f"Error updating input {s.update_input}",
                lambda: self.runner.run(
                    "nix",
                    ["flake", "lock", "--update-input", s.update_input],
                    cwd=s.config_path,
                ),
            )

        self._step(
            report,
            Step.SYNC_TO_INSTALL,
            f"Failed syncing configuration to installation location {s.install_path}",
            lambda: self.syncer.sync(
                s.config_path,
                s.install_path,
                s.sync_exclusions,
                SyncMode.ADDITIVE,
                elevated=True,
            ),
        )

        if s.update:
            self._step(
                report,
                Step.GLOBAL_UPDATE,
                f"Failed to update flake inputs in {s.install_path}",
                lambda: self.runner.run_argv(self.global_update_argv(kind)),
            )

        command = build_command(kind, s.install_path)
        self._step(
            report,
            Step.BUILD_AND_APPLY,
            "Failed to build and apply Nix configuration",
            lambda: self.runner.run_argv(command.argv()),
        )

        self._step(
            report,
            Step.SYNC_LOCK_FILES,
            "Failed syncing updated .lock files back to config dir",
            lambda: self.syncer.pull_lock_files(
                s.install_path, s.config_path, protected=s.sync_exclusions, elevated=True
            ),
        )

        logger.info("Deployment finished: %s", ", ".join(step.value for step in report.steps))
        return report

    def global_update_argv(self, kind: PlatformKind) -> list[str]:
        """``nix flake update`` for the install dir, elevated where nix needs root."""
        s = self.settings
        argv = [*elevation_prefix(kind), "nix", "flake", "update"]
        if s.show_trace:
            argv.append("-vv")
        if s.fallback:
            argv.append("--fallback")
        if s.show_trace:
            argv.append("--show-trace")
        argv += ["--flake", str(s.install_path)]
        return argv

    def _tag_service_definitions(self, timestamp: datetime) -> list[Path]:
        files = search_files_with_name(self.settings.config_path, COMPOSE_FILE)
        for path in files:
            tag_file_content(path, timestamp)
        return files

    def _step(self, report: DeploymentReport, step: Step, message: str, action: Callable):
        logger.info("Step %s", step.value)
        try:
            result = action()
        except (ConciergeError, OSError) as e:
            raise DeploymentError(step.value, f"{message} (step {step.value})") from e
        report.steps.append(step)
        return result
