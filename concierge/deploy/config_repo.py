"""Config repo reconciliation: the git policy wrapped around a deployment.

When a remote URL is configured, the config dir is treated as a checkout of
that remote:

- Missing or empty config dir: clone it.
- Non-empty dir that is not a repo, or a repo without the expected remote:
  refuse; the user has to sort it out.
- Uncommitted changes: deploy, but leave git alone.
- Clean and behind: fast-forward pull first, then deploy.
- Clean and ahead or in sync: deploy.
- Clean and diverged (``COMPLEX``): refuse rather than guess a merge.

After a successful deployment of a clean checkout, changed ``*.lock`` files
are committed and pushed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from concierge.errors import RepoStateError
from concierge.settings import Settings
from concierge.utils import git_ops
from concierge.utils.file_scanner import is_directory_empty

logger = logging.getLogger(__name__)

LOCK_COMMIT_MESSAGE = "concierge: update lock files"


@dataclass
class RepoPlan:
    """What to do with git around the deployment."""

    status: git_ops.RepoStatus | None
    pull: bool = False
    commit_lock_files: bool = False
    reason: str = ""


class ConfigRepoReconciler:
    """Applies the config repo policy for ``settings.repo_url``."""

    def __init__(self, settings: Settings):
        if not settings.repo_url:
            raise ValueError("ConfigRepoReconciler requires settings.repo_url")
        self.settings = settings
        self.path = settings.config_path
        self.url = settings.repo_url
        self.branch = settings.branch

    def ensure_checkout(self) -> bool:
        """Clone the repo if the config dir is missing or empty.

        Returns:
            True if a fresh clone was made.

        Raises:
            RepoStateError: The config dir holds something other than a
                checkout of the expected remote.
        """
        if not self.path.exists() or (self.path.is_dir() and is_directory_empty(self.path)):
            logger.info("Config dir %s is missing or empty, cloning %s", self.path, self.url)
            self.path.mkdir(parents=True, exist_ok=True)
            git_ops.clone_repo(self.url, self.path)
            return True

        if not git_ops.is_git_repo(self.path):
            raise RepoStateError(
                f"Target config dir {self.path} is not a git repo and is not empty"
            )

        if not git_ops.repo_has_remote(self.path, self.url):
            raise RepoStateError(
                f"Target config dir {self.path} is a git repo but does not have "
                f"expected remote {self.url}"
            )
        return False

    def plan(self) -> RepoPlan:
        if not git_ops.is_working_tree_clean(self.path):
            logger.warning(
                "Working tree of %s is not clean, deploying config but won't interact with git.",
                self.path,
            )
            return RepoPlan(status=None, reason="working tree has uncommitted changes")

        status = git_ops.repo_status(self.path, self.branch)

        if status == git_ops.RepoStatus.COMPLEX:
            raise RepoStateError(
                f"Repo {self.path} has complex status. Local has commits that are ahead of "
                f"remote, and remote also has commits that are ahead of local. Rebase or "
                f"merge origin/{self.branch} before concierge can complete deployment."
            )
        if status == git_ops.RepoStatus.BEHIND:
            return RepoPlan(
                status=status,
                pull=True,
                commit_lock_files=True,
                reason="local branch is behind remote",
            )
        return RepoPlan(status=status, commit_lock_files=True, reason=f"local branch is {status.value}")

    def prepare(self, plan: RepoPlan) -> None:
        if plan.pull:
            logger.info("Local repo is behind remote. Pulling changes before deployment.")
            git_ops.pull_fast_forward(self.path, self.branch)

    def changed_lock_files(self) -> list[str]:
        return [p for p in git_ops.changed_files(self.path) if Path(p).name.endswith(".lock")]

    def finalize(self, plan: RepoPlan) -> str | None:
        """Commit and push lock files changed by the deployment.

        Returns the commit SHA, or None when nothing was committed.
        """
        if not plan.commit_lock_files:
            return None

        lock_files = self.changed_lock_files()
        if not lock_files:
            logger.info("No lock files changed, nothing to commit.")
            return None

        sha = git_ops.commit_paths(self.path, lock_files, LOCK_COMMIT_MESSAGE)
        if sha is None:
            return None
        logger.info("Committed %s as %s, pushing to origin/%s", lock_files, sha[:12], self.branch)
        git_ops.push_branch(self.path, self.branch)
        return sha
