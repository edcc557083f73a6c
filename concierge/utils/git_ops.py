"""Git operations: inspect the config repo and compare it against its remote."""

from __future__ import annotations

import logging
import re
from enum import Enum
from pathlib import Path
from urllib.parse import urlparse

from git import GitCommandError, InvalidGitRepositoryError, NoSuchPathError, Repo
from git.exc import BadName

from concierge.errors import GitOperationError

logger = logging.getLogger(__name__)

# user@host:path, the scp-like syntax git accepts for SSH remotes
_SCP_LIKE_RE = re.compile(r"^(?:[^@/]+@)?(?P<host>[^:/]+):(?P<path>.+)$")


class RepoStatus(Enum):
    """Where the local branch stands relative to its remote tracking ref."""

    AHEAD = "ahead"
    BEHIND = "behind"
    SAME = "same"
    COMPLEX = "complex"  # both sides have commits the other lacks


def normalize_git_url(url: str) -> str:
    """Reduce a git URL of any transport to ``host/path``.

    Both of these become ``github.com/username/repo``::

        git@github.com:username/repo.git
        https://github.com/username/repo

    User info and ports are dropped. URLs without a host (local paths,
    ``file://``) reduce to their path.
    """
    url = url.strip()
    if "://" in url:
        parsed = urlparse(url)
        host = (parsed.hostname or "").lower()
        path = parsed.path
    else:
        match = _SCP_LIKE_RE.match(url)
        if match:
            host = match.group("host").lower()
            path = match.group("path")
        else:
            host, path = "", url

    path = path.rstrip("/")
    if path.endswith(".git"):
        path = path[: -len(".git")]
    path = path.lstrip("/")
    return f"{host}/{path}" if host else path


def is_same_repo(a: str, b: str) -> bool:
    return normalize_git_url(a) == normalize_git_url(b)


def is_git_repo(path: str | Path) -> bool:
    """True if ``path`` is inside a git working copy. Never raises."""
    try:
        Repo(path, search_parent_directories=True)
    except (InvalidGitRepositoryError, NoSuchPathError):
        return False
    return True


def _open(path: str | Path, action: str) -> Repo:
    try:
        return Repo(path)
    except (InvalidGitRepositoryError, NoSuchPathError) as e:
        raise GitOperationError(f"Failed to open repo at {path} to {action}") from e


def get_repo_remote_urls(path: str | Path) -> list[str]:
    """Every URL of every remote configured in the repo at ``path``."""
    repo = _open(path, "list remotes")
    try:
        return [url for remote in repo.remotes for url in remote.urls]
    except GitCommandError as e:
        raise GitOperationError(f"Error getting remotes from repo at {path}") from e


def repo_has_remote(path: str | Path, remote_url: str) -> bool:
    """True if any remote of the repo at ``path`` points at ``remote_url``.

    URLs are compared after ``normalize_git_url`` so SSH and HTTPS forms of
    the same repo match.
    """
    remotes = get_repo_remote_urls(path)
    return any(is_same_repo(r, remote_url) for r in remotes)


def is_working_tree_clean(path: str | Path) -> bool:
    """True iff there are no staged, unstaged or untracked changes.

    Untracked files inside untracked directories count as changes.
    """
    repo = _open(path, "check working tree")
    try:
        return not repo.is_dirty(index=True, working_tree=True, untracked_files=True)
    except GitCommandError as e:
        raise GitOperationError(f"Failed getting statuses for repo {path}") from e


def classify_status(ahead: int, behind: int) -> RepoStatus:
    """Map commit distances to a ``RepoStatus``."""
    if ahead < 0 or behind < 0:
        raise ValueError(f"Commit distances must be non-negative, got ({ahead}, {behind})")
    if ahead > 0 and behind == 0:
        return RepoStatus.AHEAD
    if behind > 0 and ahead == 0:
        return RepoStatus.BEHIND
    if ahead == 0 and behind == 0:
        return RepoStatus.SAME
    return RepoStatus.COMPLEX


def ahead_behind(repo: Repo, local: str, remote: str) -> tuple[int, int]:
    """Commits reachable only from ``local`` and only from ``remote``."""
    out = repo.git.rev_list("--left-right", "--count", f"{local}...{remote}")
    ahead, behind = out.split()
    return int(ahead), int(behind)


def repo_status(path: str | Path, branch_name: str) -> RepoStatus:
    """Fetch ``branch_name`` from ``origin`` and classify the local branch.

    The fetch only updates ``refs/remotes/origin/<branch>``; the working tree
    and the local branch are left alone.

    Raises:
        GitOperationError: Any step failed. The message names the path and
            the step; nothing is retried.
    """
    repo = _open(path, "check status")

    try:
        remote = repo.remote("origin")
    except ValueError as e:
        raise GitOperationError(f"Failed to get remote 'origin' for repo {path}") from e

    tracking_ref = f"refs/remotes/origin/{branch_name}"
    logger.debug("Fetching %s into %s for %s", branch_name, tracking_ref, path)
    try:
        remote.fetch(f"+refs/heads/{branch_name}:{tracking_ref}")
    except GitCommandError as e:
        raise GitOperationError(f"Failed to fetch updates for repo {path}") from e

    try:
        local_commit = repo.heads[branch_name].commit.hexsha
    except (IndexError, ValueError) as e:
        raise GitOperationError(f"Failed to get local branch {branch_name} in {path}") from e

    try:
        remote_commit = repo.commit(tracking_ref).hexsha
    except (BadName, ValueError) as e:
        raise GitOperationError(f"Failed to find reference {tracking_ref} in {path}") from e

    try:
        ahead, behind = ahead_behind(repo, local_commit, remote_commit)
    except (GitCommandError, ValueError) as e:
        raise GitOperationError(f"Failed to get graph ahead behind for {path}") from e

    status = classify_status(ahead, behind)
    logger.debug("%s is %d ahead, %d behind origin/%s: %s", path, ahead, behind, branch_name, status.value)
    return status


# ── Write operations used by the config repo policy ──────────────────


def clone_repo(url: str, path: str | Path) -> Repo:
    try:
        return Repo.clone_from(url, Path(path))
    except GitCommandError as e:
        raise GitOperationError(f"Failed cloning repository {url} to {path}") from e


def pull_fast_forward(path: str | Path, branch_name: str) -> None:
    """Fast-forward the local branch to ``origin``; refuses to merge."""
    repo = _open(path, "pull")
    try:
        repo.remote("origin").pull(branch_name, ff_only=True)
    except (GitCommandError, ValueError) as e:
        raise GitOperationError(f"Failed to pull {branch_name} into {path}") from e


def changed_files(path: str | Path) -> list[str]:
    """Repo-relative paths with any change, including untracked and deleted."""
    repo = _open(path, "list changes")
    try:
        out = repo.git.status("--porcelain", "--untracked-files=all")
    except GitCommandError as e:
        raise GitOperationError(f"Failed getting statuses for repo {path}") from e
    files = []
    for line in out.splitlines():
        entry = line[3:]
        # renames are reported as "old -> new"
        files.append(entry.split(" -> ")[-1].strip('"'))
    return files


def commit_paths(path: str | Path, paths: list[str], message: str) -> str | None:
    """Stage ``paths`` (additions and deletions) and commit them.

    Returns the new commit SHA, or None when there was nothing to commit.
    """
    if not paths:
        return None
    repo = _open(path, "commit")
    try:
        repo.git.add("--all", "--", *paths)
        if not repo.is_dirty(index=True, working_tree=False, untracked_files=False):
            return None
        commit = repo.index.commit(message)
    except GitCommandError as e:
        raise GitOperationError(f"Failed to commit {paths} in {path}") from e
    return commit.hexsha


def push_branch(path: str | Path, branch_name: str) -> None:
    repo = _open(path, "push")
    try:
        repo.remote("origin").push(f"{branch_name}:{branch_name}").raise_if_error()
    except (GitCommandError, ValueError) as e:
        raise GitOperationError(f"Failed to push {branch_name} from {path}") from e
