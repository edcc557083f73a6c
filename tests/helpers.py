"""Shared test doubles and git fixtures."""

from __future__ import annotations

from pathlib import Path

from git import Actor, Repo

from concierge.deploy.rsync import RsyncEngine
from concierge.deploy.runner import ProcessRunner
from concierge.errors import ProcessFailedError, SyncError

AUTHOR = Actor("Test User", "test@example.com")


class FakeRunner(ProcessRunner):
    """Records commands instead of running them.

    ``fail_on`` is a command name; the first call to it raises
    ``ProcessFailedError`` with exit code 1.
    """

    def __init__(self, fail_on: str | None = None):
        self.calls: list[tuple[str, list[str], Path | None]] = []
        self.fail_on = fail_on

    def run(self, command, args=(), cwd=None):
        args = [str(a) for a in args]
        self.calls.append((command, args, Path(cwd) if cwd is not None else None))
        if command == self.fail_on:
            raise ProcessFailedError(command, args, 1)

    def argvs(self) -> list[list[str]]:
        return [[c, *a] for c, a, _ in self.calls]


class FakeSyncer(RsyncEngine):
    """Records syncs; ``fail`` makes every sync raise ``SyncError``."""

    def __init__(self, fail: bool = False):
        super().__init__(FakeRunner(), via_nix_shell=False)
        self.syncs: list[dict] = []
        self.fail = fail

    def sync(self, source, destination, exclusions, mode, includes=(), elevated=False, protected=()):
        self.syncs.append(
            {
                "source": Path(source),
                "destination": Path(destination),
                "exclusions": set(exclusions),
                "mode": mode,
                "includes": tuple(includes),
                "elevated": elevated,
                "protected": set(protected),
            }
        )
        if self.fail:
            raise SyncError(f"Failed executing rsync from {source} to {destination}")


def commit_file(repo: Repo, name: str, content: str, message: str | None = None) -> str:
    path = Path(repo.working_tree_dir) / name
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content)
    repo.index.add([name])
    commit = repo.index.commit(message or f"Update {name}", author=AUTHOR, committer=AUTHOR)
    return commit.hexsha


def make_remote_and_clone(root: Path, name: str = "work") -> tuple[Repo, Repo]:
    """A bare ``remote.git`` with one commit on ``main`` and a clone of it."""
    bare = Repo.init(root / "remote.git", bare=True, initial_branch="main")

    seed = Repo.init(root / "seed", initial_branch="main")
    commit_file(seed, "flake.nix", "{ outputs = _: { }; }\n", "Initial commit")
    seed.create_remote("origin", str(bare.git_dir))
    seed.remote("origin").push("main:main")

    clone = Repo.clone_from(str(bare.git_dir), root / name)
    return bare, clone


def push_new_commit(root: Path, bare: Repo, name: str, content: str) -> None:
    """Commit to the remote from a separate clone."""
    other_dir = root / f"other-{name.replace('/', '_')}"
    other = Repo.clone_from(str(bare.git_dir), other_dir)
    commit_file(other, name, content)
    other.remote("origin").push("main:main")
