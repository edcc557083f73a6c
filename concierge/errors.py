"""Exception types raised across concierge.

Convention:
- Every failure a user can act on is a ``ConciergeError`` subclass.
- A layer that catches a lower-level error re-raises its own type with
  ``raise ... from exc`` so the cause chain reads from the user-level action
  down to the root cause. Nothing is retried.
- ``ValueError`` is reserved for programming mistakes (bad arguments).
"""

from __future__ import annotations


class ConciergeError(Exception):
    """Base class for all errors reported to the user."""


class SettingsError(ConciergeError):
    """Settings file or environment could not be turned into ``Settings``."""


class PreconditionError(ConciergeError):
    """A precondition of the deployment does not hold (e.g. missing manifest)."""


class RepoStateError(ConciergeError):
    """The config repo is in a state concierge refuses to deploy from."""


class GitOperationError(ConciergeError):
    """A git metadata operation (open, fetch, find branch, ...) failed."""


class TaggingError(ConciergeError):
    """Backing up or tagging a file failed."""


class SyncError(ConciergeError):
    """Copying between the config dir and the install dir failed."""


class ServiceConversionError(ConciergeError):
    """A compose project could not be prepared for conversion."""


class UnsupportedPlatformError(ConciergeError):
    """The current operating system has no known build-and-apply command."""


class DeploymentError(ConciergeError):
    """A deployment step failed; the step name is carried for reporting."""

    def __init__(self, step: str, message: str):
        super().__init__(message)
        self.step = step


class ProcessError(ConciergeError):
    """An external command could not be run to a successful exit."""

    def __init__(self, message: str, command: str, args: list[str]):
        super().__init__(message)
        self.command = command
        self.args_list = list(args)


class ProcessSpawnError(ProcessError):
    """The command could not be started at all."""


class ProcessFailedError(ProcessError):
    """The command exited with a nonzero code."""

    def __init__(self, command: str, args: list[str], exit_code: int):
        super().__init__(
            f"Process {command} with args {args!r} failed with return code {exit_code}",
            command,
            args,
        )
        self.exit_code = exit_code


class ProcessSignaledError(ProcessError):
    """The command was terminated by a signal and has no exit code."""

    def __init__(self, command: str, args: list[str], signal_number: int):
        super().__init__(
            f"Process {command} with args {args!r} was terminated by signal {signal_number}",
            command,
            args,
        )
        self.signal_number = signal_number


def format_error_chain(exc: BaseException) -> list[str]:
    """Return messages from ``exc`` down through its ``__cause__`` chain."""
    messages = []
    seen: set[int] = set()
    current: BaseException | None = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        text = str(current) or type(current).__name__
        messages.append(text)
        current = current.__cause__ or (
            None if current.__suppress_context__ else current.__context__
        )
    return messages
