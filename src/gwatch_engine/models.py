"""Shared data models for gwatch_engine."""

from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum

from gwatch_engine.errors import CommandFailedError, CommandStartError


class ChangeKind(Enum):
    """Kind of filesystem change reported by a change source."""

    ATTRIBUTE = "attribute"
    WRITE = "write"
    CREATE = "create"
    REMOVE = "remove"
    RENAME = "rename"

    def __str__(self) -> str:
        return self.value.upper()


@dataclass(frozen=True)
class ChangeEvent:
    """A single change notification."""

    kind: ChangeKind
    """What happened to the path."""

    path: str
    """Absolute path of the file or directory that changed."""


class CommandState(Enum):
    """Lifecycle of a Command's process handle."""

    IDLE = "idle"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"

    @property
    def is_active(self) -> bool:
        return self is not CommandState.IDLE


class StopKind(Enum):
    """Why a Command invocation ended."""

    NATURAL_EXIT = "natural_exit"
    KILLED = "killed"
    START_FAILURE = "start_failure"


@dataclass(frozen=True)
class StopReason:
    """Uniform outcome of Command.run().

    Callers inspect ``kind`` (or call ``raise_for_status()``) instead of
    interpreting platform specific exit codes.
    """

    kind: StopKind
    code: int | None = None
    error: BaseException | None = None

    @classmethod
    def natural_exit(cls, code: int) -> "StopReason":
        return cls(StopKind.NATURAL_EXIT, code=code)

    @classmethod
    def killed(cls, code: int | None = None) -> "StopReason":
        return cls(StopKind.KILLED, code=code)

    @classmethod
    def start_failure(cls, error: BaseException) -> "StopReason":
        return cls(StopKind.START_FAILURE, error=error)

    @property
    def ok(self) -> bool:
        """True for a clean exit and for an intentional kill."""
        if self.kind is StopKind.KILLED:
            return True
        return self.kind is StopKind.NATURAL_EXIT and self.code == 0

    def raise_for_status(self, args: Sequence[str] = ()) -> "StopReason":
        """Raise a CommandError if this outcome is a failure.

        Args:
            args: Argument vector of the command, used in the error message

        Returns:
            self, so calls can be chained

        Raises:
            CommandStartError: The process could not be started
            CommandFailedError: The process exited with a non-zero status
        """
        name = " ".join(args) or "command"
        if self.kind is StopKind.START_FAILURE:
            raise CommandStartError(f"Failed to start '{name}': {self.error}", args) from self.error
        if not self.ok:
            raise CommandFailedError(f"'{name}' exited with status {self.code}", args, code=self.code)
        return self
