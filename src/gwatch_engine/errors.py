"""Exception hierarchy for gwatch_engine."""

from collections.abc import Sequence


class GwatchError(Exception):
    """Base class for every error raised by gwatch."""


class ConfigError(GwatchError, ValueError):
    """Configuration could not be loaded, validated or resolved."""


class WatchError(GwatchError):
    """The filesystem watch could not be armed."""


class CommandError(GwatchError):
    """An external command could not be started or failed."""

    def __init__(self, message: str, args: Sequence[str] = ()):
        super().__init__(message)
        self.command_args = tuple(args)


class CommandStartError(CommandError):
    """The process never started (binary missing, not executable, ...)."""


class CommandFailedError(CommandError):
    """The process exited on its own with a non-zero status."""

    def __init__(self, message: str, args: Sequence[str] = (), code: int | None = None):
        super().__init__(message, args)
        self.code = code
