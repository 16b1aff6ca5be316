"""Colorized console logging for gwatch."""

import logging

from rich.console import Console
from rich.text import Text

LOG_PREFIX = "[gwatch]"

# Logger name prefix -> style, first match wins
COMPONENT_STYLES = [
    ("gwatch_engine.command", "bright_yellow"),
    ("gwatch_engine.runner", "bright_yellow"),
    ("gwatch_engine.file_watcher", "bright_blue"),
    ("gwatch_engine.paths", "bright_blue"),
    ("gwatch", "bright_white"),
]

_LOGGER_NAMES = ("gwatch", "gwatch_engine")

_console = Console(highlight=False)


class ConsoleHandler(logging.Handler):
    """Writes "[gwatch] message" lines, coloured by component."""

    def __init__(self, console: Console | None = None, level: int = logging.NOTSET):
        super().__init__(level)
        self.console = console or _console

    def style_for(self, record: logging.LogRecord) -> str:
        if record.levelno >= logging.ERROR:
            return "bright_red"
        if record.levelno >= logging.WARNING:
            return "bright_magenta"
        for prefix, style in COMPONENT_STYLES:
            if record.name == prefix or record.name.startswith(prefix + "."):
                return style
        return "white"

    def emit(self, record: logging.LogRecord) -> None:
        try:
            message = " ".join(self.format(record).split("\n")).strip()
            if not message:
                return
            self.console.print(Text(f"{LOG_PREFIX} {message}", style=self.style_for(record)))
        except Exception:
            self.handleError(record)


def setup_logging(verbose: bool = False, console: Console | None = None) -> ConsoleHandler:
    """Route gwatch loggers to the console.

    Args:
        verbose: Log debug messages as well
        console: Console to write to (default: shared stdout console)

    Returns:
        The installed handler
    """
    handler = ConsoleHandler(console)
    handler.setFormatter(logging.Formatter("%(message)s"))
    level = logging.DEBUG if verbose else logging.INFO

    for name in _LOGGER_NAMES:
        logger = logging.getLogger(name)
        for existing in list(logger.handlers):
            if isinstance(existing, ConsoleHandler):
                logger.removeHandler(existing)
        logger.addHandler(handler)
        logger.setLevel(level)
        logger.propagate = False

    return handler


def clear_console(console: Console | None = None) -> None:
    """Clear the terminal."""
    (console or _console).clear()
