"""gwatch-engine: Event-driven watch, build and run supervision."""

__version__ = "0.1.0"

from gwatch_engine.command import Command
from gwatch_engine.config import GwatchConfig, create_default_config, load_config
from gwatch_engine.errors import (
    CommandError,
    CommandFailedError,
    CommandStartError,
    ConfigError,
    GwatchError,
    WatchError,
)
from gwatch_engine.file_watcher import (
    ChangeCollector,
    Dispatcher,
    DispatcherBuilder,
    fatal_error_handler,
    logging_error_handler,
)
from gwatch_engine.models import ChangeEvent, ChangeKind, CommandState, StopKind, StopReason
from gwatch_engine.paths import resolve_paths
from gwatch_engine.runner import Runner
from gwatch_engine.watchers import ChangeSource, WatchConfig

__all__ = [
    "__version__",
    # Models
    "ChangeEvent",
    "ChangeKind",
    "CommandState",
    "StopKind",
    "StopReason",
    "WatchConfig",
    # Errors
    "GwatchError",
    "ConfigError",
    "WatchError",
    "CommandError",
    "CommandStartError",
    "CommandFailedError",
    # Watching
    "ChangeSource",
    "ChangeCollector",
    "Dispatcher",
    "DispatcherBuilder",
    "fatal_error_handler",
    "logging_error_handler",
    "resolve_paths",
    # Processes
    "Command",
    "Runner",
    # Config
    "GwatchConfig",
    "load_config",
    "create_default_config",
]
