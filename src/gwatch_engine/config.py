"""Configuration file parsing for gwatch."""

import logging
import os
import shlex
from dataclasses import dataclass, field
from pathlib import Path

try:
    import tomllib
except ImportError:
    import tomli as tomllib  # type: ignore

from gwatch_engine.errors import ConfigError
from gwatch_engine.watchers import WatchConfig

logger = logging.getLogger(__name__)

CONFIG_NAME = "gwatch.toml"

DEFAULT_EXTS = ["go", "tmp", "tmpl", "html"]
DEFAULT_EXCLUDE = [".git", "bin", "vendor", "testdata"]
DEFAULT_DELAY_MS = 100
DEFAULT_BIN = os.path.join("bin", "main.exe" if os.name == "nt" else "main")
DEFAULT_BUILD_CMD = f"go build -o {DEFAULT_BIN} ."

DEFAULT_CONFIG_TEMPLATE = f"""\
# Auto-generated gwatch.toml

# Directories to watch, relative to this file
paths = ["."]

# File extensions that trigger a rebuild
exts = {DEFAULT_EXTS!r}

# Directories to leave out (glob patterns)
exclude = {DEFAULT_EXCLUDE!r}

# Watch subdirectories of paths
recursive = true

# Quiet period before rebuilding, in milliseconds
delay_ms = {DEFAULT_DELAY_MS}

# Clear the console before every rebuild
clear_screen = false

[build]
cmd = "{DEFAULT_BUILD_CMD.replace(os.sep, "/")}"

[run]
bin = "{DEFAULT_BIN.replace(os.sep, "/")}"
args = []
"""


@dataclass
class GwatchConfig:
    """Parsed gwatch configuration."""

    root: Path
    """Directory relative paths resolve against."""

    exts: list[str] = field(default_factory=lambda: list(DEFAULT_EXTS))
    paths: list[str] = field(default_factory=lambda: ["."])
    exclude: list[str] = field(default_factory=lambda: list(DEFAULT_EXCLUDE))
    recursive: bool = True
    delay_ms: int = DEFAULT_DELAY_MS
    log_prefix: str = ""
    clear_screen: bool = False

    build_cmd: str = DEFAULT_BUILD_CMD
    """Build command line, split with shell quoting rules."""

    run_bin: str = DEFAULT_BIN
    """Binary to run after a successful build."""

    run_args: list[str] = field(default_factory=list)
    """Arguments passed to run_bin."""

    config_path: Path | None = None
    """File this configuration was loaded from."""

    def __post_init__(self):
        self.root = Path(self.root).resolve()
        if not self.log_prefix:
            self.log_prefix = self.root.name

    @property
    def build_args(self) -> list[str]:
        try:
            args = shlex.split(self.build_cmd, posix=os.name != "nt")
        except ValueError as e:
            raise ConfigError(f"Invalid build command {self.build_cmd!r}: {e}") from e
        if not args:
            raise ConfigError("Build command is empty")
        return args

    @property
    def run_command(self) -> list[str]:
        """Binary followed by its arguments, binary resolved against root."""
        binary = self.run_bin
        if os.sep in binary or "/" in binary:
            binary = str(self.root / binary)
        return [binary, *self.run_args]

    def watch_config(self) -> WatchConfig:
        """WatchConfig for the project tree."""
        return WatchConfig.create(
            paths=self.paths,
            exts=self.exts,
            exclude=self.exclude,
            recursive=self.recursive,
            delay=self.delay_ms / 1000.0,
            root_dir=str(self.root),
        )


def _expect(raw: dict, key: str, kind: type | tuple[type, ...], default):
    value = raw.get(key, default)
    if not isinstance(value, kind) or (kind is int and isinstance(value, bool)):
        raise ConfigError(f"'{key}' has the wrong type: {value!r}")
    return value


def _expect_strings(raw: dict, key: str, default: list[str]) -> list[str]:
    value = _expect(raw, key, list, default)
    if not all(isinstance(v, str) for v in value):
        raise ConfigError(f"'{key}' must be a list of strings: {value!r}")
    return list(value)


def load_config(path: str | Path) -> GwatchConfig:
    """Load configuration from a TOML file.

    Args:
        path: Path to the config file

    Returns:
        GwatchConfig with defaults filled in

    Raises:
        FileNotFoundError: The file does not exist
        ConfigError: The file cannot be parsed or holds invalid values
    """
    path = Path(path)

    if not path.exists():
        raise FileNotFoundError(
            f"Config file not found: {path}\nRun 'gwatch' without arguments to auto-create a default config."
        )

    try:
        with open(path, "rb") as f:
            raw = tomllib.load(f)
    except (tomllib.TOMLDecodeError, UnicodeDecodeError) as e:
        raise ConfigError(f"Failed to parse config file {path}: {e}") from e

    root = Path(_expect(raw, "root", str, str(path.parent)))
    if not root.is_absolute():
        root = path.parent / root

    delay_ms = _expect(raw, "delay_ms", int, DEFAULT_DELAY_MS)
    if delay_ms < 0:
        raise ConfigError(f"'delay_ms' must be >= 0, got {delay_ms}")

    build = _expect(raw, "build", dict, {})
    run = _expect(raw, "run", dict, {})

    config = GwatchConfig(
        root=root,
        exts=_expect_strings(raw, "exts", DEFAULT_EXTS),
        paths=_expect_strings(raw, "paths", ["."]),
        exclude=_expect_strings(raw, "exclude", DEFAULT_EXCLUDE),
        recursive=_expect(raw, "recursive", bool, True),
        delay_ms=delay_ms,
        log_prefix=_expect(raw, "log_prefix", str, ""),
        clear_screen=_expect(raw, "clear_screen", bool, False),
        build_cmd=_expect(build, "cmd", str, DEFAULT_BUILD_CMD),
        run_bin=_expect(run, "bin", str, DEFAULT_BIN),
        run_args=_expect_strings(run, "args", []),
        config_path=path.resolve(),
    )
    # Validate eagerly so a bad command fails at load time
    config.build_args

    logger.debug(f"Loaded config from {path}")
    return config


def create_default_config(config_path: Path) -> bool:
    """
    Create a default gwatch.toml if it doesn't exist.

    Args:
        config_path: Path where config should be created

    Returns:
        True if config was created, False if it already exists

    Raises:
        PermissionError: If unable to write to the directory
        OSError: If other file system errors occur
    """
    if config_path.exists():
        return False

    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(DEFAULT_CONFIG_TEMPLATE)
    return True
