"""Watch configuration and the change source protocol."""

import asyncio
import dataclasses
import os
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Protocol

from gwatch_engine.models import ChangeEvent
from gwatch_engine.paths import resolve_paths


@dataclass(frozen=True)
class WatchConfig:
    """Configuration for a filesystem watch.

    Immutable: a configuration change always produces a new WatchConfig.
    """

    paths: tuple[str, ...]
    """Root paths to watch, in configured order."""

    exts: frozenset[str] = frozenset()
    """Watched extensions, without the leading dot."""

    exclude: tuple[str, ...] = ()
    """Glob patterns of directories to leave out."""

    recursive: bool = True
    """Whether subdirectories of the root paths are watched."""

    delay: float = 0.1
    """Debounce delay in seconds."""

    root_dir: str = ""
    """Directory that relative paths and exclude patterns resolve against."""

    watched_paths: tuple[str, ...] = ()
    """Resolved set of directories handed to the change source."""

    def __post_init__(self):
        if self.delay < 0:
            raise ValueError(f"Debounce delay must be >= 0, got {self.delay}")
        root_dir = os.path.abspath(self.root_dir or os.getcwd())
        object.__setattr__(self, "root_dir", root_dir)
        object.__setattr__(
            self, "paths", tuple(os.path.normpath(os.path.join(root_dir, p)) for p in self.paths)
        )
        object.__setattr__(self, "exts", frozenset(e.lstrip(".") for e in self.exts))
        object.__setattr__(self, "exclude", tuple(self.exclude))
        object.__setattr__(self, "watched_paths", tuple(self.watched_paths))

    @classmethod
    def create(
        cls,
        paths: Sequence[str],
        exts: Sequence[str],
        exclude: Sequence[str] = (),
        recursive: bool = True,
        delay: float = 0.1,
        root_dir: str = "",
    ) -> "WatchConfig":
        """Build a WatchConfig from plain sequences."""
        return cls(
            paths=tuple(paths),
            exts=frozenset(exts),
            exclude=tuple(exclude),
            recursive=recursive,
            delay=delay,
            root_dir=root_dir,
        )

    @property
    def root_label(self) -> str:
        """Comma separated root paths, for display."""
        return ",".join(self.paths)

    def resolve(self) -> "WatchConfig":
        """Return a copy with ``watched_paths`` expanded.

        Raises:
            ConfigError: If a root cannot be walked
        """
        watched = resolve_paths(self.paths, self.exclude, self.recursive, self.root_dir)
        return dataclasses.replace(self, watched_paths=watched)


class ChangeSource(Protocol):
    """Protocol for change notification sources."""

    def open(
        self, paths: Sequence[str]
    ) -> tuple["asyncio.Queue[ChangeEvent | None]", "asyncio.Queue[BaseException | None]"]:
        """Arm the watch and return the (events, errors) streams.

        ``None`` on either queue marks the end of the stream.
        """
        ...

    def close(self) -> None:
        """Stop delivery and release OS watch handles."""
        ...
