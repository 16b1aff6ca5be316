"""Pytest configuration and fixtures."""

import asyncio
import sys
import time
from pathlib import Path

import pytest

# Add src directory to Python path for imports
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

from gwatch_engine.models import ChangeEvent, ChangeKind  # noqa: E402


class FakeSource:
    """In-memory change source; tests push events by hand."""

    def __init__(self):
        self.events: asyncio.Queue | None = None
        self.errors: asyncio.Queue | None = None
        self.opened_with: tuple[str, ...] | None = None
        self.close_calls = 0

    @property
    def is_open(self) -> bool:
        return self.events is not None

    def open(self, paths):
        self.opened_with = tuple(paths)
        self.events = asyncio.Queue()
        self.errors = asyncio.Queue()
        return self.events, self.errors

    def emit(self, kind: ChangeKind, path) -> None:
        self.events.put_nowait(ChangeEvent(kind, str(path)))

    def fail(self, error: BaseException) -> None:
        self.errors.put_nowait(error)

    def close(self) -> None:
        self.close_calls += 1
        if self.close_calls == 1 and self.events is not None:
            self.events.put_nowait(None)
            self.errors.put_nowait(None)


async def wait_until(predicate, timeout: float = 5.0, interval: float = 0.01) -> None:
    """Poll predicate on the running loop until it holds."""
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("Condition not met before timeout")
        await asyncio.sleep(interval)


def python_args(code: str) -> list[str]:
    """Argument vector running a Python snippet with this interpreter."""
    return [sys.executable, "-c", code]


@pytest.fixture
def fake_source():
    return FakeSource()


@pytest.fixture
def project(tmp_path):
    """Small project tree with a few watched and unwatched files."""
    (tmp_path / "main.go").write_text("package main\n")
    (tmp_path / "util.go").write_text("package main\n")
    (tmp_path / "notes.txt").write_text("notes\n")
    (tmp_path / "pkg").mkdir()
    (tmp_path / "pkg" / "lib.go").write_text("package pkg\n")
    (tmp_path / "vendor").mkdir()
    (tmp_path / "vendor" / "dep.go").write_text("package dep\n")
    return tmp_path
