"""File watcher implementation using watchdog.

ChangeCollector turns watchdog notifications into ChangeEvent streams on the
event loop. Dispatcher filters those events, coalesces bursts and fires the
registered handlers.
"""

import asyncio
import logging
import os
import stat
from collections.abc import Awaitable, Callable, Sequence
from types import MappingProxyType

from watchdog.events import (
    EVENT_TYPE_CREATED,
    EVENT_TYPE_DELETED,
    EVENT_TYPE_MODIFIED,
    EVENT_TYPE_MOVED,
    FileSystemEvent,
    FileSystemEventHandler,
)
from watchdog.observers import Observer

from gwatch_engine.errors import WatchError
from gwatch_engine.models import ChangeEvent, ChangeKind
from gwatch_engine.watchers import ChangeSource, WatchConfig

logger = logging.getLogger(__name__)

EventHandler = Callable[[ChangeEvent], Awaitable[None] | None]
ErrorHandler = Callable[[BaseException], None]
ReadyHandler = Callable[[WatchConfig], Awaitable[None] | None]

_KIND_BY_EVENT_TYPE = {
    EVENT_TYPE_MODIFIED: ChangeKind.WRITE,
    EVENT_TYPE_CREATED: ChangeKind.CREATE,
    EVENT_TYPE_DELETED: ChangeKind.REMOVE,
    EVENT_TYPE_MOVED: ChangeKind.RENAME,
}


def fatal_error_handler(error: BaseException) -> None:
    """Default error policy: report and terminate."""
    logger.critical(f"Watcher error: {error}")
    raise SystemExit(1)


def logging_error_handler(error: BaseException) -> None:
    """Lenient error policy: report and keep watching."""
    logger.error(f"Watcher error: {error}")


class _QueueingHandler(FileSystemEventHandler):
    """Forwards watchdog events from the observer thread to the event loop."""

    def __init__(self, collector: "ChangeCollector", names: frozenset[str] | None):
        """Initialize handler.

        Args:
            collector: Collector owning the queues
            names: Restrict delivery to these file names, or None for everything
        """
        self.collector = collector
        self.names = names

    def _wanted(self, path: str) -> bool:
        return self.names is None or os.path.basename(path) in self.names

    def on_any_event(self, event: FileSystemEvent) -> None:
        kind = _KIND_BY_EVENT_TYPE.get(event.event_type)
        if kind is None:
            return

        try:
            src_path = os.fsdecode(event.src_path)
            if self._wanted(src_path):
                self.collector._deliver(ChangeEvent(kind, os.path.abspath(src_path)))

            # A move is a rename of the source and a creation of the destination
            dest_path = os.fsdecode(getattr(event, "dest_path", "") or "")
            if kind is ChangeKind.RENAME and dest_path and self._wanted(dest_path):
                self.collector._deliver(ChangeEvent(ChangeKind.CREATE, os.path.abspath(dest_path)))
        except Exception as e:
            self.collector._report(e)


class ChangeCollector(ChangeSource):
    """Change source backed by a watchdog Observer.

    Every path is scheduled individually and non-recursively; a file path is
    watched through its parent directory with delivery limited to that file.
    """

    def __init__(self):
        self._loop: asyncio.AbstractEventLoop | None = None
        self._observer: Observer | None = None
        self._events: asyncio.Queue[ChangeEvent | None] | None = None
        self._errors: asyncio.Queue[BaseException | None] | None = None
        self._closed = False

    def open(
        self, paths: Sequence[str]
    ) -> tuple["asyncio.Queue[ChangeEvent | None]", "asyncio.Queue[BaseException | None]"]:
        """Arm the watch on every path.

        Must be called from a coroutine running on the loop that will consume
        the streams.

        Args:
            paths: Directories (or single files) to watch

        Returns:
            Tuple of (events, errors) queues

        Raises:
            WatchError: Any path could not be watched; nothing stays armed
        """
        if self._observer is not None or self._closed:
            raise RuntimeError("ChangeCollector can only be opened once")

        self._loop = asyncio.get_running_loop()
        self._events = asyncio.Queue()
        self._errors = asyncio.Queue()

        targets: dict[str, set[str] | None] = {}
        for path in paths:
            path = os.path.abspath(path)
            if not os.path.exists(path):
                raise WatchError(f"Cannot watch {path}: no such file or directory")
            if os.path.isdir(path):
                targets[path] = None
            else:
                directory, name = os.path.split(path)
                names = targets.setdefault(directory, set())
                if names is not None:
                    names.add(name)

        observer = Observer()
        observer.start()
        self._observer = observer
        try:
            for directory, names in targets.items():
                handler = _QueueingHandler(self, None if names is None else frozenset(names))
                observer.schedule(handler, directory, recursive=False)
        except Exception as e:
            self._stop_observer()
            raise WatchError(f"Failed to watch {directory}: {e}") from e

        logger.debug(f"Watching {len(targets)} director(y/ies)")
        return self._events, self._errors

    def close(self) -> None:
        """Stop delivery. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        self._stop_observer()

        for queue in (self._events, self._errors):
            if queue is not None:
                self._call_on_loop(queue.put_nowait, None)

    def _stop_observer(self) -> None:
        observer, self._observer = self._observer, None
        if observer is None:
            return
        observer.unschedule_all()
        if observer.is_alive():
            observer.stop()
            observer.join(timeout=2.0)

    def _call_on_loop(self, callback: Callable, *args) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is loop:
            callback(*args)
        else:
            loop.call_soon_threadsafe(callback, *args)

    def _deliver(self, event: ChangeEvent) -> None:
        if not self._closed and self._events is not None:
            self._call_on_loop(self._events.put_nowait, event)

    def _report(self, error: BaseException) -> None:
        if not self._closed and self._errors is not None:
            self._call_on_loop(self._errors.put_nowait, error)


class _Debouncer:
    """Owns the single pending (event, handler) slot and its timer.

    Only touched from the event loop thread.
    """

    def __init__(self, delay: float, fire: Callable[[EventHandler, ChangeEvent], None]):
        self.delay = delay
        self._fire = fire
        self._pending: tuple[EventHandler, ChangeEvent] | None = None
        self._timer: asyncio.TimerHandle | None = None

    def push(self, handler: EventHandler, event: ChangeEvent) -> None:
        """Replace the pending event and restart the timer."""
        self._pending = (handler, event)
        if self._timer is not None:
            self._timer.cancel()
        self._timer = asyncio.get_running_loop().call_later(self.delay, self._expire)

    def _expire(self) -> None:
        self._timer = None
        pending, self._pending = self._pending, None
        if pending is not None:
            self._fire(*pending)

    def cancel(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self._pending = None


class Dispatcher:
    """Debounced event dispatcher.

    Created by DispatcherBuilder.build(); the handler table is frozen.
    """

    def __init__(
        self,
        config: WatchConfig,
        handlers: dict[ChangeKind, tuple[EventHandler, ...]],
        error_handler: ErrorHandler,
        source: ChangeSource,
    ):
        self.config = config
        self.handlers = MappingProxyType(dict(handlers))
        self.error_handler = error_handler
        self.source = source
        self._debouncer = _Debouncer(config.delay, self._fire)
        self._tasks: set[asyncio.Task] = set()
        self._listening = False
        self._closed = False

    @property
    def is_listening(self) -> bool:
        return self._listening

    async def listen(self, on_ready: ReadyHandler | None = None) -> None:
        """Arm the watch and dispatch events until closed.

        Args:
            on_ready: Called once, asynchronously, right after the watch is armed

        Raises:
            WatchError: The change source could not be opened
            RuntimeError: listen() was already called
        """
        if self._listening or self._closed:
            raise RuntimeError("Dispatcher.listen() can only be called once")
        self._listening = True

        try:
            events, errors = self.source.open(self.config.watched_paths)
        except Exception:
            self._listening = False
            self._closed = True
            raise

        logger.debug(f"Listening on {len(self.config.watched_paths)} path(s)")
        if on_ready is not None:
            self._invoke(on_ready, self.config)

        event_get: asyncio.Task | None = None
        error_get: asyncio.Task | None = None
        try:
            while True:
                if event_get is None:
                    event_get = asyncio.ensure_future(events.get())
                if error_get is None:
                    error_get = asyncio.ensure_future(errors.get())

                done, _ = await asyncio.wait({event_get, error_get}, return_when=asyncio.FIRST_COMPLETED)

                if error_get in done:
                    error = error_get.result()
                    error_get = None
                    if error is None:
                        return
                    self.error_handler(error)

                if event_get in done:
                    event = event_get.result()
                    event_get = None
                    if event is None:
                        return
                    self._handle(event)
        finally:
            for task in (event_get, error_get):
                if task is not None:
                    task.cancel()
            self._debouncer.cancel()
            self._listening = False
            self.close()

    def close(self) -> None:
        """Stop the change source and let listen() return. Idempotent."""
        if self._closed:
            return
        self._closed = True
        self._debouncer.cancel()
        self.source.close()

    def _handle(self, event: ChangeEvent) -> None:
        handlers = self.handlers.get(event.kind)
        if not handlers:
            return

        extension = os.path.splitext(event.path)[1].lstrip(".")
        if extension not in self.config.exts:
            return

        try:
            mode = os.stat(event.path).st_mode
        except FileNotFoundError:
            # Only vanished paths are dropped here (temp files, removals, dangling
            # symlinks); every other stat failure goes to the error handler
            logger.debug(f"Ignoring vanished path: {event.path}")
            return
        except OSError as e:
            self.error_handler(e)
            return

        if not stat.S_ISREG(mode):
            return

        logger.debug(f"{event.kind} {event.path}")
        # Last writer wins, across handlers as well as events
        for handler in handlers:
            self._debouncer.push(handler, event)

    def _fire(self, handler: EventHandler, event: ChangeEvent) -> None:
        self._invoke(handler, event)

    def _invoke(self, callback: Callable, *args) -> None:
        loop = asyncio.get_running_loop()
        if asyncio.iscoroutinefunction(callback):
            task = loop.create_task(callback(*args))
            self._tasks.add(task)
            task.add_done_callback(self._task_done)
        else:
            loop.call_soon(self._call_sync, callback, *args)

    def _call_sync(self, callback: Callable, *args) -> None:
        try:
            callback(*args)
        except Exception as e:
            logger.exception(f"Error in handler {callback!r}: {e}")

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            error = task.exception()
            logger.error(f"Handler failed: {error}", exc_info=error)


class DispatcherBuilder:
    """Collects handler registrations and builds a frozen Dispatcher."""

    def __init__(self, config: WatchConfig, source: ChangeSource | None = None):
        """Initialize builder.

        Args:
            config: Watch configuration
            source: Change source (defaults to a watchdog ChangeCollector)
        """
        self.config = config
        self.source = source
        self._handlers: dict[ChangeKind, list[EventHandler]] = {}
        self._error_handler: ErrorHandler = fatal_error_handler
        self._built = False

    def register_handler(self, kind: ChangeKind, handler: EventHandler) -> "DispatcherBuilder":
        """Append a handler for a change kind."""
        self._check_open()
        self._handlers.setdefault(kind, []).append(handler)
        return self

    def register_error_handler(self, handler: ErrorHandler) -> "DispatcherBuilder":
        """Replace the error policy (fatal by default)."""
        self._check_open()
        self._error_handler = handler
        return self

    def build(self) -> Dispatcher:
        """Resolve the watch paths and freeze the handler table.

        Raises:
            ConfigError: The path set could not be resolved
        """
        self._check_open()
        self._built = True
        return Dispatcher(
            config=self.config.resolve(),
            handlers={kind: tuple(hs) for kind, hs in self._handlers.items()},
            error_handler=self._error_handler,
            source=self.source if self.source is not None else ChangeCollector(),
        )

    def _check_open(self) -> None:
        if self._built:
            raise RuntimeError("Dispatcher already built; handlers are frozen")
