"""Wires the dispatcher to the runner and restarts on config changes."""

import asyncio
import logging
from collections.abc import Callable
from pathlib import Path
from typing import TextIO

from gwatch.console import clear_console
from gwatch_engine.config import GwatchConfig, load_config
from gwatch_engine.errors import CommandError
from gwatch_engine.file_watcher import Dispatcher, DispatcherBuilder, fatal_error_handler
from gwatch_engine.models import ChangeEvent, ChangeKind
from gwatch_engine.runner import Runner
from gwatch_engine.watchers import WatchConfig

logger = logging.getLogger(__name__)

CONFIG_WATCH_DELAY = 0.1


class Gwatch:
    """One generation of {dispatcher, runner}.

    start() watches and relaunches the runner on every qualifying change until
    kill() is called.
    """

    def __init__(self, watcher: DispatcherBuilder, runner: Runner, clear_screen: bool = False):
        """Initialize generation.

        Args:
            watcher: Unbuilt dispatcher; start() registers handlers on it
            runner: Runner to launch on changes
            clear_screen: Clear the console before every build
        """
        self.watcher = watcher
        self.runner = runner
        self.clear_screen = clear_screen
        self._dispatcher: Dispatcher | None = None
        self._launches: set[asyncio.Task] = set()
        self._killed = False

    @classmethod
    def from_config(
        cls, config: GwatchConfig, stdout: TextIO | None = None, stderr: TextIO | None = None
    ) -> "Gwatch":
        """Create a generation from a GwatchConfig."""
        return cls(
            watcher=DispatcherBuilder(config.watch_config()),
            runner=Runner.from_config(config, stdout, stderr),
            clear_screen=config.clear_screen,
        )

    async def start(self) -> None:
        """Watch, build and run until killed.

        Raises:
            ConfigError: The watch paths could not be resolved
            WatchError: The watch could not be armed
        """
        self.watcher.register_error_handler(fatal_error_handler)
        self.watcher.register_handler(ChangeKind.WRITE, self._on_change)
        self._dispatcher = self.watcher.build()

        if self._killed:
            self._dispatcher.close()
            return

        try:
            await self._dispatcher.listen(self._on_ready)
        finally:
            self.runner.kill()
            if self._launches:
                await asyncio.gather(*self._launches, return_exceptions=True)

    def kill(self) -> None:
        """Tear down the runner and the watcher. Safe to call repeatedly."""
        if self._killed:
            return
        self._killed = True

        for task in list(self._launches):
            task.cancel()
        self.runner.kill()
        if self._dispatcher is not None:
            self._dispatcher.close()

    def _on_ready(self, config: WatchConfig) -> None:
        logger.info(f"watching path(s): {config.root_label}")
        logger.info(f"watching extension(s): {','.join(sorted(config.exts))}")
        self._schedule_launch()

    def _on_change(self, event: ChangeEvent) -> None:
        logger.debug(f"Change detected: {event.path}")
        self._schedule_launch()

    def _schedule_launch(self) -> None:
        if self._killed:
            return
        task = asyncio.get_running_loop().create_task(self._launch())
        self._launches.add(task)
        task.add_done_callback(self._launches.discard)

    async def _launch(self) -> None:
        def on_build() -> None:
            if self.clear_screen:
                clear_console()
            logger.info("Building...")

        try:
            await self.runner.launch(on_build, lambda: logger.info("Running..."))
        except CommandError as e:
            # Keep watching; the next change retries
            logger.error(str(e))


def watch_config_file(path: str | Path, on_change: Callable[[ChangeEvent], None]) -> DispatcherBuilder:
    """Dispatcher builder watching a single config file.

    Args:
        path: Config file to watch
        on_change: Called (debounced) when the file is written or replaced

    Returns:
        DispatcherBuilder with handlers registered
    """
    path = Path(path).resolve()
    config = WatchConfig.create(
        paths=[str(path)],
        exts=[path.suffix.lstrip(".")],
        recursive=False,
        delay=CONFIG_WATCH_DELAY,
        root_dir=str(path.parent),
    )
    builder = DispatcherBuilder(config)
    builder.register_handler(ChangeKind.WRITE, on_change)
    builder.register_handler(ChangeKind.CREATE, on_change)
    return builder


async def supervise(
    config_path: str | Path,
    stdout: TextIO | None = None,
    stderr: TextIO | None = None,
    config_watcher: DispatcherBuilder | None = None,
) -> None:
    """Run gwatch generations, restarting whenever the config file changes.

    Args:
        config_path: Config file to load and watch
        stdout: Sink for child stdout
        stderr: Sink for child stderr
        config_watcher: Override for the config file watcher; the restart
            trigger is registered on it

    Raises:
        ConfigError: The config could not be (re)loaded
        WatchError: A watch could not be armed
    """
    config_path = Path(config_path)
    config = load_config(config_path)
    restart = asyncio.Event()

    def on_config_change(event: ChangeEvent) -> None:
        restart.set()

    if config_watcher is None:
        config_watcher = watch_config_file(config_path, on_config_change)
    else:
        config_watcher.register_handler(ChangeKind.WRITE, on_config_change)
        config_watcher.register_handler(ChangeKind.CREATE, on_config_change)
    config_dispatcher = config_watcher.build()
    config_task = asyncio.create_task(config_dispatcher.listen())

    gwatch: Gwatch | None = None
    started: asyncio.Task | None = None
    try:
        while True:
            gwatch = Gwatch.from_config(config, stdout, stderr)
            started = asyncio.create_task(gwatch.start())
            restarted = asyncio.create_task(restart.wait())

            done, _ = await asyncio.wait(
                {started, restarted, config_task}, return_when=asyncio.FIRST_COMPLETED
            )
            restarted.cancel()

            if config_task in done:
                gwatch.kill()
                await asyncio.gather(started, return_exceptions=True)
                config_task.result()
                return

            if started in done:
                # The generation ended on its own (watch closed or failed)
                started.result()
                return

            restart.clear()
            config = load_config(config_path)
            logger.info("restarting gwatch due to changes to config file")
            gwatch.kill()
            await started
    finally:
        if gwatch is not None:
            gwatch.kill()
        if started is not None:
            await asyncio.gather(started, return_exceptions=True)
        config_dispatcher.close()
        if not config_task.done():
            config_task.cancel()
        await asyncio.gather(config_task, return_exceptions=True)
