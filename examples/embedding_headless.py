#!/usr/bin/env python3
"""
Example: Headless watch-and-rerun
Shows how to drive gwatch_engine directly, without the gwatch CLI or a config file.

This example demonstrates:
- Building a Dispatcher for a directory of Python sources
- Reusing Runner with a custom "build" step (a syntax check) and run step
- Reacting to new files with a second handler
- Stopping everything after a fixed time
"""

import asyncio
import sys

try:
    from gwatch_engine import (
        ChangeKind,
        Command,
        CommandError,
        DispatcherBuilder,
        Runner,
        WatchConfig,
        logging_error_handler,
    )
except ImportError:
    print("Error: Install gwatch first: pip install gwatch")
    exit(1)


class ScriptReloader:
    """
    Recompile-check and rerun a Python script whenever a .py file changes.

    Use case: small daemons, bots, scratch servers without a Go toolchain.
    """

    def __init__(self, directory: str, script: str):
        config = WatchConfig.create(["."], ["py"], exclude=[".venv", "__pycache__"], delay=0.2, root_dir=directory)
        self.runner = Runner(
            build=Command([sys.executable, "-m", "py_compile", script], "check"),
            run=Command([sys.executable, script], "script"),
        )
        self.dispatcher = (
            DispatcherBuilder(config)
            .register_handler(ChangeKind.WRITE, self._on_write)
            .register_handler(ChangeKind.CREATE, self._on_create)
            .register_error_handler(logging_error_handler)
            .build()
        )
        self.launches = 0

    async def _on_write(self, event):
        print(f"changed: {event.path}")
        await self._launch()

    def _on_create(self, event):
        print(f"new file: {event.path}")

    async def _launch(self, *_):
        self.launches += 1
        try:
            await self.runner.launch()
        except CommandError as e:
            print(f"launch failed: {e}")

    async def run_for(self, seconds: float):
        """Watch for a while, then stop the watch and the script."""
        listening = asyncio.create_task(self.dispatcher.listen(on_ready=self._launch))
        try:
            await asyncio.sleep(seconds)
        finally:
            self.dispatcher.close()
            self.runner.kill()
            await listening


async def main():
    if len(sys.argv) != 3:
        print("usage: embedding_headless.py DIRECTORY SCRIPT")
        exit(2)

    reloader = ScriptReloader(sys.argv[1], sys.argv[2])
    await reloader.run_for(60)
    print(f"launched {reloader.launches} time(s)")


if __name__ == "__main__":
    asyncio.run(main())
