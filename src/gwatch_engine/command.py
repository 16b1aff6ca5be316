"""External process lifecycle: start, stream output, preempt, kill."""

import asyncio
import logging
import os
import signal
import sys
from collections.abc import Callable, Sequence
from typing import TextIO

from gwatch_engine.models import CommandState, StopReason

logger = logging.getLogger(__name__)

STOP_SIGNAL = getattr(signal, "SIGKILL", signal.SIGTERM)

# Longest output line the pumps accept before splitting it
_LINE_LIMIT = 1024 * 1024

# Seconds to wait for output pipes to close once the process is gone
_DRAIN_TIMEOUT = 5.0


class Command:
    """One externally executed program.

    At most one process is live per Command. Calling run() while a previous
    invocation is active stops that invocation first (preemption); it does not
    queue behind it.
    """

    def __init__(self, args: Sequence[str], output_prefix: str = ""):
        """Initialize command.

        Args:
            args: Argument vector, program first
            output_prefix: Label put in front of every output line
        """
        if not args:
            raise ValueError("Command needs at least a program name")
        self.args = tuple(args)
        if output_prefix and not output_prefix.endswith(":"):
            output_prefix += ":"
        self.output_prefix = output_prefix

        self._lock = asyncio.Lock()
        self._state = CommandState.IDLE
        self._process: asyncio.subprocess.Process | None = None
        self._stop = asyncio.Event()
        self._generation = 0

    def __repr__(self) -> str:
        return f"Command({' '.join(self.args)!r}, state={self._state.value})"

    @property
    def state(self) -> CommandState:
        return self._state

    @property
    def is_active(self) -> bool:
        return self._state.is_active

    async def run(
        self,
        stdout: TextIO | None = None,
        stderr: TextIO | None = None,
        on_start: Callable[[], None] | None = None,
    ) -> StopReason:
        """Start the process and wait until it exits or is stopped.

        Args:
            stdout: Sink for prefixed stdout lines (default: sys.stdout)
            stderr: Sink for prefixed stderr lines (default: sys.stderr)
            on_start: Called right before the process is spawned

        Returns:
            StopReason describing how the invocation ended. A newer run() that
            arrives before this one gets to start makes it return
            StopReason.killed() without spawning anything.
        """
        self._generation += 1
        generation = self._generation

        if self.is_active:
            logger.debug(f"Preempting active invocation of {self.args[0]}")
            self._stop.set()

        async with self._lock:
            if generation != self._generation:
                return StopReason.killed()

            self._stop = asyncio.Event()
            self._state = CommandState.STARTING
            try:
                return await self._run_locked(stdout, stderr, on_start)
            finally:
                self._process = None
                self._state = CommandState.IDLE

    async def _run_locked(
        self,
        stdout: TextIO | None,
        stderr: TextIO | None,
        on_start: Callable[[], None] | None,
    ) -> StopReason:
        stop = self._stop

        if on_start is not None:
            on_start()

        try:
            process = await asyncio.create_subprocess_exec(
                *self.args,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                limit=_LINE_LIMIT,
                start_new_session=os.name == "posix",
            )
        except OSError as e:
            logger.debug(f"Failed to start {self.args[0]}: {e}")
            return StopReason.start_failure(e)

        self._process = process
        self._state = CommandState.RUNNING

        pumps = [
            asyncio.create_task(self._pump(process.stdout, stdout, sys.stdout)),
            asyncio.create_task(self._pump(process.stderr, stderr, sys.stderr)),
        ]
        exited = asyncio.create_task(process.wait())
        stopped = asyncio.create_task(stop.wait())

        try:
            await asyncio.wait({exited, stopped}, return_when=asyncio.FIRST_COMPLETED)

            if stop.is_set():
                self._state = CommandState.STOPPING
                self._signal(process)
                code = await exited
                reason = StopReason.killed(code)
            else:
                reason = StopReason.natural_exit(exited.result())

            await self._drain(pumps)
            return reason
        except asyncio.CancelledError:
            # Never leave an orphan behind when the caller goes away
            self._state = CommandState.STOPPING
            self._signal(process)
            await process.wait()
            raise
        finally:
            stopped.cancel()
            for task in pumps:
                task.cancel()
            if not exited.done():
                exited.cancel()

    async def _drain(self, pumps: list[asyncio.Task]) -> None:
        """Let the pumps flush remaining output.

        A detached grandchild can keep a pipe open after the process exits,
        so draining is bounded.
        """
        done, pending = await asyncio.wait(pumps, timeout=_DRAIN_TIMEOUT)
        if pending:
            logger.debug(f"Output of {self.args[0]} still open after exit, dropping it")
        for task in done:
            if task.exception() is not None:
                logger.error(f"Failed to copy output of {self.args[0]}: {task.exception()}")

    async def _pump(
        self, stream: asyncio.StreamReader | None, sink: TextIO | None, default: TextIO
    ) -> None:
        """Copy a pipe to a sink line by line until EOF."""
        if stream is None:
            return
        split = False
        while True:
            try:
                line = await stream.readuntil(b"\n")
            except asyncio.IncompleteReadError as e:
                line = e.partial
            except asyncio.LimitOverrunError as e:
                # Emit an over-long line in pieces, the separator stays buffered
                line = await stream.read(e.consumed)
                split = True
            else:
                if split and line == b"\n":
                    split = False
                    continue
                split = False
            if not line:
                return
            text = line.decode(errors="replace").rstrip("\r\n")
            out = sink if sink is not None else default
            if self.output_prefix:
                out.write(f"{self.output_prefix} {text}\n")
            else:
                out.write(f"{text}\n")
            out.flush()

    def kill(self) -> None:
        """Stop the active invocation, if any.

        Calls to run() still waiting for a previous invocation are superseded
        as well. A no-op when nothing is running. A process that already
        exited is not an error.

        Raises:
            OSError: Sending the signal failed for another reason
        """
        # Invocations still waiting on the lock must not start afterwards
        self._generation += 1
        if not self.is_active:
            return

        self._stop.set()
        process = self._process
        if process is not None:
            self._state = CommandState.STOPPING
            self._signal(process)

    def _signal(self, process: asyncio.subprocess.Process) -> None:
        if process.returncode is not None:
            return
        try:
            if os.name == "posix":
                os.killpg(process.pid, STOP_SIGNAL)
            else:
                process.kill()
        except ProcessLookupError:
            logger.debug(f"Process {process.pid} already exited")
