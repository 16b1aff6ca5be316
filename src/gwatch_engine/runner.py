"""Build-then-run orchestration over two Commands."""

import logging
from collections.abc import Callable
from typing import TextIO

from gwatch_engine.command import Command
from gwatch_engine.config import GwatchConfig
from gwatch_engine.models import StopKind, StopReason

logger = logging.getLogger(__name__)


class Runner:
    """Builds the project, then runs the built binary.

    Each Command preempts its own previous invocation, so a new launch stops an
    in-flight build or run of the same kind. A new build does not stop an old
    run; call kill() before starting a new generation.
    """

    def __init__(
        self,
        build: Command,
        run: Command,
        stdout: TextIO | None = None,
        stderr: TextIO | None = None,
    ):
        """Initialize runner.

        Args:
            build: Command that builds the project
            run: Command that runs the built binary
            stdout: Sink for child stdout (default: sys.stdout at write time)
            stderr: Sink for child stderr (default: sys.stderr at write time)
        """
        self.build_cmd = build
        self.run_cmd = run
        self.stdout = stdout
        self.stderr = stderr

    @classmethod
    def from_config(
        cls, config: GwatchConfig, stdout: TextIO | None = None, stderr: TextIO | None = None
    ) -> "Runner":
        """Create a Runner from a GwatchConfig."""
        return cls(
            build=Command(config.build_args, config.log_prefix),
            run=Command(config.run_command, config.log_prefix),
            stdout=stdout,
            stderr=stderr,
        )

    @property
    def is_active(self) -> bool:
        return self.build_cmd.is_active or self.run_cmd.is_active

    async def launch(
        self,
        on_build_start: Callable[[], None] | None = None,
        on_run_start: Callable[[], None] | None = None,
    ) -> StopReason:
        """Build, and run the result if the build succeeded.

        Returns:
            StopReason of the run step, or of the build when it was killed or
            superseded (in which case nothing was run)

        Raises:
            CommandStartError: A command could not be started
            CommandFailedError: A command exited with a non-zero status
        """
        built = await self.build_cmd.run(self.stdout, self.stderr, on_build_start)
        built.raise_for_status(self.build_cmd.args)
        if built.kind is StopKind.KILLED:
            logger.debug("Build was stopped, skipping run")
            return built

        result = await self.run_cmd.run(self.stdout, self.stderr, on_run_start)
        return result.raise_for_status(self.run_cmd.args)

    def kill(self) -> None:
        """Kill the build, then the run. No-op for inactive commands."""
        self.build_cmd.kill()
        self.run_cmd.kill()
