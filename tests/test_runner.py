"""Tests for Runner build-then-run orchestration."""

import asyncio
import io
import sys
from unittest.mock import Mock

import pytest
from conftest import python_args, wait_until

from gwatch_engine.command import Command
from gwatch_engine.config import GwatchConfig
from gwatch_engine.errors import CommandFailedError, CommandStartError
from gwatch_engine.models import CommandState, StopKind
from gwatch_engine.runner import Runner

SLEEPER = "import time; time.sleep(30)"


def make_runner(build_code: str, run_code: str) -> Runner:
    return Runner(
        build=Command(python_args(build_code), "build"),
        run=Command(python_args(run_code), "app"),
        stdout=io.StringIO(),
        stderr=io.StringIO(),
    )


class TestLaunch:
    @pytest.mark.asyncio
    async def test_build_then_run(self):
        runner = make_runner("print('compiled')", "print('serving')")
        order = []

        reason = await runner.launch(lambda: order.append("build"), lambda: order.append("run"))

        assert reason.ok
        assert order == ["build", "run"]
        assert runner.stdout.getvalue() == "build: compiled\napp: serving\n"

    @pytest.mark.asyncio
    async def test_failed_build_never_runs(self):
        runner = make_runner("import sys; print('syntax error', file=sys.stderr); sys.exit(1)", "print('serving')")
        on_run = Mock()

        with pytest.raises(CommandFailedError) as exc_info:
            await runner.launch(on_run_start=on_run)

        assert exc_info.value.code == 1
        on_run.assert_not_called()
        assert "build: syntax error" in runner.stderr.getvalue()
        assert runner.stdout.getvalue() == ""

    @pytest.mark.asyncio
    async def test_run_failure_is_raised(self):
        runner = make_runner("pass", "import sys; sys.exit(2)")

        with pytest.raises(CommandFailedError):
            await runner.launch()

    @pytest.mark.asyncio
    async def test_missing_build_tool(self, tmp_path):
        runner = Runner(Command([str(tmp_path / "go")]), Command(python_args("pass")))

        with pytest.raises(CommandStartError):
            await runner.launch()

    @pytest.mark.asyncio
    async def test_relaunch_preempts_running_binary(self):
        runner = make_runner("pass", SLEEPER)

        first = asyncio.create_task(runner.launch())
        await wait_until(lambda: runner.run_cmd.state is CommandState.RUNNING)
        second = asyncio.create_task(runner.launch())

        assert (await asyncio.wait_for(first, timeout=10)).kind is StopKind.KILLED
        await wait_until(lambda: runner.run_cmd.state is CommandState.RUNNING)

        runner.kill()
        assert (await asyncio.wait_for(second, timeout=10)).kind is StopKind.KILLED
        assert not runner.is_active

    @pytest.mark.asyncio
    async def test_killed_build_skips_run(self):
        runner = make_runner(SLEEPER, "print('serving')")
        on_run = Mock()

        task = asyncio.create_task(runner.launch(on_run_start=on_run))
        await wait_until(lambda: runner.build_cmd.state is CommandState.RUNNING)
        runner.kill()

        assert (await asyncio.wait_for(task, timeout=10)).kind is StopKind.KILLED
        on_run.assert_not_called()


class TestKill:
    def test_kill_inactive_runner_is_noop(self):
        runner = make_runner("pass", "pass")
        runner.kill()
        assert not runner.is_active


class TestFromConfig:
    def test_commands_from_config(self, tmp_path):
        config = GwatchConfig(
            root=tmp_path,
            build_cmd='go build -o "bin/my app" .',
            run_bin="bin/my app",
            run_args=["--port", "8080"],
        )

        runner = Runner.from_config(config)

        assert runner.build_cmd.args == ("go", "build", "-o", "bin/my app", ".")
        assert runner.run_cmd.args == (str(tmp_path.resolve() / "bin/my app"), "--port", "8080")
        assert runner.build_cmd.output_prefix == f"{tmp_path.name}:"

    def test_bare_binary_name_is_left_for_path_lookup(self, tmp_path):
        config = GwatchConfig(root=tmp_path, run_bin=sys.executable.rsplit("/", 1)[-1])
        runner = Runner.from_config(config)
        assert "/" not in runner.run_cmd.args[0]
