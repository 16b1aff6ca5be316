"""Tests for the supervisor: generations and config reload."""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from conftest import FakeSource, wait_until

from gwatch.supervisor import Gwatch, supervise, watch_config_file
from gwatch_engine.errors import CommandFailedError, ConfigError
from gwatch_engine.file_watcher import DispatcherBuilder
from gwatch_engine.models import ChangeKind
from gwatch_engine.watchers import WatchConfig

DELAY = 0.05


@pytest.fixture
def runner():
    runner = MagicMock()
    runner.launch = AsyncMock()
    return runner


@pytest.fixture
def gwatch(project, fake_source, runner):
    config = WatchConfig.create(["."], ["go"], exclude=["vendor"], delay=DELAY, root_dir=str(project))
    return Gwatch(DispatcherBuilder(config, fake_source), runner)


class TestGwatch:
    @pytest.mark.asyncio
    async def test_initial_launch_on_ready(self, gwatch, fake_source, runner):
        task = asyncio.create_task(gwatch.start())
        await wait_until(lambda: runner.launch.await_count == 1)

        gwatch.kill()
        await asyncio.wait_for(task, timeout=2)
        runner.kill.assert_called()

    @pytest.mark.asyncio
    async def test_write_triggers_launch(self, gwatch, fake_source, runner, project):
        task = asyncio.create_task(gwatch.start())
        await wait_until(lambda: runner.launch.await_count == 1)

        fake_source.emit(ChangeKind.WRITE, project / "main.go")
        fake_source.emit(ChangeKind.WRITE, project / "util.go")
        await wait_until(lambda: runner.launch.await_count == 2)
        await asyncio.sleep(DELAY * 3)
        assert runner.launch.await_count == 2

        gwatch.kill()
        await asyncio.wait_for(task, timeout=2)

    @pytest.mark.asyncio
    async def test_build_failure_keeps_watching(self, gwatch, fake_source, runner, project, caplog):
        runner.launch.side_effect = [CommandFailedError("'go build' exited with status 1", code=1), None]
        task = asyncio.create_task(gwatch.start())
        await wait_until(lambda: runner.launch.await_count == 1)
        await asyncio.sleep(0)

        assert not task.done()
        assert "exited with status 1" in caplog.text

        fake_source.emit(ChangeKind.WRITE, project / "main.go")
        await wait_until(lambda: runner.launch.await_count == 2)

        gwatch.kill()
        await asyncio.wait_for(task, timeout=2)

    @pytest.mark.asyncio
    async def test_kill_cancels_inflight_launch(self, gwatch, runner):
        started = asyncio.Event()
        cancelled = asyncio.Event()

        async def slow_launch(*args):
            started.set()
            try:
                await asyncio.sleep(30)
            except asyncio.CancelledError:
                cancelled.set()
                raise

        runner.launch.side_effect = slow_launch
        task = asyncio.create_task(gwatch.start())
        await asyncio.wait_for(started.wait(), timeout=2)

        gwatch.kill()
        gwatch.kill()
        await asyncio.wait_for(task, timeout=2)

        assert cancelled.is_set()

    @pytest.mark.asyncio
    async def test_kill_before_start(self, gwatch, fake_source, runner):
        gwatch.kill()
        await asyncio.wait_for(gwatch.start(), timeout=2)

        assert not fake_source.is_open
        runner.launch.assert_not_awaited()

    def test_from_config(self, tmp_path):
        from gwatch_engine.config import GwatchConfig

        config = GwatchConfig(root=tmp_path, delay_ms=300, clear_screen=True)
        generation = Gwatch.from_config(config)

        assert generation.watcher.config.delay == 0.3
        assert generation.clear_screen is True
        assert generation.runner.build_cmd.args[:2] == ("go", "build")


class TestWatchConfigFile:
    def test_single_file_non_recursive(self, tmp_path):
        path = tmp_path / "gwatch.toml"
        path.write_text("")

        builder = watch_config_file(path, print)
        builder.source = FakeSource()
        dispatcher = builder.build()

        assert dispatcher.config.watched_paths == (str(path.resolve()),)
        assert dispatcher.config.exts == frozenset({"toml"})
        assert dispatcher.config.recursive is False
        assert set(dispatcher.handlers) == {ChangeKind.WRITE, ChangeKind.CREATE}

    @pytest.mark.asyncio
    async def test_file_without_suffix_triggers(self, tmp_path):
        path = tmp_path / "gwatchrc"
        path.write_text("")
        changes = []
        source = FakeSource()

        builder = watch_config_file(path, changes.append)
        builder.source = source
        dispatcher = builder.build()
        task = asyncio.create_task(dispatcher.listen())
        await wait_until(lambda: source.is_open)

        source.emit(ChangeKind.WRITE, path.resolve())
        await wait_until(lambda: changes)

        assert dispatcher.config.exts == frozenset({""})
        assert changes[0].path == str(path.resolve())
        dispatcher.close()
        await asyncio.wait_for(task, timeout=2)


class FakeGeneration:
    def __init__(self, config):
        self.config = config
        self.stopped = asyncio.Event()
        self.kill_calls = 0

    async def start(self):
        await self.stopped.wait()

    def kill(self):
        self.kill_calls += 1
        self.stopped.set()


class TestSupervise:
    @pytest.fixture
    def config_path(self, tmp_path):
        path = tmp_path / "gwatch.toml"
        path.write_text("delay_ms = 100\n")
        return path

    @pytest.fixture
    def config_source(self):
        return FakeSource()

    @pytest.fixture
    def config_watcher(self, config_path, config_source):
        config = WatchConfig.create([str(config_path)], ["toml"], recursive=False, delay=DELAY)
        return DispatcherBuilder(config, config_source)

    @pytest.mark.asyncio
    async def test_config_change_starts_new_generation(self, config_path, config_source, config_watcher):
        generations = []

        def make_generation(config, stdout=None, stderr=None):
            generations.append(FakeGeneration(config))
            return generations[-1]

        with patch("gwatch.supervisor.Gwatch.from_config", side_effect=make_generation):
            task = asyncio.create_task(supervise(config_path, config_watcher=config_watcher))
            await wait_until(lambda: config_source.is_open and generations)

            config_path.write_text("delay_ms = 50\n")
            config_source.emit(ChangeKind.WRITE, config_path)
            await wait_until(lambda: len(generations) == 2)

            assert generations[0].kill_calls >= 1
            assert generations[0].config.delay_ms == 100
            assert generations[1].config.delay_ms == 50

            config_source.close()
            await asyncio.wait_for(task, timeout=2)

        assert generations[1].kill_calls >= 1

    @pytest.mark.asyncio
    async def test_invalid_reload_is_fatal(self, config_path, config_source, config_watcher):
        generations = []

        def make_generation(config, stdout=None, stderr=None):
            generations.append(FakeGeneration(config))
            return generations[-1]

        with patch("gwatch.supervisor.Gwatch.from_config", side_effect=make_generation):
            task = asyncio.create_task(supervise(config_path, config_watcher=config_watcher))
            await wait_until(lambda: config_source.is_open and generations)

            config_path.write_text("delay_ms = -1\n")
            config_source.emit(ChangeKind.WRITE, config_path)

            with pytest.raises(ConfigError):
                await asyncio.wait_for(task, timeout=2)

        assert generations[0].kill_calls >= 1
        assert config_source.close_calls == 1
