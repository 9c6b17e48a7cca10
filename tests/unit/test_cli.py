"""Unit tests for the relayq CLI wiring."""

from __future__ import annotations

import asyncio
from typing import Any

import pytest

from relayq.core import cli
from relayq.core.brokers.memory import MemoryBroker
from relayq.core.errors import ConfigurationError
from relayq.core.models.config import RelayqConfig
from relayq.core.models.kinds import TaskKind
from relayq.core.queue import TaskQueue

pytestmark = pytest.mark.unit


def _make_runtime(**config: Any) -> cli.Runtime:
    broker = MemoryBroker()
    return cli.Runtime(
        config=RelayqConfig.model_validate(config),
        broker=broker,
        queue=TaskQueue(broker),
    )


class TestParser:
    def test_worker_flags(self) -> None:
        args = cli.build_parser().parse_args(
            ['worker', '--with-scheduler', '--with-bot', '--loglevel', 'debug']
        )

        assert args.command == 'worker'
        assert args.with_scheduler and args.with_bot
        assert args.loglevel == 'DEBUG'

    def test_check_defaults_to_warning(self) -> None:
        args = cli.build_parser().parse_args(['check'])

        assert args.loglevel == 'WARNING'
        assert args.live is False

    def test_no_command_prints_help(self, capsys: pytest.CaptureFixture[str]) -> None:
        with pytest.raises(SystemExit) as exc_info:
            cli.main([])

        assert exc_info.value.code == 1
        assert 'relayq' in capsys.readouterr().out


class TestAssembly:
    def test_scheduler_without_cronspec_has_no_entries(self) -> None:
        assert cli.build_scheduler(_make_runtime()).entries == []

    def test_scheduler_registers_meme_broadcast(self) -> None:
        runtime = _make_runtime(schedule={'meme_subscription_cronspec': '0 9 * * *'})

        [entry] = cli.build_scheduler(runtime).entries

        assert entry.name == cli.MEME_SCHEDULE_NAME
        assert entry.kind is TaskKind.MEME_SUBSCRIPTION

    @pytest.mark.asyncio
    async def test_messaging_runtime_requires_store_url(self) -> None:
        config = RelayqConfig.model_validate({'telegram': {'bot_token': '123:abc'}})

        with pytest.raises(ConfigurationError, match='store database url'):
            await cli.build_runtime(config, messaging=True)

    @pytest.mark.asyncio
    async def test_plain_runtime_uses_memory_broker(self) -> None:
        runtime = await cli.build_runtime(RelayqConfig(), messaging=False)

        assert isinstance(runtime.broker, MemoryBroker)
        assert runtime.usecase is None

    @pytest.mark.asyncio
    async def test_run_together_stops_siblings(self) -> None:
        class _Service:
            def __init__(self, finish: bool) -> None:
                self.finish = finish
                self.stop = asyncio.Event()

            def request_stop(self) -> None:
                self.stop.set()

            async def run_forever(self) -> None:
                if not self.finish:
                    await self.stop.wait()

        waiting = _Service(finish=False)

        await asyncio.wait_for(cli._run_together([_Service(finish=True), waiting]), timeout=1)

        assert waiting.stop.is_set()


class TestCheckCommand:
    def test_valid_config(
        self, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
    ) -> None:
        monkeypatch.setattr(cli, 'load_config', lambda env_file: RelayqConfig())

        with pytest.raises(SystemExit) as exc_info:
            cli.main(['check', '--live'])

        assert exc_info.value.code == 0
        assert 'ok: configuration is valid' in capsys.readouterr().out

    def test_invalid_config(
        self, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
    ) -> None:
        def _broken(env_file: Any) -> RelayqConfig:
            return RelayqConfig.model_validate({'broker': {'backend': 'postgres'}})

        monkeypatch.setattr(cli, 'load_config', _broken)

        with pytest.raises(SystemExit) as exc_info:
            cli.main(['check'])

        assert exc_info.value.code == 1
        assert 'error[E212]' in capsys.readouterr().err
