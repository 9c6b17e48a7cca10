"""Unit tests for UpdatePoller."""

from __future__ import annotations

import asyncio
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from relayq.core.errors import GatewayError
from relayq.secret_messaging import polling as polling_module
from relayq.secret_messaging.polling import UpdatePoller

pytestmark = pytest.mark.unit


def _raw_message(update_id: int, text: str = 'hi') -> dict[str, Any]:
    return {
        'update_id': update_id,
        'message': {
            'message_id': update_id * 10,
            'from': {'id': 1, 'is_bot': False, 'first_name': 'Alice'},
            'chat': {'id': 1},
            'text': text,
        },
    }


def _make_poller(*batches: list[dict[str, Any]]) -> tuple[UpdatePoller, MagicMock, MagicMock]:
    gateway = MagicMock()
    gateway.get_updates = AsyncMock(side_effect=list(batches))
    bot = MagicMock()
    bot.handle = AsyncMock()
    return UpdatePoller(gateway, bot, poll_timeout_seconds=0), gateway, bot


class TestPollOnce:
    @pytest.mark.asyncio
    async def test_handles_updates_and_advances_offset(self) -> None:
        poller, gateway, bot = _make_poller([_raw_message(5), _raw_message(6)], [])

        assert await poller.poll_once() == 2
        await poller.poll_once()
        await poller.drain()

        assert bot.handle.await_count == 2
        assert gateway.get_updates.await_args_list[1].args == (7, 0)

    @pytest.mark.asyncio
    async def test_ignored_updates_still_acknowledged(self) -> None:
        poller, gateway, bot = _make_poller([{'update_id': 9, 'edited_message': {}}], [])

        await poller.poll_once()
        await poller.poll_once()
        await poller.drain()

        bot.handle.assert_not_awaited()
        assert gateway.get_updates.await_args_list[1].args[0] == 10

    @pytest.mark.asyncio
    async def test_failing_update_is_logged_and_skipped(
        self, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        logger = MagicMock()
        monkeypatch.setattr(polling_module, 'logger', logger)
        poller, _, bot = _make_poller([_raw_message(1), _raw_message(2)])
        bot.handle = AsyncMock(side_effect=[RuntimeError('boom'), None])

        assert await poller.poll_once() == 2
        await poller.drain()

        assert bot.handle.await_count == 2
        logger.error.assert_called_once()

    @pytest.mark.asyncio
    async def test_malformed_updates_are_logged_and_skipped(
        self, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        logger = MagicMock()
        monkeypatch.setattr(polling_module, 'logger', logger)
        malformed_message = _raw_message(3)
        malformed_message['message']['chat'] = None
        poller, gateway, bot = _make_poller(
            [{'no_update_id': True}, malformed_message, _raw_message(4)], []
        )

        assert await poller.poll_once() == 3
        await poller.poll_once()
        await poller.drain()

        assert bot.handle.await_count == 1
        assert logger.error.call_count == 2
        assert gateway.get_updates.await_args_list[1].args[0] == 5

    @pytest.mark.asyncio
    async def test_slow_update_does_not_hold_up_the_next(self) -> None:
        poller, _, bot = _make_poller([_raw_message(1, 'slow'), _raw_message(2, 'fast')])
        release = asyncio.Event()
        handled: list[str] = []

        async def handle(update: Any) -> None:
            if update.message.text == 'slow':
                await release.wait()
            handled.append(update.message.text)

        bot.handle = handle

        await poller.poll_once()
        for _ in range(50):
            if handled:
                break
            await asyncio.sleep(0.01)
        assert handled == ['fast']

        release.set()
        await poller.drain()
        assert handled == ['fast', 'slow']

    @pytest.mark.asyncio
    async def test_concurrency_is_bounded(self) -> None:
        gateway = MagicMock()
        gateway.get_updates = AsyncMock(
            side_effect=[[_raw_message(i) for i in range(1, 6)]]
        )
        bot = MagicMock()
        running = 0
        peak = 0

        async def handle(update: Any) -> None:
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await asyncio.sleep(0.01)
            running -= 1

        bot.handle = handle
        poller = UpdatePoller(gateway, bot, poll_timeout_seconds=0, max_concurrent_updates=2)

        await poller.poll_once()
        await poller.drain()

        assert peak == 2

    def test_rejects_zero_concurrency(self) -> None:
        with pytest.raises(ValueError):
            UpdatePoller(MagicMock(), MagicMock(), max_concurrent_updates=0)


class TestRunForever:
    @pytest.mark.asyncio
    async def test_gateway_error_backs_off_then_stops(
        self, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        logger = MagicMock()
        monkeypatch.setattr(polling_module, 'logger', logger)
        poller, gateway, _ = _make_poller()
        poller.retry_delay_seconds = 0.01
        calls = 0

        async def flaky(offset: Any, timeout: Any) -> list[dict[str, Any]]:
            nonlocal calls
            calls += 1
            if calls == 1:
                raise GatewayError('telegram unreachable')
            poller.request_stop()
            return []

        gateway.get_updates = flaky

        await asyncio.wait_for(poller.run_forever(), timeout=1)

        assert calls == 2
        logger.warning.assert_called_once()

    @pytest.mark.asyncio
    async def test_stop_interrupts_long_poll(self) -> None:
        poller, gateway, _ = _make_poller()

        async def hang(offset: Any, timeout: Any) -> list[dict[str, Any]]:
            await asyncio.sleep(10)
            return []

        gateway.get_updates = hang
        runner = asyncio.create_task(poller.run_forever())
        await asyncio.sleep(0.01)

        poller.request_stop()

        await asyncio.wait_for(runner, timeout=1)

    @pytest.mark.asyncio
    async def test_stop_waits_for_in_flight_handlers(self) -> None:
        poller, gateway, bot = _make_poller()
        started = asyncio.Event()
        release = asyncio.Event()
        finished: list[int] = []
        batches = [[_raw_message(1)]]

        async def updates(offset: Any, timeout: Any) -> list[dict[str, Any]]:
            if batches:
                return batches.pop()
            await asyncio.sleep(10)
            return []

        async def handle(update: Any) -> None:
            started.set()
            await release.wait()
            finished.append(update.message.message_id)

        gateway.get_updates = updates
        bot.handle = handle
        runner = asyncio.create_task(poller.run_forever())
        await asyncio.wait_for(started.wait(), timeout=1)

        poller.request_stop()
        await asyncio.sleep(0.01)
        assert not runner.done()
        release.set()
        await asyncio.wait_for(runner, timeout=1)

        assert finished == [10]
