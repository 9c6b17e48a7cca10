# relayq/secret_messaging/polling.py
from __future__ import annotations

import asyncio
from typing import Any, Optional

from relayq.collaborators.gateway import TelegramGateway
from relayq.core import defaults
from relayq.core.errors import GatewayError
from relayq.core.logging import get_logger
from relayq.secret_messaging.bot import SecretMessagingBot, update_from_telegram

logger = get_logger('polling')


class UpdatePoller:
    """
    Feeds Bot API updates to the bot through long polling.

    Each update gets its own handler task, so a slow update never holds up
    the others; at most `max_concurrent_updates` run at once. The offset moves
    past an update as soon as it is fetched, so a failing or malformed update
    is logged and never delivered again. Stop interrupts the pending poll and
    waits for in-flight handlers.
    """

    def __init__(
        self,
        gateway: TelegramGateway,
        bot: SecretMessagingBot,
        poll_timeout_seconds: int = 30,
        retry_delay_seconds: float = 5.0,
        max_concurrent_updates: int = defaults.DEFAULT_MAX_CONCURRENT_UPDATES,
    ) -> None:
        if max_concurrent_updates < 1:
            raise ValueError(
                f'max_concurrent_updates must be >= 1, got {max_concurrent_updates}'
            )
        self.gateway = gateway
        self.bot = bot
        self.poll_timeout_seconds = poll_timeout_seconds
        self.retry_delay_seconds = retry_delay_seconds
        self._offset: Optional[int] = None
        self._stop = asyncio.Event()
        self._slots = asyncio.Semaphore(max_concurrent_updates)
        self._in_flight: set[asyncio.Task[None]] = set()

    def request_stop(self) -> None:
        self._stop.set()

    async def _sleep_with_stop(self, seconds: float) -> None:
        try:
            await asyncio.wait_for(self._stop.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return

    async def _fetch_or_stop(self) -> Optional[list[dict]]:
        """Next batch of updates, or None once stop was requested mid-poll."""
        fetch = asyncio.create_task(
            self.gateway.get_updates(self._offset, self.poll_timeout_seconds)
        )
        stop = asyncio.create_task(self._stop.wait())
        done, _ = await asyncio.wait({fetch, stop}, return_when=asyncio.FIRST_COMPLETED)
        if fetch not in done:
            fetch.cancel()
            await asyncio.gather(fetch, return_exceptions=True)
            return None
        stop.cancel()
        return fetch.result()

    async def _handle(self, raw: dict[str, Any], update_id: int) -> None:
        try:
            update = update_from_telegram(raw)
            if update is None:
                return
            await self.bot.handle(update)
        except Exception as e:
            logger.error(f'Failed to handle update {update_id}: {e}')
        finally:
            self._slots.release()

    async def _dispatch(self, raw: Any) -> None:
        try:
            update_id = int(raw['update_id'])
        except (TypeError, KeyError, ValueError) as e:
            logger.error(f'Skipping update without a usable update_id: {e!r}')
            return
        if self._offset is None or update_id + 1 > self._offset:
            self._offset = update_id + 1

        await self._slots.acquire()
        task = asyncio.create_task(self._handle(raw, update_id), name=f'update-{update_id}')
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)

    async def poll_once(self) -> int:
        """Fetch one batch and start a handler per update. Returns the batch size."""
        updates = await self._fetch_or_stop()
        if not updates:
            return 0
        for raw in updates:
            await self._dispatch(raw)
        return len(updates)

    async def drain(self) -> None:
        """Wait for every handler started so far."""
        if self._in_flight:
            await asyncio.gather(*tuple(self._in_flight), return_exceptions=True)

    async def run_forever(self) -> None:
        logger.info('Bot update polling started')
        try:
            while not self._stop.is_set():
                try:
                    await self.poll_once()
                except GatewayError as e:
                    logger.warning(f'getUpdates failed, retrying: {e}')
                    await self._sleep_with_stop(self.retry_delay_seconds)
        finally:
            await self.drain()
            logger.info('Bot update polling stopped')
