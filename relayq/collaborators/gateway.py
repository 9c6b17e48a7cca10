# relayq/collaborators/gateway.py
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Optional, Protocol, Sequence

import httpx

from relayq.core.errors import GatewayError
from relayq.core.logging import get_logger
from relayq.core.models.payloads import InlineButton

logger = get_logger('gateway')


@dataclass(frozen=True)
class SentMessage:
    """The chat message the gateway created."""

    message_id: int
    chat_id: int
    text: str


class BotGateway(Protocol):
    async def send_message(
        self,
        chat_id: int,
        text: str,
        *,
        parse_mode: Optional[str] = None,
        reply_to_message_id: Optional[int] = None,
        buttons: Sequence[InlineButton] = (),
    ) -> SentMessage: ...

    async def answer_callback(
        self,
        callback_id: str,
        text: str,
        *,
        show_alert: bool = False,
        cache_time: int = 0,
    ) -> None: ...


def _reply_markup(buttons: Sequence[InlineButton]) -> dict[str, Any]:
    return {
        'inline_keyboard': [
            [{'text': b.text, 'callback_data': b.callback_data} for b in buttons]
        ]
    }


class TelegramGateway:
    """BotGateway over the Telegram Bot HTTP API."""

    def __init__(
        self,
        bot_token: str,
        api_base_url: str = 'https://api.telegram.org',
        timeout_seconds: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._base_url = f'{api_base_url.rstrip("/")}/bot{bot_token}'
        self._timeout = timeout_seconds
        self._client = client
        self._client_lock = asyncio.Lock()

    async def _ensure_client(self) -> httpx.AsyncClient:
        async with self._client_lock:
            if self._client is None:
                self._client = httpx.AsyncClient(
                    base_url=self._base_url,
                    timeout=httpx.Timeout(self._timeout),
                )
        return self._client

    async def _call(
        self, method: str, body: dict[str, Any], timeout: Optional[float] = None
    ) -> Any:
        client = await self._ensure_client()
        try:
            if timeout is None:
                response = await client.post(f'/{method}', json=body)
            else:
                response = await client.post(
                    f'/{method}', json=body, timeout=httpx.Timeout(timeout)
                )
        except httpx.HTTPError as exc:
            raise GatewayError(f'{method} request failed: {exc}') from exc

        try:
            data = response.json()
        except ValueError as exc:
            raise GatewayError(
                f'{method} returned non-JSON response ({response.status_code})'
            ) from exc
        if response.status_code != 200 or not data.get('ok'):
            raise GatewayError(
                f'{method} rejected ({response.status_code}): {data.get("description")}'
            )
        return data.get('result')

    async def send_message(
        self,
        chat_id: int,
        text: str,
        *,
        parse_mode: Optional[str] = None,
        reply_to_message_id: Optional[int] = None,
        buttons: Sequence[InlineButton] = (),
    ) -> SentMessage:
        body: dict[str, Any] = {'chat_id': chat_id, 'text': text}
        if parse_mode:
            body['parse_mode'] = parse_mode
        if reply_to_message_id is not None:
            body['reply_to_message_id'] = reply_to_message_id
            body['allow_sending_without_reply'] = True
        if buttons:
            body['reply_markup'] = _reply_markup(buttons)

        result = await self._call('sendMessage', body)
        return SentMessage(
            message_id=int(result['message_id']),
            chat_id=chat_id,
            text=result.get('text', text),
        )

    async def answer_callback(
        self,
        callback_id: str,
        text: str,
        *,
        show_alert: bool = False,
        cache_time: int = 0,
    ) -> None:
        await self._call(
            'answerCallbackQuery',
            {
                'callback_query_id': callback_id,
                'text': text,
                'show_alert': show_alert,
                'cache_time': cache_time,
            },
        )

    async def get_updates(
        self, offset: Optional[int] = None, timeout_seconds: int = 30
    ) -> list[dict[str, Any]]:
        """Long-poll for inbound messages and callback queries."""
        body: dict[str, Any] = {
            'timeout': timeout_seconds,
            'allowed_updates': ['message', 'callback_query'],
        }
        if offset is not None:
            body['offset'] = offset
        result = await self._call(
            'getUpdates', body, timeout=timeout_seconds + self._timeout
        )
        return list(result or [])

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
