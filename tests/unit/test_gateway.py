"""Unit tests for TelegramGateway over httpx.MockTransport."""

from __future__ import annotations

import json
from typing import Any, Callable

import httpx
import pytest

from relayq.collaborators.gateway import TelegramGateway
from relayq.core.errors import GatewayError
from relayq.core.models.payloads import InlineButton

pytestmark = pytest.mark.unit

BASE = 'https://telegram.test/bot123:abc'


def _make_gateway(
    respond: Callable[[httpx.Request], httpx.Response],
) -> tuple[TelegramGateway, list[httpx.Request]]:
    captured: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        captured.append(request)
        return respond(request)

    client = httpx.AsyncClient(base_url=BASE, transport=httpx.MockTransport(handler))
    return TelegramGateway('123:abc', 'https://telegram.test', client=client), captured


def _ok(result: Any) -> Callable[[httpx.Request], httpx.Response]:
    return lambda request: httpx.Response(200, json={'ok': True, 'result': result})


class TestSendMessage:
    @pytest.mark.asyncio
    async def test_body_and_result(self) -> None:
        gateway, captured = _make_gateway(
            _ok({'message_id': 77, 'text': 'Someone secretly said: hi'})
        )

        sent = await gateway.send_message(
            42,
            '<strong>Someone secretly said</strong>: hi',
            parse_mode='HTML',
            reply_to_message_id=5,
            buttons=(InlineButton(text='Report', callback_data='report_secret_message;9'),),
        )

        assert sent.message_id == 77
        assert sent.chat_id == 42
        assert sent.text == 'Someone secretly said: hi'
        request = captured[0]
        assert request.url.path.endswith('/sendMessage')
        body = json.loads(request.content)
        assert body['chat_id'] == 42
        assert body['parse_mode'] == 'HTML'
        assert body['reply_to_message_id'] == 5
        assert body['reply_markup'] == {
            'inline_keyboard': [
                [{'text': 'Report', 'callback_data': 'report_secret_message;9'}]
            ]
        }

    @pytest.mark.asyncio
    async def test_plain_message_omits_optional_fields(self) -> None:
        gateway, captured = _make_gateway(_ok({'message_id': 1}))

        sent = await gateway.send_message(42, 'hello')

        body = json.loads(captured[0].content)
        assert body == {'chat_id': 42, 'text': 'hello'}
        assert sent.text == 'hello'

    @pytest.mark.asyncio
    async def test_api_rejection_raises(self) -> None:
        gateway, _ = _make_gateway(
            lambda request: httpx.Response(
                403, json={'ok': False, 'description': 'bot was blocked by the user'}
            )
        )

        with pytest.raises(GatewayError, match='bot was blocked'):
            await gateway.send_message(42, 'hello')

    @pytest.mark.asyncio
    async def test_transport_error_raises(self) -> None:
        def refuse(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError('refused', request=request)

        gateway, _ = _make_gateway(refuse)

        with pytest.raises(GatewayError, match='sendMessage request failed'):
            await gateway.send_message(42, 'hello')

    @pytest.mark.asyncio
    async def test_non_json_response_raises(self) -> None:
        gateway, _ = _make_gateway(lambda request: httpx.Response(502, text='bad gateway'))

        with pytest.raises(GatewayError, match='non-JSON'):
            await gateway.send_message(42, 'hello')


class TestCallbacksAndUpdates:
    @pytest.mark.asyncio
    async def test_answer_callback(self) -> None:
        gateway, captured = _make_gateway(_ok(True))

        await gateway.answer_callback('cb-1', 'done', show_alert=True, cache_time=3600)

        body = json.loads(captured[0].content)
        assert body == {
            'callback_query_id': 'cb-1',
            'text': 'done',
            'show_alert': True,
            'cache_time': 3600,
        }

    @pytest.mark.asyncio
    async def test_get_updates_with_offset(self) -> None:
        updates = [{'update_id': 10, 'message': {}}]
        gateway, captured = _make_gateway(_ok(updates))

        assert await gateway.get_updates(offset=10, timeout_seconds=0) == updates

        body = json.loads(captured[0].content)
        assert body['offset'] == 10
        assert body['allowed_updates'] == ['message', 'callback_query']

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self) -> None:
        gateway, _ = _make_gateway(_ok(True))
        await gateway.close()
        await gateway.close()
