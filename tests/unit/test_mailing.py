"""Unit tests for mail provider clients and ordered failover."""

from __future__ import annotations

import json
from unittest.mock import MagicMock
from urllib.parse import parse_qs

import httpx
import pytest

from relayq.core.errors import MailDeliveryError
from relayq.core.models.domain import Mail
from relayq.mailing import failover as failover_module
from relayq.mailing.failover import MailFailover
from relayq.mailing.providers import (
    MailgunClient,
    SendinblueClient,
    parse_addresses,
)
from tests.fakes import FakeProvider, failing_provider

pytestmark = pytest.mark.unit


def _make_mail(**overrides: object) -> Mail:
    fields: dict[str, object] = {
        'id': 'mail-1',
        'to': json.dumps([{'email': 'a@example.com', 'name': 'A'}]),
        'cc': json.dumps([{'email': 'c@example.com'}]),
        'html_content': '<p>hi</p>',
        'subject': 'Hello',
    }
    fields.update(overrides)
    return Mail(**fields)  # type: ignore[arg-type]


def _client_returning(
    status: int, body: dict[str, object], captured: list[httpx.Request]
) -> httpx.AsyncClient:
    def handler(request: httpx.Request) -> httpx.Response:
        captured.append(request)
        return httpx.Response(status, json=body)

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestFailover:
    """Tests for MailFailover.send()."""

    @pytest.mark.asyncio
    async def test_first_success_wins(self) -> None:
        first = FakeProvider('sendinblue', response={'messageId': 'x'})
        second = FakeProvider('mailgun')

        metadata, name = await MailFailover([first, second]).send(_make_mail())

        assert (metadata, name) == ({'messageId': 'x'}, 'sendinblue')
        assert second.calls == []

    @pytest.mark.asyncio
    async def test_falls_through_in_order_and_logs(
        self, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        logger = MagicMock()
        monkeypatch.setattr(failover_module, 'logger', logger)
        first = failing_provider('sendinblue')
        second = FakeProvider('mailgun')

        _, name = await MailFailover([first, second]).send(_make_mail())

        assert name == 'mailgun'
        assert len(first.calls) == 1
        logger.error.assert_called_once_with(
            'failed to send email using client: sendinblue: provider down'
        )

    @pytest.mark.asyncio
    async def test_all_fail(self) -> None:
        providers = [failing_provider('sendinblue'), failing_provider('mailgun')]

        with pytest.raises(MailDeliveryError, match='failed sending email'):
            await MailFailover(providers).send(_make_mail())

        assert all(len(p.calls) == 1 for p in providers)

    @pytest.mark.asyncio
    async def test_no_providers(self) -> None:
        with pytest.raises(MailDeliveryError):
            await MailFailover([]).send(_make_mail())


class TestParseAddresses:
    def test_empty(self) -> None:
        assert parse_addresses(None) == []
        assert parse_addresses('') == []

    def test_malformed(self) -> None:
        with pytest.raises(MailDeliveryError):
            parse_addresses('not json')
        with pytest.raises(MailDeliveryError):
            parse_addresses('[{"name": "no email"}]')


class TestSendinblue:
    """Tests for SendinblueClient."""

    @pytest.mark.asyncio
    async def test_posts_json_body(self) -> None:
        captured: list[httpx.Request] = []
        client = SendinblueClient(
            api_key='key',
            sender_email='noreply@example.com',
            sender_name='Relay',
            url='https://mail.test/v3/smtp/email',
            client=_client_returning(201, {'messageId': 'abc'}, captured),
        )

        result = await client.send_email(_make_mail())

        assert result == {'messageId': 'abc'}
        request = captured[0]
        assert request.headers['api-key'] == 'key'
        body = json.loads(request.content)
        assert body['sender'] == {'email': 'noreply@example.com', 'name': 'Relay'}
        assert body['to'] == [{'email': 'a@example.com', 'name': 'A'}]
        assert body['cc'] == [{'email': 'c@example.com'}]
        assert 'bcc' not in body
        await client.close()

    @pytest.mark.asyncio
    async def test_non_created_status_fails(self) -> None:
        client = SendinblueClient(
            api_key='key',
            sender_email='noreply@example.com',
            sender_name='Relay',
            client=_client_returning(400, {'code': 'invalid'}, []),
        )

        with pytest.raises(MailDeliveryError, match='400'):
            await client.send_email(_make_mail())

    @pytest.mark.asyncio
    async def test_without_api_key_not_activated(self) -> None:
        captured: list[httpx.Request] = []
        client = SendinblueClient(
            api_key=None,
            sender_email='noreply@example.com',
            sender_name='Relay',
            client=_client_returning(201, {}, captured),
        )

        with pytest.raises(MailDeliveryError, match='not activated'):
            await client.send_email(_make_mail())
        assert captured == []


class TestMailgun:
    """Tests for MailgunClient."""

    @pytest.mark.asyncio
    async def test_posts_form_to_domain(self) -> None:
        captured: list[httpx.Request] = []
        client = MailgunClient(
            domain='mg.example.com',
            api_key='secret',
            sender_email='noreply@example.com',
            sender_name='Relay',
            activated=True,
            base_url='https://mailgun.test/v3/',
            client=_client_returning(200, {'id': '<m@mg>'}, captured),
        )

        result = await client.send_email(_make_mail())

        assert result == {'id': '<m@mg>'}
        request = captured[0]
        assert str(request.url) == 'https://mailgun.test/v3/mg.example.com/messages'
        assert request.headers['authorization'].startswith('Basic ')
        form = parse_qs(request.content.decode())
        assert form['from'] == ['Relay <noreply@example.com>']
        assert form['to'] == ['a@example.com']
        assert form['cc'] == ['c@example.com']

    @pytest.mark.asyncio
    async def test_not_activated(self) -> None:
        client = MailgunClient(
            domain='mg.example.com',
            api_key='secret',
            sender_email='noreply@example.com',
            sender_name='Relay',
            client=_client_returning(200, {}, []),
        )

        with pytest.raises(MailDeliveryError, match='not activated'):
            await client.send_email(_make_mail())

    @pytest.mark.asyncio
    async def test_transport_error_wrapped(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError('refused', request=request)

        client = MailgunClient(
            domain='mg.example.com',
            api_key='secret',
            sender_email='noreply@example.com',
            sender_name='Relay',
            activated=True,
            client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        )

        with pytest.raises(MailDeliveryError, match='request failed'):
            await client.send_email(_make_mail())
