# relayq/mailing/providers.py
"""HTTP mail provider clients (httpx)."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any, Optional

import httpx

from relayq.core.errors import MailDeliveryError
from relayq.core.models.domain import Mail

if TYPE_CHECKING:
    from relayq.core.models.config import MailSettings
    from relayq.mailing.failover import MailProvider

SENDINBLUE = 'sendinblue'
MAILGUN = 'mailgun'


def parse_addresses(raw: Optional[str]) -> list[dict[str, Any]]:
    """Decode a stored address list: a JSON array of {"email", "name"?} objects."""
    if not raw:
        return []
    try:
        addresses = json.loads(raw)
    except ValueError as exc:
        raise MailDeliveryError(f'malformed address list: {exc}') from exc
    if not isinstance(addresses, list) or not all(
        isinstance(a, dict) and a.get('email') for a in addresses
    ):
        raise MailDeliveryError('address list must be a JSON array of objects with "email"')
    return addresses


class SendinblueClient:
    """Sendinblue (Brevo) transactional SMTP API."""

    name = SENDINBLUE

    def __init__(
        self,
        api_key: Optional[str],
        sender_email: str,
        sender_name: str,
        url: str = 'https://api.brevo.com/v3/smtp/email',
        timeout_seconds: float = 5.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.api_key = api_key
        self.sender = {'email': sender_email, 'name': sender_name}
        self.url = url
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(timeout_seconds))

    @property
    def activated(self) -> bool:
        return bool(self.api_key)

    async def send_email(self, mail: Mail) -> Any:
        if not self.activated:
            raise MailDeliveryError('sendinblue is not activated by configuration')

        body: dict[str, Any] = {
            'sender': self.sender,
            'to': parse_addresses(mail.to),
            'htmlContent': mail.html_content,
            'subject': mail.subject,
        }
        if cc := parse_addresses(mail.cc):
            body['cc'] = cc
        if bcc := parse_addresses(mail.bcc):
            body['bcc'] = bcc

        try:
            response = await self._client.post(
                self.url,
                json=body,
                headers={'api-key': self.api_key or '', 'accept': 'application/json'},
            )
        except httpx.HTTPError as exc:
            raise MailDeliveryError(f'sendinblue request failed: {exc}') from exc
        if response.status_code != 201:
            raise MailDeliveryError(
                f'failed to send email send in blue: {response.status_code} {response.text}'
            )
        return response.json()

    async def close(self) -> None:
        await self._client.aclose()


class MailgunClient:
    """Mailgun messages API."""

    name = MAILGUN

    def __init__(
        self,
        domain: Optional[str],
        api_key: Optional[str],
        sender_email: str,
        sender_name: str,
        activated: bool = False,
        base_url: str = 'https://api.mailgun.net/v3',
        timeout_seconds: float = 5.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.domain = domain
        self.api_key = api_key
        self.sender = f'{sender_name} <{sender_email}>'
        self.activated = activated
        self.base_url = base_url.rstrip('/')
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(timeout_seconds))

    async def send_email(self, mail: Mail) -> Any:
        if not self.activated:
            raise MailDeliveryError('mailgun is not activated by configuration')

        data: dict[str, Any] = {
            'from': self.sender,
            'to': [a['email'] for a in parse_addresses(mail.to)],
            'subject': mail.subject,
            'html': mail.html_content,
        }
        if cc := parse_addresses(mail.cc):
            data['cc'] = [a['email'] for a in cc]
        if bcc := parse_addresses(mail.bcc):
            data['bcc'] = [a['email'] for a in bcc]

        try:
            response = await self._client.post(
                f'{self.base_url}/{self.domain}/messages',
                data=data,
                auth=('api', self.api_key or ''),
            )
        except httpx.HTTPError as exc:
            raise MailDeliveryError(f'mailgun request failed: {exc}') from exc
        if response.status_code != 200:
            raise MailDeliveryError(
                f'failed to send email mailgun: {response.status_code} {response.text}'
            )
        return response.json()

    async def close(self) -> None:
        await self._client.aclose()


def build_providers(settings: MailSettings) -> list[MailProvider]:
    """Providers in failover order: Sendinblue first, then Mailgun."""
    return [
        SendinblueClient(
            api_key=settings.sendinblue_api_key,
            sender_email=settings.sender_email,
            sender_name=settings.sender_name,
            url=settings.sendinblue_url,
            timeout_seconds=settings.request_timeout_seconds,
        ),
        MailgunClient(
            domain=settings.mailgun_domain,
            api_key=settings.mailgun_api_key,
            sender_email=settings.sender_email,
            sender_name=settings.sender_name,
            activated=settings.mailgun_activated,
            base_url=settings.mailgun_base_url,
            timeout_seconds=settings.request_timeout_seconds,
        ),
    ]
