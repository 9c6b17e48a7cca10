# relayq/mailing/failover.py
from __future__ import annotations

from typing import Any, Protocol, Sequence

from relayq.core.errors import MailDeliveryError
from relayq.core.logging import get_logger
from relayq.core.models.domain import Mail

logger = get_logger('mailing')


class MailProvider(Protocol):
    """A mail delivery backend. `send_email` raises on any failure."""

    @property
    def name(self) -> str: ...

    async def send_email(self, mail: Mail) -> Any:
        """Send `mail`; returns the provider's response as opaque metadata."""
        ...

    async def close(self) -> None: ...


class MailFailover:
    """Tries providers strictly in order until one delivers."""

    def __init__(self, providers: Sequence[MailProvider]) -> None:
        self.providers = list(providers)

    async def send(self, mail: Mail) -> tuple[Any, str]:
        """
        Deliver `mail` through the first provider that succeeds.

        Returns:
            (metadata, provider name)

        Raises:
            MailDeliveryError: every provider failed, or there are none
        """
        for provider in self.providers:
            try:
                metadata = await provider.send_email(mail)
            except Exception as err:
                logger.error(f'failed to send email using client: {provider.name}: {err}')
                continue
            logger.info(f'Mail {mail.id} sent using client: {provider.name}')
            return metadata, provider.name

        raise MailDeliveryError('failed sending email')
