# relayq/collaborators/moderation.py
from __future__ import annotations

from typing import Protocol

from relayq.core.logging import get_logger
from relayq.core.models.domain import SecretMessageNode

logger = get_logger('moderation')


class ModerationSink(Protocol):
    """Where reported messages go for an admin to review."""

    async def report(self, node: SecretMessageNode, reporter_id: int) -> None: ...


class LoggingModerationSink:
    """Records reports in the log at warning level."""

    async def report(self, node: SecretMessageNode, reporter_id: int) -> None:
        logger.warning(
            f'Secret message {node.id} in session {node.session_id} reported by '
            f'user {reporter_id}: {node.text!r}'
        )
