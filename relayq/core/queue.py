# relayq/core/queue.py
"""
Producer side of the task runtime.

`TaskQueue` validates a payload against its kind, attaches the kind's policy
and hands the task to the broker. The typed `enqueue_*` wrappers pick the lane
each kind has always used.
"""

from __future__ import annotations

import asyncio
from typing import Optional

from pydantic import BaseModel

from relayq.core.brokers.base import Broker
from relayq.core.brokers.result_types import BrokerErrorCode, BrokerOperationError
from relayq.core.defaults import DEFAULT_ENQUEUE_TIMEOUT_SECONDS
from relayq.core.logging import get_logger
from relayq.core.models.domain import Mail, SecretMessageNode
from relayq.core.models.kinds import TaskKind
from relayq.core.models.payloads import (
    CreateSecretMessageNodePayload,
    InlineButton,
    MailingPayload,
    MailUpdatePayload,
    MemeSubscriptionPayload,
    SendTelegramMessagePayload,
    SettingMessageNodePayload,
    SiakadScrapingPayload,
    UserActivationPayload,
    encode_payload,
)
from relayq.core.models.policy import PolicyTable
from relayq.core.types.status import Lane

logger = get_logger('queue')


class TaskQueue:
    def __init__(
        self,
        broker: Broker,
        policies: Optional[PolicyTable] = None,
        enqueue_timeout_seconds: float = DEFAULT_ENQUEUE_TIMEOUT_SECONDS,
    ) -> None:
        self.broker = broker
        self.policies = policies if policies is not None else PolicyTable()
        self.enqueue_timeout_seconds = enqueue_timeout_seconds

    async def enqueue(
        self, kind: TaskKind, payload: BaseModel, lane: Lane = Lane.DEFAULT
    ) -> str:
        """
        Submit one task and return its id.

        Raises:
            TaskSerializationError: payload does not belong to `kind` or cannot be encoded
            RegistryError: no policy for `kind`
            BrokerOperationError: the broker rejected the task or did not answer in time
        """
        raw = encode_payload(kind, payload)
        policy = self.policies.for_kind(kind)
        try:
            task_id = await asyncio.wait_for(
                self.broker.enqueue(kind, raw, lane, policy),
                timeout=self.enqueue_timeout_seconds,
            )
        except asyncio.TimeoutError as exc:
            raise BrokerOperationError(
                code=BrokerErrorCode.ENQUEUE_FAILED,
                message=f'enqueue of {kind.value} timed out after '
                f'{self.enqueue_timeout_seconds}s',
                retryable=True,
                exception=exc,
            ) from exc
        logger.debug(f'Enqueued {kind.value} task {task_id} on lane {lane.value}')
        return task_id

    # ----- typed wrappers -----

    async def enqueue_mailing(self, mail: Mail, lane: Lane = Lane.DEFAULT) -> str:
        return await self.enqueue(TaskKind.MAILING, MailingPayload(mail=mail), lane)

    async def enqueue_mail_update(self, mail: Mail, lane: Lane = Lane.HIGH) -> str:
        return await self.enqueue(
            TaskKind.MAIL_UPDATE_RECORD, MailUpdatePayload(mail=mail), lane
        )

    async def enqueue_user_activation(self, user_id: int, lane: Lane = Lane.HIGH) -> str:
        return await self.enqueue(
            TaskKind.USER_ACTIVATION, UserActivationPayload(user_id=user_id), lane
        )

    async def enqueue_siakad_scraping(self, npm: str, lane: Lane = Lane.HIGH) -> str:
        return await self.enqueue(
            TaskKind.SIAKAD_PROFILE_PICTURE_SCRAPING,
            SiakadScrapingPayload(npm=npm),
            lane,
        )

    async def enqueue_setting_message_node(
        self,
        session_id: str,
        message_id: int,
        text: str = '',
        lane: Lane = Lane.HIGH,
    ) -> str:
        return await self.enqueue(
            TaskKind.SETTING_MESSAGE_NODE,
            SettingMessageNodePayload(
                session_id=session_id, message_id=message_id, text=text
            ),
            lane,
        )

    async def enqueue_send_telegram_message(
        self,
        user_id: int,
        message: str,
        message_id: int,
        session_id: str,
        reply_to_message_id: Optional[int] = None,
        buttons: tuple[InlineButton, ...] = (),
        lane: Lane = Lane.HIGH,
    ) -> str:
        return await self.enqueue(
            TaskKind.SEND_TELEGRAM_MESSAGE,
            SendTelegramMessagePayload(
                user_id=user_id,
                message=message,
                message_id=message_id,
                reply_to_message_id=reply_to_message_id,
                session_id=session_id,
                buttons=buttons,
            ),
            lane,
        )

    async def enqueue_create_secret_message_node(
        self, node: SecretMessageNode, lane: Lane = Lane.HIGH
    ) -> str:
        return await self.enqueue(
            TaskKind.CREATE_SECRET_MESSAGE_NODE,
            CreateSecretMessageNodePayload(node=node),
            lane,
        )

    async def enqueue_meme_subscription(self, lane: Lane = Lane.DEFAULT) -> str:
        return await self.enqueue(
            TaskKind.MEME_SUBSCRIPTION, MemeSubscriptionPayload(), lane
        )
