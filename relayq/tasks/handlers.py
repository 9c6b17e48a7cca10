# relayq/tasks/handlers.py
"""
Task handlers for every kind, bound to their collaborators.

A handler is `async (ctx, payload) -> None`; raising fails the attempt and the
worker decides between retry and archive. `build_registry` wires all eight
kinds into the registry the worker dispatches from.
"""

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, field
from typing import Callable, Optional

import httpx

from relayq.collaborators.gateway import BotGateway
from relayq.collaborators.store import Store
from relayq.core.errors import RecordNotFound
from relayq.core.logging import get_logger
from relayq.core.models.config import SiakadSettings
from relayq.core.models.domain import (
    MailResultMetadata,
    SecretMessageNode,
    utcnow,
)
from relayq.core.models.kinds import TaskKind
from relayq.core.models.payloads import (
    CreateSecretMessageNodePayload,
    MailingPayload,
    MailUpdatePayload,
    MemeSubscriptionPayload,
    SendTelegramMessagePayload,
    SettingMessageNodePayload,
    SiakadScrapingPayload,
    UserActivationPayload,
)
from relayq.core.queue import TaskQueue
from relayq.core.registry.handlers import HandlerRegistry
from relayq.core.types.status import MailStatus
from relayq.core.worker.context import TaskContext
from relayq.mailing.failover import MailFailover
from relayq.secret_messaging.protocol import SecretMessaging
from relayq.tasks.memes import broadcast_random_meme
from relayq.tasks.siakad import scrape_profile_picture

logger = get_logger('tasks')


class TaskFailed(Exception):
    """A handler step failed in a way the worker should retry."""


@dataclass
class HandlerDeps:
    store: Store
    queue: TaskQueue
    gateway: BotGateway
    failover: MailFailover
    usecase: SecretMessaging
    siakad: SiakadSettings = field(default_factory=SiakadSettings)
    http_client: Optional[httpx.AsyncClient] = None
    clock: Callable[[], dt.datetime] = utcnow


class TaskHandlers:
    def __init__(self, deps: HandlerDeps) -> None:
        self.deps = deps

    async def mailing(self, ctx: TaskContext, payload: MailingPayload) -> None:
        mail = payload.mail
        # MailDeliveryError propagates: the whole provider chain failed
        detail, provider = await self.deps.failover.send(mail)

        metadata = MailResultMetadata(detail=detail, signature=provider)
        delivered = mail.model_copy(
            update={
                'status': MailStatus.SUCCESS,
                'delivered_at': self.deps.clock(),
                'metadata': metadata.model_dump_json(),
            }
        )
        try:
            await self.deps.queue.enqueue_mail_update(delivered)
        except Exception as e:
            # Already delivered; retrying would send the mail twice
            logger.error(f'Mail {mail.id} sent but record update not enqueued: {e}')

    async def mail_update(self, ctx: TaskContext, payload: MailUpdatePayload) -> None:
        await self.deps.store.update_mail(payload.mail)

    async def user_activation(
        self, ctx: TaskContext, payload: UserActivationPayload
    ) -> None:
        await self.deps.store.activate_user(payload.user_id)
        logger.info(f'User {payload.user_id} activated')

    async def siakad_scraping(
        self, ctx: TaskContext, payload: SiakadScrapingPayload
    ) -> None:
        await scrape_profile_picture(
            self.deps.store,
            self.deps.siakad,
            payload.npm,
            client=self.deps.http_client,
            clock=self.deps.clock,
        )

    async def setting_message_node(
        self, ctx: TaskContext, payload: SettingMessageNodePayload
    ) -> None:
        outcome = await self.deps.usecase.set_root_node(
            payload.session_id, payload.message_id, payload.text
        )
        if outcome.error is not None:
            raise TaskFailed(
                f'root node {payload.message_id} for session {payload.session_id}: '
                f'{outcome.error.kind.value}: {outcome.error.message}'
            )

    async def send_telegram_message(
        self, ctx: TaskContext, payload: SendTelegramMessagePayload
    ) -> None:
        try:
            user = await self.deps.store.find_user_by_id(payload.user_id)
        except RecordNotFound:
            logger.error(
                f'Send to user {payload.user_id} requested but the user is not registered'
            )
            raise

        sent = await self.deps.gateway.send_message(
            user.id,
            payload.message,
            parse_mode=payload.parse_mode,
            reply_to_message_id=payload.reply_to_message_id,
            buttons=payload.buttons,
        )
        node = SecretMessageNode(
            id=sent.message_id,
            session_id=payload.session_id,
            created_at=self.deps.clock(),
            text=sent.text,
            previous_node_id=payload.message_id,
        )
        await self.deps.queue.enqueue_create_secret_message_node(node)

    async def create_secret_message_node(
        self, ctx: TaskContext, payload: CreateSecretMessageNodePayload
    ) -> None:
        # RecordNotFound on a parent that has not landed yet; the retry picks it up
        await self.deps.store.create_message_node(payload.node)

    async def meme_subscription(
        self, ctx: TaskContext, payload: MemeSubscriptionPayload
    ) -> None:
        await broadcast_random_meme(self.deps.store, self.deps.gateway)


def build_registry(deps: HandlerDeps) -> HandlerRegistry:
    """Registry with a handler for every task kind."""
    handlers = TaskHandlers(deps)
    registry = HandlerRegistry()
    registry.register(TaskKind.MAILING, handlers.mailing)
    registry.register(TaskKind.MAIL_UPDATE_RECORD, handlers.mail_update)
    registry.register(TaskKind.USER_ACTIVATION, handlers.user_activation)
    registry.register(TaskKind.SIAKAD_PROFILE_PICTURE_SCRAPING, handlers.siakad_scraping)
    registry.register(TaskKind.SETTING_MESSAGE_NODE, handlers.setting_message_node)
    registry.register(TaskKind.SEND_TELEGRAM_MESSAGE, handlers.send_telegram_message)
    registry.register(
        TaskKind.CREATE_SECRET_MESSAGE_NODE, handlers.create_secret_message_node
    )
    registry.register(TaskKind.MEME_SUBSCRIPTION, handlers.meme_subscription)
    return registry
