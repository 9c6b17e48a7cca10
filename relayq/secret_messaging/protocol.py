# relayq/secret_messaging/protocol.py
"""
Anonymous relay sessions between two registered users.

An initiator opens a session to a target; from then on every reply to a
relayed message travels to the other party through the task queue, with the
initiator's identity hidden. Every operation returns an `Outcome` instead of
raising: the bot layer turns the error kind into a reply text.
"""

from __future__ import annotations

import datetime as dt
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Generic, Optional, TypeVar

from relayq.collaborators.cache import Cache
from relayq.collaborators.moderation import ModerationSink
from relayq.collaborators.store import Store
from relayq.core import defaults
from relayq.core.errors import (
    MSG_DATABASE_ERROR,
    MSG_NOT_FOUND,
    MSG_TASK_REGISTRATION,
    RecordNotFound,
    UsecaseError,
    UsecaseErrorKind,
)
from relayq.core.logging import get_logger
from relayq.core.models.domain import (
    SecretMessageNode,
    SecretMessagingSession,
    TelegramUser,
    utcnow,
)
from relayq.core.models.payloads import InlineButton
from relayq.core.queue import TaskQueue
from relayq.secret_messaging import texts
from relayq.secret_messaging.callbacks import block_callback_data, report_callback_data

logger = get_logger('secret_messaging')

T = TypeVar('T')

CACHE_FLAG = 'true'


def block_cache_key(sender_id: int, target_id: int) -> str:
    return f'blocked_secret_messaging_session_{sender_id}_{target_id}'


def report_cache_key(node_id: int) -> str:
    return f'reported_secret_message_{node_id}'


@dataclass(frozen=True)
class Outcome(Generic[T]):
    """Either a value or a UsecaseError."""

    value: Optional[T] = None
    error: Optional[UsecaseError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def kind(self) -> Optional[UsecaseErrorKind]:
        return self.error.kind if self.error is not None else None

    @classmethod
    def success(cls, value: T) -> Outcome[T]:
        return cls(value=value)

    @classmethod
    def failure(cls, error: UsecaseError) -> Outcome[T]:
        return cls(error=error)


class RelayResult(str, Enum):
    RELAYED = 'relayed'
    # The replied-to message is not part of any session
    UNRECOGNIZED = 'unrecognized'


class SecretMessaging:
    def __init__(
        self,
        store: Store,
        cache: Cache,
        queue: TaskQueue,
        moderation: ModerationSink,
        session_ttl_hours: int = defaults.DEFAULT_SESSION_TTL_HOURS,
        report_cache_seconds: int = defaults.DEFAULT_REPORT_CACHE_SECONDS,
        block_cache_seconds: int = defaults.DEFAULT_BLOCK_CACHE_SECONDS,
        clock: Callable[[], dt.datetime] = utcnow,
    ) -> None:
        self.store = store
        self.cache = cache
        self.queue = queue
        self.moderation = moderation
        self.session_ttl = dt.timedelta(hours=session_ttl_hours)
        self.report_cache_seconds = report_cache_seconds
        self.block_cache_seconds = block_cache_seconds
        self._clock = clock

    # ----------------- registration -----------------

    async def register(self, user: TelegramUser) -> Outcome[TelegramUser]:
        if user.is_bot:
            return Outcome.failure(
                UsecaseError.forbidden(texts.REGISTER_BOT_FORBIDDEN)
            )
        try:
            await self.store.find_user_by_id(user.id)
        except RecordNotFound:
            pass
        except Exception as e:
            logger.error(f'Failed to find telegram user {user.id}: {e}')
            return Outcome.failure(UsecaseError.internal())
        else:
            return Outcome.failure(UsecaseError.already_exists(texts.ALREADY_REGISTERED))

        try:
            await self.store.create_user(user)
        except Exception as e:
            logger.error(f'Failed to register telegram user {user.id}: {e}')
            return Outcome.failure(UsecaseError.internal())
        logger.info(f'Registered telegram user {user.id} for secret messaging')
        return Outcome.success(user)

    # ----------------- sessions -----------------

    async def initiate(
        self, sender_id: int, target_id: int
    ) -> Outcome[tuple[SecretMessagingSession, TelegramUser]]:
        """Open a session from `sender_id` to `target_id`. Nothing is written on rejection."""
        if sender_id == target_id:
            return Outcome.failure(UsecaseError.validation(texts.SELF_TARGET))

        try:
            await self.store.find_user_by_id(sender_id)
        except RecordNotFound:
            return Outcome.failure(UsecaseError.not_found(texts.REGISTER_FIRST))
        except Exception as e:
            logger.error(f'Failed to find initiator {sender_id}: {e}')
            return Outcome.failure(UsecaseError.internal())

        try:
            target = await self.store.find_user_by_id(target_id)
        except RecordNotFound:
            return Outcome.failure(
                UsecaseError.not_found(texts.TARGET_NOT_REGISTERED.format(user_id=target_id))
            )
        except Exception as e:
            logger.error(f'Failed to find target {target_id}: {e}')
            return Outcome.failure(UsecaseError.internal())

        now = self._clock()
        session = SecretMessagingSession(
            id=str(uuid.uuid4()),
            sender_id=sender_id,
            target_id=target_id,
            created_at=now,
            expired_at=now + self.session_ttl,
        )
        try:
            await self.store.create_session(session)
        except Exception as e:
            logger.error(f'Failed to create secret messaging session: {e}')
            return Outcome.failure(UsecaseError.internal())

        logger.info(f'Secret messaging session {session.id} opened')
        return Outcome.success((session, target))

    async def set_root_node(
        self, session_id: str, message_id: int, text: str = ''
    ) -> Outcome[SecretMessageNode]:
        """Record the bot's confirmation message as the first node of a session."""
        try:
            await self.store.find_session_by_id(session_id)
        except RecordNotFound:
            return Outcome.failure(UsecaseError.not_found(texts.SESSION_NOT_FOUND))
        except Exception as e:
            logger.error(f'Failed to find session {session_id}: {e}')
            return Outcome.failure(UsecaseError.internal())

        node = SecretMessageNode(
            id=message_id,
            session_id=session_id,
            created_at=self._clock(),
            text=text,
        )
        try:
            await self.store.create_message_node(node)
        except Exception as e:
            logger.error(f'Failed to create root node {message_id}: {e}')
            return Outcome.failure(UsecaseError.internal())
        return Outcome.success(node)

    # ----------------- relay -----------------

    async def relay(
        self, reply_to_node_id: int, sender_id: int, message_id: int, text: str
    ) -> Outcome[RelayResult]:
        """
        Forward a reply to the other party of the session the replied-to node belongs to.

        The initiator may only relay while the session is unexpired; the target
        may answer at any time. A blocked session rejects both directions.
        """
        try:
            parent = await self.store.find_message_node_by_id(reply_to_node_id)
        except RecordNotFound:
            return Outcome.success(RelayResult.UNRECOGNIZED)
        except Exception as e:
            logger.error(f'Failed to find message node {reply_to_node_id}: {e}')
            return Outcome.failure(UsecaseError.internal())

        try:
            session = await self.store.find_session_by_id(parent.session_id)
        except RecordNotFound:
            return Outcome.failure(UsecaseError.not_found(texts.SESSION_NOT_FOUND))
        except Exception as e:
            logger.error(f'Failed to find session {parent.session_id}: {e}')
            return Outcome.failure(UsecaseError.internal())

        if session.is_blocked:
            return Outcome.failure(UsecaseError.forbidden(texts.SESSION_BLOCKED))

        if session.is_owned_by(sender_id):
            return await self._relay_to_target(session, parent, message_id, text)
        if sender_id == session.target_id:
            return await self._relay_to_sender(session, parent, message_id, text)
        return Outcome.success(RelayResult.UNRECOGNIZED)

    async def _relay_to_target(
        self,
        session: SecretMessagingSession,
        parent: SecretMessageNode,
        message_id: int,
        text: str,
    ) -> Outcome[RelayResult]:
        if session.is_expired(self._clock()):
            return Outcome.failure(UsecaseError.forbidden(texts.SESSION_EXPIRED))

        try:
            await self.store.find_user_by_id(session.target_id)
        except RecordNotFound:
            return Outcome.failure(UsecaseError.not_found(texts.TARGET_MISSING))
        except Exception as e:
            logger.error(f'Failed to find target {session.target_id}: {e}')
            return Outcome.failure(UsecaseError.internal())

        buttons = (
            InlineButton(text=texts.REPORT_BUTTON, callback_data=report_callback_data(message_id)),
            InlineButton(
                text=texts.BLOCK_BUTTON, callback_data=block_callback_data(session.sender_id)
            ),
        )
        return await self._record_and_send(
            session,
            parent,
            message_id,
            text,
            recipient_id=session.target_id,
            message=texts.wrap_secret_message(text),
            buttons=buttons,
        )

    async def _relay_to_sender(
        self,
        session: SecretMessagingSession,
        parent: SecretMessageNode,
        message_id: int,
        text: str,
    ) -> Outcome[RelayResult]:
        try:
            replier = await self.store.find_user_by_id(session.target_id)
        except RecordNotFound:
            return Outcome.failure(UsecaseError.not_found(MSG_NOT_FOUND))
        except Exception as e:
            logger.error(f'Failed to find replier {session.target_id}: {e}')
            return Outcome.failure(UsecaseError.internal())

        return await self._record_and_send(
            session,
            parent,
            message_id,
            text,
            recipient_id=session.sender_id,
            message=texts.wrap_reply(text, replier.first_name),
        )

    async def _record_and_send(
        self,
        session: SecretMessagingSession,
        parent: SecretMessageNode,
        message_id: int,
        text: str,
        *,
        recipient_id: int,
        message: str,
        buttons: tuple[InlineButton, ...] = (),
    ) -> Outcome[RelayResult]:
        node = SecretMessageNode(
            id=message_id,
            session_id=session.id,
            created_at=self._clock(),
            text=text,
            previous_node_id=parent.id,
        )
        try:
            await self.store.create_message_node(node)
        except Exception as e:
            logger.error(f'Failed to create message node {message_id}: {e}')
            return Outcome.failure(UsecaseError.internal(MSG_DATABASE_ERROR))

        try:
            await self.queue.enqueue_send_telegram_message(
                user_id=recipient_id,
                message=message,
                message_id=message_id,
                session_id=session.id,
                reply_to_message_id=parent.previous_node_id,
                buttons=buttons,
            )
        except Exception as e:
            logger.error(f'Failed to enqueue relay of message {message_id}: {e}')
            return Outcome.failure(UsecaseError.internal(MSG_TASK_REGISTRATION))
        return Outcome.success(RelayResult.RELAYED)

    # ----------------- moderation -----------------

    async def block(
        self, blocked_user_id: int, blocker_id: int
    ) -> Outcome[SecretMessagingSession]:
        """Block the session `blocked_user_id` opened towards `blocker_id`. One-way."""
        try:
            session = await self.store.find_session_by_users(blocked_user_id, blocker_id)
        except RecordNotFound:
            return Outcome.failure(UsecaseError.not_found(texts.BLOCK_NOT_FOUND))
        except Exception as e:
            logger.error(f'Failed to find session {blocked_user_id}->{blocker_id}: {e}')
            return Outcome.failure(UsecaseError.internal())

        key = block_cache_key(session.sender_id, session.target_id)
        try:
            _, found = await self.cache.get(key)
        except Exception as e:
            logger.error(f'Failed to read block cache {key}: {e}')
            return Outcome.failure(UsecaseError.internal())
        # The key outlives a single session: a re-initiated session is still unblocked
        if found and session.is_blocked:
            return Outcome.success(session)

        try:
            await self.store.block_session_by_id(session.id)
            await self.cache.set(key, CACHE_FLAG, self.block_cache_seconds)
        except Exception as e:
            logger.error(f'Failed to block session {session.id}: {e}')
            return Outcome.failure(UsecaseError.internal())

        logger.info(f'Secret messaging session {session.id} blocked')
        return Outcome.success(session.model_copy(update={'is_blocked': True}))

    async def report(self, node_id: int, reporter_id: int) -> Outcome[SecretMessageNode]:
        """Send a message to moderation once per ack-cache window."""
        try:
            node = await self.store.find_message_node_by_id(node_id)
        except RecordNotFound:
            return Outcome.failure(UsecaseError.not_found())
        except Exception as e:
            logger.error(f'Failed to find message node {node_id}: {e}')
            return Outcome.failure(UsecaseError.internal())

        key = report_cache_key(node_id)
        try:
            _, found = await self.cache.get(key)
            if found:
                return Outcome.success(node)
            await self.moderation.report(node, reporter_id)
            await self.cache.set(key, CACHE_FLAG, self.report_cache_seconds)
        except Exception as e:
            logger.error(f'Failed to report message node {node_id}: {e}')
            return Outcome.failure(UsecaseError.internal())
        return Outcome.success(node)
