# relayq/secret_messaging/bot.py
"""Maps inbound bot updates to secret messaging operations and reply texts."""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel

from relayq.collaborators.gateway import BotGateway, SentMessage
from relayq.core import defaults
from relayq.core.errors import UsecaseErrorKind
from relayq.core.logging import get_logger
from relayq.core.models.domain import TelegramUser
from relayq.core.models.payloads import InlineButton
from relayq.core.queue import TaskQueue
from relayq.secret_messaging import texts
from relayq.secret_messaging.callbacks import (
    CallbackQuery,
    InvalidCallbackData,
    callback_kind,
    parse_block_callback,
    parse_report_callback,
)
from relayq.secret_messaging.protocol import RelayResult, SecretMessaging

logger = get_logger('bot')

START_TEXT = (
    'Welcome to Central Service Telegram Bot!\n\n'
    'If you want to use secret messaging feature, you have to register first. '
    'Just type "/register" and sent that to me.\n'
    'After you are registered, you can then start secretly messaging with the person you want!\n\n'
    'To start secret messaging feature, all you have to do is type '
    "<strong>/secret [user-id]</strong>. The 'user-id' is the ID of the person you want "
    'to start secret messaging with.\n'
)
REGISTER_MENU_TEXT = (
    'Please click one of these buttons to select which service you want to register to'
)
REGISTER_MENU_BUTTON = 'Secret Telegram Messaging'

INITIATE_COMMANDS = frozenset({'/secret', '/initiate'})


class InboundMessage(BaseModel):
    message_id: int
    chat_id: int
    text: str = ''


class InboundCallback(BaseModel):
    id: str
    data: str


class Update(BaseModel):
    """
    One inbound bot event.

    Exactly one of `message` or `callback` is set. `reply_to` is the id of
    the message the user replied to, when the message is a reply.
    """

    user: TelegramUser
    message: Optional[InboundMessage] = None
    reply_to: Optional[int] = None
    callback: Optional[InboundCallback] = None


def update_from_telegram(raw: dict[str, Any]) -> Optional[Update]:
    """Build an Update from a Bot API update object; None for kinds the bot ignores."""
    callback = raw.get('callback_query')
    if callback is not None:
        return Update(
            user=TelegramUser.model_validate(callback['from']),
            callback=InboundCallback(id=str(callback['id']), data=callback.get('data', '')),
        )

    message = raw.get('message')
    if message is None or 'from' not in message:
        return None
    reply = message.get('reply_to_message')
    return Update(
        user=TelegramUser.model_validate(message['from']),
        message=InboundMessage(
            message_id=message['message_id'],
            chat_id=message['chat']['id'],
            text=message.get('text', ''),
        ),
        reply_to=reply['message_id'] if reply else None,
    )


def parse_command(text: str) -> tuple[str, list[str]] | None:
    """Split `/command arg ...`; None when the text is not a command."""
    if not text.startswith('/'):
        return None
    command, *args = text.split()
    # Group chats address commands as /command@botname
    return command.split('@', 1)[0], args


class SecretMessagingBot:
    def __init__(
        self,
        usecase: SecretMessaging,
        gateway: BotGateway,
        queue: TaskQueue,
        start_link: str = '',
        report_cache_seconds: int = defaults.DEFAULT_REPORT_CACHE_SECONDS,
        block_cache_seconds: int = defaults.DEFAULT_BLOCK_CACHE_SECONDS,
    ) -> None:
        self.usecase = usecase
        self.gateway = gateway
        self.queue = queue
        self.start_link = start_link
        self.report_cache_seconds = report_cache_seconds
        self.block_cache_seconds = block_cache_seconds

    async def handle(self, update: Update) -> None:
        if update.callback is not None:
            await self._handle_callback(update, update.callback)
            return
        if update.message is None:
            return

        parsed = parse_command(update.message.text)
        if parsed is None:
            await self.handle_relay(update, update.message)
            return

        command, args = parsed
        if command == '/start':
            await self._reply(update.message, START_TEXT, parse_mode='HTML')
        elif command == '/register':
            await self._reply(
                update.message,
                REGISTER_MENU_TEXT,
                buttons=(
                    InlineButton(
                        text=REGISTER_MENU_BUTTON,
                        callback_data=CallbackQuery.REGISTER_SECRET_MESSAGING.value,
                    ),
                ),
            )
        elif command in INITIATE_COMMANDS:
            await self.handle_initiate(update, update.message, args)
        else:
            await self._reply(update.message, texts.UNKNOWN_COMMAND)

    async def _reply(
        self,
        message: InboundMessage,
        text: str,
        *,
        parse_mode: Optional[str] = None,
        buttons: tuple[InlineButton, ...] = (),
    ) -> SentMessage:
        return await self.gateway.send_message(
            message.chat_id,
            text,
            parse_mode=parse_mode,
            reply_to_message_id=message.message_id,
            buttons=buttons,
        )

    # ----------------- commands -----------------

    async def handle_initiate(
        self, update: Update, message: InboundMessage, args: list[str]
    ) -> None:
        try:
            target_id = int(args[0])
        except (IndexError, ValueError):
            await self._reply(message, texts.INVALID_USER_ID)
            return

        outcome = await self.usecase.initiate(update.user.id, target_id)
        if outcome.error is not None:
            match outcome.error.kind:
                case UsecaseErrorKind.VALIDATION | UsecaseErrorKind.FORBIDDEN:
                    text = outcome.error.message
                case UsecaseErrorKind.NOT_FOUND if outcome.error.message == texts.REGISTER_FIRST:
                    text = texts.REGISTER_FIRST
                case UsecaseErrorKind.NOT_FOUND:
                    text = texts.PROBLEM_PREFIX + outcome.error.message
                case _:
                    text = texts.INITIATE_FAILED
            await self._reply(message, text)
            return

        session, target = outcome.value  # type: ignore[misc]
        confirmation = await self._reply(
            message, texts.SESSION_ACTIVE.format(name=target.first_name)
        )
        try:
            await self.queue.enqueue_setting_message_node(
                session_id=session.id,
                message_id=confirmation.message_id,
                text=confirmation.text,
            )
        except Exception as e:
            logger.error(
                f'Failed to enqueue root node for session {session.id}: {e}'
            )

    async def handle_relay(self, update: Update, message: InboundMessage) -> None:
        if update.reply_to is None:
            await self._reply(message, texts.UNKNOWN_COMMAND)
            return

        outcome = await self.usecase.relay(
            reply_to_node_id=update.reply_to,
            sender_id=update.user.id,
            message_id=message.message_id,
            text=message.text,
        )
        if outcome.error is not None:
            if outcome.error.kind is UsecaseErrorKind.INTERNAL:
                await self._reply(message, texts.UNEXPECTED_ERROR)
            else:
                await self._reply(message, outcome.error.message)
            return
        if outcome.value is RelayResult.UNRECOGNIZED:
            await self._reply(message, texts.UNKNOWN_COMMAND)

    # ----------------- callbacks -----------------

    async def _handle_callback(self, update: Update, callback: InboundCallback) -> None:
        match callback_kind(callback.data):
            case CallbackQuery.REGISTER_SECRET_MESSAGING:
                await self.handle_register(update.user, callback)
            case CallbackQuery.REPORT_SECRET_MESSAGE:
                await self.handle_report(update.user, callback)
            case CallbackQuery.BLOCK_SECRET_MESSAGING_USER:
                await self.handle_block(update.user, callback)
            case _:
                logger.warning(f'Ignoring unknown callback data {callback.data!r}')

    async def handle_register(self, user: TelegramUser, callback: InboundCallback) -> None:
        outcome = await self.usecase.register(user)
        if outcome.error is not None and outcome.error.kind is not UsecaseErrorKind.ALREADY_EXISTS:
            if outcome.error.kind is UsecaseErrorKind.FORBIDDEN:
                text = texts.REGISTER_BOT_FORBIDDEN
            else:
                text = texts.REGISTER_FAILED + outcome.error.message
            await self.gateway.answer_callback(callback.id, text, show_alert=False)
            return

        await self.gateway.answer_callback(
            callback.id, texts.REGISTER_SUCCESS, show_alert=True
        )
        await self.gateway.send_message(user.id, user.share_text(self.start_link))

    async def handle_report(self, user: TelegramUser, callback: InboundCallback) -> None:
        try:
            node_id = parse_report_callback(callback.data)
        except InvalidCallbackData as e:
            logger.error(f'Failed to parse report callback: {e}')
            await self.gateway.answer_callback(
                callback.id, texts.UNEXPECTED_ERROR, show_alert=True
            )
            return

        outcome = await self.usecase.report(node_id, user.id)
        if outcome.error is not None:
            await self.gateway.answer_callback(
                callback.id, texts.REPORT_FAILED, show_alert=True
            )
            return
        await self.gateway.answer_callback(
            callback.id,
            texts.REPORT_SENT,
            show_alert=True,
            cache_time=self.report_cache_seconds,
        )

    async def handle_block(self, user: TelegramUser, callback: InboundCallback) -> None:
        try:
            blocked_user_id = parse_block_callback(callback.data)
        except InvalidCallbackData as e:
            logger.error(f'Failed to parse block callback: {e}')
            await self.gateway.answer_callback(
                callback.id, texts.UNEXPECTED_ERROR, show_alert=True
            )
            return

        outcome = await self.usecase.block(blocked_user_id, user.id)
        if outcome.error is not None:
            text = (
                texts.BLOCK_NOT_FOUND
                if outcome.error.kind is UsecaseErrorKind.NOT_FOUND
                else texts.UNEXPECTED_ERROR
            )
            await self.gateway.answer_callback(callback.id, text, show_alert=True)
            return
        await self.gateway.answer_callback(
            callback.id,
            texts.BLOCK_DONE,
            show_alert=True,
            cache_time=self.block_cache_seconds,
        )
