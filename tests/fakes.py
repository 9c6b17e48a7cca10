"""In-memory collaborators for unit tests."""

from __future__ import annotations

import datetime as dt
from typing import Any, Optional, Sequence

from relayq.collaborators.gateway import SentMessage
from relayq.core.errors import GatewayError, MailDeliveryError, RecordNotFound
from relayq.core.models.domain import (
    GagMeme,
    Mail,
    SecretMessageNode,
    SecretMessagingSession,
    SiakadProfilePicture,
    Subscription,
    SubscriptionChannel,
    SubscriptionType,
    TelegramUser,
)
from relayq.core.models.payloads import InlineButton


class MemoryStore:
    """Store implementation over plain dicts, with the same not-found contract."""

    def __init__(self) -> None:
        self.users: dict[int, TelegramUser] = {}
        self.sessions: dict[str, SecretMessagingSession] = {}
        self.nodes: dict[int, SecretMessageNode] = {}
        self.mails: dict[str, Mail] = {}
        self.pictures: dict[str, SiakadProfilePicture] = {}
        self.memes: list[GagMeme] = []
        self.subscriptions: list[Subscription] = []
        self.subscription_queries: list[tuple[int, int]] = []

    # ----- users -----

    async def create_user(self, user: TelegramUser) -> None:
        self.users[user.id] = user

    async def find_user_by_id(self, user_id: int) -> TelegramUser:
        try:
            return self.users[user_id]
        except KeyError:
            raise RecordNotFound('telegram_user', user_id) from None

    async def activate_user(self, user_id: int) -> None:
        user = await self.find_user_by_id(user_id)
        self.users[user_id] = user.model_copy(update={'is_active': True})

    # ----- sessions -----

    async def create_session(self, session: SecretMessagingSession) -> None:
        self.sessions[session.id] = session

    async def find_session_by_id(self, session_id: str) -> SecretMessagingSession:
        try:
            return self.sessions[session_id]
        except KeyError:
            raise RecordNotFound('secret_messaging_session', session_id) from None

    async def find_session_by_users(
        self, sender_id: int, target_id: int
    ) -> SecretMessagingSession:
        matching = [
            s
            for s in self.sessions.values()
            if s.sender_id == sender_id and s.target_id == target_id
        ]
        if not matching:
            raise RecordNotFound('secret_messaging_session', (sender_id, target_id))
        return max(matching, key=lambda s: s.created_at)

    async def block_session_by_id(self, session_id: str) -> None:
        session = await self.find_session_by_id(session_id)
        self.sessions[session_id] = session.model_copy(update={'is_blocked': True})

    # ----- message nodes -----

    async def create_message_node(self, node: SecretMessageNode) -> None:
        if node.id in self.nodes:
            return
        if node.previous_node_id is not None and node.previous_node_id not in self.nodes:
            raise RecordNotFound('secret_message_node', node.previous_node_id)
        self.nodes[node.id] = node

    async def find_message_node_by_id(self, node_id: int) -> SecretMessageNode:
        try:
            return self.nodes[node_id]
        except KeyError:
            raise RecordNotFound('secret_message_node', node_id) from None

    # ----- mail -----

    async def update_mail(self, mail: Mail) -> None:
        if mail.id not in self.mails:
            raise RecordNotFound('mail', mail.id)
        self.mails[mail.id] = mail

    # ----- siakad -----

    async def find_profile_picture(self, npm: str) -> SiakadProfilePicture:
        try:
            return self.pictures[npm]
        except KeyError:
            raise RecordNotFound('siakad_profile_picture', npm) from None

    async def create_profile_picture(self, picture: SiakadProfilePicture) -> None:
        self.pictures[picture.npm] = picture

    # ----- memes and subscriptions -----

    async def find_random_meme(self) -> GagMeme:
        if not self.memes:
            raise RecordNotFound('gag_meme', None)
        return self.memes[0]

    async def find_subscriptions(
        self,
        type: SubscriptionType,
        channel: SubscriptionChannel,
        limit: int,
        offset: int,
    ) -> list[Subscription]:
        self.subscription_queries.append((limit, offset))
        matching = [s for s in self.subscriptions if s.type == type and s.channel == channel]
        return matching[offset : offset + limit]


class FakeGateway:
    """Records every outbound call; message ids count up from `first_message_id`."""

    def __init__(self, first_message_id: int = 1000) -> None:
        self.sent: list[dict[str, Any]] = []
        self.answers: list[dict[str, Any]] = []
        self.failing_chats: set[int] = set()
        self._next_id = first_message_id

    async def send_message(
        self,
        chat_id: int,
        text: str,
        *,
        parse_mode: Optional[str] = None,
        reply_to_message_id: Optional[int] = None,
        buttons: Sequence[InlineButton] = (),
    ) -> SentMessage:
        if chat_id in self.failing_chats:
            raise GatewayError(f'chat {chat_id} not reachable')
        message_id = self._next_id
        self._next_id += 1
        self.sent.append(
            {
                'chat_id': chat_id,
                'text': text,
                'parse_mode': parse_mode,
                'reply_to_message_id': reply_to_message_id,
                'buttons': tuple(buttons),
                'message_id': message_id,
            }
        )
        return SentMessage(message_id=message_id, chat_id=chat_id, text=text)

    async def answer_callback(
        self,
        callback_id: str,
        text: str,
        *,
        show_alert: bool = False,
        cache_time: int = 0,
    ) -> None:
        self.answers.append(
            {
                'callback_id': callback_id,
                'text': text,
                'show_alert': show_alert,
                'cache_time': cache_time,
            }
        )

    @property
    def texts(self) -> list[str]:
        return [m['text'] for m in self.sent]


class FakeModeration:
    def __init__(self) -> None:
        self.reports: list[tuple[SecretMessageNode, int]] = []

    async def report(self, node: SecretMessageNode, reporter_id: int) -> None:
        self.reports.append((node, reporter_id))


class FakeProvider:
    """MailProvider that succeeds with `response` or raises `error`."""

    def __init__(
        self,
        name: str,
        response: Any = None,
        error: Optional[Exception] = None,
    ) -> None:
        self.name = name
        self.response = response if response is not None else {'provider': name}
        self.error = error
        self.calls: list[Mail] = []

    async def send_email(self, mail: Mail) -> Any:
        self.calls.append(mail)
        if self.error is not None:
            raise self.error
        return self.response

    async def close(self) -> None:
        return None


def failing_provider(name: str, message: str = 'provider down') -> FakeProvider:
    return FakeProvider(name, error=MailDeliveryError(message))


class ManualClock:
    """A settable UTC clock for brokers, workers and usecases."""

    def __init__(self, start: Optional[dt.datetime] = None) -> None:
        self.now = start or dt.datetime(2024, 1, 1, 12, 0, tzinfo=dt.timezone.utc)

    def __call__(self) -> dt.datetime:
        return self.now

    def advance(self, **delta: float) -> dt.datetime:
        self.now = self.now + dt.timedelta(**delta)
        return self.now
