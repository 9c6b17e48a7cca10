# relayq/core/models/domain.py
"""Domain records exchanged with the store and carried inside task payloads."""

from __future__ import annotations

import datetime as dt
from enum import Enum
from typing import Any, Optional, Self

from pydantic import BaseModel, Field, model_validator

from relayq.core.types.status import MailStatus


def utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


class TelegramUser(BaseModel):
    """A bot user who registered for secret messaging."""

    id: int
    is_bot: bool = False
    first_name: str
    last_name: Optional[str] = None
    username: Optional[str] = None
    language_code: Optional[str] = None
    is_premium: Optional[bool] = None
    is_active: bool = True

    def share_text(self, start_link: str) -> str:
        """Text the user can post publicly to invite anonymous chats."""
        return (
            f"Hello, I'm {self.first_name}. If you want to secretly have chat with me "
            f'in Telegram without me knowing who you are, you can register from this '
            f"bot: {start_link} and my code is: {self.id}. Can't wait to have chat with you!"
        )


class SecretMessagingSession(BaseModel):
    """
    A time-boxed, blockable relay channel from sender to target.

    `is_blocked` is the only field that changes after creation and it never
    goes back to False. Expiry is evaluated lazily against `expired_at`.
    """

    id: str
    sender_id: int
    target_id: int
    created_at: dt.datetime = Field(default_factory=utcnow)
    expired_at: dt.datetime
    is_blocked: bool = False

    @model_validator(mode='after')
    def validate_distinct_parties(self) -> Self:
        if self.sender_id == self.target_id:
            raise ValueError('sender_id and target_id must differ')
        return self

    def is_expired(self, now: dt.datetime | None = None) -> bool:
        return (now or utcnow()) > self.expired_at

    def is_owned_by(self, user_id: int) -> bool:
        return self.sender_id == user_id


class SecretMessageNode(BaseModel):
    """
    One message in a session's reply chain.

    `id` is the chat message id. `previous_node_id` refers to an existing
    node by id; several nodes may point at the same parent.
    """

    id: int
    session_id: str
    created_at: dt.datetime = Field(default_factory=utcnow)
    text: str = ''
    previous_node_id: Optional[int] = None


class MailResultMetadata(BaseModel):
    detail: Any = None
    signature: str


class Mail(BaseModel):
    """
    An outbound mail record.

    `to`, `cc` and `bcc` hold JSON-serialized address lists, exactly as the
    API layer stored them.
    """

    id: str
    to: str
    cc: Optional[str] = None
    bcc: Optional[str] = None
    html_content: str
    subject: str
    created_at: dt.datetime = Field(default_factory=utcnow)
    delivered_at: Optional[dt.datetime] = None
    status: MailStatus = MailStatus.ON_PROGRESS
    metadata: Optional[str] = None


class SiakadProfilePicture(BaseModel):
    npm: str
    image_path: str
    mimetype: str
    created_at: dt.datetime = Field(default_factory=utcnow)


class GagMemeType(str, Enum):
    IMAGE = 'image'
    VIDEO = 'video'


class GagMeme(BaseModel):
    id: str
    original_url: str
    type: GagMemeType
    media_url: str
    title: str

    def subscription_caption(self) -> str:
        return (
            'Meme Subscription\n'
            f'Title: <strong>{self.title}</strong>\n'
            f'Original Post: <strong>{self.original_url}</strong>\n'
            f'{self.media_url}'
        )


class SubscriptionType(str, Enum):
    MEME = 'meme'


class SubscriptionChannel(str, Enum):
    TELEGRAM = 'telegram'


class Subscription(BaseModel):
    id: str
    type: SubscriptionType
    channel: SubscriptionChannel
    user_reference_id: str
