# relayq/core/models/payloads.py
"""
Typed payload per task kind.

Every payload carries its own `kind` tag, so the routing key and the payload
shape travel together and cannot drift apart. The wire format is the JSON
dump of the variant.
"""

from __future__ import annotations

from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from relayq.core.errors import PayloadDecodeError, TaskSerializationError
from relayq.core.models.domain import Mail, SecretMessageNode
from relayq.core.models.kinds import TaskKind


class _Payload(BaseModel):
    model_config = ConfigDict(extra='forbid', frozen=True)


class MailingPayload(_Payload):
    kind: Literal[TaskKind.MAILING] = TaskKind.MAILING
    mail: Mail


class MailUpdatePayload(_Payload):
    kind: Literal[TaskKind.MAIL_UPDATE_RECORD] = TaskKind.MAIL_UPDATE_RECORD
    mail: Mail


class UserActivationPayload(_Payload):
    kind: Literal[TaskKind.USER_ACTIVATION] = TaskKind.USER_ACTIVATION
    user_id: int


class SiakadScrapingPayload(_Payload):
    kind: Literal[TaskKind.SIAKAD_PROFILE_PICTURE_SCRAPING] = (
        TaskKind.SIAKAD_PROFILE_PICTURE_SCRAPING
    )
    npm: str


class SettingMessageNodePayload(_Payload):
    """The bot's confirmation reply that becomes a session's root node."""

    kind: Literal[TaskKind.SETTING_MESSAGE_NODE] = TaskKind.SETTING_MESSAGE_NODE
    session_id: str
    message_id: int
    text: str = ''


class InlineButton(BaseModel):
    model_config = ConfigDict(frozen=True)

    text: str
    callback_data: str


class SendTelegramMessagePayload(_Payload):
    """
    Deliver a relayed message to one party of a session.

    `message_id` is the inbound message being relayed; the delivered copy is
    recorded as a node whose parent is that message.
    """

    kind: Literal[TaskKind.SEND_TELEGRAM_MESSAGE] = TaskKind.SEND_TELEGRAM_MESSAGE
    user_id: int
    message: str
    message_id: int
    reply_to_message_id: Optional[int] = None
    session_id: str
    parse_mode: str = 'HTML'
    buttons: tuple[InlineButton, ...] = ()


class CreateSecretMessageNodePayload(_Payload):
    kind: Literal[TaskKind.CREATE_SECRET_MESSAGE_NODE] = (
        TaskKind.CREATE_SECRET_MESSAGE_NODE
    )
    node: SecretMessageNode


class MemeSubscriptionPayload(_Payload):
    kind: Literal[TaskKind.MEME_SUBSCRIPTION] = TaskKind.MEME_SUBSCRIPTION


TaskPayload = Annotated[
    Union[
        MailingPayload,
        MailUpdatePayload,
        UserActivationPayload,
        SiakadScrapingPayload,
        SettingMessageNodePayload,
        SendTelegramMessagePayload,
        CreateSecretMessageNodePayload,
        MemeSubscriptionPayload,
    ],
    Field(discriminator='kind'),
]

_PAYLOAD_ADAPTER: TypeAdapter[TaskPayload] = TypeAdapter(TaskPayload)


def encode_payload(kind: TaskKind, payload: BaseModel) -> str:
    """Serialize a payload for the broker, checking it belongs to `kind`."""
    payload_kind = getattr(payload, 'kind', None)
    if payload_kind != kind:
        raise TaskSerializationError(
            f'payload {type(payload).__name__} has kind {payload_kind!r}, '
            f'cannot enqueue it as {kind.value!r}'
        )
    try:
        return payload.model_dump_json()
    except (TypeError, ValueError) as exc:
        raise TaskSerializationError(f'failed to serialize {kind.value} payload: {exc}') from exc


def decode_payload(kind: TaskKind | str, raw: str) -> TaskPayload:
    """Decode a stored payload into its variant; the stored kind must match the tag."""
    try:
        payload = _PAYLOAD_ADAPTER.validate_json(raw)
    except ValidationError as exc:
        raise PayloadDecodeError(f'undecodable payload for {kind}: {exc}') from exc
    if payload.kind.value != str(getattr(kind, 'value', kind)):
        raise PayloadDecodeError(
            f'payload tagged {payload.kind.value!r} stored under kind {kind!r}'
        )
    return payload
