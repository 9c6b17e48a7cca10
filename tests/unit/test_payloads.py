"""Unit tests for tagged payload variants."""

from __future__ import annotations

import json

import pytest

from relayq.core.errors import PayloadDecodeError, TaskSerializationError
from relayq.core.models.domain import SecretMessageNode
from relayq.core.models.kinds import TaskKind
from relayq.core.models.payloads import (
    CreateSecretMessageNodePayload,
    InlineButton,
    SendTelegramMessagePayload,
    UserActivationPayload,
    decode_payload,
    encode_payload,
)

pytestmark = pytest.mark.unit


def _make_send_payload() -> SendTelegramMessagePayload:
    return SendTelegramMessagePayload(
        user_id=7,
        message='<strong>Someone secretly said</strong>: hi',
        message_id=55,
        reply_to_message_id=41,
        session_id='s-1',
        buttons=(InlineButton(text='Report', callback_data='report_secret_message;55'),),
    )


class TestEncodePayload:
    """Tests for encode_payload()."""

    def test_wire_format_carries_kind_tag(self) -> None:
        raw = encode_payload(TaskKind.USER_ACTIVATION, UserActivationPayload(user_id=3))
        assert json.loads(raw) == {'kind': 'task:user_activation', 'user_id': 3}

    def test_kind_mismatch_rejected(self) -> None:
        with pytest.raises(TaskSerializationError):
            encode_payload(TaskKind.MAILING, UserActivationPayload(user_id=3))

    def test_untagged_model_rejected(self) -> None:
        with pytest.raises(TaskSerializationError):
            encode_payload(TaskKind.MAILING, InlineButton(text='x', callback_data='y'))


class TestDecodePayload:
    """Tests for decode_payload()."""

    def test_decodes_to_variant(self) -> None:
        payload = _make_send_payload()
        raw = encode_payload(TaskKind.SEND_TELEGRAM_MESSAGE, payload)

        decoded = decode_payload(TaskKind.SEND_TELEGRAM_MESSAGE, raw)

        assert isinstance(decoded, SendTelegramMessagePayload)
        assert decoded == payload

    def test_nested_node_decodes(self) -> None:
        node = SecretMessageNode(id=9, session_id='s-1', text='hello', previous_node_id=4)
        raw = encode_payload(
            TaskKind.CREATE_SECRET_MESSAGE_NODE, CreateSecretMessageNodePayload(node=node)
        )
        decoded = decode_payload('task:creating_secret_message_node', raw)
        assert isinstance(decoded, CreateSecretMessageNodePayload)
        assert decoded.node.previous_node_id == 4

    def test_malformed_json(self) -> None:
        with pytest.raises(PayloadDecodeError):
            decode_payload(TaskKind.MAILING, '{not json')

    def test_missing_field(self) -> None:
        with pytest.raises(PayloadDecodeError):
            decode_payload(TaskKind.USER_ACTIVATION, '{"kind": "task:user_activation"}')

    def test_extra_field_rejected(self) -> None:
        raw = '{"kind": "task:user_activation", "user_id": 1, "extra": true}'
        with pytest.raises(PayloadDecodeError):
            decode_payload(TaskKind.USER_ACTIVATION, raw)

    def test_tag_must_match_stored_kind(self) -> None:
        raw = encode_payload(TaskKind.USER_ACTIVATION, UserActivationPayload(user_id=1))
        with pytest.raises(PayloadDecodeError):
            decode_payload(TaskKind.MAILING, raw)
