# relayq/secret_messaging/callbacks.py
"""Inline-button callback data: `<prefix>;<value>`."""

from __future__ import annotations

from enum import Enum

SEPARATOR = ';'


class CallbackQuery(str, Enum):
    REGISTER_SECRET_MESSAGING = 'register_secret_telegram_messaging'
    REPORT_SECRET_MESSAGE = 'report_secret_message'
    BLOCK_SECRET_MESSAGING_USER = 'block_secret_messaging_user'


class InvalidCallbackData(ValueError):
    pass


def report_callback_data(node_id: int) -> str:
    return f'{CallbackQuery.REPORT_SECRET_MESSAGE.value}{SEPARATOR}{node_id}'


def block_callback_data(user_id: int) -> str:
    return f'{CallbackQuery.BLOCK_SECRET_MESSAGING_USER.value}{SEPARATOR}{user_id}'


def _parse_id(data: str, prefix: CallbackQuery) -> int:
    parts = data.split(SEPARATOR)
    if len(parts) != 2 or parts[0] != prefix.value:
        raise InvalidCallbackData(f'invalid {prefix.value} callback data: {data!r}')
    try:
        return int(parts[1])
    except ValueError:
        raise InvalidCallbackData(
            f'invalid id in {prefix.value} callback data: {data!r}'
        ) from None


def parse_report_callback(data: str) -> int:
    """Node id carried by a report button."""
    return _parse_id(data, CallbackQuery.REPORT_SECRET_MESSAGE)


def parse_block_callback(data: str) -> int:
    """User id carried by a block button."""
    return _parse_id(data, CallbackQuery.BLOCK_SECRET_MESSAGING_USER)


def callback_kind(data: str) -> CallbackQuery | None:
    head = data.split(SEPARATOR, 1)[0]
    try:
        return CallbackQuery(head)
    except ValueError:
        return None
