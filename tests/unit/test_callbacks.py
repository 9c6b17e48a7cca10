"""Unit tests for inline-button callback data."""

from __future__ import annotations

import pytest

from relayq.secret_messaging.callbacks import (
    CallbackQuery,
    InvalidCallbackData,
    block_callback_data,
    callback_kind,
    parse_block_callback,
    parse_report_callback,
    report_callback_data,
)

pytestmark = pytest.mark.unit


class TestCallbackData:
    def test_report_data_round_trip(self) -> None:
        data = report_callback_data(101)
        assert data == 'report_secret_message;101'
        assert parse_report_callback(data) == 101

    def test_block_data_round_trip(self) -> None:
        data = block_callback_data(7)
        assert data == 'block_secret_messaging_user;7'
        assert parse_block_callback(data) == 7

    @pytest.mark.parametrize(
        'data',
        [
            'report_secret_message',
            'report_secret_message;abc',
            'report_secret_message;1;2',
            'block_secret_messaging_user;1',
        ],
    )
    def test_malformed_report_data(self, data: str) -> None:
        with pytest.raises(InvalidCallbackData):
            parse_report_callback(data)

    def test_kind_detection(self) -> None:
        assert callback_kind('register_secret_telegram_messaging') is (
            CallbackQuery.REGISTER_SECRET_MESSAGING
        )
        assert callback_kind('block_secret_messaging_user;3') is (
            CallbackQuery.BLOCK_SECRET_MESSAGING_USER
        )
        assert callback_kind('something_else;1') is None
