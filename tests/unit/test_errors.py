"""Unit tests for Rust-style error formatting and the usecase error taxonomy."""

from __future__ import annotations

import sys
from io import StringIO
from unittest import mock

import pytest

from relayq.core.errors import (
    ConfigurationError,
    ErrorCode,
    MultipleValidationErrors,
    RecordNotFound,
    RegistryError,
    RelayqError,
    UsecaseError,
    UsecaseErrorKind,
    ValidationReport,
    install_error_handler,
    raise_collected,
    uninstall_error_handler,
)

pytestmark = pytest.mark.unit


def _make_error(**overrides: object) -> ConfigurationError:
    fields: dict[str, object] = {
        'message': "invalid cron spec for schedule 'memes'",
        'code': ErrorCode.CONFIG_INVALID_SCHEDULE,
        'notes': ["croniter rejected '61 * * * *'"],
        'help_text': "use a five-field cron expression, e.g. '0 9 * * *'",
    }
    fields.update(overrides)
    return ConfigurationError(**fields)  # type: ignore[arg-type]


class TestRelayqErrorFormatting:
    """Tests for RelayqError.format_rust_style()."""

    def test_header_contains_code_and_message(self) -> None:
        text = _make_error().format_rust_style(use_colors=False)
        assert "error[E205]: invalid cron spec for schedule 'memes'" in text

    def test_notes_and_help_rendered(self) -> None:
        text = _make_error().format_rust_style(use_colors=False)
        assert "= note: croniter rejected '61 * * * *'" in text
        assert '= help:' in text
        assert "use a five-field cron expression, e.g. '0 9 * * *'" in text

    def test_without_code(self) -> None:
        text = _make_error(code=None).format_rust_style(use_colors=False)
        assert 'error: invalid cron spec' in text

    def test_multiline_note_is_indented(self) -> None:
        text = _make_error(notes=['first\nsecond']).format_rust_style(use_colors=False)
        assert 'note: first' in text
        assert '          second' in text

    def test_str_has_no_ansi_codes(self) -> None:
        assert '\033[' not in str(_make_error())

    def test_colors_when_requested(self) -> None:
        assert '\033[' in _make_error().format_rust_style(use_colors=True)

    def test_with_note_is_fluent(self) -> None:
        error = _make_error(notes=[])
        assert error.with_note('extra') is error
        assert error.notes == ['extra']

    def test_subclasses_are_relayq_errors(self) -> None:
        assert issubclass(ConfigurationError, RelayqError)
        assert issubclass(RegistryError, RelayqError)


class TestRaiseCollected:
    """Tests for ValidationReport + raise_collected()."""

    def test_no_errors_is_noop(self) -> None:
        raise_collected(ValidationReport('config'))

    def test_single_error_raised_as_is(self) -> None:
        report = ValidationReport('config')
        error = _make_error()
        report.add(error)

        with pytest.raises(ConfigurationError) as exc_info:
            raise_collected(report)
        assert exc_info.value is error

    def test_multiple_errors_wrapped(self) -> None:
        report = ValidationReport('config')
        report.add(_make_error())
        report.add(_make_error(code=ErrorCode.CONFIG_MISSING_VALUE, message='missing'))

        with pytest.raises(MultipleValidationErrors) as exc_info:
            raise_collected(report)

        text = str(exc_info.value)
        assert 'error[E205]' in text
        assert 'error[E212]: missing' in text
        assert 'aborting config due to 2 previous errors' in text


class TestErrorHandler:
    """Tests for install_error_handler()/uninstall_error_handler()."""

    def test_install_and_uninstall(self) -> None:
        original = sys.excepthook
        try:
            install_error_handler()
            assert sys.excepthook.__name__ == '_relayq_excepthook'
            uninstall_error_handler()
            assert sys.excepthook.__name__ != '_relayq_excepthook'
        finally:
            sys.excepthook = original

    def test_hook_renders_relayq_errors(self) -> None:
        original = sys.excepthook
        try:
            install_error_handler()
            stderr = StringIO()
            with mock.patch('sys.stderr', stderr):
                error = _make_error()
                sys.excepthook(type(error), error, None)
            assert 'error[E205]' in stderr.getvalue()
        finally:
            sys.excepthook = original


class TestUsecaseError:
    """Tests for the usecase taxonomy."""

    def test_internal_defaults_to_database_message(self) -> None:
        error = UsecaseError.internal()
        assert error.kind is UsecaseErrorKind.INTERNAL
        assert error.message == 'operation failed, database error'

    def test_not_found_default_message(self) -> None:
        assert UsecaseError.not_found() == UsecaseError(UsecaseErrorKind.NOT_FOUND, 'not found')

    def test_frozen(self) -> None:
        error = UsecaseError.forbidden()
        with pytest.raises(AttributeError):
            error.message = 'changed'  # type: ignore[misc]

    def test_record_not_found_message(self) -> None:
        exc = RecordNotFound('telegram_user', 42)
        assert str(exc) == 'telegram_user 42 not found'
        assert exc.entity == 'telegram_user'
        assert exc.key == 42
        assert isinstance(exc, LookupError)
