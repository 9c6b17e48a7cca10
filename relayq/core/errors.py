"""Error types for relayq.

Two families live here:

- Startup/validation errors (``RelayqError`` and subclasses) rendered in a
  compiler-style layout so misconfiguration is obvious at boot.
- The usecase taxonomy (``UsecaseErrorKind`` / ``UsecaseError``) returned by
  business-logic functions as a ``(kind, message)`` pair, plus the runtime
  exceptions raised by collaborators and task handlers.
"""

from __future__ import annotations

import os
import sys
import traceback
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Error codes for startup/validation errors.

    Organized by category:
    - E200-E299: Config/broker errors
    - E300-E399: Registry errors
    """

    # Config/broker (E200-E299)
    BROKER_INVALID_URL = 'E203'
    CONFIG_INVALID_SCHEDULE = 'E205'
    CONFIG_INVALID_POLICY = 'E210'
    CONFIG_MISSING_VALUE = 'E212'

    # Registry (E300-E399)
    HANDLER_NOT_REGISTERED = 'E300'
    HANDLER_DUPLICATE_KIND = 'E301'
    POLICY_NOT_REGISTERED = 'E302'


class _Colors:
    """ANSI escape codes for terminal colors."""

    RESET = '\033[0m'
    BOLD = '\033[1m'
    RED = '\033[91m'
    BLUE = '\033[94m'
    GREEN = '\033[92m'
    DIM = '\033[2m'


class _NoColors:
    RESET = ''
    BOLD = ''
    RED = ''
    BLUE = ''
    GREEN = ''
    DIM = ''


def _should_use_colors() -> bool:
    if os.environ.get('RELAYQ_FORCE_COLOR', '').lower() in ('1', 'true', 'yes'):
        return True
    # https://no-color.org/
    if os.environ.get('NO_COLOR') is not None:
        return False
    return hasattr(sys.stderr, 'isatty') and sys.stderr.isatty()


def _should_show_verbose() -> bool:
    return os.environ.get('RELAYQ_VERBOSE', '').lower() in ('1', 'true', 'yes')


@dataclass
class RelayqError(Exception):
    """Base exception for relayq startup/validation errors.

    Renders as::

        error[E205]: invalid cron spec for schedule 'memes'
           = note: croniter rejected '61 * * * *'

           = help:
                use a five-field cron expression, e.g. '0 9 * * *'
    """

    message: str
    code: ErrorCode | None = None
    notes: list[str] = field(default_factory=lambda: [])
    help_text: str | None = None

    def __post_init__(self) -> None:
        super().__init__(self.message)

    def with_note(self, note: str) -> RelayqError:
        """Add a note to the error (fluent API)."""
        self.notes.append(note)
        return self

    def format_rust_style(self, use_colors: bool | None = None) -> str:
        if use_colors is None:
            use_colors = _should_use_colors()
        c = _Colors if use_colors else _NoColors

        code_part = f'[{self.code.value}]' if self.code else ''
        lines: list[str] = ['', f'{c.BOLD}{c.RED}error{code_part}:{c.RESET} {self.message}']

        for note in self.notes:
            first, *rest = note.split('\n')
            lines.append(f'   {c.BLUE}={c.RESET} {c.BOLD}{c.BLUE}note{c.RESET}: {first}')
            lines.extend(f'          {line}' for line in rest)

        if self.help_text:
            lines.append('')
            lines.append(f'   {c.BLUE}={c.RESET} {c.BOLD}{c.GREEN}help{c.RESET}:')
            lines.extend(f'        {line}' for line in self.help_text.split('\n'))

        return '\n'.join(lines)

    def __str__(self) -> str:
        # Plain text keeps log files and JSON payloads free of ANSI codes
        return self.format_rust_style(use_colors=False)


@dataclass
class ConfigurationError(RelayqError):
    """Raised when configuration is invalid."""

    pass


@dataclass
class RegistryError(RelayqError):
    """Raised when a handler or policy lookup/registration fails."""

    pass


class ValidationReport:
    """Collects multiple RelayqError instances within a validation phase."""

    def __init__(self, phase_name: str) -> None:
        self.phase_name: str = phase_name
        self.errors: list[RelayqError] = []

    def add(self, error: RelayqError) -> None:
        self.errors.append(error)

    def has_errors(self) -> bool:
        return len(self.errors) > 0

    def format_rust_style(self, use_colors: bool | None = None) -> str:
        if use_colors is None:
            use_colors = _should_use_colors()
        c = _Colors if use_colors else _NoColors
        parts = [error.format_rust_style(use_colors=use_colors) for error in self.errors]
        parts.append(
            f'\n{c.BOLD}{c.RED}error{c.RESET}: aborting {self.phase_name} '
            f'due to {len(self.errors)} previous errors'
        )
        return '\n'.join(parts)

    def __str__(self) -> str:
        return self.format_rust_style(use_colors=False)


@dataclass
class MultipleValidationErrors(RelayqError):
    """Wraps a ValidationReport containing 2+ errors."""

    report: ValidationReport = field(default_factory=lambda: ValidationReport(''))

    def format_rust_style(self, use_colors: bool | None = None) -> str:
        return self.report.format_rust_style(use_colors=use_colors)

    def __str__(self) -> str:
        return self.format_rust_style(use_colors=False)


def raise_collected(report: ValidationReport) -> None:
    """Raise collected errors.

    - 0 errors: no-op
    - 1 error: raises the original error
    - 2+ errors: raises MultipleValidationErrors wrapping the report
    """
    count = len(report.errors)
    if count == 0:
        return
    if count == 1:
        raise report.errors[0]
    raise MultipleValidationErrors(
        message=f'aborting due to {count} previous errors',
        report=report,
    )


_original_excepthook = sys.excepthook


def _relayq_excepthook(
    exc_type: type[BaseException],
    exc_value: BaseException,
    exc_tb: Any,
) -> None:
    if not isinstance(exc_value, RelayqError):
        _original_excepthook(exc_type, exc_value, exc_tb)
        return
    print(exc_value.format_rust_style(), file=sys.stderr)
    if _should_show_verbose():
        print(file=sys.stderr)
        traceback.print_exception(exc_type, exc_value, exc_tb, file=sys.stderr)


def install_error_handler() -> None:
    """Install the exception hook that renders RelayqError in compiler style."""
    sys.excepthook = _relayq_excepthook


def uninstall_error_handler() -> None:
    sys.excepthook = _original_excepthook


# =============================================================================
# Usecase taxonomy
# =============================================================================


class UsecaseErrorKind(str, Enum):
    VALIDATION = 'validation'
    NOT_FOUND = 'not_found'
    FORBIDDEN = 'forbidden'
    ALREADY_EXISTS = 'already_exists'
    INTERNAL = 'internal'


MSG_DATABASE_ERROR = 'operation failed, database error'
MSG_TASK_REGISTRATION = 'failed to register task'
MSG_NOT_FOUND = 'not found'
MSG_FORBIDDEN = 'forbidden'


@dataclass(frozen=True)
class UsecaseError:
    """A business-logic failure: what went wrong and what to tell the user."""

    kind: UsecaseErrorKind
    message: str

    @classmethod
    def internal(cls, message: str = MSG_DATABASE_ERROR) -> UsecaseError:
        return cls(UsecaseErrorKind.INTERNAL, message)

    @classmethod
    def not_found(cls, message: str = MSG_NOT_FOUND) -> UsecaseError:
        return cls(UsecaseErrorKind.NOT_FOUND, message)

    @classmethod
    def forbidden(cls, message: str = MSG_FORBIDDEN) -> UsecaseError:
        return cls(UsecaseErrorKind.FORBIDDEN, message)

    @classmethod
    def validation(cls, message: str) -> UsecaseError:
        return cls(UsecaseErrorKind.VALIDATION, message)

    @classmethod
    def already_exists(cls, message: str) -> UsecaseError:
        return cls(UsecaseErrorKind.ALREADY_EXISTS, message)


# =============================================================================
# Runtime exceptions
# =============================================================================


class RecordNotFound(LookupError):
    """Raised by store adapters when the requested record does not exist."""

    def __init__(self, entity: str, key: Any) -> None:
        super().__init__(f'{entity} {key!r} not found')
        self.entity = entity
        self.key = key


class TaskSerializationError(ValueError):
    """Raised when a payload cannot be encoded or does not match its task kind."""


class PayloadDecodeError(ValueError):
    """Raised when a stored payload does not decode into its kind's variant."""


class MailDeliveryError(Exception):
    """Raised when a provider (or the whole failover chain) fails to send."""


class GatewayError(Exception):
    """Raised when the bot gateway rejects or fails a request."""
