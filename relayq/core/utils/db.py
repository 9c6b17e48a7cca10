# relayq/core/utils/db.py
"""Classification of transient database errors."""

from __future__ import annotations

from psycopg import InterfaceError, OperationalError
from sqlalchemy.exc import DBAPIError, OperationalError as SAOperationalError


def is_retryable_connection_error(exc: BaseException) -> bool:
    """Check whether an exception is a transient connection error worth retrying."""
    match exc:
        case OperationalError() | InterfaceError() | SAOperationalError():
            return True
        case DBAPIError() as db_exc:
            return bool(
                getattr(db_exc, 'connection_invalidated', False)
                or getattr(db_exc, 'is_disconnect', False)
            )
        case ConnectionError() | TimeoutError():
            return True
        case _:
            return False
