"""Typed error types for broker operations.

Brokers raise ``BrokerOperationError`` for operational failures (connection
loss, schema setup, bad SQL). The ``retryable`` flag tells callers whether
backing off and trying again can help. Callers decide what to do with it:

* ``TaskQueue.enqueue`` lets it propagate to the enqueuing caller.
* The worker loop backs off on retryable errors and re-raises the rest.
* The health check and the stale-task sweep only log it.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class BrokerErrorCode(str, Enum):
    """Categorized broker operation failure codes."""

    SCHEMA_INIT_FAILED = 'SCHEMA_INIT_FAILED'
    ENQUEUE_FAILED = 'ENQUEUE_FAILED'
    CLAIM_FAILED = 'CLAIM_FAILED'
    FINALIZE_FAILED = 'FINALIZE_FAILED'
    RECOVERY_FAILED = 'RECOVERY_FAILED'
    TASK_INFO_QUERY_FAILED = 'TASK_INFO_QUERY_FAILED'
    PING_FAILED = 'PING_FAILED'
    CLOSE_FAILED = 'CLOSE_FAILED'


@dataclass
class BrokerOperationError(Exception):
    """Raised by brokers when an operation fails.

    Fields:
        code: which operation category failed
        message: human-readable description
        retryable: whether the caller can retry this operation
        exception: the original cause (if any)
    """

    code: BrokerErrorCode
    message: str
    retryable: bool
    exception: BaseException | None = None

    def __post_init__(self) -> None:
        super().__init__(self.message)

    def __str__(self) -> str:
        return f'{self.code.value}: {self.message}'
