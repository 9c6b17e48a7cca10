# relayq/core/types/status.py
"""
Core enums shared by the queue, the brokers and the domain models.
This module should not import from other application modules.
"""

from enum import Enum


class TaskStatus(Enum):
    """Task execution status"""

    PENDING = 'pending'  # Waiting in its lane; eligible once next_run_at has passed.

    RUNNING = 'running'  # Claimed by a worker and being handled.

    COMPLETED = 'completed'  # Handler returned normally.

    ARCHIVED = 'archived'  # Dead-lettered: retry budget exhausted or undecodable.

    @property
    def is_terminal(self) -> bool:
        """Whether this status represents a final state (no further transitions)."""
        return self in TASK_TERMINAL_STATES


TASK_TERMINAL_STATES: frozenset[TaskStatus] = frozenset({
    TaskStatus.COMPLETED,
    TaskStatus.ARCHIVED,
})


class Lane(str, Enum):
    """Priority lane. Lanes are serviced in strict order: high, default, low."""

    HIGH = 'high'
    DEFAULT = 'default'
    LOW = 'low'

    @property
    def rank(self) -> int:
        """Lower rank is serviced first."""
        return _LANE_RANKS[self]


_LANE_RANKS: dict[Lane, int] = {
    Lane.HIGH: 0,
    Lane.DEFAULT: 1,
    Lane.LOW: 2,
}

LANES_BY_PRIORITY: tuple[Lane, ...] = (Lane.HIGH, Lane.DEFAULT, Lane.LOW)


class MailStatus(str, Enum):
    ON_PROGRESS = 'ON_PROGRESS'
    SUCCESS = 'SUCCESS'
    FAILED = 'FAILED'
