# relayq/core/models/tasks.py
from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, replace
from typing import Optional

from relayq.core.models.kinds import TaskKind
from relayq.core.models.policy import TaskPolicy
from relayq.core.types.status import Lane, TaskStatus


@dataclass(frozen=True)
class TaskRecord:
    """
    A task as stored by a broker.

    - id: str # uuid4, assigned by the broker
    - kind: TaskKind # routing key
    - payload: str # JSON dump of the kind's payload variant
    - lane: Lane # high, default or low
    - max_retry: int # copied from the policy table at enqueue time
    - timeout_seconds: float # copied from the policy table at enqueue time
    - backoff_unit_seconds: int # linear backoff unit, copied from the policy table
    - status: TaskStatus
    - attempts: int # handler invocations so far
    - enqueued_at: datetime # FIFO key within a lane
    - next_run_at: datetime # not eligible for claiming before this instant
    - last_error: str | None # message of the most recent failure
    - claimed_at: datetime | None # start of the current attempt; set while RUNNING
    """

    id: str
    kind: TaskKind
    payload: str
    lane: Lane
    max_retry: int
    timeout_seconds: float
    backoff_unit_seconds: int
    status: TaskStatus
    attempts: int
    enqueued_at: dt.datetime
    next_run_at: dt.datetime
    last_error: Optional[str] = None
    claimed_at: Optional[dt.datetime] = None

    @property
    def policy(self) -> TaskPolicy:
        """The policy captured when the task was enqueued."""
        return TaskPolicy(
            max_retry=self.max_retry,
            timeout_seconds=self.timeout_seconds,
            backoff_unit_seconds=self.backoff_unit_seconds,
        )

    def evolve(self, **changes: object) -> TaskRecord:
        return replace(self, **changes)  # type: ignore[arg-type]

