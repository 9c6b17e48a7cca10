# relayq/core/worker/context.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from relayq.core.models.kinds import TaskKind


@dataclass(frozen=True)
class TaskContext:
    """
    Per-attempt information handed to a handler.

    - task_id: str
    - kind: TaskKind
    - attempt: int # 1-based number of this invocation
    - max_attempts: int
    - timeout: timedelta # the handler is cancelled once it elapses
    - deadline: datetime # started_at + timeout, UTC
    """

    task_id: str
    kind: TaskKind
    attempt: int
    max_attempts: int
    timeout: timedelta
    deadline: datetime

    @property
    def is_last_attempt(self) -> bool:
        return self.attempt >= self.max_attempts
