# relayq/core/brokers/base.py
from __future__ import annotations

import datetime as dt
from typing import Optional, Protocol

from relayq.core.models.kinds import TaskKind
from relayq.core.models.policy import TaskPolicy
from relayq.core.models.tasks import TaskRecord
from relayq.core.types.status import Lane

# last_error of a task recovered from a dead worker
STALE_TASK_ERROR = 'worker lost the task before the attempt finished'


class Broker(Protocol):
    """
    Lane storage and retry bookkeeping for tasks.

    `claim` must return the oldest eligible PENDING task of the highest-ranked
    lane that has one, and mark it RUNNING with its attempt counter bumped.
    `retry` and `archive` only act on RUNNING tasks.
    """

    async def enqueue(
        self, kind: TaskKind, payload: str, lane: Lane, policy: TaskPolicy
    ) -> str: ...

    async def claim(self) -> Optional[TaskRecord]: ...

    async def wait_for_work(self, timeout: float) -> None:
        """Block until new work may be available or `timeout` elapses."""
        ...

    async def complete(self, task_id: str) -> None: ...

    async def retry(self, task_id: str, error: str, run_at: dt.datetime) -> None: ...

    async def archive(self, task_id: str, error: str) -> None: ...

    async def recover_stale(self, grace_seconds: float) -> tuple[int, int]:
        """
        Settle RUNNING tasks whose claim is older than their timeout plus
        `grace_seconds`. Each counts as a failed attempt: requeued while
        attempts remain, archived otherwise. Returns (requeued, archived).
        """
        ...

    async def get_task(self, task_id: str) -> Optional[TaskRecord]: ...

    async def ping(self) -> None:
        """Raise BrokerOperationError if the backend is unreachable."""
        ...

    async def close(self) -> None: ...
