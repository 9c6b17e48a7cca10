# relayq/core/brokers/memory.py
from __future__ import annotations

import asyncio
import datetime as dt
import itertools
import uuid
from typing import Callable, Optional

from relayq.core.brokers.base import STALE_TASK_ERROR
from relayq.core.brokers.result_types import BrokerErrorCode, BrokerOperationError
from relayq.core.logging import get_logger
from relayq.core.models.kinds import TaskKind
from relayq.core.models.policy import TaskPolicy
from relayq.core.models.tasks import TaskRecord
from relayq.core.types.status import LANES_BY_PRIORITY, Lane, TaskStatus

logger = get_logger('broker')


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


class MemoryBroker:
    """
    In-process broker for development and tests.

    Tasks live in a dict keyed by id; each lane keeps the ids of its PENDING
    tasks. Claims scan lanes in priority order and take the eligible task
    with the smallest (enqueued_at, sequence) key, which gives FIFO per lane.
    A retried task re-enters its lane with enqueued_at set to its next run
    time, so it queues behind work that was already waiting.

    The clock is injectable so retry delays can be exercised without sleeping.
    """

    def __init__(self, clock: Callable[[], dt.datetime] = _utcnow) -> None:
        self._clock = clock
        self._tasks: dict[str, TaskRecord] = {}
        self._lanes: dict[Lane, list[str]] = {lane: [] for lane in LANES_BY_PRIORITY}
        self._order: dict[str, tuple[dt.datetime, int]] = {}
        self._seq = itertools.count()
        self._changed = asyncio.Condition()
        self._closed = False

    def _ensure_open(self, code: BrokerErrorCode) -> None:
        if self._closed:
            raise BrokerOperationError(
                code=code, message='memory broker is closed', retryable=False
            )

    async def _notify(self) -> None:
        async with self._changed:
            self._changed.notify_all()

    def _push(self, record: TaskRecord) -> None:
        self._tasks[record.id] = record
        self._order[record.id] = (record.enqueued_at, next(self._seq))
        self._lanes[record.lane].append(record.id)

    async def enqueue(
        self, kind: TaskKind, payload: str, lane: Lane, policy: TaskPolicy
    ) -> str:
        self._ensure_open(BrokerErrorCode.ENQUEUE_FAILED)
        now = self._clock()
        record = TaskRecord(
            id=str(uuid.uuid4()),
            kind=kind,
            payload=payload,
            lane=lane,
            max_retry=policy.max_retry,
            timeout_seconds=policy.timeout_seconds,
            backoff_unit_seconds=policy.backoff_unit_seconds,
            status=TaskStatus.PENDING,
            attempts=0,
            enqueued_at=now,
            next_run_at=now,
        )
        self._push(record)
        await self._notify()
        return record.id

    async def claim(self) -> Optional[TaskRecord]:
        self._ensure_open(BrokerErrorCode.CLAIM_FAILED)
        now = self._clock()
        for lane in LANES_BY_PRIORITY:
            eligible = [
                task_id
                for task_id in self._lanes[lane]
                if self._tasks[task_id].next_run_at <= now
            ]
            if not eligible:
                continue
            task_id = min(eligible, key=self._order.__getitem__)
            self._lanes[lane].remove(task_id)
            claimed = self._tasks[task_id].evolve(
                status=TaskStatus.RUNNING,
                attempts=self._tasks[task_id].attempts + 1,
                claimed_at=now,
            )
            self._tasks[task_id] = claimed
            return claimed
        return None

    async def wait_for_work(self, timeout: float) -> None:
        async with self._changed:
            try:
                await asyncio.wait_for(self._changed.wait(), timeout=timeout)
            except asyncio.TimeoutError:
                return

    def _running(self, task_id: str) -> Optional[TaskRecord]:
        record = self._tasks.get(task_id)
        if record is None or record.status is not TaskStatus.RUNNING:
            logger.warning(f'Task {task_id} is not RUNNING; ignoring state change')
            return None
        return record

    async def complete(self, task_id: str) -> None:
        record = self._running(task_id)
        if record is not None:
            self._tasks[task_id] = record.evolve(status=TaskStatus.COMPLETED)

    async def retry(self, task_id: str, error: str, run_at: dt.datetime) -> None:
        record = self._running(task_id)
        if record is None:
            return
        self._push(
            record.evolve(
                status=TaskStatus.PENDING,
                next_run_at=run_at,
                enqueued_at=run_at,
                last_error=error,
            )
        )
        await self._notify()

    async def archive(self, task_id: str, error: str) -> None:
        record = self._running(task_id)
        if record is not None:
            self._tasks[task_id] = record.evolve(
                status=TaskStatus.ARCHIVED, last_error=error
            )

    async def recover_stale(self, grace_seconds: float) -> tuple[int, int]:
        self._ensure_open(BrokerErrorCode.RECOVERY_FAILED)
        now = self._clock()
        requeued = archived = 0
        for record in list(self._tasks.values()):
            if record.status is not TaskStatus.RUNNING or record.claimed_at is None:
                continue
            lease = dt.timedelta(seconds=record.timeout_seconds + grace_seconds)
            if record.claimed_at + lease >= now:
                continue
            if record.policy.should_retry(record.attempts):
                self._push(
                    record.evolve(
                        status=TaskStatus.PENDING,
                        next_run_at=now,
                        enqueued_at=now,
                        claimed_at=None,
                        last_error=STALE_TASK_ERROR,
                    )
                )
                requeued += 1
            else:
                self._tasks[record.id] = record.evolve(
                    status=TaskStatus.ARCHIVED,
                    claimed_at=None,
                    last_error=STALE_TASK_ERROR,
                )
                archived += 1
        if requeued:
            await self._notify()
        return requeued, archived

    async def get_task(self, task_id: str) -> Optional[TaskRecord]:
        return self._tasks.get(task_id)

    async def ping(self) -> None:
        self._ensure_open(BrokerErrorCode.PING_FAILED)

    async def close(self) -> None:
        self._closed = True
        await self._notify()
        logger.info('Memory broker closed')

    # ----- inspection -----

    def tasks(self) -> list[TaskRecord]:
        """All known tasks in enqueue order."""
        return sorted(self._tasks.values(), key=lambda t: self._order[t.id])

    def pending_count(self, lane: Lane | None = None) -> int:
        lanes = [lane] if lane is not None else list(LANES_BY_PRIORITY)
        return sum(len(self._lanes[name]) for name in lanes)
