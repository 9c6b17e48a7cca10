# relayq/core/scheduler/service.py
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Callable, Optional

from pydantic import BaseModel

from relayq.core.errors import ConfigurationError, ErrorCode
from relayq.core.logging import get_logger
from relayq.core.models.kinds import TaskKind
from relayq.core.scheduler.cron import (
    calculate_next_run,
    is_valid_cron_spec,
    should_run_now,
)
from relayq.core.types.status import Lane

if TYPE_CHECKING:
    from relayq.core.queue import TaskQueue

logger = get_logger('scheduler')


@dataclass
class ScheduledTask:
    """
    A recurring enqueue.

    - name: str # unique label used in logs
    - cron_spec: str # five-field cron expression
    - kind: TaskKind # kind enqueued on each tick
    - payload_factory: Callable[[], BaseModel] # builds a fresh payload per tick
    - lane: Lane
    - next_run_at: datetime # UTC instant of the next tick
    """

    name: str
    cron_spec: str
    kind: TaskKind
    payload_factory: Callable[[], BaseModel]
    lane: Lane = Lane.DEFAULT
    next_run_at: Optional[datetime] = field(default=None)


class Scheduler:
    """
    Enqueues registered tasks on their cron ticks.

    Runs next to the worker. A tick whose payload factory or enqueue fails is
    logged and dropped; the next run is always computed from the current
    time, so missed ticks are never replayed.
    """

    def __init__(
        self,
        queue: TaskQueue,
        check_interval_seconds: float = 1.0,
        tz: str = 'UTC',
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.queue = queue
        self.check_interval_seconds = check_interval_seconds
        self.tz = tz
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._entries: dict[str, ScheduledTask] = {}
        self._stop = asyncio.Event()

    @property
    def entries(self) -> list[ScheduledTask]:
        return list(self._entries.values())

    def register(
        self,
        name: str,
        cron_spec: str,
        kind: TaskKind,
        payload_factory: Callable[[], BaseModel],
        lane: Lane = Lane.DEFAULT,
    ) -> ScheduledTask:
        if not is_valid_cron_spec(cron_spec):
            raise ConfigurationError(
                message=f"invalid cron spec for schedule '{name}'",
                code=ErrorCode.CONFIG_INVALID_SCHEDULE,
                notes=[f'croniter rejected {cron_spec!r}'],
                help_text="use a five-field cron expression, e.g. '0 9 * * *'",
            )
        if name in self._entries:
            raise ConfigurationError(
                message=f"schedule '{name}' is already registered",
                code=ErrorCode.CONFIG_INVALID_SCHEDULE,
            )

        entry = ScheduledTask(
            name=name,
            cron_spec=cron_spec,
            kind=kind,
            payload_factory=payload_factory,
            lane=lane,
            next_run_at=calculate_next_run(cron_spec, self._clock(), self.tz),
        )
        self._entries[name] = entry
        logger.info(
            f"Registered schedule '{name}' ({cron_spec}) for {kind.value}, "
            f'next run at {entry.next_run_at}'
        )
        return entry

    async def run_forever(self) -> None:
        """Main scheduler loop."""
        logger.info(
            f'Starting scheduler loop with {len(self._entries)} schedules, '
            f'check_interval={self.check_interval_seconds}s'
        )
        while not self._stop.is_set():
            await self.run_once()
            try:
                await asyncio.wait_for(
                    self._stop.wait(), timeout=self.check_interval_seconds
                )
                break
            except asyncio.TimeoutError:
                continue
        logger.info('Scheduler stopped')

    async def run_once(self, now: Optional[datetime] = None) -> list[str]:
        """Enqueue every due entry once; returns the ids of the tasks enqueued."""
        check_time = now or self._clock()
        enqueued: list[str] = []
        for entry in self._entries.values():
            if entry.next_run_at is None or not should_run_now(
                entry.next_run_at, check_time
            ):
                continue
            try:
                task_id = await self.queue.enqueue(
                    entry.kind, entry.payload_factory(), entry.lane
                )
            except Exception as e:
                logger.error(
                    f"Schedule '{entry.name}' tick skipped, enqueue failed: {e}"
                )
            else:
                enqueued.append(task_id)
                logger.info(
                    f"Schedule '{entry.name}' executed: enqueued task {task_id}"
                )
            entry.next_run_at = calculate_next_run(entry.cron_spec, check_time, self.tz)
        return enqueued

    async def stop(self) -> None:
        self._stop.set()

    def request_stop(self) -> None:
        """Request scheduler to stop gracefully."""
        self._stop.set()
