# relayq/core/worker/worker.py
from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any, Callable, Optional

import psutil

from relayq.core.brokers.base import Broker
from relayq.core.brokers.result_types import BrokerOperationError
from relayq.core.errors import PayloadDecodeError
from relayq.core.logging import get_logger
from relayq.core.models.payloads import decode_payload
from relayq.core.models.tasks import TaskRecord
from relayq.core.registry.handlers import HandlerRegistry
from relayq.core.worker.config import WorkerConfig
from relayq.core.worker.context import TaskContext

logger = get_logger('worker')

_MAX_RECOVERY_PERMANENT_FAILURES = 3


def _collect_psutil_metrics() -> tuple[float, float, float]:
    """Collect process metrics. Blocking, must run in a thread."""
    process = psutil.Process()
    memory_info = process.memory_info()
    return (
        memory_info.rss / 1024 / 1024,
        process.memory_percent(),
        process.cpu_percent(interval=0.1),
    )


class Worker:
    """
    Async dispatcher that:
      - Runs `concurrency` consumer loops claiming tasks in strict lane order
      - Decodes each payload into its kind's variant and calls the registered
        handler under the policy timeout
      - Completes, retries (linear backoff) or archives the task
      - Pings the broker periodically and only logs when it is unhealthy
      - Sweeps for RUNNING tasks abandoned by a dead worker, at startup and then
        periodically, so they are retried or archived like any failed attempt

    Stop is cooperative: consumers stop claiming, in-flight handlers finish,
    then the broker is closed.
    """

    def __init__(
        self,
        broker: Broker,
        registry: HandlerRegistry,
        cfg: Optional[WorkerConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.broker = broker
        self.registry = registry
        self.cfg = cfg or WorkerConfig()
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._stop = asyncio.Event()
        self._consumer_tasks: set[asyncio.Task[Any]] = set()
        self._service_tasks: set[asyncio.Task[Any]] = set()
        self._close_lock = asyncio.Lock()
        self._closed = False

    def request_stop(self) -> None:
        """Request worker to stop gracefully."""
        self._stop.set()

    @property
    def stopping(self) -> bool:
        return self._stop.is_set()

    def _spawn_background(
        self,
        coro: Any,
        *,
        name: str,
        consumer: bool = False,
    ) -> asyncio.Task[Any]:
        """Create a tracked background task with automatic cleanup."""
        task_group = self._consumer_tasks if consumer else self._service_tasks
        task = asyncio.create_task(coro, name=name)
        task_group.add(task)

        def _on_done(t: asyncio.Task[Any]) -> None:
            task_group.discard(t)
            if t.cancelled():
                return
            exc = t.exception()
            if exc is not None:
                logger.error(f'Background task {t.get_name()!r} failed: {exc}')

        task.add_done_callback(_on_done)
        return task

    async def _sleep_with_stop(self, delay_seconds: float) -> None:
        try:
            await asyncio.wait_for(self._stop.wait(), timeout=delay_seconds)
        except asyncio.TimeoutError:
            return

    async def run_forever(self) -> None:
        """Start the consumers and the health check, then wait for stop."""
        logger.info(f'Worker started with concurrency={self.cfg.concurrency}')
        for i in range(self.cfg.concurrency):
            self._spawn_background(
                self._consumer_loop(), name=f'relayq-consumer-{i}', consumer=True
            )
        self._spawn_background(self._health_check_loop(), name='relayq-health')
        self._spawn_background(self._recovery_loop(), name='relayq-recovery')
        try:
            await self._stop.wait()
        finally:
            await self.stop()

    async def stop(self) -> None:
        self._stop.set()

        # Consumers exit after their current task; let them drain
        if self._consumer_tasks:
            consumers = tuple(self._consumer_tasks)
            await asyncio.gather(*consumers, return_exceptions=True)

        # Service loops are safe to cancel
        if self._service_tasks:
            service_tasks = tuple(self._service_tasks)
            for task in service_tasks:
                task.cancel()
            await asyncio.gather(*service_tasks, return_exceptions=True)
            self._service_tasks.clear()

        async with self._close_lock:
            if self._closed:
                return
            self._closed = True
            try:
                await self.broker.close()
            except BrokerOperationError as e:
                logger.error(f'Broker close failed: {e}')
            logger.info('Worker stopped')

    # ----------------- consumers -----------------

    async def _wait_for_work_or_stop(self) -> None:
        work = asyncio.create_task(
            self.broker.wait_for_work(self.cfg.poll_interval_seconds)
        )
        stop = asyncio.create_task(self._stop.wait())
        try:
            await asyncio.wait({work, stop}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for t in (work, stop):
                t.cancel()
            await asyncio.gather(work, stop, return_exceptions=True)

    async def _consumer_loop(self) -> None:
        while not self._stop.is_set():
            try:
                processed = await self.process_next()
            except asyncio.CancelledError:
                raise
            except BrokerOperationError as exc:
                if not exc.retryable:
                    logger.error(f'Consumer stopping on broker error: {exc}')
                    self.request_stop()
                    raise
                logger.error(
                    f'Consumer broker error: {exc}. '
                    f'Retrying in {self.cfg.poll_interval_seconds}s'
                )
                await self._sleep_with_stop(self.cfg.poll_interval_seconds)
                continue
            if not processed:
                await self._wait_for_work_or_stop()

    async def process_next(self) -> bool:
        """Claim and handle one task. Returns False when no task was eligible."""
        record = await self.broker.claim()
        if record is None:
            return False
        await self._process_one(record)
        return True

    async def _process_one(self, record: TaskRecord) -> None:
        try:
            payload = decode_payload(record.kind, record.payload)
        except PayloadDecodeError as exc:
            # Retrying cannot fix a malformed payload
            logger.error(
                f'Task {record.id} ({record.kind.value}) archived, payload not decodable: {exc}'
            )
            await self.broker.archive(record.id, str(exc))
            return

        started_at = self._clock()
        policy = record.policy
        ctx = TaskContext(
            task_id=record.id,
            kind=record.kind,
            attempt=record.attempts,
            max_attempts=policy.max_attempts,
            timeout=policy.timeout,
            deadline=started_at + policy.timeout,
        )

        try:
            handler = self.registry[record.kind]
            await asyncio.wait_for(handler(ctx, payload), timeout=record.timeout_seconds)
        except asyncio.TimeoutError:
            await self._handle_failure(
                record, f'timed out after {record.timeout_seconds}s'
            )
            return
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            await self._handle_failure(record, f'{type(exc).__name__}: {exc}')
            return

        await self.broker.complete(record.id)
        logger.debug(
            f'Task {record.id} ({record.kind.value}) completed on attempt {record.attempts}'
        )

    async def _handle_failure(self, record: TaskRecord, error: str) -> None:
        policy = record.policy
        attempt = record.attempts
        if policy.should_retry(attempt):
            run_at = self._clock() + policy.retry_delay(attempt)
            logger.warning(
                f'Task {record.id} ({record.kind.value}) attempt '
                f'{attempt}/{policy.max_attempts} failed: {error}; retrying at {run_at}'
            )
            await self.broker.retry(record.id, error, run_at)
            return

        logger.error(
            f'Task {record.id} ({record.kind.value}) archived after '
            f'{attempt} attempt(s): {error}'
        )
        await self.broker.archive(record.id, error)

    # ----------------- health -----------------

    async def _health_check_loop(self) -> None:
        try:
            while not self._stop.is_set():
                await self._sleep_with_stop(self.cfg.health_check_interval_seconds)
                if self._stop.is_set():
                    return
                await self.check_health()
        except asyncio.CancelledError:
            return

    async def check_health(self) -> bool:
        """Ping the broker. Failures are logged; dispatch carries on regardless."""
        try:
            await self.broker.ping()
        except Exception as e:
            logger.error(f'unhealthy: {e}')
            return False

        if self.cfg.collect_metrics:
            try:
                rss_mb, mem_pct, cpu_pct = await asyncio.to_thread(
                    _collect_psutil_metrics
                )
            except psutil.Error as e:
                logger.warning(f'Failed to collect process metrics: {e}')
            else:
                logger.debug(
                    f'healthy: rss={rss_mb:.1f}MB mem={mem_pct:.1f}% cpu={cpu_pct:.1f}%'
                )
        return True

    # ----------------- recovery -----------------

    async def _recovery_loop(self) -> None:
        permanent_failures = 0
        try:
            while not self._stop.is_set():
                try:
                    await self.recover_stale_tasks()
                    permanent_failures = 0
                except BrokerOperationError as e:
                    if e.retryable:
                        permanent_failures = 0
                        logger.warning(f'Stale task recovery failed, retrying next sweep: {e}')
                    else:
                        permanent_failures += 1
                        if permanent_failures >= _MAX_RECOVERY_PERMANENT_FAILURES:
                            logger.critical(
                                f'Stale task recovery disabled after {permanent_failures} '
                                f'consecutive permanent failures. Last error: {e}'
                            )
                            return
                        logger.error(f'Stale task recovery failed: {e}')
                await self._sleep_with_stop(self.cfg.recovery_interval_seconds)
        except asyncio.CancelledError:
            return

    async def recover_stale_tasks(self) -> tuple[int, int]:
        """Requeue or archive RUNNING tasks whose worker is gone. Returns (requeued, archived)."""
        requeued, archived = await self.broker.recover_stale(self.cfg.stale_grace_seconds)
        if requeued:
            logger.warning(f'Requeued {requeued} stale RUNNING task(s)')
        if archived:
            logger.error(f'Archived {archived} stale RUNNING task(s) with no attempts left')
        return requeued, archived
