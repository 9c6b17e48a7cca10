# relayq/core/brokers/postgres.py
from __future__ import annotations

import asyncio
import datetime as dt
import hashlib
import uuid
from typing import Any, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from relayq.core.brokers.base import STALE_TASK_ERROR
from relayq.core.brokers.result_types import BrokerErrorCode, BrokerOperationError
from relayq.core.brokers.sql import (
    ARCHIVE_STALE_RUNNING_SQL,
    CLAIM_SQL,
    MARK_TASK_ARCHIVED_SQL,
    MARK_TASK_COMPLETED_SQL,
    PING_SQL,
    REQUEUE_STALE_RUNNING_SQL,
    SCHEDULE_TASK_RETRY_SQL,
    SCHEMA_ADVISORY_LOCK_SQL,
)
from relayq.core.logging import get_logger
from relayq.core.models.broker import PostgresConfig
from relayq.core.models.kinds import TaskKind
from relayq.core.models.policy import TaskPolicy
from relayq.core.models.task_pg import Base, TaskModel
from relayq.core.models.tasks import TaskRecord
from relayq.core.types.status import Lane, TaskStatus
from relayq.core.utils.db import is_retryable_connection_error


class PostgresBroker:
    """
    PostgreSQL-backed task broker.

    Features:
      - Strict lane priority and per-lane FIFO claims with SKIP LOCKED
      - Retry and archive transitions guarded by status = 'RUNNING'
      - Recovery of RUNNING tasks abandoned by a dead worker
      - Lazy, advisory-lock-guarded schema creation

    Idle workers poll at the worker's poll interval; enqueues made through
    this instance also wake local waiters immediately.
    """

    def __init__(self, config: PostgresConfig):
        self.config = config
        self.logger = get_logger('broker')

        engine_cfg = self.config.model_dump(exclude={'database_url'}, exclude_none=True)
        self.async_engine = create_async_engine(self.config.database_url, **engine_cfg)
        self.session_factory = async_sessionmaker(
            self.async_engine, expire_on_commit=False
        )
        self._initialized = False
        self._init_lock = asyncio.Lock()
        self._work_available = asyncio.Event()

        self.logger.info('PostgresBroker initialized')

    def _schema_advisory_key(self) -> int:
        """Stable 64-bit advisory lock key derived from the database URL."""
        basis = self.config.database_url.encode('utf-8', errors='ignore')
        h = hashlib.sha256(b'relayq-schema:' + basis).digest()
        return int.from_bytes(h[:8], byteorder='big', signed=True)

    @staticmethod
    def _wrap(code: BrokerErrorCode, exc: BaseException) -> BrokerOperationError:
        return BrokerOperationError(
            code=code,
            message=f'{type(exc).__name__}: {exc}',
            retryable=is_retryable_connection_error(exc),
            exception=exc,
        )

    async def _ensure_initialized(self) -> None:
        if self._initialized:
            return
        async with self._init_lock:
            if self._initialized:
                return
            try:
                async with self.async_engine.begin() as conn:
                    # Serialize DDL across workers and producers
                    await conn.execute(
                        SCHEMA_ADVISORY_LOCK_SQL, {'key': self._schema_advisory_key()}
                    )
                    await conn.run_sync(Base.metadata.create_all)
            except (SQLAlchemyError, OSError) as exc:
                raise self._wrap(BrokerErrorCode.SCHEMA_INIT_FAILED, exc) from exc
            self._initialized = True

    async def ensure_schema_initialized(self) -> None:
        """Create the task table if missing. Safe to call repeatedly."""
        await self._ensure_initialized()

    @staticmethod
    def _to_record(row: Any) -> TaskRecord:
        return TaskRecord(
            id=row.id,
            kind=TaskKind(row.kind),
            payload=row.payload,
            lane=Lane(row.lane),
            max_retry=row.max_retry,
            timeout_seconds=row.timeout_seconds,
            backoff_unit_seconds=row.backoff_unit_seconds,
            status=row.status if isinstance(row.status, TaskStatus) else TaskStatus[row.status],
            attempts=row.attempts,
            enqueued_at=row.enqueued_at,
            next_run_at=row.next_run_at,
            last_error=row.last_error,
            claimed_at=row.claimed_at,
        )

    # ----------------- Producer API -----------------

    async def enqueue(
        self, kind: TaskKind, payload: str, lane: Lane, policy: TaskPolicy
    ) -> str:
        await self._ensure_initialized()

        task_id = str(uuid.uuid4())
        now = dt.datetime.now(dt.timezone.utc)
        try:
            async with self.session_factory() as session:
                session.add(
                    TaskModel(
                        id=task_id,
                        kind=kind.value,
                        payload=payload,
                        lane=lane.value,
                        lane_rank=lane.rank,
                        status=TaskStatus.PENDING,
                        attempts=0,
                        max_retry=policy.max_retry,
                        timeout_seconds=policy.timeout_seconds,
                        backoff_unit_seconds=policy.backoff_unit_seconds,
                        enqueued_at=now,
                        next_run_at=now,
                        created_at=now,
                        updated_at=now,
                    )
                )
                await session.commit()
        except (SQLAlchemyError, OSError) as exc:
            raise self._wrap(BrokerErrorCode.ENQUEUE_FAILED, exc) from exc

        self._work_available.set()
        return task_id

    # ----------------- Consumer API -----------------

    async def claim(self) -> Optional[TaskRecord]:
        await self._ensure_initialized()
        try:
            async with self.session_factory() as session:
                result = await session.execute(CLAIM_SQL)
                row = result.fetchone()
                await session.commit()
        except (SQLAlchemyError, OSError) as exc:
            raise self._wrap(BrokerErrorCode.CLAIM_FAILED, exc) from exc
        return self._to_record(row) if row is not None else None

    async def wait_for_work(self, timeout: float) -> None:
        try:
            await asyncio.wait_for(self._work_available.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            return
        finally:
            self._work_available.clear()

    async def _transition(
        self, sql: Any, params: dict[str, Any], transition: str
    ) -> None:
        try:
            async with self.session_factory() as session:
                result = await session.execute(sql, params)
                updated = result.fetchone()
                await session.commit()
        except (SQLAlchemyError, OSError) as exc:
            raise self._wrap(BrokerErrorCode.FINALIZE_FAILED, exc) from exc
        if updated is None:
            self.logger.warning(
                f"Task {params['id']} {transition} skipped: status is no longer RUNNING"
            )

    async def complete(self, task_id: str) -> None:
        await self._transition(MARK_TASK_COMPLETED_SQL, {'id': task_id}, 'completion')

    async def retry(self, task_id: str, error: str, run_at: dt.datetime) -> None:
        await self._transition(
            SCHEDULE_TASK_RETRY_SQL,
            {'id': task_id, 'error': error, 'next_run_at': run_at},
            'retry',
        )

    async def archive(self, task_id: str, error: str) -> None:
        await self._transition(
            MARK_TASK_ARCHIVED_SQL, {'id': task_id, 'error': error}, 'archive'
        )

    async def recover_stale(self, grace_seconds: float) -> tuple[int, int]:
        await self._ensure_initialized()
        params = {'grace_seconds': grace_seconds, 'error': STALE_TASK_ERROR}
        try:
            async with self.session_factory() as session:
                archived = (
                    await session.execute(ARCHIVE_STALE_RUNNING_SQL, params)
                ).fetchall()
                requeued = (
                    await session.execute(REQUEUE_STALE_RUNNING_SQL, params)
                ).fetchall()
                await session.commit()
        except (SQLAlchemyError, OSError) as exc:
            raise self._wrap(BrokerErrorCode.RECOVERY_FAILED, exc) from exc
        if requeued:
            self._work_available.set()
        return len(requeued), len(archived)

    # ----------------- Inspection -----------------

    async def get_task(self, task_id: str) -> Optional[TaskRecord]:
        await self._ensure_initialized()
        try:
            async with self.session_factory() as session:
                row = await session.get(TaskModel, task_id)
        except (SQLAlchemyError, OSError) as exc:
            raise self._wrap(BrokerErrorCode.TASK_INFO_QUERY_FAILED, exc) from exc
        return self._to_record(row) if row is not None else None

    async def ping(self) -> None:
        try:
            async with self.async_engine.connect() as conn:
                await conn.execute(PING_SQL)
        except (SQLAlchemyError, OSError) as exc:
            raise self._wrap(BrokerErrorCode.PING_FAILED, exc) from exc

    async def close(self) -> None:
        try:
            await self.async_engine.dispose()
        except (SQLAlchemyError, OSError) as exc:
            raise self._wrap(BrokerErrorCode.CLOSE_FAILED, exc) from exc
        self.logger.info('PostgresBroker closed')
