from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import (
    DateTime,
    Enum as SQLAlchemyEnum,
    Float,
    Index,
    Integer,
    String,
    Text,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from relayq.core.types.status import TaskStatus


class Base(DeclarativeBase):
    """SQLAlchemy declarative base for the task tables"""

    pass


class TaskModel(Base):
    """
    SQLAlchemy model for storing tasks in the database.

    - id: str # uuid4
    - kind: str # routing key, e.g. "task:mailing"
    - payload: str # JSON dump of the kind's payload variant
    - lane: str # high, default or low
    - lane_rank: int # 0 for high, 1 for default, 2 for low; the primary claim ordering
    - status: TaskStatus # PENDING, RUNNING, COMPLETED, ARCHIVED
    - attempts: int # handler invocations so far, bumped on claim
    - max_retry: int # invocation budget, copied from the policy table
    - timeout_seconds: float # per-attempt deadline, copied from the policy table
    - backoff_unit_seconds: int # linear backoff unit, copied from the policy table
    - enqueued_at: datetime # FIFO key within a lane; moved to next_run_at on retry
    - next_run_at: datetime # not claimable before this instant
    - claimed_at: datetime # when the current attempt was claimed
    - completed_at: datetime # when the handler succeeded
    - archived_at: datetime # when the task was dead-lettered
    - last_error: str # message of the most recent failure
    - created_at: datetime
    - updated_at: datetime
    """

    __tablename__ = 'relayq_tasks'
    __table_args__ = (
        Index(
            'idx_relayq_tasks_claim',
            'status',
            'lane_rank',
            'enqueued_at',
        ),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    kind: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    payload: Mapped[str] = mapped_column(Text, nullable=False)
    lane: Mapped[str] = mapped_column(String(16), nullable=False)
    lane_rank: Mapped[int] = mapped_column(Integer, nullable=False)

    status: Mapped[TaskStatus] = mapped_column(
        SQLAlchemyEnum(TaskStatus, native_enum=False),
        nullable=False,
        default=TaskStatus.PENDING,
    )
    attempts: Mapped[int] = mapped_column(
        Integer, default=0, server_default=text('0'), nullable=False,
    )
    max_retry: Mapped[int] = mapped_column(Integer, nullable=False)
    timeout_seconds: Mapped[float] = mapped_column(Float, nullable=False)
    backoff_unit_seconds: Mapped[int] = mapped_column(Integer, nullable=False)

    enqueued_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=text('NOW()'),
    )
    next_run_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=text('NOW()'),
    )
    claimed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    archived_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    last_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=text('NOW()'),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=text('NOW()'),
    )
