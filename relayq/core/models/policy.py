# relayq/core/models/policy.py
"""Per-kind retry/timeout policy, kept as data."""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from datetime import timedelta
from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field

from relayq.core.defaults import DEFAULT_BACKOFF_UNIT_SECONDS
from relayq.core.errors import ErrorCode, RegistryError
from relayq.core.models.kinds import TaskKind


class TaskPolicy(BaseModel):
    """
    Retry and timeout configuration for one task kind.

    Fields:
        max_retry: total number of handler invocations allowed before the task
            is archived. 0 is treated as a single attempt.
        timeout_seconds: per-attempt deadline; the handler is cancelled when it elapses
        backoff_unit_seconds: linear backoff unit; after attempt n fails the task
            waits n * backoff_unit_seconds before it becomes eligible again
    """

    model_config = ConfigDict(extra='forbid', frozen=True)

    max_retry: Annotated[int, Field(ge=0, le=1000)]
    timeout_seconds: Annotated[float, Field(gt=0, le=3600)]
    backoff_unit_seconds: Annotated[int, Field(ge=0, le=86_400)] = (
        DEFAULT_BACKOFF_UNIT_SECONDS
    )

    @property
    def timeout(self) -> timedelta:
        return timedelta(seconds=self.timeout_seconds)

    @property
    def max_attempts(self) -> int:
        return max(1, self.max_retry)

    def retry_delay(self, attempt: int) -> timedelta:
        """Delay before the next attempt, given the 1-based attempt that just failed."""
        if attempt < 1:
            raise ValueError(f'attempt must be >= 1, got {attempt}')
        return timedelta(seconds=attempt * self.backoff_unit_seconds)

    def should_retry(self, attempt: int) -> bool:
        """Whether a task whose attempt `attempt` just failed gets another one."""
        return attempt < self.max_attempts


DEFAULT_POLICIES: dict[TaskKind, TaskPolicy] = {
    TaskKind.MAILING: TaskPolicy(max_retry=5, timeout_seconds=5),
    TaskKind.MAIL_UPDATE_RECORD: TaskPolicy(max_retry=5, timeout_seconds=5),
    TaskKind.USER_ACTIVATION: TaskPolicy(max_retry=5, timeout_seconds=5),
    TaskKind.SIAKAD_PROFILE_PICTURE_SCRAPING: TaskPolicy(max_retry=10, timeout_seconds=20),
    TaskKind.SETTING_MESSAGE_NODE: TaskPolicy(max_retry=10, timeout_seconds=10),
    TaskKind.SEND_TELEGRAM_MESSAGE: TaskPolicy(max_retry=10, timeout_seconds=10),
    TaskKind.CREATE_SECRET_MESSAGE_NODE: TaskPolicy(max_retry=100, timeout_seconds=10),
    TaskKind.MEME_SUBSCRIPTION: TaskPolicy(max_retry=3, timeout_seconds=60),
}


class PolicyTable(Mapping[TaskKind, TaskPolicy]):
    """Read-only lookup of TaskPolicy by kind, seeded with DEFAULT_POLICIES."""

    def __init__(self, overrides: Mapping[TaskKind, TaskPolicy] | None = None) -> None:
        self._policies: dict[TaskKind, TaskPolicy] = dict(DEFAULT_POLICIES)
        if overrides:
            self._policies.update(overrides)

    def __getitem__(self, kind: TaskKind) -> TaskPolicy:
        return self._policies[kind]

    def __iter__(self) -> Iterator[TaskKind]:
        return iter(self._policies)

    def __len__(self) -> int:
        return len(self._policies)

    def for_kind(self, kind: TaskKind | str) -> TaskPolicy:
        try:
            return self._policies[TaskKind(kind)]
        except (KeyError, ValueError):
            raise RegistryError(
                message=f"no policy registered for task kind '{kind}'",
                code=ErrorCode.POLICY_NOT_REGISTERED,
                notes=[f'known kinds: {sorted(k.value for k in self._policies)}'],
            ) from None

    def __repr__(self) -> str:
        return f'PolicyTable({len(self)} kinds)'
