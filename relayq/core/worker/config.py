"""Worker configuration dataclass."""

from __future__ import annotations

from dataclasses import dataclass

from relayq.core import defaults


@dataclass
class WorkerConfig:
    concurrency: int = defaults.DEFAULT_WORKER_CONCURRENCY  # consumer coroutines
    # Broker ping period; a failed ping is logged and never stops dispatch
    health_check_interval_seconds: float = defaults.DEFAULT_HEALTH_CHECK_INTERVAL_SECONDS
    # Upper bound on how long an idle consumer waits before re-checking the lanes.
    # Delayed retries become claimable at most one poll interval late.
    poll_interval_seconds: float = defaults.DEFAULT_POLL_INTERVAL_SECONDS
    # Collect process metrics with psutil on each healthy check
    collect_metrics: bool = True
    # Sweep for RUNNING tasks left behind by a dead worker; first sweep at startup
    recovery_interval_seconds: float = defaults.DEFAULT_RECOVERY_INTERVAL_SECONDS
    # A claim is stale once it outlives the task timeout by this much
    stale_grace_seconds: float = defaults.DEFAULT_STALE_GRACE_SECONDS

    def __post_init__(self) -> None:
        if self.concurrency < 1:
            raise ValueError(f'concurrency must be >= 1, got {self.concurrency}')
        if self.health_check_interval_seconds <= 0:
            raise ValueError('health_check_interval_seconds must be > 0')
        if self.poll_interval_seconds <= 0:
            raise ValueError('poll_interval_seconds must be > 0')
        if self.recovery_interval_seconds <= 0:
            raise ValueError('recovery_interval_seconds must be > 0')
        if self.stale_grace_seconds < 0:
            raise ValueError('stale_grace_seconds must be >= 0')
