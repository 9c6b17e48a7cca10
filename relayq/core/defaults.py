"""Shared default constants for relayq."""

# Linear backoff unit: the delay after failed attempt n is n * this value.
DEFAULT_BACKOFF_UNIT_SECONDS: int = 60  # 1 minute

# Worker pool size when not configured.
DEFAULT_WORKER_CONCURRENCY: int = 10

# Broker connectivity check period. Failures are logged only.
DEFAULT_HEALTH_CHECK_INTERVAL_SECONDS: float = 180.0  # 3 minutes

# How long an idle consumer waits for new work before re-checking the lanes.
# Delayed retries become eligible at the latest one poll interval late.
DEFAULT_POLL_INTERVAL_SECONDS: float = 1.0

# Upper bound on a single enqueue round trip to the broker.
DEFAULT_ENQUEUE_TIMEOUT_SECONDS: float = 5.0

# Scheduler wake-up period.
DEFAULT_SCHEDULE_CHECK_INTERVAL_SECONDS: float = 1.0

# Secret messaging session lifetime.
DEFAULT_SESSION_TTL_HOURS: int = 24

# Acknowledgement cache windows for report/block callbacks.
DEFAULT_REPORT_CACHE_SECONDS: int = 3600  # 1 hour
DEFAULT_BLOCK_CACHE_SECONDS: int = 86_400  # 1 day

# Page size when walking subscriptions for the meme broadcast.
SUBSCRIPTION_PAGE_SIZE: int = 100

# Stale RUNNING recovery: how often a worker sweeps, and how long past its
# timeout a claim may stay RUNNING before the attempt is considered lost.
DEFAULT_RECOVERY_INTERVAL_SECONDS: float = 60.0  # 1 minute
DEFAULT_STALE_GRACE_SECONDS: float = 60.0  # 1 minute

# Bot updates the poller handles at once.
DEFAULT_MAX_CONCURRENT_UPDATES: int = 64
