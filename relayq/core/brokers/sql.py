"""SQL constants for the PostgreSQL broker."""

from __future__ import annotations

from sqlalchemy import text

# ---------- Claim SQL (lane_rank + enqueued_at) ----------
# Strict lane priority: a default-lane task is only returned when no high-lane
# task is eligible, and so on. SKIP LOCKED lets concurrent workers claim
# disjoint rows without waiting on each other.

CLAIM_SQL = text("""
WITH next AS (
  SELECT id
  FROM relayq_tasks
  WHERE status = 'PENDING'
    AND next_run_at <= now()
  ORDER BY lane_rank ASC, enqueued_at ASC, id ASC
  FOR UPDATE SKIP LOCKED
  LIMIT 1
)
UPDATE relayq_tasks t
SET status = 'RUNNING',
    attempts = t.attempts + 1,
    claimed_at = now(),
    updated_at = now()
FROM next
WHERE t.id = next.id
RETURNING t.id, t.kind, t.payload, t.lane, t.max_retry, t.timeout_seconds,
          t.backoff_unit_seconds, t.status, t.attempts, t.enqueued_at,
          t.next_run_at, t.last_error, t.claimed_at;
""")

MARK_TASK_COMPLETED_SQL = text("""
    UPDATE relayq_tasks
    SET status = 'COMPLETED',
        completed_at = now(),
        updated_at = now()
    WHERE id = :id
      AND status = 'RUNNING'
    RETURNING id
""")

# The retried task re-enters its lane behind work that was already waiting.
SCHEDULE_TASK_RETRY_SQL = text("""
    UPDATE relayq_tasks
    SET status = 'PENDING',
        next_run_at = :next_run_at,
        enqueued_at = :next_run_at,
        last_error = :error,
        updated_at = now()
    WHERE id = :id
      AND status = 'RUNNING'
    RETURNING id
""")

MARK_TASK_ARCHIVED_SQL = text("""
    UPDATE relayq_tasks
    SET status = 'ARCHIVED',
        archived_at = now(),
        last_error = :error,
        updated_at = now()
    WHERE id = :id
      AND status = 'RUNNING'
    RETURNING id
""")

# ---------- Stale RUNNING recovery ----------
# A RUNNING task whose claim is older than its own timeout plus a grace period
# belongs to a worker that died or was cancelled mid-attempt. The lost attempt
# counts as a failure: the task goes back to its lane while it has attempts
# left and is archived otherwise.

REQUEUE_STALE_RUNNING_SQL = text("""
    UPDATE relayq_tasks
    SET status = 'PENDING',
        next_run_at = now(),
        enqueued_at = now(),
        claimed_at = NULL,
        last_error = :error,
        updated_at = now()
    WHERE status = 'RUNNING'
      AND claimed_at < now() - make_interval(secs => timeout_seconds + :grace_seconds)
      AND attempts < GREATEST(max_retry, 1)
    RETURNING id
""")

ARCHIVE_STALE_RUNNING_SQL = text("""
    UPDATE relayq_tasks
    SET status = 'ARCHIVED',
        archived_at = now(),
        claimed_at = NULL,
        last_error = :error,
        updated_at = now()
    WHERE status = 'RUNNING'
      AND claimed_at < now() - make_interval(secs => timeout_seconds + :grace_seconds)
      AND attempts >= GREATEST(max_retry, 1)
    RETURNING id
""")

PING_SQL = text('SELECT 1')

SCHEMA_ADVISORY_LOCK_SQL = text("""
    SELECT pg_advisory_xact_lock(CAST(:key AS BIGINT))
""")
