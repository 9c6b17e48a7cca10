# relayq/core/scheduler/cron.py
from __future__ import annotations

from datetime import datetime, timezone
from zoneinfo import ZoneInfo

from croniter import croniter


def is_valid_cron_spec(cron_spec: str) -> bool:
    return croniter.is_valid(cron_spec)


def calculate_next_run(
    cron_spec: str, from_time: datetime, tz_str: str = 'UTC'
) -> datetime:
    """
    Calculate the first cron tick strictly after `from_time`.

    Args:
        cron_spec: five-field cron expression, e.g. "*/15 * * * *"
        from_time: timezone-aware reference instant
        tz_str: timezone the expression is evaluated in

    Returns:
        Next run time as UTC-aware datetime

    Raises:
        ValueError: If from_time is naive, the timezone is unknown or the cron spec is invalid
    """
    if from_time.tzinfo is None:
        raise ValueError('from_time must be timezone-aware')

    try:
        tz = ZoneInfo(tz_str)
    except Exception as e:
        raise ValueError(f"Invalid timezone '{tz_str}': {e}")

    if not is_valid_cron_spec(cron_spec):
        raise ValueError(f"Invalid cron spec '{cron_spec}'")

    local_time = from_time.astimezone(tz)
    next_local: datetime = croniter(cron_spec, local_time).get_next(datetime)
    return next_local.astimezone(timezone.utc)


def should_run_now(next_run_at: datetime, now: datetime) -> bool:
    return now >= next_run_at
