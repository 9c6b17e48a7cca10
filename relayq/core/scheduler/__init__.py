"""
Recurring task scheduler.

Each registered entry enqueues a fresh task on every cron tick. A tick whose
enqueue fails is logged and skipped; missed ticks are not replayed.
"""

from relayq.core.scheduler.cron import calculate_next_run, is_valid_cron_spec
from relayq.core.scheduler.service import ScheduledTask, Scheduler

__all__ = [
    'Scheduler',
    'ScheduledTask',
    'calculate_next_run',
    'is_valid_cron_spec',
]
