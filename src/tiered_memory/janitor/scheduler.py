# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""Maintenance scheduling.

Decides when the next maintenance run (consolidation plus expiry
cleanup) is due. Triggering is left to an external cron or worker.
"""

from datetime import datetime, timedelta
from typing import Callable, Optional

from tiered_memory.schemas import ensure_utc, utcnow


class JanitorScheduler:
    """Interval-based schedule for maintenance runs.

    Example:
        >>> scheduler = JanitorScheduler(schedule_interval_hours=6)
        >>> if scheduler.should_run(last_run):
        ...     await runner.run_all("tenant-1")
    """

    def __init__(
        self,
        schedule_interval_hours: float = 24,
        clock: Callable[[], datetime] = utcnow,
    ):
        if schedule_interval_hours <= 0:
            raise ValueError("schedule_interval_hours must be > 0")
        self.schedule_interval_hours = schedule_interval_hours
        self.clock = clock

    @property
    def interval(self) -> timedelta:
        return timedelta(hours=self.schedule_interval_hours)

    def should_run(self, last_run: Optional[datetime] = None) -> bool:
        """True when no run happened yet or the interval has elapsed."""
        if last_run is None:
            return True
        return self.clock() - ensure_utc(last_run) >= self.interval

    def get_next_run(self, last_run: Optional[datetime] = None) -> datetime:
        """Next due time; overdue runs are due now."""
        now = self.clock()
        if last_run is None:
            return now
        next_run = ensure_utc(last_run) + self.interval
        return max(next_run, now)
