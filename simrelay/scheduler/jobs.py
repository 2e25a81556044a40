"""
Scheduled work on the shared AsyncIOScheduler.

  Debouncer      — schedule-or-replace a one-shot job by key, used by the
                   event store to coalesce bursts of writes into one.
  log_stats      — interval job that reports the relay statistics.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from simrelay.config import STATS_LOG_INTERVAL_S

log = logging.getLogger(__name__)


class Debouncer:
    """One pending APScheduler date job per key.

    Scheduling a key that already has a pending job replaces it, so the job
    only runs once ``delay_s`` has elapsed with no further scheduling.
    """

    def __init__(self, scheduler: AsyncIOScheduler, prefix: str = "debounce_") -> None:
        self._scheduler = scheduler
        self._prefix = prefix

    def _job_id(self, key: str) -> str:
        return f"{self._prefix}{key}"

    def schedule(self, key: str, delay_s: float, func: Callable[..., Any], *args: Any) -> None:
        run_date = datetime.now(timezone.utc) + timedelta(seconds=delay_s)
        self._scheduler.add_job(
            func,
            "date",
            run_date=run_date,
            args=list(args),
            id=self._job_id(key),
            replace_existing=True,
            misfire_grace_time=None,
        )

    def cancel(self, key: str) -> bool:
        try:
            self._scheduler.remove_job(self._job_id(key))
        except JobLookupError:
            return False
        return True

    def cancel_all(self) -> int:
        cancelled = 0
        for job in self._scheduler.get_jobs():
            if job.id.startswith(self._prefix):
                job.remove()
                cancelled += 1
        return cancelled

    def pending(self) -> list[str]:
        return [
            job.id[len(self._prefix):]
            for job in self._scheduler.get_jobs()
            if job.id.startswith(self._prefix)
        ]


def log_stats(stats_provider: Callable[[], Any]) -> None:
    stats = stats_provider()
    log.info("Stats %s", stats.model_dump_json(by_alias=True))


def setup_scheduler(
    stats_provider: Callable[[], Any] | None = None,
    stats_interval_s: int = STATS_LOG_INTERVAL_S,
) -> AsyncIOScheduler:
    """Create and start the scheduler; register the periodic stats job if requested."""
    scheduler = AsyncIOScheduler(timezone="UTC")
    if stats_provider is not None and stats_interval_s > 0:
        scheduler.add_job(
            log_stats,
            "interval",
            seconds=stats_interval_s,
            args=[stats_provider],
            id="log_stats",
            replace_existing=True,
        )
    scheduler.start()
    return scheduler
