"""
Polling schedulers for subscriptions.

``Poller`` is the seam the SubscriptionManager schedules against; the
production implementation runs interval jobs on APScheduler, tests drive
jobs by hand.
"""

from collections.abc import Awaitable, Callable
from datetime import timedelta
from typing import Protocol

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from loguru import logger

PollJob = Callable[[], Awaitable[None]]


class Poller(Protocol):
    """Runs a coroutine function repeatedly at a fixed interval."""

    def schedule(self, job_id: str, interval: timedelta, func: PollJob) -> None: ...

    def cancel(self, job_id: str) -> bool: ...

    def shutdown(self) -> None: ...


class APSchedulerPoller:
    """
    Poller backed by APScheduler's AsyncIOScheduler.

    The scheduler is started lazily on the first ``schedule`` call, which
    must happen inside the running event loop.
    """

    def __init__(self, scheduler: AsyncIOScheduler | None = None):
        self.scheduler = scheduler or AsyncIOScheduler()
        self._is_running = False

    def schedule(self, job_id: str, interval: timedelta, func: PollJob) -> None:
        self.scheduler.add_job(
            func,
            trigger="interval",
            seconds=interval.total_seconds(),
            id=job_id,
            name=f"Poll {job_id}",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        if not self._is_running:
            self.scheduler.start()
            self._is_running = True
            logger.info("Polling scheduler started")

    def cancel(self, job_id: str) -> bool:
        try:
            self.scheduler.remove_job(job_id)
        except JobLookupError:
            return False
        return True

    def shutdown(self) -> None:
        if not self._is_running:
            return
        self.scheduler.shutdown(wait=False)
        self._is_running = False
        logger.info("Polling scheduler stopped")
