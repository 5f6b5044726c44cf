import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Awaitable, Callable, List, Optional, Sequence

from apps.background.jobs import GCReport, gc_expired_files, gc_expired_uploads, gc_orphaned_blobs
from apps.filesystem.helpers import utcnow

logger = logging.getLogger(__name__)

Job = Callable[[], Awaitable[GCReport]]


async def drain(job: Job, max_batches: Optional[int] = None) -> List[GCReport]:
    """Run a job batch after batch while it reports more work."""
    reports = []
    while True:
        report = await job()
        reports.append(report)
        if not report.should_continue:
            break
        if max_batches is not None and len(reports) >= max_batches:
            break
    return reports


@dataclass(frozen=True)
class ScheduledJob:
    name: str
    job: Job
    minute: int


DEFAULT_JOBS = (
    ScheduledJob("gc-expired-uploads", gc_expired_uploads, 0),
    ScheduledJob("gc-orphaned-blobs", gc_orphaned_blobs, 20),
    ScheduledJob("gc-expired-files", gc_expired_files, 40),
)


def seconds_until(minute: int, now: datetime) -> float:
    """Seconds from now to the next time the wall clock shows :minute."""
    target = now.replace(minute=minute, second=0, microsecond=0)
    if target <= now:
        target += timedelta(hours=1)
    return (target - now).total_seconds()


class GCScheduler:
    """Hourly GC runs as asyncio tasks; one task per job."""

    def __init__(self, jobs: Sequence[ScheduledJob] = DEFAULT_JOBS):
        self.jobs = list(jobs)
        self._tasks: List[asyncio.Task] = []

    def start(self) -> None:
        for scheduled in self.jobs:
            self._tasks.append(asyncio.create_task(self._loop(scheduled), name=scheduled.name))
        logger.info("GC scheduler started with %d job(s)", len(self._tasks))

    async def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()

    async def run_once(self, scheduled: ScheduledJob) -> List[GCReport]:
        try:
            return await drain(scheduled.job)
        except Exception:
            logger.exception("GC job %s failed", scheduled.name)
            return []

    async def _loop(self, scheduled: ScheduledJob) -> None:
        while True:
            await asyncio.sleep(seconds_until(scheduled.minute, utcnow()))
            await self.run_once(scheduled)
