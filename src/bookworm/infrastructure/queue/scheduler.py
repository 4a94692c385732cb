"""
In-process periodic scheduler.

Each job is an APScheduler interval job on the API's event loop: first run
immediately, then every interval, one instance at a time, missed ticks
coalesced. A failure is logged and recorded in the activity log and the
next tick still runs.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from bookworm.application.services.activity_log_service import ActivityLogService
from bookworm.config import BookwormSettings, get_settings
from bookworm.domain.errors import NotConfiguredError
from bookworm.infrastructure.queue import jobs
from bookworm.utils.logging_config import LogFiles, Logger, trace_scope

logger = logging.getLogger(__name__)

SOURCE = "scheduler"

JobFunc = Callable[[], Union[Awaitable[Any], Any]]


@dataclass
class ScheduledJob:
    name: str
    func: JobFunc
    interval_seconds: float
    description: str = ""

    @property
    def enabled(self) -> bool:
        return self.interval_seconds > 0


class PeriodicScheduler:
    def __init__(
        self,
        jobs: Optional[List[ScheduledJob]] = None,
        *,
        activity: Optional[ActivityLogService] = None,
    ):
        self._jobs: List[ScheduledJob] = list(jobs or [])
        self._activity = activity
        self._scheduler: Optional[AsyncIOScheduler] = None
        self.runs: Dict[str, int] = {}

    @property
    def activity(self) -> ActivityLogService:
        if self._activity is None:
            self._activity = ActivityLogService()
        return self._activity

    @property
    def scheduler(self) -> Optional[AsyncIOScheduler]:
        return self._scheduler

    @property
    def running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    def add_job(self, job: ScheduledJob) -> None:
        self._jobs.append(job)

    def start(self) -> None:
        """Start on the running event loop; call from the FastAPI startup event."""
        if self.running:
            logger.warning("Scheduler already running")
            return

        scheduler = AsyncIOScheduler(timezone=timezone.utc)
        for job in self._jobs:
            if not job.enabled:
                self.activity.info(SOURCE, f"{job.name} is disabled (interval 0); not scheduled.")
                continue
            scheduler.add_job(
                self.run_job,
                trigger=IntervalTrigger(seconds=job.interval_seconds, timezone=timezone.utc),
                args=[job],
                id=job.name,
                name=job.description or job.name,
                max_instances=1,
                coalesce=True,
                next_run_time=datetime.now(timezone.utc),
                replace_existing=True,
            )
            Logger.info(f"Scheduled {job.name} every {job.interval_seconds:.0f}s", file=LogFiles.SCHEDULER)

        scheduler.start()
        self._scheduler = scheduler

    async def stop(self) -> None:
        if self._scheduler is None:
            return
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
        self._scheduler = None
        Logger.info("Scheduler stopped", file=LogFiles.SCHEDULER)

    async def run_job(self, job: ScheduledJob) -> Optional[Any]:
        """Run one tick; returns None when the job was skipped or failed."""
        with trace_scope(job.name):
            self.runs[job.name] = self.runs.get(job.name, 0) + 1
            try:
                result = job.func()
                if inspect.isawaitable(result):
                    result = await result
            except NotConfiguredError as exc:
                self.activity.info(SOURCE, f"Skipped {job.name}: {exc}")
                return None
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.exception(f"Scheduled job {job.name} failed")
                Logger.exception(f"{job.name} failed: {exc}", file=LogFiles.SCHEDULER)
                self.activity.error(SOURCE, f"{job.name} failed: {exc}")
                return None
            Logger.info(f"{job.name} done: {result}", file=LogFiles.SCHEDULER)
            return result


def default_jobs(settings: Optional[BookwormSettings] = None) -> List[ScheduledJob]:
    """The four maintenance jobs, with intervals taken from settings."""
    settings = settings or get_settings()

    # Settings are re-read on every tick so a saved key or path takes effect.
    return [
        ScheduledJob(
            name="calibre-sync",
            func=lambda: jobs.run_calibre_sync(get_settings()),
            interval_seconds=settings.calibre_sync_interval_minutes * 60,
            description="Refresh the Calibre mirror",
        ),
        ScheduledJob(
            name="want-sync",
            func=lambda: jobs.run_want_sync(get_settings()),
            interval_seconds=settings.want_sync_interval_minutes * 60,
            description="Refresh the Hardcover want-to-read cache",
        ),
        ScheduledJob(
            name="bookshelf-resolve",
            func=lambda: jobs.run_bookshelf_resolve(get_settings()),
            interval_seconds=settings.bookshelf_sync_interval_minutes * 60,
            description="Resolve Hardcover ids for Calibre books",
        ),
        ScheduledJob(
            name="suggested-dedup",
            func=lambda: asyncio.to_thread(jobs.run_suggested_dedup),
            interval_seconds=settings.suggested_dedup_interval_minutes * 60,
            description="Delete suggestions already in Calibre",
        ),
    ]
