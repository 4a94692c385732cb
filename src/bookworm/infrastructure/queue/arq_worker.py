from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Set

from arq import cron
from arq.connections import RedisSettings

from bookworm.application.services.activity_log_service import ActivityLogService
from bookworm.config import get_settings
from bookworm.domain.errors import NotConfiguredError
from bookworm.infrastructure.queue import jobs
from bookworm.utils.logging_config import LogFiles, Logger, trace_scope

SOURCE = "worker"


def _redis_settings() -> RedisSettings:
    settings = get_settings()
    return RedisSettings(
        host=settings.redis_host,
        port=settings.redis_port,
        database=settings.redis_db,
        password=settings.redis_password,
    )


def _cron_schedule(interval_minutes: int, offset: int = 0) -> Dict[str, Set[int]]:
    """
    cron() keyword arguments for an every-N-minutes interval.

    Cron only fires evenly when N divides an hour (minute set) or N is a whole
    number of hours dividing a day (hour set at a fixed minute). Anything else
    is rejected so the worker does not run on a distorted schedule.
    """
    interval = int(interval_minutes)
    if 0 < interval < 60 and 60 % interval == 0:
        return {"minute": {(offset + m) % 60 for m in range(0, 60, interval)}}
    if interval >= 60 and interval % 60 == 0 and 24 % (interval // 60) == 0:
        return {"minute": {offset % 60}, "hour": set(range(0, 24, interval // 60))}
    raise ValueError(
        f"Interval of {interval} minutes cannot be expressed as a cron schedule; "
        "use a divisor of 60 minutes or a divisor of 24 hours."
    )


async def _guarded(name: str, coro) -> Dict[str, Any]:
    with trace_scope(name):
        try:
            return await coro
        except NotConfiguredError as exc:
            ActivityLogService().info(SOURCE, f"Skipped {name}: {exc}")
            return {"skipped": True, "reason": str(exc)}


async def cron_calibre_sync(ctx) -> Dict[str, Any]:
    return await _guarded("calibre-sync", jobs.run_calibre_sync(get_settings()))


async def cron_want_sync(ctx) -> Dict[str, Any]:
    return await _guarded("want-sync", jobs.run_want_sync(get_settings()))


async def cron_bookshelf_resolve(ctx) -> Dict[str, Any]:
    return await _guarded("bookshelf-resolve", jobs.run_bookshelf_resolve(get_settings()))


async def cron_suggested_dedup(ctx) -> Dict[str, Any]:
    with trace_scope("suggested-dedup"):
        result = await asyncio.to_thread(jobs.run_suggested_dedup)
    Logger.info(f"suggested-dedup done: {result}", file=LogFiles.SCHEDULER)
    return result


def _build_cron_jobs() -> List[Any]:
    settings = get_settings()
    cron_jobs: List[Any] = []
    if settings.calibre_sync_interval_minutes > 0:
        cron_jobs.append(
            cron(
                cron_calibre_sync,
                **_cron_schedule(settings.calibre_sync_interval_minutes),
                run_at_startup=True,
            )
        )
    if settings.want_sync_interval_minutes > 0:
        cron_jobs.append(
            cron(
                cron_want_sync,
                **_cron_schedule(settings.want_sync_interval_minutes, offset=2),
                run_at_startup=True,
            )
        )
    if settings.bookshelf_sync_interval_minutes > 0:
        cron_jobs.append(
            cron(
                cron_bookshelf_resolve,
                **_cron_schedule(settings.bookshelf_sync_interval_minutes, offset=4),
                run_at_startup=True,
            )
        )
    if settings.suggested_dedup_interval_minutes > 0:
        cron_jobs.append(
            cron(
                cron_suggested_dedup,
                **_cron_schedule(settings.suggested_dedup_interval_minutes, offset=8),
                run_at_startup=True,
            )
        )
    return cron_jobs


class WorkerSettings:
    """
    ARQ worker settings.

    Run:
      arq bookworm.infrastructure.queue.arq_worker.WorkerSettings
    """

    functions = [cron_calibre_sync, cron_want_sync, cron_bookshelf_resolve, cron_suggested_dedup]
    redis_settings = _redis_settings()
    cron_jobs = _build_cron_jobs()
