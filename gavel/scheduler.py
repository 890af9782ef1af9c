import asyncio, logging
from datetime import datetime, timezone
from typing import Optional, Tuple
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from gavel.engine import AuctionEngine
from gavel.settings import SchedulerCfg, load_settings

log = logging.getLogger("gavel.scheduler")

ACTIVATE_JOB = "activate-scheduled"
END_JOB = "end-expired"

_scheduler: Optional[AsyncIOScheduler] = None


async def get_scheduler() -> AsyncIOScheduler:
    global _scheduler
    if _scheduler is None:
        _scheduler = AsyncIOScheduler(timezone="UTC")
    return _scheduler


def tick(engine: AuctionEngine, now: Optional[datetime] = None) -> Tuple[int, int]:
    """One pass of both bulk entry points; activation first so a zero-length
    gap between start and end still goes through ACTIVE."""
    activated = engine.activate_scheduled_auctions(now)
    ended = engine.end_expired_auctions(now)
    return activated, ended


async def _activate_due(engine: AuctionEngine):
    try:
        await asyncio.to_thread(engine.activate_scheduled_auctions)
    except Exception:
        log.exception("%s run failed", ACTIVATE_JOB)


async def _end_expired(engine: AuctionEngine):
    try:
        await asyncio.to_thread(engine.end_expired_auctions)
    except Exception:
        log.exception("%s run failed", END_JOB)


async def add_jobs(engine: AuctionEngine, scheduler: AsyncIOScheduler, cfg: SchedulerCfg):
    first_run = datetime.now(timezone.utc)
    for job_id, func, seconds in (
        (ACTIVATE_JOB, _activate_due, cfg.activate_interval_seconds),
        (END_JOB, _end_expired, cfg.end_interval_seconds),
    ):
        scheduler.add_job(
            func,
            "interval",
            args=[engine],
            seconds=seconds,
            jitter=cfg.jitter_seconds,
            next_run_time=first_run,
            id=job_id,
            coalesce=True,
            max_instances=1,
            misfire_grace_time=30,
            replace_existing=True,
        )
        log.info("scheduled %s every %ss", job_id, seconds)


async def remove_jobs(scheduler: AsyncIOScheduler):
    for job_id in (ACTIVATE_JOB, END_JOB):
        if scheduler.get_job(job_id):
            scheduler.remove_job(job_id)


async def _schedule_all():
    settings = load_settings()
    engine = AuctionEngine(settings=settings)
    scheduler = await get_scheduler()
    await add_jobs(engine, scheduler, settings.scheduler)

    scheduler.start()
    print("gavel scheduler started – Ctrl+C to quit")
    try:
        await asyncio.Event().wait()
    except (KeyboardInterrupt, SystemExit):
        pass
    finally:
        scheduler.shutdown(wait=False)
        engine.close()


def main():
    asyncio.run(_schedule_all())
