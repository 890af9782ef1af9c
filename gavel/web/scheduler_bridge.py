# gavel/web/scheduler_bridge.py
from __future__ import annotations
import logging

from gavel.engine import AuctionEngine
from gavel.scheduler import add_jobs, get_scheduler, remove_jobs

log = logging.getLogger("gavel_web.scheduler")


async def ensure_scheduler_started():
    sched = await get_scheduler()
    if not sched.running:
        sched.start()
        log.info("APScheduler started")


async def schedule_lifecycle_jobs(engine: AuctionEngine):
    """Register the activation and expiry jobs against the web app's engine."""
    sched = await get_scheduler()
    await add_jobs(engine, sched, engine.settings.scheduler)


async def stop_scheduler():
    sched = await get_scheduler()
    await remove_jobs(sched)
    if sched.running:
        sched.shutdown(wait=False)
        log.info("APScheduler stopped")
