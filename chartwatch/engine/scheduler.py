"""APScheduler integration for FastAPI.

One interval job fires the automation tick; the runner decides what is due.
"""

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from chartwatch.config import settings
from chartwatch.engine.runner import AutomationRunner

logger = logging.getLogger(__name__)

TICK_JOB_ID = "automation_tick"

scheduler = AsyncIOScheduler()
_runner: AutomationRunner | None = None


def get_runner() -> AutomationRunner:
    """Return the process-wide runner, creating it on first use."""
    global _runner
    if _runner is None:
        _runner = AutomationRunner()
    return _runner


def set_runner(runner: AutomationRunner | None) -> None:
    global _runner
    _runner = runner


async def _tick():
    await get_runner().run_tick()


def start_scheduler():
    """Start the scheduler with the periodic tick job."""
    get_runner()
    scheduler.add_job(
        _tick,
        trigger=IntervalTrigger(seconds=settings.tick_interval_seconds),
        id=TICK_JOB_ID,
        name="Automation tick",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
        misfire_grace_time=60,
    )
    scheduler.start()
    logger.info(f"Scheduler started, ticking every {settings.tick_interval_seconds}s")


async def stop_scheduler():
    """Stop ticking and give in-flight jobs the shutdown grace period."""
    if scheduler.running:
        scheduler.shutdown(wait=False)
    if _runner is not None:
        await _runner.shutdown(settings.shutdown_grace_seconds)
    logger.info("Scheduler stopped")


def get_scheduler_status() -> dict:
    """Return current scheduler state for the API."""
    job = scheduler.get_job(TICK_JOB_ID) if scheduler.running else None
    return {
        "running": scheduler.running,
        "tick_interval_seconds": settings.tick_interval_seconds,
        "next_tick": str(job.next_run_time) if job and job.next_run_time else None,
        "in_flight": _runner.in_flight if _runner is not None else 0,
        "max_concurrent_captures": settings.max_concurrent_captures,
    }
