"""
APScheduler setup: two recurring jobs.

Jobs:
  - Countdown tick: every COUNTDOWN_TICK_SECONDS (ticks every mounted countdown)
  - Monitor remount: every COUNTDOWN_TICK_SECONDS (facility day rollover, failed subscriptions)

The jobs are separate so a slow store read during a remount never delays a tick.
"""

import logging
from typing import Optional
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sleepcheck.core.constants import COUNTDOWN_TICK_SECONDS
from sleepcheck.services.monitor import get_monitor_registry

logger = logging.getLogger(__name__)

scheduler: Optional[AsyncIOScheduler] = None


# Used by: start_scheduler
async def run_countdown_tick():
    """Ticks every mounted countdown; threshold crossings dispatch alerts synchronously."""
    get_monitor_registry().tick_all()


# Used by: start_scheduler
async def run_monitor_remount():
    """Moves monitors onto the new facility day and recovers failed subscriptions."""
    try:
        await get_monitor_registry().roll_over_day()
    except Exception as e:
        logger.error(f"Monitor remount failed: {e}")


# Used by: main (lifespan startup)
async def start_scheduler():
    """Initialize and start APScheduler."""
    global scheduler

    if scheduler is not None:
        logger.warning("Scheduler already running")
        return

    logger.info("Initializing scheduler...")

    scheduler = AsyncIOScheduler()

    scheduler.add_job(
        run_countdown_tick,
        trigger=IntervalTrigger(seconds=COUNTDOWN_TICK_SECONDS),
        id="sleep_check_countdown_tick",
        name="Tick sleep check countdowns and dispatch due alerts",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )

    scheduler.add_job(
        run_monitor_remount,
        trigger=IntervalTrigger(seconds=COUNTDOWN_TICK_SECONDS),
        id="sleep_monitor_remount",
        name="Remount sleep monitors on day rollover or subscription failure",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )

    scheduler.start()
    logger.info(f"Scheduler started (countdown tick every {COUNTDOWN_TICK_SECONDS}s)")


# Used by: main (lifespan shutdown)
async def stop_scheduler():
    """Stop the scheduler gracefully."""
    global scheduler

    if scheduler is None:
        return

    logger.info("Stopping scheduler...")
    scheduler.shutdown(wait=False)
    scheduler = None
    logger.info("Scheduler stopped")
