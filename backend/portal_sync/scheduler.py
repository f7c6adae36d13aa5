"""APScheduler configuration for the recurring tenant sync."""

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from datetime import datetime, timezone
import asyncio
from typing import Optional
import logging

from portal_sync.config import settings
from portal_sync.exceptions import SyncConfigurationError
from portal_sync.services.sync_orchestrator import SyncOrchestrator

logger = logging.getLogger(__name__)

SYNC_JOB_ID = "tenant_sync"

# Create scheduler instance
scheduler = AsyncIOScheduler()


async def run_scheduled_sync(orchestrator: Optional[SyncOrchestrator] = None):
    """
    Run one sync pass. Called by APScheduler.

    A process-fatal error is logged and the next tick tries again; the
    scheduler itself keeps running.
    """
    orchestrator = orchestrator or SyncOrchestrator()
    logger.info("Running scheduled tenant sync...")
    try:
        summary = await orchestrator.run_sync()
    except SyncConfigurationError as e:
        logger.error(f"Scheduled sync aborted: {e}")
        return None

    logger.info(f"Scheduled sync done: {summary.to_dict()}")
    return summary


def start_scheduler(
    cron: Optional[str] = None,
    run_immediately: Optional[bool] = None,
    orchestrator: Optional[SyncOrchestrator] = None,
) -> AsyncIOScheduler:
    """
    Register the sync job and start the scheduler.

    Jobs:
    - Tenant sync: SYNC_CRON (hourly at :00 by default), one instance at a
      time, missed runs coalesced. With ``run_immediately`` the first run
      fires right away.

    Must be called from inside a running event loop.
    """
    if scheduler.running:
        logger.info("Scheduler already running")
        return scheduler

    cron = cron or settings.SYNC_CRON
    if run_immediately is None:
        run_immediately = settings.SYNC_RUN_ON_STARTUP

    job_kwargs = {}
    if run_immediately:
        job_kwargs["next_run_time"] = datetime.now(timezone.utc)

    scheduler.add_job(
        run_scheduled_sync,
        trigger=CronTrigger.from_crontab(cron),
        kwargs={"orchestrator": orchestrator},
        id=SYNC_JOB_ID,
        name="Tenant Sync",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
        **job_kwargs
    )
    logger.info(f"✅ Scheduled: Tenant Sync ({cron})")

    scheduler.start()
    logger.info("✅ APScheduler started successfully!")

    for job in scheduler.get_jobs():
        logger.info(f"   • {job.name}: Next run at {job.next_run_time}")

    return scheduler


async def stop_scheduler(wait: bool = True):
    """
    Stop the scheduler gracefully.

    AsyncIOScheduler.shutdown() may hand the state change to the event loop,
    so yield once before reporting the scheduler as stopped.
    """
    if scheduler.running:
        scheduler.shutdown(wait=wait)
        await asyncio.sleep(0)
        logger.info("Scheduler stopped")
