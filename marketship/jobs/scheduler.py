"""
APScheduler configuration for the shipping engine.

Jobs:
- sync_logistics: tracking sync and RTO detection, every
  LOGISTICS_SYNC_INTERVAL_MINUTES
- purge_estimate_cache: removes expired estimates, daily
"""

import logging
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.executors.asyncio import AsyncIOExecutor

from marketship.config import settings

logger = logging.getLogger(__name__)

# Job stores
jobstores = {
    'default': MemoryJobStore()
}

# Executors
executors = {
    'default': AsyncIOExecutor(),
}

# Job defaults
job_defaults = {
    'coalesce': True,  # Combine multiple pending executions into one
    'max_instances': 1,  # A sync run never overlaps the previous one
    'misfire_grace_time': 60,
}

scheduler = AsyncIOScheduler(
    jobstores=jobstores,
    executors=executors,
    job_defaults=job_defaults,
    timezone=settings.SCHEDULER_TIMEZONE
)


async def run_job(job_name: str):
    """Run a job body by name; failures are logged, never raised into the scheduler."""
    from marketship.jobs import logistics_jobs

    job = getattr(logistics_jobs, job_name)
    try:
        result = await job()
        logger.info(f"Job '{job_name}' completed: {result}")
    except Exception as e:
        logger.error(f"Job '{job_name}' failed: {e}")


def start_scheduler():
    """Start the background job scheduler."""
    if not scheduler.running:
        scheduler.add_job(
            run_job,
            'interval',
            minutes=settings.LOGISTICS_SYNC_INTERVAL_MINUTES,
            args=['sync_logistics'],
            id='sync_logistics',
            name='Sync Logistics Tracking',
            replace_existing=True,
        )

        scheduler.add_job(
            run_job,
            'cron',
            hour=3,
            minute=0,
            args=['purge_estimate_cache'],
            id='purge_estimate_cache',
            name='Purge Expired Shipping Estimates',
            replace_existing=True,
        )

        scheduler.start()
        logger.info("Background job scheduler started")

        for job in scheduler.get_jobs():
            logger.info(f"Scheduled job: {job.name} - Next run: {job.next_run_time}")


def shutdown_scheduler():
    """Shutdown the scheduler gracefully."""
    if scheduler.running:
        scheduler.shutdown(wait=True)
        logger.info("Background job scheduler stopped")


def get_job_status():
    """Get status of all scheduled jobs."""
    jobs = scheduler.get_jobs()
    return [
        {
            'id': job.id,
            'name': job.name,
            'next_run_time': str(job.next_run_time) if job.next_run_time else None,
            'trigger': str(job.trigger),
        }
        for job in jobs
    ]
