"""
APScheduler Configuration

Background jobs for the availability cache:
- teardown of closed order cycles
- warm-up of open order cycles
"""

import logging
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.executors.asyncio import AsyncIOExecutor

from hubstock.config import settings

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
    'max_instances': 1,  # Only one instance of each job at a time
    'misfire_grace_time': 60,  # Allow 60 seconds grace time for misfires
}

# Create scheduler
scheduler = AsyncIOScheduler(
    jobstores=jobstores,
    executors=executors,
    job_defaults=job_defaults,
    timezone=settings.SCHEDULER_TIMEZONE
)


async def run_cache_job(job_name: str):
    """Run a cache job by name, logging its summary or failure."""
    from hubstock.jobs.cache_jobs import tear_down_closed_order_cycles, warm_open_order_cycles

    jobs = {
        'tear_down_closed_order_cycles': tear_down_closed_order_cycles,
        'warm_open_order_cycles': warm_open_order_cycles,
    }

    try:
        result = await jobs[job_name]()
        logger.info(f"Job '{job_name}' completed: {result}")
    except Exception as e:
        logger.error(f"Job '{job_name}' failed: {e}")


def register_jobs():
    """Add the cache jobs to the scheduler."""
    scheduler.add_job(
        run_cache_job,
        'interval',
        minutes=settings.ORDER_CYCLE_TEARDOWN_INTERVAL_MINUTES,
        args=['tear_down_closed_order_cycles'],
        id='tear_down_closed_order_cycles',
        name='Tear Down Closed Order Cycles',
        replace_existing=True,
    )

    scheduler.add_job(
        run_cache_job,
        'interval',
        minutes=settings.CACHE_WARM_INTERVAL_MINUTES,
        args=['warm_open_order_cycles'],
        id='warm_open_order_cycles',
        name='Warm Open Order Cycles',
        replace_existing=True,
    )


def start_scheduler():
    """Start the background job scheduler."""
    if not settings.SCHEDULER_ENABLED:
        logger.info("Background job scheduler disabled")
        return

    if not scheduler.running:
        register_jobs()
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
            'next_run_time': str(job.next_run_time) if getattr(job, 'next_run_time', None) else None,
            'trigger': str(job.trigger),
        }
        for job in jobs
    ]
