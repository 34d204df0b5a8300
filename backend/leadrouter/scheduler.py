"""APScheduler configuration for routing retries and maintenance sweeps."""

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
import logging

from leadrouter.config import settings

logger = logging.getLogger(__name__)

# Create scheduler instance
scheduler = AsyncIOScheduler()


async def process_routing_retry_queue():
    """
    Re-route leads whose retry is due - runs every minute.
    """
    from leadrouter.services.lead_routing_service import create_lead_routing_service
    from leadrouter.services.retry_queue import RetryQueueProcessor

    try:
        processor = RetryQueueProcessor(create_lead_routing_service())
        result = await processor.process_retry_queue(limit=settings.RETRY_QUEUE_BATCH_SIZE)
        if result.processed:
            logger.info(f"Retry queue run: {result.succeeded}/{result.processed} routed")
    except Exception as e:
        logger.error(f"Error in retry queue job: {e}")


async def release_stale_routing_locks():
    """
    Revert leads stuck in 'routing' (holder crashed or hung) - every 5 minutes.
    """
    from leadrouter.services import maintenance
    from leadrouter.services.routing_store import create_routing_store

    await maintenance.cleanup_stale_locks(create_routing_store())


async def expire_pending_leads():
    """
    Mark pending leads past lead_expires_at as expired - hourly.
    """
    from leadrouter.services import maintenance
    from leadrouter.services.routing_store import create_routing_store

    await maintenance.mark_expired_leads(create_routing_store())


def start_scheduler():
    """
    Initialize and start the APScheduler.

    Jobs:
    - Routing retry queue: every minute
    - Stale routing lock release: every 5 minutes
    - Lead expiry: hourly
    """
    if scheduler.running:
        logger.info("Scheduler already running")
        return

    try:
        scheduler.add_job(
            process_routing_retry_queue,
            trigger=IntervalTrigger(seconds=settings.RETRY_QUEUE_INTERVAL_SECONDS),
            id='routing_retry_queue',
            name='Routing Retry Queue',
            replace_existing=True,
            max_instances=1
        )
        logger.info("✅ Scheduled: Routing Retry Queue (every minute)")

        scheduler.add_job(
            release_stale_routing_locks,
            trigger=IntervalTrigger(seconds=settings.STALE_LOCK_SWEEP_INTERVAL_SECONDS),
            id='routing_stale_locks',
            name='Stale Routing Lock Release',
            replace_existing=True,
            max_instances=1
        )
        logger.info("✅ Scheduled: Stale Routing Lock Release (every 5 minutes)")

        scheduler.add_job(
            expire_pending_leads,
            trigger=CronTrigger(minute=settings.EXPIRY_SWEEP_CRON_MINUTE),
            id='lead_expiry',
            name='Lead Expiry',
            replace_existing=True,
            max_instances=1
        )
        logger.info("✅ Scheduled: Lead Expiry (hourly)")

        scheduler.start()
        logger.info("✅ APScheduler started successfully!")

        for job in scheduler.get_jobs():
            logger.info(f"   • {job.name}: Next run at {job.next_run_time}")

    except Exception as e:
        logger.error(f"❌ Error starting scheduler: {e}")


def stop_scheduler():
    """Stop the scheduler gracefully."""
    if scheduler.running:
        scheduler.shutdown()
        logger.info("Scheduler stopped")
