# backend/leadrouter/services/retry_queue.py
"""
Retry Queue Processor

Re-attempts leads queued by fail_routing once their next_retry_at is due.
Runs from the scheduler every minute; safe to run alongside live routing
because every attempt goes through the routing lock.

Scheduling is owned by fail_routing: a renewed failure here only records the
error, the entry keeps the next_retry_at that fail_routing set.
"""

from datetime import datetime, timezone
from typing import Optional
import logging

from leadrouter.config import settings
from leadrouter.schemas.routing import RetryQueueError, RetryQueueResult
from leadrouter.services.lead_routing_service import LeadRoutingService
from leadrouter.services.routing_lock import truncate_error
from leadrouter.services.routing_store import RoutingStore

logger = logging.getLogger(__name__)


class RetryQueueProcessor:

    def __init__(self, routing_service: LeadRoutingService, store: Optional[RoutingStore] = None):
        self.routing_service = routing_service
        self.store = store or routing_service.store

    async def process_retry_queue(
        self,
        limit: int = settings.RETRY_QUEUE_BATCH_SIZE,
        now: Optional[datetime] = None
    ) -> RetryQueueResult:
        """
        Process due retry entries, oldest next_retry_at first.

        Args:
            limit: Maximum entries to attempt in this run
            now: Cut-off for due entries (defaults to the current UTC time)

        Returns:
            RetryQueueResult with processed / succeeded / failed counts and
            per-lead errors
        """
        result = RetryQueueResult()
        now = now or datetime.now(timezone.utc)

        try:
            entries = await self.store.fetch_due_retries(limit, now)
        except Exception as e:
            logger.error(f"[Lead Routing] Failed to fetch retry queue: {e}")
            return result

        if not entries:
            return result

        logger.info(f"[Lead Routing] Processing {len(entries)} retry queue entries")

        for entry in entries:
            result.processed += 1

            try:
                outcome = await self.routing_service.route_lead(
                    entry.lead_id,
                    entry.workspace_id,
                    user_id=settings.SYSTEM_USER_ID,
                    max_retries=entry.max_attempts
                )

                if outcome.success:
                    await self.store.mark_retry_processed(entry.id, now)
                    result.succeeded += 1
                    continue

                error = outcome.error or outcome.routing_reason
            except Exception as e:
                error = str(e)

            result.failed += 1
            result.errors.append(RetryQueueError(lead_id=entry.lead_id, error=truncate_error(error)))

            try:
                await self.store.record_retry_error(entry.id, truncate_error(error), entry.error_count + 1)
            except Exception as e:
                logger.error(f"[Lead Routing] Failed to update retry entry {entry.id}: {e}")

        logger.info(
            f"[Lead Routing] Retry queue: {result.processed} processed, "
            f"{result.succeeded} succeeded, {result.failed} failed"
        )
        return result
