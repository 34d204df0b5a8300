# backend/leadrouter/services/routing_lock.py
"""
Routing Lock Manager

Per-lead mutual exclusion through the store's atomic RPCs:

    pending --acquire--> routing --complete--> routed
                         routing --fail (under limit)--> pending (+ retry entry)
                         routing --fail (at limit)--> failed

A lock older than the staleness threshold can be taken over by a new owner,
and is reverted to pending by the stale-lock sweep.
"""

from typing import Optional
import logging
import uuid

from leadrouter.services.retry_backoff import RetryBackoffPolicy
from leadrouter.services.routing_store import IdLike, RoutingStore

logger = logging.getLogger(__name__)

# Longest error text persisted to routing_error / last_error
MAX_ERROR_LENGTH = 1000


def truncate_error(message: Optional[str]) -> str:
    message = message or "Unknown error"
    if len(message) > MAX_ERROR_LENGTH:
        return message[:MAX_ERROR_LENGTH - 3] + "..."
    return message


class RoutingLockManager:
    """Acquire / complete / fail a lead's routing lock"""

    def __init__(self, store: RoutingStore, backoff: Optional[RetryBackoffPolicy] = None):
        self.store = store
        self.backoff = backoff or RetryBackoffPolicy()

    @staticmethod
    def new_lock_owner() -> str:
        """Fresh opaque lock-owner token for one routing attempt"""
        return str(uuid.uuid4())

    async def acquire(self, lead_id: IdLike, lock_owner: str) -> bool:
        acquired = await self.store.acquire_routing_lock(lead_id, lock_owner)
        if not acquired:
            logger.info(f"[Lead Routing] Lock not acquired for lead {lead_id} (held or terminal)")
        return acquired

    async def complete(
        self,
        lead_id: IdLike,
        destination_workspace_id: IdLike,
        matched_rule_id: Optional[IdLike],
        lock_owner: str,
        routing_result: str = "success"
    ) -> bool:
        return await self.store.complete_routing(
            lead_id,
            destination_workspace_id,
            matched_rule_id,
            lock_owner,
            routing_result
        )

    async def fail(
        self,
        lead_id: IdLike,
        error_message: str,
        lock_owner: str,
        max_attempts: int
    ) -> bool:
        """
        Release the lock after a failed attempt.

        Never raises: a failure here leaves the lock to the stale-lock sweep.
        """
        try:
            released = await self.store.fail_routing(
                lead_id,
                truncate_error(error_message),
                lock_owner,
                max_attempts,
                self.backoff.base_seconds,
                self.backoff.max_seconds
            )
            if not released:
                logger.warning(f"[Lead Routing] fail_routing rejected for lead {lead_id} (lock no longer held)")
            return released
        except Exception as e:
            logger.error(f"[Lead Routing] Failed to handle routing failure for lead {lead_id}: {e}")
            return False
