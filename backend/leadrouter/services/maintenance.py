"""Scheduled routing maintenance: stale-lock release and lead expiry."""

from typing import Dict
import logging

from leadrouter.services.routing_store import RoutingStore

logger = logging.getLogger(__name__)


async def cleanup_stale_locks(store: RoutingStore) -> Dict[str, int]:
    """Revert leads stuck in 'routing' past the lock timeout back to pending."""
    try:
        released = await store.release_stale_routing_locks()
    except Exception as e:
        logger.error(f"[Lead Routing] Stale lock cleanup failed: {e}")
        return {"released": 0}

    if released:
        logger.info(f"[Lead Routing] Released {released} stale routing locks")
    return {"released": released}


async def mark_expired_leads(store: RoutingStore) -> Dict[str, int]:
    """Expire pending leads past lead_expires_at."""
    try:
        expired = await store.mark_expired_leads()
    except Exception as e:
        logger.error(f"[Lead Routing] Lead expiry sweep failed: {e}")
        return {"expired": 0}

    if expired:
        logger.info(f"[Lead Routing] Marked {expired} leads as expired")
    return {"expired": expired}
