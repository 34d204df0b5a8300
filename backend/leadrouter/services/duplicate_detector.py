"""Cross-partner duplicate detection with an optional Redis cache."""

import json
import logging
from typing import List, Optional

from leadrouter.config import settings
from leadrouter.schemas.routing import DuplicateMatch
from leadrouter.services.routing_store import IdLike, RoutingStore

logger = logging.getLogger(__name__)


class DuplicateDetector:
    """
    Find leads already routed in other workspaces sharing a dedupe hash.

    Uses two-tier checking:
    1. Redis cache (only positive results are cached)
    2. check_cross_partner_duplicate RPC (on cache miss)
    """

    def __init__(self, store: RoutingStore, redis_client=None, cache_ttl_seconds: Optional[int] = None):
        self.store = store
        self.redis_client = redis_client
        self.cache_ttl_seconds = cache_ttl_seconds or settings.DUPLICATE_CACHE_TTL_SECONDS

    @staticmethod
    def generate_cache_key(dedupe_hash: str, source_workspace_id: IdLike) -> str:
        """Generate cache key for source workspace + hash combination."""
        return f"routing:duplicate:{source_workspace_id}:{dedupe_hash}"

    async def find_cross_partner_duplicate(
        self,
        dedupe_hash: str,
        source_workspace_id: IdLike
    ) -> List[DuplicateMatch]:
        """
        Duplicates of this hash outside the source workspace, oldest first.

        Store errors propagate to the caller (the orchestrator routes them
        through fail_routing).
        """
        cache_key = self.generate_cache_key(dedupe_hash, source_workspace_id)

        if self.redis_client:
            try:
                cached = await self.redis_client.get(cache_key)
                if cached:
                    logger.debug(f"Cache hit for duplicate check: {dedupe_hash}")
                    return [DuplicateMatch(**row) for row in json.loads(cached)]
            except Exception as e:
                logger.warning(f"Redis cache check failed: {e}")

        duplicates = await self.store.check_cross_partner_duplicate(dedupe_hash, source_workspace_id)

        if duplicates and self.redis_client:
            try:
                await self.redis_client.setex(
                    cache_key,
                    self.cache_ttl_seconds,
                    json.dumps([d.model_dump(mode="json") for d in duplicates])
                )
            except Exception as e:
                logger.warning(f"Redis cache write failed: {e}")

        return duplicates
