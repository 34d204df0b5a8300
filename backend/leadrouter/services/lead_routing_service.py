# backend/leadrouter/services/lead_routing_service.py
"""
Lead Routing Service

Routes a lead from its source workspace to a destination workspace:

1. Acquire the per-lead routing lock
2. Fetch the lead (scoped to the source workspace)
3. Cross-partner duplicate check (dedupe_hash)
4. Evaluate active routing rules by priority
5. Workspace filter fallback (lead stays in source workspace)
6. Complete the routing transaction

Every failure comes back as a RoutingResult; a held lock is always released
through fail_routing so no lead is left in 'routing'.
"""

from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import List, Optional
import logging

from leadrouter.config import settings
from leadrouter.models import Workspace
from leadrouter.schemas import RoutingLogResult, RoutingStatus
from leadrouter.schemas.conditions import lead_state, region_for_state
from leadrouter.schemas.routing import (
    ALREADY_PROCESSING_REASON,
    LOCK_ERROR_REASON,
    BulkRouteError,
    BulkRouteResult,
    RoutingHealth,
    RoutingResult,
    RoutingStats,
)
from leadrouter.services.duplicate_detector import DuplicateDetector
from leadrouter.services.routing_lock import RoutingLockManager, truncate_error
from leadrouter.services.routing_store import IdLike, RoutingStore, as_uuid
from leadrouter.services.rule_matcher import select_matching_rule
from leadrouter.services.workspace_filter import check_filters, find_best_workspace

logger = logging.getLogger(__name__)


class LeadRoutingService:
    """End-to-end routing of single leads and batches"""

    def __init__(
        self,
        store: RoutingStore,
        duplicate_detector: Optional[DuplicateDetector] = None,
        lock_manager: Optional[RoutingLockManager] = None
    ):
        self.store = store
        self.duplicate_detector = duplicate_detector or DuplicateDetector(store)
        self.lock_manager = lock_manager or RoutingLockManager(store)

    async def route_lead(
        self,
        lead_id: IdLike,
        source_workspace_id: IdLike,
        user_id: Optional[str] = None,
        max_retries: int = settings.ROUTING_MAX_RETRIES
    ) -> RoutingResult:
        """
        Route one lead.

        Args:
            lead_id: Lead to route
            source_workspace_id: Workspace the lead currently belongs to
            user_id: Caller, for the log trail only
            max_retries: Attempt limit before the lead is marked failed

        Returns:
            RoutingResult (never raises)
        """
        lock_owner = self.lock_manager.new_lock_owner()

        try:
            acquired = await self.lock_manager.acquire(lead_id, lock_owner)
        except Exception as e:
            logger.error(f"[Lead Routing] Lock acquisition error for lead {lead_id}: {e}")
            return RoutingResult.failure(LOCK_ERROR_REASON, truncate_error(str(e)))

        if not acquired:
            return RoutingResult.failure(
                ALREADY_PROCESSING_REASON,
                "Lead is already being processed or has finished routing"
            )

        try:
            return await self._route_locked(lead_id, source_workspace_id, user_id, lock_owner, max_retries)
        except Exception as e:
            logger.error(f"[Lead Routing] Unexpected error routing lead {lead_id}: {truncate_error(str(e))}")
            await self.lock_manager.fail(lead_id, str(e), lock_owner, max_retries)
            return RoutingResult.failure("Unexpected routing error", truncate_error(str(e)))

    async def _route_locked(
        self,
        lead_id: IdLike,
        source_workspace_id: IdLike,
        user_id: Optional[str],
        lock_owner: str,
        max_retries: int
    ) -> RoutingResult:
        lead = await self.store.fetch_lead(lead_id, source_workspace_id)
        if lead is None:
            error = f"Lead {lead_id} not found in workspace {source_workspace_id}"
            logger.warning(f"[Lead Routing] {error}")
            await self.lock_manager.fail(lead_id, error, lock_owner, max_retries)
            return RoutingResult.failure("Lead not found", error)

        # Duplicates stay in the source workspace
        if lead.dedupe_hash:
            duplicates = await self.duplicate_detector.find_cross_partner_duplicate(
                lead.dedupe_hash,
                source_workspace_id
            )
            if duplicates:
                original = duplicates[0]
                return await self._complete(
                    lead_id,
                    source_workspace_id,
                    lock_owner,
                    max_retries,
                    RoutingResult(
                        success=True,
                        destination_workspace_id=as_uuid(source_workspace_id),
                        routing_reason=(
                            f"Duplicate of lead {original.duplicate_lead_id} "
                            f"in workspace {original.duplicate_workspace_id}"
                        ),
                        confidence=1.0,
                        is_duplicate=True,
                        duplicate_lead_id=original.duplicate_lead_id,
                    ),
                    routing_result=RoutingLogResult.DUPLICATE.value
                )

        try:
            rules = await self.store.fetch_active_rules(source_workspace_id)
        except Exception as e:
            logger.error(f"[Lead Routing] Failed to fetch rules for workspace {source_workspace_id}: {e}")
            await self.lock_manager.fail(lead_id, f"Failed to fetch routing rules: {e}", lock_owner, max_retries)
            return RoutingResult.failure("Failed to fetch routing rules", truncate_error(str(e)))

        rule = select_matching_rule(lead, rules)
        if rule is not None:
            result = RoutingResult(
                success=True,
                destination_workspace_id=rule.destination_workspace_id,
                matched_rule_id=rule.id,
                matched_rule_name=rule.rule_name,
                routing_reason=f"Matched rule: {rule.rule_name}",
                confidence=(rule.priority or 0) / 100,
            )
        else:
            workspace = await self.store.fetch_workspace(source_workspace_id)
            verdict = check_filters(lead, workspace)
            result = RoutingResult(
                success=True,
                destination_workspace_id=as_uuid(source_workspace_id),
                routing_reason=verdict.reason,
                confidence=verdict.confidence,
            )

        logger.info(
            f"[Lead Routing] Lead {lead_id} -> workspace {result.destination_workspace_id} "
            f"({result.routing_reason}, user={user_id})"
        )
        return await self._complete(lead_id, result.destination_workspace_id, lock_owner, max_retries, result)

    async def _complete(
        self,
        lead_id: IdLike,
        destination_workspace_id: IdLike,
        lock_owner: str,
        max_retries: int,
        result: RoutingResult,
        routing_result: str = RoutingLogResult.SUCCESS.value
    ) -> RoutingResult:
        try:
            completed = await self.lock_manager.complete(
                lead_id,
                destination_workspace_id,
                result.matched_rule_id,
                lock_owner,
                routing_result
            )
        except Exception as e:
            logger.error(f"[Lead Routing] complete_routing error for lead {lead_id}: {e}")
            completed = False

        if not completed:
            await self.lock_manager.fail(
                lead_id,
                "Failed to complete routing transaction",
                lock_owner,
                max_retries
            )
            return RoutingResult.failure(
                "Failed to complete routing transaction",
                "Routing lock lost or completion rejected"
            )

        return result

    async def route_leads_bulk(
        self,
        lead_ids: List[IdLike],
        source_workspace_id: IdLike,
        user_id: Optional[str] = None,
        max_retries: int = settings.ROUTING_MAX_RETRIES
    ) -> BulkRouteResult:
        """Route leads one at a time; one lead's failure never stops the batch."""
        result = BulkRouteResult(total=len(lead_ids))
        routed = defaultdict(int)

        for index, lead_id in enumerate(lead_ids):
            try:
                outcome = await self.route_lead(lead_id, source_workspace_id, user_id, max_retries)
            except Exception as e:
                outcome = RoutingResult.failure("Unexpected routing error", truncate_error(str(e)))

            if not outcome.success:
                result.failed += 1
                result.errors.append(BulkRouteError(
                    index=index,
                    lead_id=as_uuid(lead_id),
                    error=outcome.error or outcome.routing_reason
                ))
            else:
                # Leads kept in the source workspace count under it too
                routed[str(outcome.destination_workspace_id)] += 1
                if outcome.is_duplicate:
                    result.duplicates += 1
                kept_in_source = outcome.destination_workspace_id == as_uuid(source_workspace_id)
                if kept_in_source and outcome.matched_rule_id is None:
                    result.unrouted += 1

        result.routed = dict(routed)
        logger.info(
            f"[Lead Routing] Bulk routing finished for workspace {source_workspace_id}: "
            f"{result.total} total, {sum(result.routed.values())} completed, {result.unrouted} unrouted, "
            f"{result.duplicates} duplicates, {result.failed} failed"
        )
        return result

    async def suggest_workspace(self, lead_id: IdLike, workspace_id: IdLike) -> Optional[Workspace]:
        """
        Best-scoring white-label workspace for a lead.

        Advisory only: route_lead never moves a lead on this suggestion.
        """
        lead = await self.store.fetch_lead(lead_id, workspace_id)
        if lead is None:
            return None

        candidates = await self.store.fetch_white_label_workspaces()
        return find_best_workspace(lead, candidates)

    async def get_routing_stats(self, workspace_id: IdLike, days: int = 30) -> RoutingStats:
        """Routing breakdown for leads in, or originally from, a workspace."""
        since = datetime.now(timezone.utc) - timedelta(days=days)
        leads = await self.store.fetch_leads_for_stats(workspace_id, since)

        workspace_key = str(workspace_id)
        stats = RoutingStats(total_leads=len(leads))

        for lead in leads:
            original_workspace = (lead.routing_metadata or {}).get("original_workspace_id")
            current_workspace = str(lead.workspace_id)

            if original_workspace == workspace_key and current_workspace != workspace_key:
                stats.routed_away += 1
            if original_workspace and original_workspace != workspace_key and current_workspace == workspace_key:
                stats.routed_in += 1

            if lead.company_industry:
                stats.by_industry[lead.company_industry] = stats.by_industry.get(lead.company_industry, 0) + 1

            region = region_for_state(lead_state(lead))
            if region:
                stats.by_region[region] = stats.by_region.get(region, 0) + 1

            if lead.routing_rule_id:
                rule_key = str(lead.routing_rule_id)
                stats.by_rule[rule_key] = stats.by_rule.get(rule_key, 0) + 1

        return stats

    async def get_routing_health(self, workspace_id: IdLike) -> RoutingHealth:
        stale_before = datetime.now(timezone.utc) - timedelta(minutes=settings.ROUTING_LOCK_TIMEOUT_MINUTES)

        return RoutingHealth(
            pending_count=await self.store.count_leads(workspace_id, RoutingStatus.PENDING.value),
            routing_count=await self.store.count_leads(workspace_id, RoutingStatus.ROUTING.value),
            failed_count=await self.store.count_leads(workspace_id, RoutingStatus.FAILED.value),
            retry_queue_count=await self.store.count_open_retries(workspace_id),
            stale_lock_count=await self.store.count_leads(workspace_id, RoutingStatus.ROUTING.value, locked_before=stale_before),
        )


def create_lead_routing_service(store: Optional[RoutingStore] = None) -> LeadRoutingService:
    """Service wired to Postgres and, when enabled, the Redis duplicate cache"""
    from leadrouter.redis_client import get_redis_client
    from leadrouter.services.routing_store import create_routing_store

    store = store or create_routing_store()
    return LeadRoutingService(
        store,
        duplicate_detector=DuplicateDetector(store, redis_client=get_redis_client())
    )
