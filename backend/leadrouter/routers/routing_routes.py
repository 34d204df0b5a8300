"""
Lead Routing Routes
Route leads between workspaces, inspect routing health, trigger maintenance
"""
from fastapi import APIRouter, Depends, HTTPException, Query
from typing import Optional
from uuid import UUID
import logging

from leadrouter.auth import CurrentUser, get_current_user, get_current_admin_user
from leadrouter.schemas.routing import (
    BulkRouteRequest,
    BulkRouteResult,
    RetryQueueResult,
    RouteLeadRequest,
    RoutingHealth,
    RoutingResult,
    RoutingStats,
)
from leadrouter.services import maintenance
from leadrouter.services.lead_routing_service import LeadRoutingService, create_lead_routing_service
from leadrouter.services.retry_queue import RetryQueueProcessor

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/routing", tags=["Lead Routing"])


def get_routing_service() -> LeadRoutingService:
    return create_lead_routing_service()


def _scoped_workspace(current_user: CurrentUser, workspace_id: Optional[UUID]) -> UUID:
    """Callers may only act on their own workspace"""
    workspace_id = workspace_id or current_user.workspace_id
    if workspace_id != current_user.workspace_id:
        logger.warning(
            f"[Lead Routing] User {current_user.user_id} denied access to workspace {workspace_id}"
        )
        raise HTTPException(status_code=403, detail="Access denied to this workspace")
    return workspace_id


# ============================================================================
# ROUTING
# ============================================================================

@router.post("/leads/{lead_id}/route", response_model=RoutingResult)
async def route_lead(
    lead_id: UUID,
    request: Optional[RouteLeadRequest] = None,
    current_user: CurrentUser = Depends(get_current_user),
    service: LeadRoutingService = Depends(get_routing_service)
):
    """Route a single lead out of the caller's workspace"""
    request = request or RouteLeadRequest()
    source_workspace_id = _scoped_workspace(current_user, request.source_workspace_id)

    return await service.route_lead(
        lead_id,
        source_workspace_id,
        user_id=current_user.user_id,
        max_retries=request.max_retries
    )


@router.post("/leads/bulk", response_model=BulkRouteResult)
async def route_leads_bulk(
    request: BulkRouteRequest,
    current_user: CurrentUser = Depends(get_current_user),
    service: LeadRoutingService = Depends(get_routing_service)
):
    """Route many leads sequentially; per-lead failures are reported, not raised"""
    source_workspace_id = _scoped_workspace(current_user, request.source_workspace_id)

    return await service.route_leads_bulk(
        request.lead_ids,
        source_workspace_id,
        user_id=current_user.user_id,
        max_retries=request.max_retries
    )


@router.get("/leads/{lead_id}/suggested-workspace")
async def suggest_workspace(
    lead_id: UUID,
    current_user: CurrentUser = Depends(get_current_user),
    service: LeadRoutingService = Depends(get_routing_service)
):
    """Best white-label workspace for a lead (advisory, nothing is moved)"""
    workspace = await service.suggest_workspace(lead_id, current_user.workspace_id)
    return {
        "lead_id": str(lead_id),
        "workspace_id": str(workspace.id) if workspace else None,
        "workspace_name": workspace.name if workspace else None
    }


# ============================================================================
# STATS & HEALTH
# ============================================================================

@router.get("/workspaces/{workspace_id}/stats", response_model=RoutingStats)
async def get_routing_stats(
    workspace_id: UUID,
    days: int = Query(30, ge=1, le=365),
    current_user: CurrentUser = Depends(get_current_user),
    service: LeadRoutingService = Depends(get_routing_service)
):
    _scoped_workspace(current_user, workspace_id)
    try:
        return await service.get_routing_stats(workspace_id, days=days)
    except Exception as e:
        logger.error(f"[Lead Routing] Stats query failed for workspace {workspace_id}: {e}")
        raise HTTPException(status_code=503, detail="Routing stats unavailable")


@router.get("/workspaces/{workspace_id}/health", response_model=RoutingHealth)
async def get_routing_health(
    workspace_id: UUID,
    current_user: CurrentUser = Depends(get_current_user),
    service: LeadRoutingService = Depends(get_routing_service)
):
    _scoped_workspace(current_user, workspace_id)
    try:
        return await service.get_routing_health(workspace_id)
    except Exception as e:
        logger.error(f"[Lead Routing] Health query failed for workspace {workspace_id}: {e}")
        raise HTTPException(status_code=503, detail="Routing health unavailable")


# ============================================================================
# ADMIN TRIGGERS
# ============================================================================

@router.post("/retry-queue/process", response_model=RetryQueueResult)
async def process_retry_queue(
    limit: int = Query(100, ge=1, le=1000),
    current_user: CurrentUser = Depends(get_current_admin_user),
    service: LeadRoutingService = Depends(get_routing_service)
):
    logger.info(f"[Lead Routing] Retry queue triggered by {current_user.user_id}")
    return await RetryQueueProcessor(service).process_retry_queue(limit=limit)


@router.post("/maintenance/stale-locks")
async def release_stale_locks(
    current_user: CurrentUser = Depends(get_current_admin_user),
    service: LeadRoutingService = Depends(get_routing_service)
):
    return await maintenance.cleanup_stale_locks(service.store)


@router.post("/maintenance/expired-leads")
async def expire_leads(
    current_user: CurrentUser = Depends(get_current_admin_user),
    service: LeadRoutingService = Depends(get_routing_service)
):
    return await maintenance.mark_expired_leads(service.store)
