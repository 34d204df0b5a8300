"""
Pydantic schemas for routing requests and results
"""

from pydantic import BaseModel, Field, field_validator
from typing import Optional, List, Dict
from uuid import UUID
from datetime import datetime

from leadrouter.config import settings


ALREADY_PROCESSING_REASON = "Failed to acquire routing lock (already being processed)"
LOCK_ERROR_REASON = "Lock acquisition error"


class RouteLeadRequest(BaseModel):
    """Route a single lead out of its source workspace"""
    source_workspace_id: Optional[UUID] = None  # defaults to caller's workspace
    max_retries: int = Field(default=3, ge=1, le=10)


class BulkRouteRequest(BaseModel):
    """Route many leads of one source workspace, sequentially"""
    lead_ids: List[UUID]
    source_workspace_id: Optional[UUID] = None
    max_retries: int = Field(default=3, ge=1, le=10)

    @field_validator('lead_ids')
    @classmethod
    def validate_lead_ids(cls, v):
        if len(v) == 0:
            raise ValueError('lead_ids cannot be empty')
        if len(v) > settings.BULK_ROUTE_MAX_LEADS:
            raise ValueError(f'Maximum {settings.BULK_ROUTE_MAX_LEADS} leads per bulk routing request')
        return v


class RoutingResult(BaseModel):
    """Outcome of a single routing attempt (never raised, always returned)"""
    success: bool
    destination_workspace_id: Optional[UUID] = None
    matched_rule_id: Optional[UUID] = None
    matched_rule_name: Optional[str] = None
    routing_reason: str
    confidence: float = 0.0
    is_duplicate: bool = False
    duplicate_lead_id: Optional[UUID] = None
    error: Optional[str] = None

    @classmethod
    def failure(cls, routing_reason: str, error: str) -> "RoutingResult":
        return cls(success=False, routing_reason=routing_reason, confidence=0.0, error=error)


class BulkRouteError(BaseModel):
    index: int
    lead_id: UUID
    error: str


class BulkRouteResult(BaseModel):
    """Aggregated bulk routing outcome"""
    total: int
    routed: Dict[str, int] = Field(default_factory=dict)  # destination workspace id -> count
    unrouted: int = 0
    failed: int = 0
    duplicates: int = 0
    errors: List[BulkRouteError] = Field(default_factory=list)


class DuplicateMatch(BaseModel):
    """Row returned by check_cross_partner_duplicate"""
    duplicate_lead_id: UUID
    duplicate_workspace_id: UUID


class RetryQueueError(BaseModel):
    lead_id: UUID
    error: str


class RetryQueueResult(BaseModel):
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    errors: List[RetryQueueError] = Field(default_factory=list)


class RetryQueueEntry(BaseModel):
    """Unprocessed lead_routing_queue row due for retry"""
    id: UUID
    lead_id: UUID
    workspace_id: UUID
    attempt_number: int
    max_attempts: int
    error_count: int = 0
    next_retry_at: Optional[datetime] = None
    last_error: Optional[str] = None


class RoutingStats(BaseModel):
    total_leads: int = 0
    routed_away: int = 0
    routed_in: int = 0
    by_industry: Dict[str, int] = Field(default_factory=dict)
    by_region: Dict[str, int] = Field(default_factory=dict)
    by_rule: Dict[str, int] = Field(default_factory=dict)


class RoutingHealth(BaseModel):
    pending_count: int = 0
    routing_count: int = 0
    failed_count: int = 0
    retry_queue_count: int = 0
    stale_lock_count: int = 0
