"""Pydantic schemas for request/response validation."""

from enum import Enum

from leadrouter.schemas.conditions import (
    RuleConditions,
    ConditionClause,
    STATE_REGION_MAP,
    region_for_state,
)
from leadrouter.schemas.routing import (
    RouteLeadRequest,
    BulkRouteRequest,
    RoutingResult,
    BulkRouteResult,
    BulkRouteError,
    DuplicateMatch,
    RetryQueueEntry,
    RetryQueueResult,
    RetryQueueError,
    RoutingStats,
    RoutingHealth,
)


class RoutingStatus(str, Enum):
    PENDING = "pending"
    ROUTING = "routing"
    ROUTED = "routed"
    FAILED = "failed"
    EXPIRED = "expired"


class RoutingLogResult(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    DUPLICATE = "duplicate"
