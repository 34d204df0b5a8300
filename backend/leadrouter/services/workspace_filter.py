# backend/leadrouter/services/workspace_filter.py
"""
Workspace Filter Fallback

Used only when no routing rule matches. The verdict annotates the routing
reason and confidence; the lead is kept in its source workspace either way.
"""

from dataclasses import dataclass
from typing import Any, Iterable, Optional
import logging

from leadrouter.schemas.conditions import lead_country, lead_state

logger = logging.getLogger(__name__)


@dataclass
class FilterResult:
    """Workspace filter verdict"""
    match: bool
    reason: str
    confidence: float


def check_filters(lead: Any, workspace: Optional[Any]) -> FilterResult:
    """
    Check a lead against a workspace's allow-lists.

    An empty allow-list accepts everything. Region allow-lists may hold
    country codes or US state codes.
    """
    if workspace is None:
        return FilterResult(match=False, reason="Workspace not found", confidence=0.0)

    allowed_industries = workspace.allowed_industries or []
    allowed_regions = workspace.allowed_regions or []

    industry = getattr(lead, "company_industry", None)
    country = lead_country(lead)
    state = lead_state(lead)

    industry_match = len(allowed_industries) == 0 or (
        industry is not None and industry in allowed_industries
    )
    region_match = (
        len(allowed_regions) == 0
        or (country is not None and country in allowed_regions)
        or (state is not None and state in allowed_regions)
    )

    if industry_match and region_match:
        return FilterResult(
            match=True,
            reason="Matches workspace filters",
            confidence=0.7
        )

    return FilterResult(
        match=False,
        reason="No matching rules or filters, kept in source workspace",
        confidence=0.5
    )


def score_workspace(lead: Any, workspace: Any) -> int:
    """Industry match 10 (open list 5), region match 5 (open list 2)"""
    score = 0
    allowed_industries = workspace.allowed_industries or []
    allowed_regions = workspace.allowed_regions or []

    industry = getattr(lead, "company_industry", None)
    country = lead_country(lead)
    state = lead_state(lead)

    if industry and industry in allowed_industries:
        score += 10
    elif len(allowed_industries) == 0:
        score += 5

    if (country and country in allowed_regions) or (state and state in allowed_regions):
        score += 5
    elif len(allowed_regions) == 0:
        score += 2

    return score


def find_best_workspace(lead: Any, workspaces: Iterable[Any]) -> Optional[Any]:
    """Best-scoring candidate workspace for a lead, or None if nothing scores."""
    scored = [(score_workspace(lead, ws), ws) for ws in workspaces]
    if not scored:
        return None

    # Stable: ties keep candidate order
    scored.sort(key=lambda pair: pair[0], reverse=True)
    best_score, best = scored[0]

    logger.debug(f"Best workspace for lead {getattr(lead, 'id', None)}: {getattr(best, 'id', None)} (score={best_score})")
    return best if best_score > 0 else None
