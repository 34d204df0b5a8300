# backend/leadrouter/models.py
"""
SQLAlchemy ORM models for multi-tenant lead routing.

Tables:
1. workspaces          - tenants (standard / partner / white-label)
2. leads               - one row per lead, carries the routing state block
3. lead_routing_rules  - prioritised predicates owned by a source workspace
4. lead_routing_queue  - retry work-list mirror (never the source of truth)
5. lead_routing_logs   - append-only audit trail
"""

from sqlalchemy import (
    Column, String, Boolean, Integer, Text, DateTime, Index,
    ForeignKey, CheckConstraint, ARRAY
)
from sqlalchemy.dialects.postgresql import UUID, JSONB
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from leadrouter.database import Base
import uuid


ROUTING_STATUSES = ("pending", "routing", "routed", "failed", "expired")
ROUTING_RESULTS = ("success", "failed", "duplicate")


# ============================================================================
# WORKSPACE MODEL
# ============================================================================

class Workspace(Base):
    """Tenant account (customer or partner)."""
    __tablename__ = "workspaces"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    workspace_type = Column(String(50), nullable=False, default="standard")
    is_white_label = Column(Boolean, nullable=False, default=False)

    # Fallback filters (empty list = accept everything)
    allowed_industries = Column(ARRAY(Text), nullable=False, default=list)
    allowed_regions = Column(ARRAY(Text), nullable=False, default=list)
    routing_config = Column(JSONB, default=dict)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        CheckConstraint("workspace_type IN ('standard', 'partner')", name="chk_workspace_type"),
    )

    def __repr__(self):
        return f"<Workspace(id={self.id}, name='{self.name}', type='{self.workspace_type}')>"


# ============================================================================
# LEAD MODEL
# ============================================================================

class Lead(Base):
    """
    Lead owned by exactly one workspace at any instant.

    routing_status = 'routing' <=> routing_locked_by / routing_locked_at are set.
    """
    __tablename__ = "leads"

    # ========================================================================
    # BASIC INFO
    # ========================================================================
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    workspace_id = Column(UUID(as_uuid=True), ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False, index=True)

    email = Column(String(255))
    first_name = Column(String(100))
    last_name = Column(String(100))

    # ========================================================================
    # COMPANY INFO
    # ========================================================================
    company_name = Column(String(255))
    company_industry = Column(String(255))
    company_size = Column(String(50))
    company_revenue = Column(String(100))
    company_location = Column(JSONB, default=dict)  # {"country": "US", "state": "CA"}

    # Content fingerprint for cross-partner duplicate detection
    dedupe_hash = Column(String(128), index=True)

    # ========================================================================
    # ROUTING STATE
    # ========================================================================
    routing_status = Column(String(20), nullable=False, default="pending", server_default="pending", index=True)
    routing_locked_by = Column(String(64))
    routing_locked_at = Column(DateTime(timezone=True))
    routing_attempts = Column(Integer, nullable=False, default=0, server_default="0")
    routing_error = Column(Text)
    routing_rule_id = Column(UUID(as_uuid=True), ForeignKey("lead_routing_rules.id", ondelete="SET NULL"))
    routing_metadata = Column(JSONB, default=dict)
    routed_at = Column(DateTime(timezone=True))
    lead_expires_at = Column(DateTime(timezone=True), index=True)

    # ========================================================================
    # TIMESTAMPS
    # ========================================================================
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    __table_args__ = (
        CheckConstraint(
            f"routing_status IN ({', '.join(repr(s) for s in ROUTING_STATUSES)})",
            name="chk_lead_routing_status"
        ),
        CheckConstraint("routing_attempts >= 0", name="chk_lead_routing_attempts"),
        Index("idx_leads_workspace_routing_status", "workspace_id", "routing_status"),
    )

    def __repr__(self):
        return f"<Lead(id={self.id}, workspace={self.workspace_id}, status='{self.routing_status}')>"


# ============================================================================
# ROUTING RULES
# ============================================================================

class LeadRoutingRule(Base):
    """Prioritised routing rule owned by a source workspace."""
    __tablename__ = "lead_routing_rules"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    workspace_id = Column(UUID(as_uuid=True), ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False, index=True)
    rule_name = Column(String(255), nullable=False)
    destination_workspace_id = Column(UUID(as_uuid=True), ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False)
    priority = Column(Integer, nullable=False, default=50)
    is_active = Column(Boolean, nullable=False, default=True)

    conditions = Column(JSONB, nullable=False, default=dict)
    # Example: {
    #   "industries": ["Technology"],
    #   "company_sizes": ["51-200"],
    #   "revenue_ranges": ["$10M-$50M"],
    #   "countries": ["US"],
    #   "us_states": ["CA", "WA"],
    #   "regions": ["West"]
    # }

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    destination_workspace = relationship("Workspace", foreign_keys=[destination_workspace_id])

    __table_args__ = (
        Index("idx_routing_rules_active_priority", "workspace_id", "is_active", "priority"),
    )

    def __repr__(self):
        return f"<LeadRoutingRule(id={self.id}, name='{self.rule_name}', priority={self.priority})>"


# ============================================================================
# RETRY QUEUE
# ============================================================================

class LeadRoutingQueue(Base):
    """Retry work-list entry, created by fail_routing under the attempt limit."""
    __tablename__ = "lead_routing_queue"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    lead_id = Column(UUID(as_uuid=True), ForeignKey("leads.id", ondelete="CASCADE"), nullable=False, index=True)
    workspace_id = Column(UUID(as_uuid=True), ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False, index=True)
    attempt_number = Column(Integer, nullable=False, default=1)
    max_attempts = Column(Integer, nullable=False, default=3)
    next_retry_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    last_error = Column(Text)
    error_count = Column(Integer, nullable=False, default=0)
    processed_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        Index("idx_routing_queue_due", "next_retry_at", postgresql_where=processed_at.is_(None)),
        Index(
            "uq_routing_queue_open_lead", "lead_id",
            unique=True, postgresql_where=processed_at.is_(None)
        ),
    )


# ============================================================================
# ROUTING LOG (append-only)
# ============================================================================

class LeadRoutingLog(Base):
    """Immutable audit row, one per completed or permanently failed attempt."""
    __tablename__ = "lead_routing_logs"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    lead_id = Column(UUID(as_uuid=True), ForeignKey("leads.id", ondelete="CASCADE"), nullable=False, index=True)
    source_workspace_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    destination_workspace_id = Column(UUID(as_uuid=True))
    matched_rule_id = Column(UUID(as_uuid=True))
    routing_result = Column(String(20), nullable=False)
    error_message = Column(Text)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)

    __table_args__ = (
        CheckConstraint(
            f"routing_result IN ({', '.join(repr(s) for s in ROUTING_RESULTS)})",
            name="chk_routing_log_result"
        ),
    )
