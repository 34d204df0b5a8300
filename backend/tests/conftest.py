# tests/conftest.py

import pytest
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from typing import List, Optional
from uuid import UUID, uuid4
from unittest.mock import AsyncMock, MagicMock

from leadrouter.models import Lead, LeadRoutingRule, Workspace
from leadrouter.schemas.routing import DuplicateMatch, RetryQueueEntry
from leadrouter.services.routing_store import RoutingStore, as_uuid

LOCK_TIMEOUT = timedelta(minutes=5)


class FakeRoutingStore(RoutingStore):
    """
    In-memory RoutingStore with the same semantics as the Postgres functions.

    Time is driven by ``self.now`` so tests can age locks and retries.
    """

    def __init__(self):
        self.now = datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)
        self.workspaces = {}
        self.leads = {}
        self.rules = []
        self.queue = []
        self.logs = []

    # ------------------------------------------------------------------
    # Setup helpers
    # ------------------------------------------------------------------

    def add_workspace(self, **fields) -> Workspace:
        defaults = {
            "id": uuid4(),
            "name": "Workspace",
            "workspace_type": "standard",
            "is_white_label": False,
            "allowed_industries": [],
            "allowed_regions": [],
        }
        defaults.update(fields)
        workspace = Workspace(**defaults)
        self.workspaces[workspace.id] = workspace
        return workspace

    def add_lead(self, workspace_id: UUID, **fields) -> Lead:
        defaults = {
            "id": uuid4(),
            "workspace_id": workspace_id,
            "routing_status": "pending",
            "routing_attempts": 0,
            "routing_metadata": {},
            "company_location": {},
            "created_at": self.now,
        }
        defaults.update(fields)
        lead = Lead(**defaults)
        self.leads[lead.id] = lead
        return lead

    def add_rule(self, workspace_id: UUID, destination_workspace_id: UUID, **fields) -> LeadRoutingRule:
        defaults = {
            "id": uuid4(),
            "workspace_id": workspace_id,
            "destination_workspace_id": destination_workspace_id,
            "rule_name": "Rule",
            "priority": 50,
            "is_active": True,
            "conditions": {},
        }
        defaults.update(fields)
        rule = LeadRoutingRule(**defaults)
        self.rules.append(rule)
        return rule

    def open_entry(self, lead_id) -> Optional[SimpleNamespace]:
        for entry in self.queue:
            if entry.lead_id == as_uuid(lead_id) and entry.processed_at is None:
                return entry
        return None

    def _locked_by(self, lead_id, lock_owner) -> Optional[Lead]:
        lead = self.leads.get(as_uuid(lead_id))
        if lead is None or lead.routing_status != "routing" or lead.routing_locked_by != lock_owner:
            return None
        return lead

    def _close_open_entry(self, lead_id, last_error: Optional[str] = None):
        entry = self.open_entry(lead_id)
        if entry is not None:
            entry.processed_at = self.now
            if last_error is not None:
                entry.last_error = last_error

    # ------------------------------------------------------------------
    # RPC contract
    # ------------------------------------------------------------------

    async def acquire_routing_lock(self, lead_id, lock_owner) -> bool:
        lead = self.leads.get(as_uuid(lead_id))
        if lead is None or lead.routing_status not in ("pending", "routing"):
            return False
        if lead.routing_locked_by is not None and lead.routing_locked_at >= self.now - LOCK_TIMEOUT:
            return False

        lead.routing_status = "routing"
        lead.routing_locked_by = lock_owner
        lead.routing_locked_at = self.now
        lead.routing_attempts = (lead.routing_attempts or 0) + 1
        return True

    async def complete_routing(self, lead_id, destination_workspace_id, matched_rule_id, lock_owner,
                               routing_result="success") -> bool:
        lead = self._locked_by(lead_id, lock_owner)
        if lead is None:
            return False

        source = lead.workspace_id
        metadata = dict(lead.routing_metadata or {})
        metadata.setdefault("original_workspace_id", str(source))
        metadata["routing_result"] = routing_result

        lead.workspace_id = as_uuid(destination_workspace_id)
        lead.routing_status = "routed"
        lead.routing_locked_by = None
        lead.routing_locked_at = None
        lead.routing_error = None
        lead.routing_rule_id = as_uuid(matched_rule_id)
        lead.routed_at = self.now
        lead.routing_metadata = metadata

        self._close_open_entry(lead_id)
        self.logs.append(SimpleNamespace(
            lead_id=lead.id,
            source_workspace_id=source,
            destination_workspace_id=lead.workspace_id,
            matched_rule_id=lead.routing_rule_id,
            routing_result=routing_result,
            error_message=None,
        ))
        return True

    async def fail_routing(self, lead_id, error_message, lock_owner, max_attempts,
                           retry_base_seconds=60, retry_max_seconds=3600) -> bool:
        lead = self._locked_by(lead_id, lock_owner)
        if lead is None:
            return False

        lead.routing_locked_by = None
        lead.routing_locked_at = None
        lead.routing_error = error_message

        if lead.routing_attempts < max_attempts:
            lead.routing_status = "pending"
            delay = min(retry_base_seconds * 2 ** max(lead.routing_attempts - 1, 0), retry_max_seconds)
            entry = self.open_entry(lead.id)
            if entry is None:
                entry = SimpleNamespace(
                    id=uuid4(),
                    lead_id=lead.id,
                    workspace_id=lead.workspace_id,
                    error_count=0,
                    processed_at=None,
                )
                self.queue.append(entry)
            entry.attempt_number = lead.routing_attempts
            entry.max_attempts = max_attempts
            entry.next_retry_at = self.now + timedelta(seconds=delay)
            entry.last_error = error_message
        else:
            lead.routing_status = "failed"
            self._close_open_entry(lead.id, error_message)
            self.logs.append(SimpleNamespace(
                lead_id=lead.id,
                source_workspace_id=lead.workspace_id,
                destination_workspace_id=None,
                matched_rule_id=None,
                routing_result="failed",
                error_message=error_message,
            ))
        return True

    async def check_cross_partner_duplicate(self, dedupe_hash, source_workspace_id) -> List[DuplicateMatch]:
        matches = [
            lead for lead in self.leads.values()
            if lead.dedupe_hash == dedupe_hash
            and lead.workspace_id != as_uuid(source_workspace_id)
            and lead.routing_status == "routed"
        ]
        matches.sort(key=lambda lead: lead.routed_at or lead.created_at)
        return [
            DuplicateMatch(duplicate_lead_id=lead.id, duplicate_workspace_id=lead.workspace_id)
            for lead in matches
        ]

    async def release_stale_routing_locks(self) -> int:
        released = 0
        for lead in self.leads.values():
            if lead.routing_status == "routing" and lead.routing_locked_at < self.now - LOCK_TIMEOUT:
                lead.routing_status = "pending"
                lead.routing_locked_by = None
                lead.routing_locked_at = None
                released += 1
        return released

    async def mark_expired_leads(self) -> int:
        expired = 0
        for lead in self.leads.values():
            if (
                lead.routing_status == "pending"
                and lead.lead_expires_at is not None
                and lead.lead_expires_at < self.now
            ):
                lead.routing_status = "expired"
                self._close_open_entry(lead.id)
                expired += 1
        return expired

    # ------------------------------------------------------------------
    # Reads / queue bookkeeping
    # ------------------------------------------------------------------

    async def fetch_lead(self, lead_id, workspace_id):
        lead = self.leads.get(as_uuid(lead_id))
        if lead is None or lead.workspace_id != as_uuid(workspace_id):
            return None
        return lead

    async def fetch_active_rules(self, workspace_id):
        rules = [r for r in self.rules if r.workspace_id == as_uuid(workspace_id) and r.is_active]
        return sorted(rules, key=lambda r: r.priority, reverse=True)

    async def fetch_workspace(self, workspace_id):
        return self.workspaces.get(as_uuid(workspace_id))

    async def fetch_white_label_workspaces(self):
        return [ws for ws in self.workspaces.values() if ws.is_white_label]

    async def fetch_due_retries(self, limit, now):
        due = [e for e in self.queue if e.processed_at is None and e.next_retry_at <= now]
        due.sort(key=lambda e: e.next_retry_at)
        return [
            RetryQueueEntry(
                id=e.id,
                lead_id=e.lead_id,
                workspace_id=e.workspace_id,
                attempt_number=e.attempt_number,
                max_attempts=e.max_attempts,
                error_count=e.error_count,
                next_retry_at=e.next_retry_at,
                last_error=e.last_error,
            )
            for e in due[:limit]
        ]

    async def mark_retry_processed(self, entry_id, processed_at):
        for entry in self.queue:
            if entry.id == as_uuid(entry_id):
                entry.processed_at = processed_at

    async def record_retry_error(self, entry_id, error, error_count):
        for entry in self.queue:
            if entry.id == as_uuid(entry_id):
                entry.last_error = error
                entry.error_count = error_count

    async def count_leads(self, workspace_id, routing_status=None, locked_before=None):
        return sum(
            1 for lead in self.leads.values()
            if lead.workspace_id == as_uuid(workspace_id)
            and (routing_status is None or lead.routing_status == routing_status)
            and (locked_before is None or (lead.routing_locked_at is not None and lead.routing_locked_at < locked_before))
        )

    async def count_open_retries(self, workspace_id):
        return sum(
            1 for e in self.queue
            if e.workspace_id == as_uuid(workspace_id) and e.processed_at is None
        )

    async def fetch_leads_for_stats(self, workspace_id, since):
        key = str(workspace_id)
        return [
            lead for lead in self.leads.values()
            if (str(lead.workspace_id) == key or (lead.routing_metadata or {}).get("original_workspace_id") == key)
            and lead.created_at >= since
        ]


# ============================================================================
# FIXTURES
# ============================================================================

@pytest.fixture
def fake_store():
    """In-memory store implementing the routing RPC contract"""
    return FakeRoutingStore()


@pytest.fixture
def source_workspace(fake_store):
    return fake_store.add_workspace(name="Source Agency")


@pytest.fixture
def partner_workspace(fake_store):
    return fake_store.add_workspace(name="Partner Co", workspace_type="partner")


@pytest.fixture
def mock_store():
    """AsyncMock store - every RPC succeeds unless a test overrides it"""
    store = MagicMock(spec=RoutingStore)
    store.acquire_routing_lock = AsyncMock(return_value=True)
    store.complete_routing = AsyncMock(return_value=True)
    store.fail_routing = AsyncMock(return_value=True)
    store.check_cross_partner_duplicate = AsyncMock(return_value=[])
    store.release_stale_routing_locks = AsyncMock(return_value=0)
    store.mark_expired_leads = AsyncMock(return_value=0)
    store.fetch_lead = AsyncMock(return_value=None)
    store.fetch_active_rules = AsyncMock(return_value=[])
    store.fetch_workspace = AsyncMock(return_value=None)
    store.fetch_due_retries = AsyncMock(return_value=[])
    store.mark_retry_processed = AsyncMock()
    store.record_retry_error = AsyncMock()
    store.count_leads = AsyncMock(return_value=0)
    store.count_open_retries = AsyncMock(return_value=0)
    store.fetch_leads_for_stats = AsyncMock(return_value=[])
    return store


@pytest.fixture
def sample_lead():
    """Technology lead in California"""
    return Lead(
        id=uuid4(),
        workspace_id=uuid4(),
        email="jane@acme.io",
        first_name="Jane",
        last_name="Doe",
        company_name="Acme",
        company_industry="Technology",
        company_size="51-200",
        company_revenue="$10M-$50M",
        company_location={"country": "US", "state": "CA"},
        routing_status="pending",
        routing_attempts=0,
        routing_metadata={},
    )


def pytest_configure(config):
    config.addinivalue_line("markers", "unit: unit tests")
    config.addinivalue_line("markers", "integration: integration tests")
