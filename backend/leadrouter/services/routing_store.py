# backend/leadrouter/services/routing_store.py
"""
Routing Store - the transactional store behind lead routing

RoutingStore declares the RPC contract (six atomic stored procedures) plus the
plain reads/updates the orchestrator needs. PostgresRoutingStore implements it
on SQLAlchemy async sessions, one short transaction per call.

The store is passed into the services explicitly so the routing logic can be
exercised against a fake in tests.
"""

from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from datetime import datetime
from typing import List, Optional, Union
from uuid import UUID
import logging

from sqlalchemy import select, update, func, or_, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from leadrouter.models import Lead, LeadRoutingRule, LeadRoutingQueue, Workspace
from leadrouter.schemas.routing import DuplicateMatch, RetryQueueEntry

logger = logging.getLogger(__name__)

IdLike = Union[UUID, str]


class RoutingStoreError(Exception):
    """Transient store failure (RPC or query error)."""


def as_uuid(value: Optional[IdLike]) -> Optional[UUID]:
    if value is None or isinstance(value, UUID):
        return value
    return UUID(str(value))


class RoutingStore(ABC):
    """Contract between the routing services and the database."""

    # ------------------------------------------------------------------
    # RPC contract (each call is atomic in the store)
    # ------------------------------------------------------------------

    @abstractmethod
    async def acquire_routing_lock(self, lead_id: IdLike, lock_owner: str) -> bool:
        ...

    @abstractmethod
    async def complete_routing(
        self,
        lead_id: IdLike,
        destination_workspace_id: IdLike,
        matched_rule_id: Optional[IdLike],
        lock_owner: str,
        routing_result: str = "success"
    ) -> bool:
        ...

    @abstractmethod
    async def fail_routing(
        self,
        lead_id: IdLike,
        error_message: str,
        lock_owner: str,
        max_attempts: int,
        retry_base_seconds: int = 60,
        retry_max_seconds: int = 3600
    ) -> bool:
        ...

    @abstractmethod
    async def check_cross_partner_duplicate(
        self,
        dedupe_hash: str,
        source_workspace_id: IdLike
    ) -> List[DuplicateMatch]:
        ...

    @abstractmethod
    async def release_stale_routing_locks(self) -> int:
        ...

    @abstractmethod
    async def mark_expired_leads(self) -> int:
        ...

    # ------------------------------------------------------------------
    # Reads / queue bookkeeping
    # ------------------------------------------------------------------

    @abstractmethod
    async def fetch_lead(self, lead_id: IdLike, workspace_id: IdLike) -> Optional[Lead]:
        """Lead scoped to its workspace; None when absent or owned elsewhere."""

    @abstractmethod
    async def fetch_active_rules(self, workspace_id: IdLike) -> List[LeadRoutingRule]:
        """Active rules of a source workspace, priority descending."""

    @abstractmethod
    async def fetch_workspace(self, workspace_id: IdLike) -> Optional[Workspace]:
        ...

    @abstractmethod
    async def fetch_white_label_workspaces(self) -> List[Workspace]:
        ...

    @abstractmethod
    async def fetch_due_retries(self, limit: int, now: datetime) -> List[RetryQueueEntry]:
        ...

    @abstractmethod
    async def mark_retry_processed(self, entry_id: IdLike, processed_at: datetime) -> None:
        ...

    @abstractmethod
    async def record_retry_error(
        self,
        entry_id: IdLike,
        error: str,
        error_count: int
    ) -> None:
        ...

    @abstractmethod
    async def count_leads(
        self,
        workspace_id: IdLike,
        routing_status: Optional[str] = None,
        locked_before: Optional[datetime] = None
    ) -> int:
        ...

    @abstractmethod
    async def count_open_retries(self, workspace_id: IdLike) -> int:
        ...

    @abstractmethod
    async def fetch_leads_for_stats(self, workspace_id: IdLike, since: datetime) -> List[Lead]:
        """Leads currently in, or originally from, the workspace created since ``since``."""


class PostgresRoutingStore(RoutingStore):
    """RoutingStore backed by Postgres stored procedures."""

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    @asynccontextmanager
    async def _transaction(self):
        """Session inside a transaction; SQLAlchemy errors become RoutingStoreError."""
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    yield session
        except (SQLAlchemyError, OSError) as e:
            logger.error(f"[Routing Store] Database error: {e}")
            raise RoutingStoreError(str(e)) from e

    async def _scalar(self, statement, params: dict):
        async with self._transaction() as session:
            result = await session.execute(statement, params)
            return result.scalar()

    # ------------------------------------------------------------------
    # RPC contract
    # ------------------------------------------------------------------

    async def acquire_routing_lock(self, lead_id: IdLike, lock_owner: str) -> bool:
        acquired = await self._scalar(
            text("SELECT acquire_routing_lock(:lead_id, :lock_owner)"),
            {"lead_id": as_uuid(lead_id), "lock_owner": lock_owner}
        )
        return bool(acquired)

    async def complete_routing(
        self,
        lead_id: IdLike,
        destination_workspace_id: IdLike,
        matched_rule_id: Optional[IdLike],
        lock_owner: str,
        routing_result: str = "success"
    ) -> bool:
        completed = await self._scalar(
            text(
                "SELECT complete_routing(:lead_id, :destination_workspace_id, "
                "CAST(:matched_rule_id AS uuid), :lock_owner, :routing_result)"
            ),
            {
                "lead_id": as_uuid(lead_id),
                "destination_workspace_id": as_uuid(destination_workspace_id),
                "matched_rule_id": as_uuid(matched_rule_id),
                "lock_owner": lock_owner,
                "routing_result": routing_result,
            }
        )
        return bool(completed)

    async def fail_routing(
        self,
        lead_id: IdLike,
        error_message: str,
        lock_owner: str,
        max_attempts: int,
        retry_base_seconds: int = 60,
        retry_max_seconds: int = 3600
    ) -> bool:
        failed = await self._scalar(
            text(
                "SELECT fail_routing(:lead_id, :error_message, :lock_owner, :max_attempts, "
                ":retry_base_seconds, :retry_max_seconds)"
            ),
            {
                "lead_id": as_uuid(lead_id),
                "error_message": error_message,
                "lock_owner": lock_owner,
                "max_attempts": max_attempts,
                "retry_base_seconds": retry_base_seconds,
                "retry_max_seconds": retry_max_seconds,
            }
        )
        return bool(failed)

    async def check_cross_partner_duplicate(
        self,
        dedupe_hash: str,
        source_workspace_id: IdLike
    ) -> List[DuplicateMatch]:
        async with self._transaction() as session:
            result = await session.execute(
                text(
                    "SELECT duplicate_lead_id, duplicate_workspace_id "
                    "FROM check_cross_partner_duplicate(:dedupe_hash, :source_workspace_id)"
                ),
                {"dedupe_hash": dedupe_hash, "source_workspace_id": as_uuid(source_workspace_id)}
            )
            rows = result.mappings().all()

        return [
            DuplicateMatch(
                duplicate_lead_id=row["duplicate_lead_id"],
                duplicate_workspace_id=row["duplicate_workspace_id"]
            )
            for row in rows
        ]

    async def release_stale_routing_locks(self) -> int:
        released = await self._scalar(text("SELECT release_stale_routing_locks()"), {})
        return int(released or 0)

    async def mark_expired_leads(self) -> int:
        expired = await self._scalar(text("SELECT mark_expired_leads()"), {})
        return int(expired or 0)

    # ------------------------------------------------------------------
    # Reads / queue bookkeeping
    # ------------------------------------------------------------------

    async def fetch_lead(self, lead_id: IdLike, workspace_id: IdLike) -> Optional[Lead]:
        async with self._transaction() as session:
            result = await session.execute(
                select(Lead).where(
                    Lead.id == as_uuid(lead_id),
                    Lead.workspace_id == as_uuid(workspace_id)  # explicit tenant scope
                )
            )
            return result.scalar_one_or_none()

    async def fetch_active_rules(self, workspace_id: IdLike) -> List[LeadRoutingRule]:
        async with self._transaction() as session:
            result = await session.execute(
                select(LeadRoutingRule)
                .where(
                    LeadRoutingRule.workspace_id == as_uuid(workspace_id),
                    LeadRoutingRule.is_active == True  # noqa: E712
                )
                .order_by(LeadRoutingRule.priority.desc())
            )
            return list(result.scalars().all())

    async def fetch_workspace(self, workspace_id: IdLike) -> Optional[Workspace]:
        async with self._transaction() as session:
            return await session.get(Workspace, as_uuid(workspace_id))

    async def fetch_white_label_workspaces(self) -> List[Workspace]:
        async with self._transaction() as session:
            result = await session.execute(
                select(Workspace).where(Workspace.is_white_label == True)  # noqa: E712
            )
            return list(result.scalars().all())

    async def fetch_due_retries(self, limit: int, now: datetime) -> List[RetryQueueEntry]:
        async with self._transaction() as session:
            result = await session.execute(
                select(LeadRoutingQueue)
                .where(
                    LeadRoutingQueue.next_retry_at <= now,
                    LeadRoutingQueue.processed_at.is_(None)
                )
                .order_by(LeadRoutingQueue.next_retry_at)
                .limit(limit)
            )
            entries = result.scalars().all()

        return [
            RetryQueueEntry(
                id=entry.id,
                lead_id=entry.lead_id,
                workspace_id=entry.workspace_id,
                attempt_number=entry.attempt_number,
                max_attempts=entry.max_attempts,
                error_count=entry.error_count or 0,
                next_retry_at=entry.next_retry_at,
                last_error=entry.last_error,
            )
            for entry in entries
        ]

    async def mark_retry_processed(self, entry_id: IdLike, processed_at: datetime) -> None:
        async with self._transaction() as session:
            await session.execute(
                update(LeadRoutingQueue)
                .where(LeadRoutingQueue.id == as_uuid(entry_id))
                .values(processed_at=processed_at)
            )

    async def record_retry_error(
        self,
        entry_id: IdLike,
        error: str,
        error_count: int
    ) -> None:
        async with self._transaction() as session:
            await session.execute(
                update(LeadRoutingQueue)
                .where(LeadRoutingQueue.id == as_uuid(entry_id))
                .values(last_error=error, error_count=error_count)
            )

    async def count_leads(
        self,
        workspace_id: IdLike,
        routing_status: Optional[str] = None,
        locked_before: Optional[datetime] = None
    ) -> int:
        query = select(func.count(Lead.id)).where(Lead.workspace_id == as_uuid(workspace_id))
        if routing_status:
            query = query.where(Lead.routing_status == routing_status)
        if locked_before:
            query = query.where(Lead.routing_locked_at < locked_before)

        async with self._transaction() as session:
            result = await session.execute(query)
            return result.scalar() or 0

    async def count_open_retries(self, workspace_id: IdLike) -> int:
        async with self._transaction() as session:
            result = await session.execute(
                select(func.count(LeadRoutingQueue.id)).where(
                    LeadRoutingQueue.workspace_id == as_uuid(workspace_id),
                    LeadRoutingQueue.processed_at.is_(None)
                )
            )
            return result.scalar() or 0

    async def fetch_leads_for_stats(self, workspace_id: IdLike, since: datetime) -> List[Lead]:
        workspace_uuid = as_uuid(workspace_id)
        async with self._transaction() as session:
            result = await session.execute(
                select(Lead).where(
                    or_(
                        Lead.workspace_id == workspace_uuid,
                        Lead.routing_metadata["original_workspace_id"].astext == str(workspace_uuid)
                    ),
                    Lead.created_at >= since
                )
            )
            return list(result.scalars().all())


def create_routing_store(session_factory: Optional[async_sessionmaker] = None) -> PostgresRoutingStore:
    """Factory wired to the application session factory by default"""
    if session_factory is None:
        from leadrouter.database import AsyncSessionLocal
        session_factory = AsyncSessionLocal
    return PostgresRoutingStore(session_factory)
