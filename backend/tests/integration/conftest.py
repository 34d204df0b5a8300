# tests/integration/conftest.py
"""Integration test fixtures - real Postgres with the routing functions installed"""

import os
import pytest
import pytest_asyncio
from sqlalchemy import text
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from uuid import uuid4

from leadrouter.database import Base
from leadrouter import models  # noqa: F401
from leadrouter.models import Lead, LeadRoutingRule, Workspace
from leadrouter.routing_functions import install_routing_functions
from leadrouter.services.routing_store import PostgresRoutingStore

TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL")


def pytest_collection_modifyitems(config, items):
    if TEST_DATABASE_URL:
        return
    skip = pytest.mark.skip(reason="TEST_DATABASE_URL not set")
    for item in items:
        if "integration" in item.keywords:
            item.add_marker(skip)


@pytest_asyncio.fixture
async def test_engine():
    """Fresh schema + routing functions for each test"""
    engine = create_async_engine(TEST_DATABASE_URL.replace("postgresql://", "postgresql+asyncpg://"))

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
        await install_routing_functions(conn)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return async_sessionmaker(test_engine, expire_on_commit=False)


@pytest.fixture
def pg_store(session_factory):
    return PostgresRoutingStore(session_factory)


@pytest.fixture
def seed(session_factory):
    """Insert a row and return it"""
    async def _seed(row):
        async with session_factory() as session:
            session.add(row)
            await session.commit()
        return row
    return _seed


@pytest.fixture
def make_workspace(seed):
    async def _make(**fields):
        return await seed(Workspace(id=uuid4(), name=fields.pop("name", "Workspace"), **fields))
    return _make


@pytest.fixture
def make_lead(seed):
    async def _make(workspace_id, **fields):
        return await seed(Lead(id=uuid4(), workspace_id=workspace_id, **fields))
    return _make


@pytest.fixture
def make_rule(seed):
    async def _make(workspace_id, destination_workspace_id, **fields):
        return await seed(LeadRoutingRule(
            id=uuid4(),
            workspace_id=workspace_id,
            destination_workspace_id=destination_workspace_id,
            rule_name=fields.pop("rule_name", "Rule"),
            **fields
        ))
    return _make


@pytest.fixture
def run_sql(session_factory):
    async def _run(sql, **params):
        async with session_factory() as session:
            result = await session.execute(text(sql), params)
            await session.commit()
            return result
    return _run
