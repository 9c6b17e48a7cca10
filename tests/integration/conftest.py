"""Integration fixtures: a live PostgreSQL reachable through RELAYQ_TEST_DATABASE_URL."""

from __future__ import annotations

import os
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy import text

from relayq.collaborators.store_sql import StoreBase, SqlStore
from relayq.core.brokers.postgres import PostgresBroker
from relayq.core.models.broker import PostgresConfig

DB_URL = os.environ.get('RELAYQ_TEST_DATABASE_URL')


@pytest.fixture(scope='session')
def db_url() -> str:
    assert DB_URL is not None
    return DB_URL


@pytest_asyncio.fixture
async def broker(db_url: str) -> AsyncGenerator[PostgresBroker, None]:
    """PostgresBroker on an empty task table."""
    brk = PostgresBroker(PostgresConfig(database_url=db_url))
    await brk.ensure_schema_initialized()
    async with brk.async_engine.begin() as conn:
        await conn.execute(text('DELETE FROM relayq_tasks'))
    yield brk
    await brk.close()


@pytest_asyncio.fixture
async def store(db_url: str) -> AsyncGenerator[SqlStore, None]:
    """SqlStore on empty application tables."""
    sql_store = SqlStore.from_url(db_url)
    await sql_store.create_schema()
    async with sql_store.engine.begin() as conn:
        for table in reversed(StoreBase.metadata.sorted_tables):
            await conn.execute(table.delete())
    yield sql_store
    await sql_store.close()
