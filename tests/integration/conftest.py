"""Integration test fixtures: a real PostgreSQL job store."""

from __future__ import annotations

import os
from typing import AsyncGenerator

import pytest
import pytest_asyncio

from chimes.core.stores.postgres import PostgresJobStore

DB_URL = os.environ.get('CHIMES_TEST_DATABASE_URL')


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    if DB_URL:
        return
    skip = pytest.mark.skip(reason='CHIMES_TEST_DATABASE_URL not set')
    for item in items:
        if 'integration' in item.keywords:
            item.add_marker(skip)


@pytest.fixture(scope='session')
def db_url() -> str:
    """Database connection URL."""
    assert DB_URL is not None
    return DB_URL


@pytest_asyncio.fixture
async def store(db_url: str) -> AsyncGenerator[PostgresJobStore, None]:
    """Fresh job store with an empty jobs table."""
    s = PostgresJobStore.from_url(db_url, pool_size=5)
    await s.initialize()
    await s.purge()
    try:
        yield s
    finally:
        await s.purge()
        await s.close()
