"""
Integration test fixtures.

End-to-end tests run against the FakeLedger market. Tests that need a real
PostgreSQL server are skipped unless INTEGRATION_DATABASE_URL is set.
"""
import os

import pytest
import pytest_asyncio

from commitment_guard.storage import Database, DatabaseConfig

# Mark all tests in this directory as integration tests
pytestmark = pytest.mark.integration


@pytest.fixture(scope="module")
def integration_db_url():
    """
    Integration database URL, or None when no server is available.

    Integration tests use a separate database to avoid interfering with a
    deployed guard's lock records.
    """
    return os.environ.get("INTEGRATION_DATABASE_URL")


@pytest_asyncio.fixture
async def integration_db(integration_db_url):
    if not integration_db_url:
        pytest.skip("INTEGRATION_DATABASE_URL not set")

    database = Database(DatabaseConfig(url=integration_db_url))
    await database.initialize()

    yield database

    await database.close()
