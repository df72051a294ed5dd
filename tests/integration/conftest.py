"""Pytest fixtures for integration tests.

This module connects the vote store to a real PostgreSQL server, creates the
schema and seeds a small catalog before each test. Connection settings come
from the usual POSTGRES_* environment variables.
"""

import os
from typing import AsyncGenerator

import pytest
import pytest_asyncio

from voting_portal.aggregation.aggregator import ResultsAggregator
from voting_portal.shared.database import Database
from voting_portal.shared.models import AuthenticatedVoter, PositionNormalizer
from voting_portal.voting_api.engine import VotingEngine


def postgres_dsn() -> str:
    return (
        f"postgresql://{os.getenv('POSTGRES_USER', 'election_user')}"
        f":{os.getenv('POSTGRES_PASSWORD', 'election_pass')}"
        f"@{os.getenv('POSTGRES_HOST', 'localhost')}"
        f":{os.getenv('POSTGRES_PORT', '5432')}"
        f"/{os.getenv('POSTGRES_DB', 'election_db')}"
    )


@pytest_asyncio.fixture
async def database() -> AsyncGenerator[Database, None]:
    """Database store with a fresh schema and seeded catalog.

    Catalog: {"President": [cand-a, cand-b], "Treasurer": [cand-c]}.
    Voters: voter-x, voter-y.
    """
    store = Database(postgres_dsn(), min_size=1, max_size=10, create_schema=True)
    try:
        await store.initialize()
    except Exception as e:
        pytest.skip(f"PostgreSQL not available: {e}")

    async with store.pool.acquire() as conn:
        await conn.execute("TRUNCATE TABLE votes, candidates, voters RESTART IDENTITY CASCADE")
        await conn.executemany(
            "INSERT INTO voters (id, email, spe_number, level) VALUES ($1, $2, $3, $4)",
            [
                ("voter-x", "x@example.org", "SPE-001", 0),
                ("voter-y", "y@example.org", "SPE-002", 0),
            ]
        )
        await conn.executemany(
            "INSERT INTO candidates (id, full_name, position) VALUES ($1, $2, $3)",
            [
                ("cand-a", "Alice Adams", "President"),
                ("cand-b", "Bob Brown", "President"),
                ("cand-c", "Carol Clark", "Treasurer"),
            ]
        )

    yield store

    await store.close()


@pytest.fixture
def engine(database: Database) -> VotingEngine:
    return VotingEngine(database, PositionNormalizer())


@pytest.fixture
def aggregator(database: Database) -> ResultsAggregator:
    return ResultsAggregator(database, PositionNormalizer())


@pytest.fixture
def voter_x() -> AuthenticatedVoter:
    return AuthenticatedVoter("voter-x", "x@example.org", "SPE-001")


@pytest.fixture
def voter_y() -> AuthenticatedVoter:
    return AuthenticatedVoter("voter-y", "y@example.org", "SPE-002")
