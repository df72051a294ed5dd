"""Tests for the PostgreSQL store's error mapping.

The asyncpg pool is replaced by a fake, so these run without a database.
"""

from datetime import datetime, timezone
from typing import Any, List, Optional

import asyncpg
import pytest

from voting_portal.shared.database import Database
from voting_portal.shared.errors import DuplicateVoteError, StorageError
from voting_portal.shared.models import Vote


class FakeTransaction:
    def __init__(self, connection):
        self.connection = connection

    async def __aenter__(self):
        self.connection.transactions += 1
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self.connection.rolled_back = exc_type is not None
        return False


class FakeConnection:
    """Connection whose fetchval/execute/fetch results are scripted."""

    def __init__(self, fetchval_result: Any = None, error: Optional[Exception] = None):
        self.fetchval_result = fetchval_result
        self.error = error
        self.executed: List[str] = []
        self.fetchval_args: List[tuple] = []
        self.transactions = 0
        self.rolled_back = False

    def transaction(self):
        return FakeTransaction(self)

    async def fetchval(self, query, *args):
        self.fetchval_args.append(args)
        if self.error:
            raise self.error
        return self.fetchval_result

    async def fetchrow(self, query, *args):
        if self.error:
            raise self.error
        return None

    async def fetch(self, query, *args):
        if self.error:
            raise self.error
        return []

    async def execute(self, query, *args):
        if self.error:
            raise self.error
        self.executed.append(query)


class FakeAcquire:
    def __init__(self, connection):
        self.connection = connection

    async def __aenter__(self):
        return self.connection

    async def __aexit__(self, exc_type, exc, tb):
        return False


class FakePool:
    def __init__(self, connection: FakeConnection):
        self.connection = connection

    def acquire(self):
        return FakeAcquire(self.connection)


def make_database(connection: FakeConnection) -> Database:
    database = Database("postgresql://unused")
    database.pool = FakePool(connection)
    return database


@pytest.fixture
def vote() -> Vote:
    return Vote(
        voter_id="voter-x",
        position_key="president",
        position="President",
        candidate_id="cand-a",
        voted_at=datetime(2025, 1, 1, tzinfo=timezone.utc),
    )


@pytest.mark.asyncio
class TestInsertVote:
    """Tests for Database.insert_vote."""

    async def test_insert_bumps_display_counter(self, vote):
        connection = FakeConnection(fetchval_result=42)
        database = make_database(connection)

        await database.insert_vote(vote)

        assert connection.transactions == 1
        assert len(connection.executed) == 1
        assert "vote_count = vote_count + 1" in connection.executed[0]

    async def test_conflict_without_row_is_duplicate(self, vote):
        connection = FakeConnection(fetchval_result=None)
        database = make_database(connection)

        with pytest.raises(DuplicateVoteError):
            await database.insert_vote(vote)

        # The counter update never runs and the transaction is rolled back
        assert connection.executed == []
        assert connection.rolled_back is True

    async def test_unique_violation_is_duplicate(self, vote):
        database = make_database(
            FakeConnection(error=asyncpg.UniqueViolationError("duplicate key"))
        )

        with pytest.raises(DuplicateVoteError):
            await database.insert_vote(vote)

    @pytest.mark.parametrize("error", [
        asyncpg.PostgresError("server closed"),
        asyncpg.InterfaceError("connection released"),
        ConnectionRefusedError("refused"),
        TimeoutError(),
    ])
    async def test_other_failures_are_storage_errors(self, vote, error):
        database = make_database(FakeConnection(error=error))

        with pytest.raises(StorageError):
            await database.insert_vote(vote)

    async def test_uninitialized_pool(self, vote):
        database = Database("postgresql://unused")

        with pytest.raises(StorageError):
            await database.insert_vote(vote)


@pytest.mark.asyncio
class TestReads:
    """Tests for the read paths."""

    async def test_unknown_voter(self):
        database = make_database(FakeConnection())

        assert await database.get_voter_by_credentials("x@example.org", "SPE-001") is None

    async def test_has_vote(self):
        assert await make_database(FakeConnection(fetchval_result=1)).has_vote("v", "k") is True
        assert await make_database(FakeConnection(fetchval_result=None)).has_vote("v", "k") is False

    async def test_read_failure_is_storage_error(self):
        database = make_database(FakeConnection(error=asyncpg.PostgresError("boom")))

        with pytest.raises(StorageError):
            await database.list_candidates()

    async def test_mark_completed_failure_is_storage_error(self):
        database = make_database(FakeConnection(error=OSError("network down")))

        with pytest.raises(StorageError):
            await database.mark_completed("voter-x")

    async def test_completed_voters_query_uses_position_count(self):
        connection = FakeConnection(fetchval_result=3)
        database = make_database(connection)

        assert await database.count_completed_voters(2) == 3
        assert connection.fetchval_args == [(2,)]


@pytest.mark.asyncio
class TestHealth:
    """Tests for Database.check_health."""

    async def test_healthy(self):
        assert await make_database(FakeConnection(fetchval_result=1)).check_health() is True

    async def test_no_pool(self):
        assert await Database("postgresql://unused").check_health() is False

    async def test_query_failure(self):
        database = make_database(FakeConnection(error=OSError("network down")))

        assert await database.check_health() is False
