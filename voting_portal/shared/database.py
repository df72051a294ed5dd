"""PostgreSQL vote store backed by an asyncpg connection pool."""
import asyncio
import logging
from typing import Dict, List, Optional

import asyncpg

from .errors import DuplicateVoteError, StorageError
from .models import Candidate, Vote, Voter
from .store import VoteStore

logger = logging.getLogger(__name__)

# Failures that mean "the store could not answer", as opposed to a rejected write
STORAGE_ERRORS = (
    asyncpg.PostgresError,
    asyncpg.InterfaceError,
    OSError,
    asyncio.TimeoutError,
)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS voters (
    id TEXT PRIMARY KEY DEFAULT gen_random_uuid()::text,
    email TEXT NOT NULL UNIQUE,
    spe_number TEXT NOT NULL UNIQUE,
    level INTEGER NOT NULL DEFAULT 0,
    has_voted BOOLEAN NOT NULL DEFAULT FALSE,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS candidates (
    id TEXT PRIMARY KEY DEFAULT gen_random_uuid()::text,
    catalog_order BIGSERIAL UNIQUE,
    full_name TEXT NOT NULL,
    position TEXT NOT NULL,
    bio TEXT NOT NULL DEFAULT '',
    image_url TEXT,
    vote_count INTEGER NOT NULL DEFAULT 0,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS votes (
    id BIGSERIAL PRIMARY KEY,
    voter_id TEXT NOT NULL REFERENCES voters(id),
    position_key TEXT NOT NULL,
    position TEXT NOT NULL,
    candidate_id TEXT NOT NULL REFERENCES candidates(id),
    voted_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    CONSTRAINT votes_voter_position_key UNIQUE (voter_id, position_key)
);

CREATE INDEX IF NOT EXISTS idx_votes_candidate_id ON votes (candidate_id);
"""


class Database(VoteStore):
    """Async PostgreSQL vote store."""

    def __init__(
        self,
        dsn: str,
        min_size: int = 2,
        max_size: int = 10,
        create_schema: bool = False,
        command_timeout: float = 60
    ):
        self.dsn = dsn
        self.min_size = min_size
        self.max_size = max_size
        self.create_schema = create_schema
        self.command_timeout = command_timeout
        self.pool: Optional[asyncpg.Pool] = None

    async def initialize(self):
        """Initialize database connection pool."""
        try:
            self.pool = await asyncpg.create_pool(
                self.dsn,
                min_size=self.min_size,
                max_size=self.max_size,
                command_timeout=self.command_timeout
            )
            logger.info("PostgreSQL connection pool initialized successfully")

            async with self.pool.acquire() as conn:
                await conn.fetchval("SELECT 1")
                logger.info("PostgreSQL connection verified")

                if self.create_schema:
                    await conn.execute(SCHEMA_SQL)
                    logger.info("PostgreSQL schema ensured")

        except Exception as e:
            logger.error(f"Failed to initialize PostgreSQL connection pool: {e}")
            raise

    def _require_pool(self) -> asyncpg.Pool:
        if self.pool is None:
            raise StorageError("Database not initialized")
        return self.pool

    async def get_voter_by_credentials(self, email: str, spe_number: str) -> Optional[Voter]:
        """
        Look a voter up by login email and registration number.

        Args:
            email: Login email
            spe_number: Registration number

        Returns:
            Voter or None if no voter matches both fields
        """
        query = """
            SELECT id, email, spe_number, level, has_voted
            FROM voters
            WHERE email = $1 AND spe_number = $2
        """
        try:
            async with self._require_pool().acquire() as conn:
                row = await conn.fetchrow(query, email, spe_number)
                return Voter.from_record(row) if row else None
        except STORAGE_ERRORS as e:
            logger.error(f"Error looking up voter {email}: {e}")
            raise StorageError() from e

    async def get_candidate(self, candidate_id: str) -> Optional[Candidate]:
        query = """
            SELECT id, full_name, position, bio, image_url, vote_count, catalog_order
            FROM candidates
            WHERE id = $1
        """
        try:
            async with self._require_pool().acquire() as conn:
                row = await conn.fetchrow(query, candidate_id)
                return Candidate.from_record(row) if row else None
        except STORAGE_ERRORS as e:
            logger.error(f"Error getting candidate {candidate_id}: {e}")
            raise StorageError() from e

    async def list_candidates(self) -> List[Candidate]:
        query = """
            SELECT id, full_name, position, bio, image_url, vote_count, catalog_order
            FROM candidates
            ORDER BY catalog_order
        """
        try:
            async with self._require_pool().acquire() as conn:
                rows = await conn.fetch(query)
                return [Candidate.from_record(row) for row in rows]
        except STORAGE_ERRORS as e:
            logger.error(f"Error listing candidates: {e}")
            raise StorageError() from e

    async def has_vote(self, voter_id: str, position_key: str) -> bool:
        query = "SELECT 1 FROM votes WHERE voter_id = $1 AND position_key = $2"
        try:
            async with self._require_pool().acquire() as conn:
                return await conn.fetchval(query, voter_id, position_key) is not None
        except STORAGE_ERRORS as e:
            logger.error(f"Error checking existing vote for voter {voter_id}: {e}")
            raise StorageError() from e

    async def insert_vote(self, vote: Vote) -> None:
        """
        Record a vote and bump the candidate display counter in one transaction.

        The insert is conditional on the (voter_id, position_key) constraint,
        so of two concurrent submissions only one row can ever commit.

        Raises:
            DuplicateVoteError: The voter already holds a vote for this position
            StorageError: Any other persistence failure; nothing was written
        """
        insert_query = """
            INSERT INTO votes (voter_id, position_key, position, candidate_id, voted_at)
            VALUES ($1, $2, $3, $4, $5)
            ON CONFLICT (voter_id, position_key) DO NOTHING
            RETURNING id
        """
        counter_query = """
            UPDATE candidates
            SET vote_count = vote_count + 1
            WHERE id = $1
        """
        try:
            async with self._require_pool().acquire() as conn:
                async with conn.transaction():
                    vote_id = await conn.fetchval(
                        insert_query,
                        vote.voter_id, vote.position_key, vote.position,
                        vote.candidate_id, vote.voted_at
                    )
                    if vote_id is None:
                        raise DuplicateVoteError(vote.voter_id, vote.position_key)

                    await conn.execute(counter_query, vote.candidate_id)

                    logger.debug(f"Inserted vote {vote_id} for voter {vote.voter_id}")

        except asyncpg.UniqueViolationError as e:
            raise DuplicateVoteError(vote.voter_id, vote.position_key) from e
        except STORAGE_ERRORS as e:
            logger.error(f"Database error inserting vote for voter {vote.voter_id}: {e}")
            raise StorageError() from e

    async def count_voted_positions(self, voter_id: str) -> int:
        query = "SELECT COUNT(DISTINCT position_key) FROM votes WHERE voter_id = $1"
        try:
            async with self._require_pool().acquire() as conn:
                return await conn.fetchval(query, voter_id)
        except STORAGE_ERRORS as e:
            logger.error(f"Error counting votes for voter {voter_id}: {e}")
            raise StorageError() from e

    async def list_votes(self, voter_id: str) -> List[Vote]:
        query = """
            SELECT voter_id, position_key, position, candidate_id, voted_at
            FROM votes
            WHERE voter_id = $1
            ORDER BY voted_at, id
        """
        try:
            async with self._require_pool().acquire() as conn:
                rows = await conn.fetch(query, voter_id)
                return [Vote.from_record(row) for row in rows]
        except STORAGE_ERRORS as e:
            logger.error(f"Error listing votes for voter {voter_id}: {e}")
            raise StorageError() from e

    async def mark_completed(self, voter_id: str) -> None:
        query = "UPDATE voters SET has_voted = TRUE WHERE id = $1 AND NOT has_voted"
        try:
            async with self._require_pool().acquire() as conn:
                await conn.execute(query, voter_id)
        except STORAGE_ERRORS as e:
            logger.error(f"Error marking voter {voter_id} as completed: {e}")
            raise StorageError() from e

    async def count_votes_by_candidate(self) -> Dict[str, int]:
        query = """
            SELECT candidate_id, COUNT(*) AS votes
            FROM votes
            GROUP BY candidate_id
        """
        try:
            async with self._require_pool().acquire() as conn:
                rows = await conn.fetch(query)
                return {str(row['candidate_id']): row['votes'] for row in rows}
        except STORAGE_ERRORS as e:
            logger.error(f"Error counting votes by candidate: {e}")
            raise StorageError() from e

    async def count_completed_voters(self, total_positions: int) -> int:
        """Count voters whose ledger covers every position. Ignores the cached flag."""
        query = """
            SELECT COUNT(*) FROM (
                SELECT voter_id
                FROM votes
                GROUP BY voter_id
                HAVING COUNT(DISTINCT position_key) = $1
            ) completed
        """
        try:
            async with self._require_pool().acquire() as conn:
                return await conn.fetchval(query, total_positions)
        except STORAGE_ERRORS as e:
            logger.error(f"Error counting completed voters: {e}")
            raise StorageError() from e

    async def check_health(self) -> bool:
        """
        Check PostgreSQL connection health.

        Returns:
            bool: True if healthy, False otherwise
        """
        try:
            if not self.pool:
                return False
            async with self.pool.acquire() as conn:
                await conn.fetchval("SELECT 1")
                return True
        except Exception as e:
            logger.error(f"PostgreSQL health check failed: {e}")
            return False

    async def close(self):
        """Close database connection pool."""
        try:
            if self.pool:
                await self.pool.close()
                logger.info("PostgreSQL connection pool closed successfully")
        except Exception as e:
            logger.error(f"Error closing PostgreSQL connection pool: {e}")
