"""Pytest fixtures for unit tests.

Provides an in-memory vote store seeded with a small catalog, the engine and
aggregator built on it, and a FastAPI test client wired to the same store.
"""

import asyncio
from datetime import timedelta
from typing import Dict, List, Optional, Set

import pytest
from fastapi.testclient import TestClient

from voting_portal.shared.errors import DuplicateVoteError, StorageError
from voting_portal.shared.models import (
    AuthenticatedVoter,
    Candidate,
    PositionNormalizer,
    Vote,
    Voter,
)
from voting_portal.shared.store import VoteStore
from voting_portal.aggregation.aggregator import ResultsAggregator
from voting_portal.voting_api.engine import VotingEngine
from voting_portal.voting_api.tokens import TokenService


class InMemoryStore(VoteStore):
    """Vote store kept in dictionaries.

    ``insert_vote`` checks and appends without yielding to the event loop in
    between, which makes it atomic under asyncio the way a constrained insert
    is atomic in PostgreSQL. ``has_vote`` yields first so concurrent callers
    all get past the advisory pre-check.
    """

    def __init__(self):
        self.voters: Dict[str, Voter] = {}
        self.candidates: List[Candidate] = []
        self.votes: List[Vote] = []
        self.fail_on: Set[str] = set()
        self.insert_attempts = 0

    def add_voter(self, voter: Voter) -> Voter:
        self.voters[voter.id] = voter
        return voter

    def add_candidate(self, candidate_id: str, full_name: str, position: str) -> Candidate:
        candidate = Candidate(
            id=candidate_id,
            full_name=full_name,
            position=position,
            bio=f"{full_name} biography",
            catalog_order=len(self.candidates) + 1,
        )
        self.candidates.append(candidate)
        return candidate

    def _maybe_fail(self, operation: str):
        if operation in self.fail_on:
            raise StorageError()

    async def get_voter_by_credentials(self, email: str, spe_number: str) -> Optional[Voter]:
        self._maybe_fail('get_voter_by_credentials')
        for voter in self.voters.values():
            if voter.email == email and voter.spe_number == spe_number:
                return voter
        return None

    async def get_candidate(self, candidate_id: str) -> Optional[Candidate]:
        self._maybe_fail('get_candidate')
        for candidate in self.candidates:
            if candidate.id == candidate_id:
                return candidate
        return None

    async def list_candidates(self) -> List[Candidate]:
        self._maybe_fail('list_candidates')
        return sorted(self.candidates, key=lambda c: c.catalog_order)

    async def has_vote(self, voter_id: str, position_key: str) -> bool:
        self._maybe_fail('has_vote')
        await asyncio.sleep(0)
        return any(
            v.voter_id == voter_id and v.position_key == position_key
            for v in self.votes
        )

    async def insert_vote(self, vote: Vote) -> None:
        self.insert_attempts += 1
        await asyncio.sleep(0)
        self._maybe_fail('insert_vote')
        for existing in self.votes:
            if existing.voter_id == vote.voter_id and existing.position_key == vote.position_key:
                raise DuplicateVoteError(vote.voter_id, vote.position_key)
        self.votes.append(vote)
        for candidate in self.candidates:
            if candidate.id == vote.candidate_id:
                candidate.vote_count += 1

    async def count_voted_positions(self, voter_id: str) -> int:
        self._maybe_fail('count_voted_positions')
        return len({v.position_key for v in self.votes if v.voter_id == voter_id})

    async def list_votes(self, voter_id: str) -> List[Vote]:
        self._maybe_fail('list_votes')
        return [v for v in self.votes if v.voter_id == voter_id]

    async def mark_completed(self, voter_id: str) -> None:
        self._maybe_fail('mark_completed')
        if voter_id in self.voters:
            self.voters[voter_id].has_voted = True

    async def count_votes_by_candidate(self) -> Dict[str, int]:
        self._maybe_fail('count_votes_by_candidate')
        counts: Dict[str, int] = {}
        for vote in self.votes:
            counts[vote.candidate_id] = counts.get(vote.candidate_id, 0) + 1
        return counts

    async def count_completed_voters(self, total_positions: int) -> int:
        self._maybe_fail('count_completed_voters')
        positions: Dict[str, Set[str]] = {}
        for vote in self.votes:
            positions.setdefault(vote.voter_id, set()).add(vote.position_key)
        return sum(1 for keys in positions.values() if len(keys) == total_positions)

    async def check_health(self) -> bool:
        return 'check_health' not in self.fail_on


@pytest.fixture
def store() -> InMemoryStore:
    """Store seeded with {"President": [A, B], "Treasurer": [C]}.

    Voter ``x`` is a regular voter, ``admin`` is an administrator.
    """
    memory = InMemoryStore()
    memory.add_candidate("cand-a", "Alice Adams", "President")
    memory.add_candidate("cand-b", "Bob Brown", "President")
    memory.add_candidate("cand-c", "Carol Clark", "Treasurer")
    memory.add_voter(Voter(id="voter-x", email="x@example.org", spe_number="SPE-001"))
    memory.add_voter(Voter(id="voter-y", email="y@example.org", spe_number="SPE-002"))
    memory.add_voter(Voter(id="admin", email="admin@example.org", spe_number="SPE-900", level=1))
    return memory


@pytest.fixture
def normalize() -> PositionNormalizer:
    return PositionNormalizer()


@pytest.fixture
def engine(store: InMemoryStore, normalize: PositionNormalizer) -> VotingEngine:
    return VotingEngine(store, normalize)


@pytest.fixture
def aggregator(store: InMemoryStore, normalize: PositionNormalizer) -> ResultsAggregator:
    return ResultsAggregator(store, normalize)


@pytest.fixture
def voter_x(store: InMemoryStore) -> AuthenticatedVoter:
    return AuthenticatedVoter.from_voter(store.voters["voter-x"])


@pytest.fixture
def voter_y(store: InMemoryStore) -> AuthenticatedVoter:
    return AuthenticatedVoter.from_voter(store.voters["voter-y"])


@pytest.fixture
def token_service() -> TokenService:
    return TokenService("unit-test-secret", lifetime=timedelta(hours=24))


class StubCaptcha:
    """Captcha verifier that accepts one fixed token."""

    def __init__(self, accepted: str = "human"):
        self.accepted = accepted
        self.calls = []

    async def verify(self, captcha_token, remote_ip=None) -> bool:
        self.calls.append((captcha_token, remote_ip))
        return captcha_token == self.accepted


@pytest.fixture
def captcha() -> StubCaptcha:
    return StubCaptcha()


@pytest.fixture
def client(store: InMemoryStore, captcha: StubCaptcha):
    """TestClient bound to the in-memory store, rate limiting disabled."""
    from voting_portal.voting_api import main

    main.app.dependency_overrides[main.get_store] = lambda: store
    main.app.dependency_overrides[main.get_captcha] = lambda: captcha
    previous = main.limiter.enabled
    main.limiter.enabled = False

    yield TestClient(main.app)

    main.limiter.enabled = previous
    main.app.dependency_overrides.clear()


@pytest.fixture
def login_as(client: TestClient, store: InMemoryStore):
    """Returns a function that puts a valid session cookie on the client."""
    from voting_portal.voting_api import main

    def _login(voter_id: str) -> str:
        voter = AuthenticatedVoter.from_voter(store.voters[voter_id])
        token = main.token_service.issue(voter)
        client.cookies.set(main.settings.AUTH_COOKIE_NAME, token)
        return token

    return _login
