"""Interface to the relational store the voting engine writes through."""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from .models import Candidate, Vote, Voter


class VoteStore(ABC):
    """
    Catalog, ledger and voter registry.

    Implementations own durability and atomicity. ``insert_vote`` must perform
    the uniqueness check and the insert as one atomic step and raise
    ``DuplicateVoteError`` when the (voter, position) pair already holds a vote.
    Any other persistence failure must surface as ``StorageError``.
    """

    @abstractmethod
    async def get_voter_by_credentials(self, email: str, spe_number: str) -> Optional[Voter]:
        """Look a voter up by login email and registration number."""

    @abstractmethod
    async def get_candidate(self, candidate_id: str) -> Optional[Candidate]:
        """Point lookup of one candidate."""

    @abstractmethod
    async def list_candidates(self) -> List[Candidate]:
        """All candidates in catalog order."""

    @abstractmethod
    async def has_vote(self, voter_id: str, position_key: str) -> bool:
        """Whether a vote exists for (voter, position). Advisory only."""

    @abstractmethod
    async def insert_vote(self, vote: Vote) -> None:
        """Durably record a vote, guarded by the (voter, position) constraint."""

    @abstractmethod
    async def count_voted_positions(self, voter_id: str) -> int:
        """Number of distinct positions the voter holds a vote for."""

    @abstractmethod
    async def list_votes(self, voter_id: str) -> List[Vote]:
        """The voter's own votes, oldest first."""

    @abstractmethod
    async def mark_completed(self, voter_id: str) -> None:
        """Set the voter's completion flag. Idempotent."""

    @abstractmethod
    async def count_votes_by_candidate(self) -> Dict[str, int]:
        """Ledger vote counts keyed by candidate id."""

    @abstractmethod
    async def count_completed_voters(self, total_positions: int) -> int:
        """Number of voters holding a vote in ``total_positions`` distinct positions."""

    async def check_health(self) -> bool:
        return True

    async def initialize(self) -> None:
        pass

    async def close(self) -> None:
        pass
