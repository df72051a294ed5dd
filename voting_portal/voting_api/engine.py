"""
Voting engine.

Each (voter, position) pair moves one way from unvoted to voted. The engine
validates a ballot, records it exactly once through the store's constrained
insert, and recomputes completion from the ledger afterwards.
"""
import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple

from voting_portal.shared.errors import (
    AlreadyVoted,
    DuplicateVoteError,
    InvalidCandidate,
    StorageError,
    Unauthorized,
    VoteValidationError,
)
from voting_portal.shared.models import (
    AuthenticatedVoter,
    PositionNormalizer,
    Vote,
    distinct_positions,
    get_current_timestamp,
)
from voting_portal.shared.store import VoteStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class VoteOutcome:
    """Result of an accepted vote."""
    vote: Vote
    completed: bool
    success: bool = True


class VotingEngine:
    """Casts votes and tracks per-voter completion."""

    def __init__(self, store: VoteStore, normalize: Optional[PositionNormalizer] = None):
        self.store = store
        self.normalize = normalize or PositionNormalizer()

    async def cast_vote(
        self,
        voter: Optional[AuthenticatedVoter],
        position: Optional[str],
        candidate_id: Optional[str]
    ) -> VoteOutcome:
        """
        Cast ``voter``'s vote for ``candidate_id`` in ``position``.

        Raises:
            Unauthorized: No authenticated voter
            VoteValidationError: Candidate or position missing
            InvalidCandidate: Unknown candidate, or one standing for another position
            AlreadyVoted: The voter already holds a vote for this position
            StorageError: The store failed; nothing was recorded
        """
        if voter is None:
            raise Unauthorized()

        if not candidate_id or not str(candidate_id).strip():
            raise VoteValidationError("Candidate ID is required")
        if not position or not position.strip():
            raise VoteValidationError("Position is required")

        candidate_id = str(candidate_id).strip()
        position_key = self.normalize(position)

        candidate = await self.store.get_candidate(candidate_id)
        if candidate is None:
            raise InvalidCandidate(f"Unknown candidate {candidate_id}")
        if self.normalize(candidate.position) != position_key:
            logger.warning(
                f"Candidate {candidate_id} stands for '{candidate.position}', "
                f"not '{position}' (voter {voter.voter_id})"
            )
            raise InvalidCandidate()

        # Fast path for a friendly error; the insert below is authoritative
        if await self.store.has_vote(voter.voter_id, position_key):
            raise AlreadyVoted()

        vote = Vote(
            voter_id=voter.voter_id,
            position_key=position_key,
            position=candidate.position.strip(),
            candidate_id=candidate.id,
            voted_at=get_current_timestamp(),
        )

        try:
            await self.store.insert_vote(vote)
        except DuplicateVoteError:
            logger.info(
                f"Concurrent duplicate rejected by constraint: "
                f"voter={voter.voter_id}, position={position_key}"
            )
            raise AlreadyVoted()

        logger.info(
            f"Vote recorded: voter={voter.voter_id}, position={position_key}, "
            f"candidate={candidate.id}"
        )

        completed = await self.refresh_completion(voter.voter_id)
        return VoteOutcome(vote=vote, completed=completed)

    async def has_completed_voting(self, voter_id: str) -> bool:
        """
        Whether the voter holds a vote for every distinct position in the catalog.

        Always computed from the ledger, never from the cached flag.
        """
        candidates = await self.store.list_candidates()
        total_positions = len(distinct_positions(candidates, self.normalize))
        if total_positions == 0:
            return False

        voted_positions = await self.store.count_voted_positions(voter_id)
        return voted_positions == total_positions

    async def refresh_completion(self, voter_id: str) -> bool:
        """Recompute completion and set the voter's cached flag when reached."""
        completed = await self.has_completed_voting(voter_id)
        if completed:
            try:
                await self.store.mark_completed(voter_id)
            except StorageError as e:
                # Reported completion is read from the ledger, never from this flag
                logger.error(f"Failed to set completion flag for voter {voter_id}: {e}")
        return completed

    async def voting_history(self, voter: Optional[AuthenticatedVoter]) -> Tuple[List[Vote], bool]:
        """The caller's own votes and current completion state. Read-only."""
        if voter is None:
            raise Unauthorized()

        votes = await self.store.list_votes(voter.voter_id)
        completed = await self.has_completed_voting(voter.voter_id)
        return votes, completed
