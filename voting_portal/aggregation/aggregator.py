"""
Results aggregation.

Read-only projection over the catalog and the vote ledger. Counts always come
from the ledger; the candidates' own ``vote_count`` column is ignored.
"""
import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional

from voting_portal.shared.models import (
    Candidate,
    PositionNormalizer,
    distinct_positions,
    group_by_position,
)
from voting_portal.shared.store import VoteStore

logger = logging.getLogger(__name__)


@dataclass
class CandidateTally:
    candidate: Candidate
    votes: int
    percentage: float

    def to_dict(self) -> Dict:
        return {
            'candidate_id': self.candidate.id,
            'full_name': self.candidate.full_name,
            'image_url': self.candidate.image_url,
            'votes': self.votes,
            'percentage': self.percentage,
        }


@dataclass
class PositionTally:
    position: str
    total_votes: int = 0
    candidates: List[CandidateTally] = field(default_factory=list)

    def to_dict(self) -> Dict:
        return {
            'position': self.position,
            'total_votes': self.total_votes,
            'candidates': [c.to_dict() for c in self.candidates],
        }


def tally_candidates(
    candidates: Iterable[Candidate],
    counts: Mapping[str, int],
    normalize: PositionNormalizer
) -> Dict[str, PositionTally]:
    """
    Build per-position tallies.

    Args:
        candidates: The catalog
        counts: Ledger vote counts keyed by candidate id
        normalize: Position normalizer used to group candidates

    Returns:
        dict: position key -> PositionTally carrying the display name. Positions
        follow catalog order; candidates are sorted by votes descending, ties in
        catalog order. Percentages are rounded to 2 decimals and are 0 for a
        position with no votes.
    """
    results: Dict[str, PositionTally] = {}

    for key, members in group_by_position(candidates, normalize).items():
        display_name = members[0].position.strip()
        total = sum(counts.get(c.id, 0) for c in members)

        ranked = sorted(
            members,
            key=lambda c: (-counts.get(c.id, 0), c.catalog_order)
        )

        tallies = []
        for candidate in ranked:
            votes = counts.get(candidate.id, 0)
            percentage = (votes / total * 100) if total > 0 else 0
            tallies.append(CandidateTally(
                candidate=candidate,
                votes=votes,
                percentage=round(percentage, 2)
            ))

        results[key] = PositionTally(
            position=display_name,
            total_votes=total,
            candidates=tallies
        )

    return results


class ResultsAggregator:
    """Computes election results from a vote store."""

    def __init__(self, store: VoteStore, normalize: Optional[PositionNormalizer] = None):
        self.store = store
        self.normalize = normalize or PositionNormalizer()

    async def tally(self) -> Dict[str, PositionTally]:
        """Per-position candidate tallies. See ``tally_candidates``."""
        candidates = await self.store.list_candidates()
        counts = await self.store.count_votes_by_candidate()

        unknown = set(counts) - {c.id for c in candidates}
        if unknown:
            logger.warning(f"Votes reference candidates missing from catalog: {sorted(unknown)}")

        return tally_candidates(candidates, counts, self.normalize)

    async def completed_voters(self) -> int:
        """Number of voters who have voted in every position, counted from the ledger."""
        candidates = await self.store.list_candidates()
        total_positions = len(distinct_positions(candidates, self.normalize))
        if total_positions == 0:
            return 0
        return await self.store.count_completed_voters(total_positions)
