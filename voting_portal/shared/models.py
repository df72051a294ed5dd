"""
Shared data models for the voting portal.

This module contains:
- Voter, Candidate, Vote: rows of the relational store
- AuthenticatedVoter: the immutable identity produced by the session resolver
- PositionNormalizer: the rule that turns a position name into its identity key
"""

import re
from dataclasses import dataclass, asdict, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional


def get_current_timestamp() -> datetime:
    """
    Get the current time.

    Returns:
        datetime: Timezone-aware UTC timestamp
    """
    return datetime.now(timezone.utc)


@dataclass
class Voter:
    """
    A registered voter.

    Attributes:
        id: Voter identifier
        email: Contact address used at login
        spe_number: Unique registration number
        level: Privilege level (admins are at or above the configured threshold)
        has_voted: Cached completion flag, recomputed from the ledger when reported
    """
    id: str
    email: str
    spe_number: str
    level: int = 0
    has_voted: bool = False

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> 'Voter':
        """Create a Voter from a database record."""
        return cls(
            id=str(record['id']),
            email=record['email'],
            spe_number=record['spe_number'],
            level=record['level'],
            has_voted=record['has_voted'],
        )


@dataclass
class Candidate:
    """
    A person standing for exactly one position.

    ``vote_count`` is a display counter only; tallies count the ledger.
    ``catalog_order`` is the insertion order used to break ties.
    """
    id: str
    full_name: str
    position: str
    bio: str = ''
    image_url: Optional[str] = None
    vote_count: int = 0
    catalog_order: int = 0

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return asdict(self)

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> 'Candidate':
        """Create a Candidate from a database record."""
        return cls(
            id=str(record['id']),
            full_name=record['full_name'],
            position=record['position'],
            bio=record['bio'] or '',
            image_url=record['image_url'],
            vote_count=record['vote_count'],
            catalog_order=record['catalog_order'],
        )


@dataclass
class Vote:
    """
    Voter ``voter_id`` chose ``candidate_id`` for a position at ``voted_at``.

    ``position_key`` is the normalized identity of the position and is the
    column the (voter, position) uniqueness constraint is declared on.
    """
    voter_id: str
    position_key: str
    position: str
    candidate_id: str
    voted_at: datetime = field(default_factory=get_current_timestamp)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the shape returned by the vote history endpoint."""
        return {
            'position': self.position,
            'candidate_id': self.candidate_id,
            'voted_at': self.voted_at.isoformat(),
        }

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> 'Vote':
        """Create a Vote from a database record."""
        return cls(
            voter_id=str(record['voter_id']),
            position_key=record['position_key'],
            position=record['position'],
            candidate_id=str(record['candidate_id']),
            voted_at=record['voted_at'],
        )


@dataclass(frozen=True)
class AuthenticatedVoter:
    """Identity claims carried by a verified session token."""
    voter_id: str
    email: str
    spe_number: str
    level: int = 0

    @classmethod
    def from_voter(cls, voter: Voter) -> 'AuthenticatedVoter':
        return cls(
            voter_id=voter.id,
            email=voter.email,
            spe_number=voter.spe_number,
            level=voter.level,
        )


_WHITESPACE_RUN = re.compile(r'\s+')


class PositionNormalizer:
    """
    Turns a position display name into the key positions are grouped by.

    Args:
        case_fold: Compare names case-insensitively
        trim_whitespace: Strip leading/trailing whitespace and collapse inner runs
    """

    def __init__(self, case_fold: bool = True, trim_whitespace: bool = True):
        self.case_fold = case_fold
        self.trim_whitespace = trim_whitespace

    def __call__(self, name: str) -> str:
        key = name or ''
        if self.trim_whitespace:
            key = _WHITESPACE_RUN.sub(' ', key).strip()
        if self.case_fold:
            key = key.casefold()
        return key

    def __repr__(self) -> str:
        return (
            f"PositionNormalizer(case_fold={self.case_fold}, "
            f"trim_whitespace={self.trim_whitespace})"
        )


def distinct_positions(
    candidates: Iterable[Candidate],
    normalize: PositionNormalizer
) -> Dict[str, str]:
    """
    Group the catalog into distinct positions.

    Args:
        candidates: Candidates in catalog order
        normalize: Position normalizer

    Returns:
        dict: position key -> display name of its first appearance, in catalog order
    """
    positions: Dict[str, str] = {}
    for candidate in sorted(candidates, key=lambda c: c.catalog_order):
        key = normalize(candidate.position)
        if key not in positions:
            positions[key] = candidate.position.strip()
    return positions


def group_by_position(
    candidates: Iterable[Candidate],
    normalize: PositionNormalizer
) -> Dict[str, List[Candidate]]:
    """Group candidates under their position key, preserving catalog order."""
    grouped: Dict[str, List[Candidate]] = {}
    for candidate in sorted(candidates, key=lambda c: c.catalog_order):
        grouped.setdefault(normalize(candidate.position), []).append(candidate)
    return grouped
