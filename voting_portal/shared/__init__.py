"""
Shared utilities and models for the voting portal.

This package contains common code used by the API and the results exporter:
- Data models (Voter, Candidate, Vote, AuthenticatedVoter)
- Position name normalization
- Error taxonomy
- Vote store interface and its PostgreSQL implementation
"""

from .errors import (
    AlreadyVoted,
    DuplicateVoteError,
    Forbidden,
    InvalidCandidate,
    StorageError,
    Unauthorized,
    VoteValidationError,
    VotingError,
)
from .models import (
    AuthenticatedVoter,
    Candidate,
    PositionNormalizer,
    Vote,
    Voter,
    distinct_positions,
    get_current_timestamp,
    group_by_position,
)
from .store import VoteStore

__all__ = [
    'AlreadyVoted',
    'AuthenticatedVoter',
    'Candidate',
    'DuplicateVoteError',
    'Forbidden',
    'InvalidCandidate',
    'PositionNormalizer',
    'StorageError',
    'Unauthorized',
    'Vote',
    'VoteStore',
    'VoteValidationError',
    'Voter',
    'VotingError',
    'distinct_positions',
    'get_current_timestamp',
    'group_by_position',
]
