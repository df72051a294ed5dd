"""Error taxonomy for the voting portal.

Every error a caller can see carries a stable machine-readable ``kind`` and
the HTTP status it maps to.
"""


class VotingError(Exception):
    """Base class for errors surfaced to API callers."""

    kind = "Error"
    status_code = 500
    default_message = "An error occurred while processing your request"

    def __init__(self, message: str = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"error": self.kind, "message": self.message}


class Unauthorized(VotingError):
    """No session, or the session token is invalid or expired."""

    kind = "Unauthorized"
    status_code = 401
    default_message = "Please login to vote"


class Forbidden(VotingError):
    """Authenticated, but not allowed to see admin data."""

    kind = "Forbidden"
    status_code = 403
    default_message = "Admin access required"


class InvalidCandidate(VotingError):
    """Unknown candidate, or a candidate standing for a different position."""

    kind = "InvalidCandidate"
    status_code = 400
    default_message = "Candidate does not stand for this position"


class AlreadyVoted(VotingError):
    """The voter already holds a vote for this position."""

    kind = "AlreadyVoted"
    status_code = 400
    default_message = "You have already voted for this position"


class VoteValidationError(VotingError):
    """Missing or malformed request fields."""

    kind = "ValidationError"
    status_code = 400
    default_message = "Invalid request"


class StorageError(VotingError):
    """Unexpected persistence failure. Nothing was partially written."""

    kind = "StorageError"
    status_code = 500
    default_message = "An error occurred while processing your vote"


class DuplicateVoteError(Exception):
    """Raised by a store when the (voter, position) constraint rejects an insert."""

    def __init__(self, voter_id: str, position_key: str):
        self.voter_id = voter_id
        self.position_key = position_key
        super().__init__(
            f"Vote already recorded for voter {voter_id} in position '{position_key}'"
        )
