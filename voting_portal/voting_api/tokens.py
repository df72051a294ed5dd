"""Signed, time-bounded identity tokens for voter sessions."""
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import JWTError, jwt

from voting_portal.shared.models import AuthenticatedVoter

logger = logging.getLogger(__name__)


class TokenService:
    """
    Issues and verifies JWTs binding a request to a voter identity.

    Stateless: the only input besides the token is the secret key.
    """

    def __init__(
        self,
        secret_key: str,
        algorithm: str = "HS256",
        lifetime: timedelta = timedelta(hours=24)
    ):
        self.secret_key = secret_key
        self.algorithm = algorithm
        self.lifetime = lifetime

    def issue(self, voter: AuthenticatedVoter, issued_at: Optional[datetime] = None) -> str:
        """
        Create a signed token for a voter.

        Args:
            voter: Identity claims to encode
            issued_at: Issue time (defaults to now); expiry is issue time + lifetime

        Returns:
            str: Encoded JWT
        """
        issued_at = issued_at or datetime.now(timezone.utc)
        claims = {
            "sub": voter.voter_id,
            "email": voter.email,
            "spe_number": voter.spe_number,
            "level": voter.level,
            "iat": int(issued_at.timestamp()),
            "exp": int((issued_at + self.lifetime).timestamp()),
        }
        return jwt.encode(claims, self.secret_key, algorithm=self.algorithm)

    def verify(self, token: str) -> Optional[AuthenticatedVoter]:
        """
        Decode a token.

        Returns:
            AuthenticatedVoter if the signature is valid and the token unexpired,
            None otherwise
        """
        if not token:
            return None

        try:
            claims = jwt.decode(token, self.secret_key, algorithms=[self.algorithm])
        except JWTError as e:
            logger.debug(f"Rejected session token: {e}")
            return None

        voter_id = claims.get("sub")
        if not voter_id:
            return None

        return AuthenticatedVoter(
            voter_id=str(voter_id),
            email=claims.get("email", ""),
            spe_number=claims.get("spe_number", ""),
            level=int(claims.get("level") or 0),
        )
