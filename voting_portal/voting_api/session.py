"""Session resolution: request cookie -> authenticated voter."""
from typing import Optional

from fastapi import Request, Response

from voting_portal.shared.models import AuthenticatedVoter
from .tokens import TokenService


class SessionResolver:
    """Reads and writes the identity token carried in the auth cookie."""

    def __init__(self, tokens: TokenService, cookie_name: str = "auth-token"):
        self.tokens = tokens
        self.cookie_name = cookie_name

    def resolve(self, request: Request) -> Optional[AuthenticatedVoter]:
        """
        Resolve the voter behind a request.

        Returns:
            AuthenticatedVoter, or None when the cookie is missing, tampered with
            or expired
        """
        token = request.cookies.get(self.cookie_name)
        if not token:
            return None
        return self.tokens.verify(token)

    def start_session(
        self,
        response: Response,
        voter: AuthenticatedVoter,
        secure: bool = False
    ) -> str:
        """Issue a token for ``voter`` and set it as an HttpOnly cookie."""
        token = self.tokens.issue(voter)
        response.set_cookie(
            key=self.cookie_name,
            value=token,
            max_age=int(self.tokens.lifetime.total_seconds()),
            httponly=True,
            secure=secure,
            samesite="strict",
        )
        return token
