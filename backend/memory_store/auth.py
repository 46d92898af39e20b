"""Bearer-token check for write endpoints.

The verifier lives on ``app.state`` and the authenticated caller is handed to
each route as a dependency value; nothing here is process-global and the
stores never see credentials.
"""

import hmac
import logging

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel

from memory_store.errors import AuthError

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


class Caller(BaseModel):
    """Identity of an accepted request."""

    subject: str
    anonymous: bool = False


class TokenVerifier:
    """Accepts or rejects bearer tokens against a static token table."""

    def __init__(self, tokens: dict[str, str], allow_anonymous: bool = False) -> None:
        self._tokens = dict(tokens)
        self.allow_anonymous = allow_anonymous

    def verify(self, token: str | None) -> Caller:
        """Return the caller for ``token`` or raise AuthError."""
        if not token:
            if self.allow_anonymous:
                return Caller(subject="anonymous", anonymous=True)
            raise AuthError("Missing bearer token")

        # Constant-time compare against every known token
        subject = None
        for known, known_subject in self._tokens.items():
            if hmac.compare_digest(token.encode(), known.encode()):
                subject = known_subject
        if subject is None:
            logger.warning("Rejected request with invalid bearer token")
            raise AuthError("Invalid bearer token")
        return Caller(subject=subject)


def get_token_verifier(request: Request) -> TokenVerifier:
    """The verifier configured on the running app."""
    return request.app.state.token_verifier


async def require_caller(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    verifier: TokenVerifier = Depends(get_token_verifier),
) -> Caller:
    """Dependency for write routes: resolves the caller or raises AuthError."""
    token = credentials.credentials if credentials else None
    return verifier.verify(token)
