"""Interface for the external session/credential provider.

The provider lives outside this package (it issues bearer tokens and the
API subscription key). quotashield only reads the current session and asks
for a single refresh when a call comes back unauthorized.
"""

import abc
import time
from dataclasses import dataclass
from typing import Dict, Optional

from quotashield.domain.errors import AuthExpiredError

SUBSCRIPTION_KEY_HEADER = "Bb-Api-Subscription-Key"


@dataclass
class SessionInfo:
    """Snapshot of the credentials handed out by the session provider."""
    authenticated: bool
    access_token: Optional[str] = None
    token_type: Optional[str] = None
    subscription_key: Optional[str] = None
    expires_at: Optional[float] = None  # Epoch seconds

    def is_expired(self, now: Optional[float] = None) -> bool:
        if self.expires_at is None:
            return False
        current = time.time() if now is None else now
        return current >= self.expires_at

    def is_usable(self, now: Optional[float] = None) -> bool:
        """True when the session carries an unexpired access token."""
        return self.authenticated and bool(self.access_token) and not self.is_expired(now)


class SessionProvider(abc.ABC):
    """Abstract Base Class for obtaining the current session."""

    @abc.abstractmethod
    async def current_session(self) -> SessionInfo:
        """Returns the session as currently known to the provider."""
        pass

    @abc.abstractmethod
    async def refresh(self) -> SessionInfo:
        """Forces the provider to re-check or renew the session."""
        pass


def build_auth_headers(session: SessionInfo, now: Optional[float] = None) -> Dict[str, str]:
    """Builds request headers from a session.

    Raises:
        AuthExpiredError: If the session is unauthenticated, has no token or
            the token has expired.
    """
    if not session.authenticated or not session.access_token:
        raise AuthExpiredError("Not authenticated - please log in")
    if session.is_expired(now):
        raise AuthExpiredError("Authentication expired - please log in again")

    headers = {
        "Authorization": f"{session.token_type or 'Bearer'} {session.access_token}",
        "Content-Type": "application/json",
    }
    if session.subscription_key:
        headers[SUBSCRIPTION_KEY_HEADER] = session.subscription_key
    return headers
