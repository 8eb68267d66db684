"""
Local session issuer - Implements SessionIssuer protocol in process.

Keeps the latest capability claims per user and bumps a version on every
refresh, so a client holding an older version knows its claims are stale.
Also issues the opaque bearer tokens that identify a signed-up user to the
API; tokens live only as long as the process.
"""

import secrets
import threading
from dataclasses import dataclass
from datetime import datetime

from src.domain import capabilities
from src.domain.ports import Clock, VerificationStatus, system_clock


@dataclass(frozen=True)
class SessionClaims:
    user_id: str
    version: int
    is_fully_verified: bool
    can_buy: bool
    can_sell: bool
    can_contact: bool
    refreshed_at: datetime


class LocalSessionIssuer:
    """Implements SessionIssuer protocol via an in-memory claims table."""

    def __init__(self, clock: Clock = system_clock) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._claims: dict[str, SessionClaims] = {}
        self._tokens: dict[str, str] = {}

    def refresh_session(self, user_id: str, status: VerificationStatus) -> None:
        derived = capabilities.derive(status)
        with self._lock:
            previous = self._claims.get(user_id)
            self._claims[user_id] = SessionClaims(
                user_id=user_id,
                version=(previous.version + 1) if previous else 1,
                is_fully_verified=status.is_fully_verified,
                can_buy=derived.can_buy,
                can_sell=derived.can_sell,
                can_contact=derived.can_contact,
                refreshed_at=self._clock(),
            )

    def current_claims(self, user_id: str) -> SessionClaims | None:
        with self._lock:
            return self._claims.get(user_id)

    def open_session(self, user_id: str) -> str:
        """Issue a bearer token for user_id."""
        token = secrets.token_urlsafe(32)
        with self._lock:
            self._tokens[token] = user_id
        return token

    def resolve_token(self, token: str) -> str | None:
        with self._lock:
            return self._tokens.get(token)
