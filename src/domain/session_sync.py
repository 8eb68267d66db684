"""
Session synchronizer - refresh session claims after a verification transition.

A session issued before the transition may carry stale capability claims.
A single refresh can race the identity store's write-then-read window, so
the refresh is repeated once after a short fixed delay. Failures are logged
and swallowed: the verification record is already correct either way.
"""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

from .ports import SessionIssuer
from .state_machine import VerificationStateMachine

logger = logging.getLogger(__name__)


@dataclass
class SessionSynchronizer:
    issuer: SessionIssuer
    state_machine: VerificationStateMachine
    retry_delay_seconds: float = 0.5
    sleep: Callable[[float], None] = time.sleep

    def sync_after_verification(self, user_id: str) -> None:
        """Refresh now, wait retry_delay_seconds, refresh again. Never raises."""
        self._refresh(user_id, attempt=1)
        self.sleep(self.retry_delay_seconds)
        self._refresh(user_id, attempt=2)

    def _refresh(self, user_id: str, attempt: int) -> bool:
        try:
            # Re-read each time so the second refresh sees the settled record
            status = self.state_machine.get_status(user_id)
            self.issuer.refresh_session(user_id, status)
        except Exception:
            logger.warning(
                "Session refresh %d/2 failed for user %s", attempt, user_id, exc_info=True
            )
            return False
        logger.debug("Session refresh %d/2 succeeded for user %s", attempt, user_id)
        return True
