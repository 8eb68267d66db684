"""
Shared test fixtures and configuration.

This module provides pytest fixtures for:
- A controllable clock for expiry and cooldown
- Recording fakes for the notification channel and session issuer
- In-memory stores and fully wired domain services
"""

from collections.abc import Callable
from datetime import datetime, timedelta, timezone

import pytest

from src.adapters.repository.memory import (
    InMemoryChallengeStore,
    InMemoryIdentityStore,
    InMemoryPasswordResetHandler,
)
from src.domain.challenges import OtpChallengeManager
from src.domain.exceptions import NotificationDeliveryError, SessionRefreshError
from src.domain.orchestrator import VerificationOrchestrator
from src.domain.ports import ChallengePolicy, ChallengePurpose, VerificationStatus
from src.domain.session_sync import SessionSynchronizer
from src.domain.state_machine import VerificationStateMachine

# Lowest bcrypt work factor keeps the suite fast; behaviour is identical
FAST_POLICY = ChallengePolicy(bcrypt_cost=4)


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 15, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class RecordingNotifier:
    """NotificationChannel fake that records sends and can fail on demand."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str, ChallengePurpose, str | None]] = []
        self.failures: list[NotificationDeliveryError] = []

    def send_code(
        self,
        address: str,
        code: str,
        purpose: ChallengePurpose,
        display_name: str | None = None,
    ) -> None:
        if self.failures:
            raise self.failures.pop(0)
        self.sent.append((address, code, purpose, display_name))

    def last_code(self, address: str | None = None) -> str:
        for sent_address, code, _, _ in reversed(self.sent):
            if address is None or sent_address == address:
                return code
        raise AssertionError(f"No code sent to {address}")


class RecordingSessionIssuer:
    """SessionIssuer fake that records refreshes and can fail on demand."""

    def __init__(self) -> None:
        self.refreshes: list[tuple[str, VerificationStatus]] = []
        self.fail_next = 0

    def refresh_session(self, user_id: str, status: VerificationStatus) -> None:
        if self.fail_next:
            self.fail_next -= 1
            raise SessionRefreshError("issuer unavailable")
        self.refreshes.append((user_id, status))


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def session_issuer() -> RecordingSessionIssuer:
    return RecordingSessionIssuer()


@pytest.fixture
def challenge_store() -> InMemoryChallengeStore:
    return InMemoryChallengeStore()


@pytest.fixture
def identity_store() -> InMemoryIdentityStore:
    return InMemoryIdentityStore()


@pytest.fixture
def reset_handler() -> InMemoryPasswordResetHandler:
    return InMemoryPasswordResetHandler()


@pytest.fixture
def policy() -> ChallengePolicy:
    return FAST_POLICY


@pytest.fixture
def manager(
    challenge_store: InMemoryChallengeStore,
    notifier: RecordingNotifier,
    policy: ChallengePolicy,
    clock: FakeClock,
) -> OtpChallengeManager:
    return OtpChallengeManager(store=challenge_store, notifier=notifier, policy=policy, clock=clock)


@pytest.fixture
def state_machine(identity_store: InMemoryIdentityStore) -> VerificationStateMachine:
    return VerificationStateMachine(identity_store=identity_store)


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def synchronizer(
    session_issuer: RecordingSessionIssuer,
    state_machine: VerificationStateMachine,
    sleeps: list[float],
) -> SessionSynchronizer:
    return SessionSynchronizer(
        issuer=session_issuer,
        state_machine=state_machine,
        retry_delay_seconds=0.5,
        sleep=sleeps.append,
    )


@pytest.fixture
def orchestrator(
    manager: OtpChallengeManager,
    state_machine: VerificationStateMachine,
    synchronizer: SessionSynchronizer,
    identity_store: InMemoryIdentityStore,
    reset_handler: InMemoryPasswordResetHandler,
) -> VerificationOrchestrator:
    return VerificationOrchestrator(
        challenges=manager,
        state_machine=state_machine,
        synchronizer=synchronizer,
        identity_store=identity_store,
        reset_handler=reset_handler,
    )


@pytest.fixture
def make_user(identity_store: InMemoryIdentityStore) -> Callable[..., str]:
    """Create an unverified user and return its id."""

    def _make_user(email: str = "member@example.com", display_name: str | None = None) -> str:
        record = identity_store.create_user(email, display_name)
        assert record is not None
        return record.user_id

    return _make_user
