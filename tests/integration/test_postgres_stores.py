"""
Integration tests for the PostgreSQL adapters.

Tests store operations against a real PostgreSQL database.
Requires PostgreSQL to be running (via docker-compose); skipped otherwise.
"""

from collections.abc import Generator
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from datetime import datetime, timedelta, timezone

import psycopg
import pytest
from psycopg_pool import ConnectionPool

from src.adapters.repository.postgres import (
    PostgresChallengeStore,
    PostgresIdentityStore,
    run_migrations,
)
from src.config.settings import get_settings
from src.domain.ports import (
    ChallengePolicy,
    ChallengePurpose,
    OtpChallenge,
    PendingAction,
    VerificationRecord,
)
from src.domain.state_machine import VerificationStateMachine

pytestmark = pytest.mark.integration

NOW = datetime(2026, 1, 15, 9, 0, tzinfo=timezone.utc)
SIGNUP = ChallengePurpose.SIGNUP
ADDRESS = "user@org.com"


@pytest.fixture(scope="module")
def pool() -> Generator[ConnectionPool, None, None]:
    """Create connection pool for integration tests."""
    settings = get_settings()
    try:
        psycopg.connect(settings.database_url, connect_timeout=2).close()
    except psycopg.OperationalError:
        pytest.skip("PostgreSQL not available")

    pool = ConnectionPool(conninfo=settings.database_url, min_size=1, max_size=10)
    run_migrations(pool)
    yield pool
    pool.close()


@pytest.fixture(autouse=True)
def clean_database(pool: ConnectionPool) -> Generator[None, None, None]:
    """Clean tables before each test."""
    with pool.connection() as conn:
        conn.execute("DELETE FROM otp_challenges")
        conn.execute("DELETE FROM user_verifications")
        conn.commit()
    yield


@pytest.fixture
def challenges(pool: ConnectionPool) -> PostgresChallengeStore:
    return PostgresChallengeStore(pool)


@pytest.fixture
def identities(pool: ConnectionPool) -> PostgresIdentityStore:
    return PostgresIdentityStore(pool)


def _challenge(challenge_id: str = "c1", now: datetime = NOW) -> OtpChallenge:
    return OtpChallenge.issue(
        challenge_id=challenge_id,
        purpose=SIGNUP,
        subject_address=ADDRESS,
        code_hash="$2b$04$hash",
        now=now,
        policy=ChallengePolicy(),
    )


class TestPostgresChallengeStore:
    def test_issue_and_get(self, challenges: PostgresChallengeStore) -> None:
        assert challenges.issue(_challenge(), 60, NOW) == 0

        stored = challenges.get(SIGNUP, ADDRESS)
        assert stored.challenge_id == "c1"
        assert stored.attempts_remaining == 5
        assert stored.expires_at == NOW + timedelta(seconds=600)

    def test_owner_round_trip(self, challenges: PostgresChallengeStore) -> None:
        owned = replace(_challenge("c1"), owner_id="u1")
        challenges.issue(owned, 60, NOW)

        assert challenges.get(SIGNUP, ADDRESS).owner_id == "u1"

        later = NOW + timedelta(seconds=61)
        challenges.issue(_challenge("c2", later), 60, later)
        assert challenges.get(SIGNUP, ADDRESS).owner_id is None

    def test_cooldown(self, challenges: PostgresChallengeStore) -> None:
        challenges.issue(_challenge("c1"), 60, NOW)

        later = NOW + timedelta(seconds=20)
        assert challenges.issue(_challenge("c2", later), 60, later) == 40
        assert challenges.get(SIGNUP, ADDRESS).challenge_id == "c1"

        later = NOW + timedelta(seconds=60)
        assert challenges.issue(_challenge("c3", later), 60, later) == 0
        assert challenges.get(SIGNUP, ADDRESS).challenge_id == "c3"

    def test_record_failure_and_consume(self, challenges: PostgresChallengeStore) -> None:
        challenges.issue(_challenge(), 60, NOW)

        assert challenges.record_failure(SIGNUP, ADDRESS, "c1") == 4
        assert challenges.consume(SIGNUP, ADDRESS, "c1", NOW) is True
        assert challenges.consume(SIGNUP, ADDRESS, "c1", NOW) is False
        assert challenges.get(SIGNUP, ADDRESS) is None

    def test_release_cooldown(self, challenges: PostgresChallengeStore) -> None:
        challenges.issue(_challenge("c1"), 60, NOW)
        challenges.release_cooldown(SIGNUP, ADDRESS, "c1")

        assert challenges.issue(_challenge("c2"), 60, NOW) == 0

    def test_purge_expired(self, challenges: PostgresChallengeStore) -> None:
        challenges.issue(_challenge(), 60, NOW)

        assert challenges.purge_expired(NOW + timedelta(seconds=601)) == 1
        assert challenges.get(SIGNUP, ADDRESS) is None

    def test_concurrent_consume_single_winner(self, challenges: PostgresChallengeStore) -> None:
        challenges.issue(_challenge(), 60, NOW)

        with ThreadPoolExecutor(max_workers=10) as executor:
            results = list(
                executor.map(lambda _: challenges.consume(SIGNUP, ADDRESS, "c1", NOW), range(10))
            )

        assert results.count(True) == 1


class TestPostgresIdentityStore:
    def test_create_and_load(self, identities: PostgresIdentityStore) -> None:
        record = identities.create_user("new@example.com", "Ada")

        assert identities.load_verification(record.user_id) == record
        assert identities.create_user("new@example.com", None) is None

    def test_flags_are_forward_only(self, identities: PostgresIdentityStore) -> None:
        record = identities.create_user("new@example.com", None)
        identities.save_verification(
            VerificationRecord(
                user_id=record.user_id,
                email=record.email,
                is_organization_email_verified=True,
                organization_email="new@acme-corp.com",
            )
        )

        merged = identities.save_verification(record)

        assert merged.is_organization_email_verified is True
        assert merged.organization_email == "new@acme-corp.com"

    def test_save_unknown_user(self, identities: PostgresIdentityStore) -> None:
        with pytest.raises(LookupError):
            identities.save_verification(VerificationRecord(user_id="ghost", email="g@x.io"))

    def test_review_pending_reaches_status(self, identities: PostgresIdentityStore) -> None:
        record = identities.create_user("new@example.com", None)
        state_machine = VerificationStateMachine(identity_store=identities)

        identities.set_identity_review_pending(record.user_id)

        assert identities.load_verification(record.user_id).identity_review_pending is True
        status = state_machine.get_status(record.user_id)
        assert PendingAction.ADMIN_REVIEW in status.pending_actions

        status = state_machine.mark_identity_verified(record.user_id)
        assert PendingAction.ADMIN_REVIEW not in status.pending_actions

    def test_review_pending_unknown_user(self, identities: PostgresIdentityStore) -> None:
        with pytest.raises(LookupError):
            identities.set_identity_review_pending("ghost")
