"""
Unit tests for the in-memory adapters.

Covers the atomic challenge-store operations the domain relies on, the
identity store's signup uniqueness and the local session issuer.
"""

from datetime import datetime, timedelta, timezone

import pytest

from src.adapters.repository.memory import LOCK_STRIPES, InMemoryChallengeStore
from src.adapters.session.local import LocalSessionIssuer
from src.domain.ports import (
    ChallengePolicy,
    ChallengePurpose,
    OtpChallenge,
    VerificationRecord,
)
from src.domain.state_machine import derive_status

NOW = datetime(2026, 1, 15, 9, 0, tzinfo=timezone.utc)
SIGNUP = ChallengePurpose.SIGNUP
ADDRESS = "user@org.com"


def _challenge(challenge_id: str = "c1", now: datetime = NOW) -> OtpChallenge:
    return OtpChallenge.issue(
        challenge_id=challenge_id,
        purpose=SIGNUP,
        subject_address=ADDRESS,
        code_hash="$2b$04$hash",
        now=now,
        policy=ChallengePolicy(),
    )


class TestInMemoryChallengeStore:
    def test_issue_and_get(self) -> None:
        store = InMemoryChallengeStore()

        assert store.issue(_challenge(), 60, NOW) == 0
        assert store.get(SIGNUP, ADDRESS).challenge_id == "c1"

    def test_issue_within_cooldown_keeps_existing(self) -> None:
        store = InMemoryChallengeStore()
        store.issue(_challenge("c1"), 60, NOW)

        later = NOW + timedelta(seconds=10)
        assert store.issue(_challenge("c2", later), 60, later) == 50
        assert store.get(SIGNUP, ADDRESS).challenge_id == "c1"

    def test_issue_after_cooldown_replaces(self) -> None:
        store = InMemoryChallengeStore()
        store.issue(_challenge("c1"), 60, NOW)

        later = NOW + timedelta(seconds=61)
        assert store.issue(_challenge("c2", later), 60, later) == 0
        assert store.get(SIGNUP, ADDRESS).challenge_id == "c2"

    def test_record_failure(self) -> None:
        store = InMemoryChallengeStore()
        store.issue(_challenge(), 60, NOW)

        assert store.record_failure(SIGNUP, ADDRESS, "c1") == 4
        assert store.record_failure(SIGNUP, ADDRESS, "stale") is None

    def test_record_failure_never_goes_negative(self) -> None:
        store = InMemoryChallengeStore()
        store.issue(_challenge(), 60, NOW)

        results = [store.record_failure(SIGNUP, ADDRESS, "c1") for _ in range(6)]

        assert results == [4, 3, 2, 1, 0, None]

    def test_consume_once(self) -> None:
        store = InMemoryChallengeStore()
        store.issue(_challenge(), 60, NOW)

        assert store.consume(SIGNUP, ADDRESS, "c1", NOW) is True
        assert store.consume(SIGNUP, ADDRESS, "c1", NOW) is False

    def test_consume_superseded(self) -> None:
        store = InMemoryChallengeStore()
        store.issue(_challenge(), 60, NOW)

        assert store.consume(SIGNUP, ADDRESS, "other", NOW) is False
        assert store.get(SIGNUP, ADDRESS) is not None

    def test_consume_expired(self) -> None:
        store = InMemoryChallengeStore()
        store.issue(_challenge(), 60, NOW)

        assert store.consume(SIGNUP, ADDRESS, "c1", NOW + timedelta(seconds=601)) is False

    def test_discard_ignores_stale_id(self) -> None:
        store = InMemoryChallengeStore()
        store.issue(_challenge(), 60, NOW)

        store.discard(SIGNUP, ADDRESS, "stale")
        assert store.get(SIGNUP, ADDRESS) is not None

        store.discard(SIGNUP, ADDRESS, "c1")
        assert store.get(SIGNUP, ADDRESS) is None

    def test_release_cooldown(self) -> None:
        store = InMemoryChallengeStore()
        store.issue(_challenge("c1"), 60, NOW)

        store.release_cooldown(SIGNUP, ADDRESS, "c1")

        assert store.get(SIGNUP, ADDRESS).last_issued_at is None
        assert store.issue(_challenge("c2"), 60, NOW) == 0

    def test_lookups_of_unknown_keys_allocate_nothing(self) -> None:
        """Validating random addresses must not grow any per-key structure."""
        store = InMemoryChallengeStore()
        locks = store._locks

        for n in range(500):
            address = f"nobody{n}@example.com"
            assert store.get(SIGNUP, address) is None
            assert store.record_failure(SIGNUP, address, "c1") is None
            store.discard(SIGNUP, address, "c1")

        assert store._locks is locks
        assert len(store._locks) == LOCK_STRIPES
        assert store._challenges == {}

    def test_consume_and_purge_leave_nothing_behind(self) -> None:
        store = InMemoryChallengeStore()
        store.issue(_challenge("c1"), 60, NOW)
        store.consume(SIGNUP, ADDRESS, "c1", NOW)
        store.issue(_challenge("c2"), 60, NOW)

        assert store.purge_expired(NOW + timedelta(seconds=601)) == 1
        assert store._challenges == {}
        assert len(store._locks) == LOCK_STRIPES


class TestInMemoryIdentityStore:
    def test_create_user(self, identity_store) -> None:
        record = identity_store.create_user("new@example.com", "Ada")

        assert record.email == "new@example.com"
        assert record.is_organization_email_verified is False
        assert identity_store.load_verification(record.user_id) == record

    def test_duplicate_email(self, identity_store) -> None:
        identity_store.create_user("new@example.com", None)

        assert identity_store.create_user("new@example.com", None) is None

    def test_unknown_user(self, identity_store) -> None:
        assert identity_store.load_verification("ghost") is None

    def test_save_for_unknown_user_raises(self, identity_store) -> None:
        with pytest.raises(LookupError):
            identity_store.save_verification(
                VerificationRecord(user_id="ghost", email="g@x.io", is_identity_verified=True)
            )

        assert identity_store.load_verification("ghost") is None

    def test_review_pending_for_unknown_user_raises(self, identity_store) -> None:
        with pytest.raises(LookupError):
            identity_store.set_identity_review_pending("ghost")


class TestLocalSessionIssuer:
    def _status(self, org: bool, identity: bool):
        return derive_status(
            VerificationRecord(
                user_id="u1",
                email="member@example.com",
                is_organization_email_verified=org,
                is_identity_verified=identity,
            )
        )

    def test_refresh_bumps_version(self, clock) -> None:
        issuer = LocalSessionIssuer(clock=clock)

        issuer.refresh_session("u1", self._status(False, False))
        issuer.refresh_session("u1", self._status(True, False))

        claims = issuer.current_claims("u1")
        assert claims.version == 2
        assert claims.can_buy is True
        assert claims.can_sell is False
        assert claims.refreshed_at == clock.now

    def test_no_claims_before_refresh(self) -> None:
        assert LocalSessionIssuer().current_claims("u1") is None

    def test_session_tokens(self) -> None:
        issuer = LocalSessionIssuer()

        first = issuer.open_session("u1")
        second = issuer.open_session("u1")

        assert first != second
        assert issuer.resolve_token(first) == "u1"
        assert issuer.resolve_token(second) == "u1"
        assert issuer.resolve_token("forged") is None
