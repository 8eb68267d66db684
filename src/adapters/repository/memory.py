"""
In-memory repository adapters - Implement ChallengeStore and IdentityStore.

Used for development and tests (storage_backend="memory"). Operations on
the same challenge key are serialized by a striped lock (a fixed pool
indexed by key hash), which gives the same linearization the PostgreSQL
adapter gets from atomic upserts and conditional deletes. The pool never
grows, whatever addresses callers submit.
"""

import threading
import uuid
from dataclasses import replace
from datetime import datetime

from src.domain.ports import (
    ChallengePurpose,
    OtpChallenge,
    ResetAuthorization,
    VerificationRecord,
)

ChallengeKey = tuple[ChallengePurpose, str]

LOCK_STRIPES = 64


class InMemoryChallengeStore:
    """
    Implements ChallengeStore protocol with dictionaries.

    Uses structural subtyping - no explicit inheritance from Protocol.
    """

    def __init__(self) -> None:
        self._challenges: dict[ChallengeKey, OtpChallenge] = {}
        self._locks = tuple(threading.Lock() for _ in range(LOCK_STRIPES))

    def issue(self, challenge: OtpChallenge, cooldown_seconds: int, now: datetime) -> int:
        key = (challenge.purpose, challenge.subject_address)
        with self._lock_for(key):
            existing = self._challenges.get(key)
            if existing is not None:
                remaining = existing.cooldown_remaining(now, cooldown_seconds)
                if remaining:
                    return remaining
            self._challenges[key] = challenge
            return 0

    def get(self, purpose: ChallengePurpose, address: str) -> OtpChallenge | None:
        key = (purpose, address)
        with self._lock_for(key):
            return self._challenges.get(key)

    def record_failure(
        self, purpose: ChallengePurpose, address: str, challenge_id: str
    ) -> int | None:
        key = (purpose, address)
        with self._lock_for(key):
            current = self._current(key, challenge_id)
            if current is None or current.attempts_remaining <= 0:
                return None
            updated = replace(current, attempts_remaining=current.attempts_remaining - 1)
            self._challenges[key] = updated
            return updated.attempts_remaining

    def consume(
        self, purpose: ChallengePurpose, address: str, challenge_id: str, now: datetime
    ) -> bool:
        key = (purpose, address)
        with self._lock_for(key):
            current = self._current(key, challenge_id)
            if current is None or not current.is_live(now):
                return False
            del self._challenges[key]
            return True

    def discard(self, purpose: ChallengePurpose, address: str, challenge_id: str) -> None:
        key = (purpose, address)
        with self._lock_for(key):
            if self._current(key, challenge_id) is not None:
                del self._challenges[key]

    def release_cooldown(
        self, purpose: ChallengePurpose, address: str, challenge_id: str
    ) -> None:
        key = (purpose, address)
        with self._lock_for(key):
            current = self._current(key, challenge_id)
            if current is not None:
                self._challenges[key] = replace(current, last_issued_at=None)

    def purge_expired(self, now: datetime) -> int:
        removed = 0
        for key in list(self._challenges):
            with self._lock_for(key):
                challenge = self._challenges.get(key)
                if challenge is not None and challenge.is_expired(now):
                    del self._challenges[key]
                    removed += 1
        return removed

    def _current(self, key: ChallengeKey, challenge_id: str) -> OtpChallenge | None:
        challenge = self._challenges.get(key)
        if challenge is None or challenge.challenge_id != challenge_id:
            return None
        return challenge

    def _lock_for(self, key: ChallengeKey) -> threading.Lock:
        return self._locks[hash(key) % len(self._locks)]


class InMemoryIdentityStore:
    """Implements IdentityStore protocol with forward-only flag merging."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._records: dict[str, VerificationRecord] = {}
        self._user_ids_by_email: dict[str, str] = {}

    def load_verification(self, user_id: str) -> VerificationRecord | None:
        with self._lock:
            return self._records.get(user_id)

    def save_verification(self, record: VerificationRecord) -> VerificationRecord:
        with self._lock:
            current = self._records.get(record.user_id)
            if current is None:
                raise LookupError(f"No user {record.user_id}")
            merged = replace(
                current,
                is_identity_verified=current.is_identity_verified or record.is_identity_verified,
                is_organization_email_verified=(
                    current.is_organization_email_verified or record.is_organization_email_verified
                ),
                organization_email=current.organization_email or record.organization_email,
                identity_review_pending=record.identity_review_pending,
            )
            self._records[record.user_id] = merged
            return merged

    def create_user(self, email: str, display_name: str | None) -> VerificationRecord | None:
        with self._lock:
            if email in self._user_ids_by_email:
                return None
            record = VerificationRecord(
                user_id=uuid.uuid4().hex,
                email=email,
                display_name=display_name,
            )
            self._records[record.user_id] = record
            self._user_ids_by_email[email] = record.user_id
            return record

    def set_identity_review_pending(self, user_id: str, pending: bool = True) -> None:
        """Set by the external document-review system; read-only to the domain."""
        with self._lock:
            record = self._records.get(user_id)
            if record is None:
                raise LookupError(f"No user {user_id}")
            self._records[user_id] = replace(record, identity_review_pending=pending)


class InMemoryPasswordResetHandler:
    """
    Implements PasswordResetHandler protocol.

    Holds authorizations until the password collaborator redeems them.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._authorizations: dict[str, ResetAuthorization] = {}

    def authorize(self, authorization: ResetAuthorization) -> None:
        with self._lock:
            self._authorizations[authorization.token] = authorization

    def redeem(self, token: str, now: datetime) -> ResetAuthorization | None:
        """Single-use lookup; expired authorizations are dropped."""
        with self._lock:
            authorization = self._authorizations.pop(token, None)
        if authorization is None or now > authorization.expires_at:
            return None
        return authorization
