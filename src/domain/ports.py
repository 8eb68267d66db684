"""
Port interfaces - Protocol definitions for infrastructure abstraction.

This module defines the value types shared across the verification core
and the interfaces (ports) that the domain requires from infrastructure.
Adapters implement these protocols via structural subtyping.
"""

import math
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Protocol

Clock = Callable[[], datetime]


def system_clock() -> datetime:
    """Current UTC time (timezone-aware)."""
    return datetime.now(timezone.utc)


class ChallengePurpose(str, Enum):
    """
    Independent OTP flows.

    A challenge is keyed by (purpose, subject address), so a live signup
    code never interferes with a password-reset code for the same address.
    """

    SIGNUP = "signup"
    ORGANIZATION_EMAIL = "organization_email"
    PASSWORD_RESET = "password_reset"


class VerificationStep(str, Enum):
    """Next verification requirement for a user."""

    IDENTITY = "identity"
    ORGANIZATION = "organization"
    COMPLETE = "complete"
    NONE = "none"


class PendingAction(str, Enum):
    """UI hints for outstanding verification work (not used for gating)."""

    UPLOAD_DOCUMENTS = "upload_documents"
    VERIFY_EMAIL = "verify_email"
    ADMIN_REVIEW = "admin_review"


class Action(str, Enum):
    """Marketplace actions protected by the capability gate."""

    BUY = "buy"
    SELL = "sell"
    CONTACT = "contact"


class ChallengeResult(Enum):
    """
    Result of an OTP validation attempt.

    Used by validate_challenge() to indicate success or specific failure.
    """

    SUCCESS = "success"
    NOT_FOUND = "not_found"
    EXPIRED = "expired"
    MISMATCH = "mismatch"
    TOO_MANY_ATTEMPTS = "too_many_attempts"


@dataclass(frozen=True)
class ChallengePolicy:
    """
    OTP numbers carried into the domain.

    Changing these changes the guarantees of the challenge protocol
    (expiry window, resend cooldown and brute-force budget).
    """

    ttl_seconds: int = 600
    cooldown_seconds: int = 60
    max_attempts: int = 5
    code_length: int = 6
    bcrypt_cost: int = 10
    delivery_attempts: int = 2


@dataclass(frozen=True)
class OtpChallenge:
    """
    A single outstanding OTP challenge.

    The code is stored only as a bcrypt hash. challenge_id distinguishes
    a challenge from the one that superseded it under the same key, so
    stale validations can never consume a newer challenge. owner_id binds
    an organization-email challenge to the user who requested it.
    """

    challenge_id: str
    purpose: ChallengePurpose
    subject_address: str
    code_hash: str
    issued_at: datetime
    expires_at: datetime
    attempts_remaining: int
    last_issued_at: datetime | None
    owner_id: str | None = None

    @classmethod
    def issue(
        cls,
        challenge_id: str,
        purpose: ChallengePurpose,
        subject_address: str,
        code_hash: str,
        now: datetime,
        policy: ChallengePolicy,
        owner_id: str | None = None,
    ) -> "OtpChallenge":
        return cls(
            challenge_id=challenge_id,
            purpose=purpose,
            subject_address=subject_address,
            code_hash=code_hash,
            issued_at=now,
            expires_at=now + timedelta(seconds=policy.ttl_seconds),
            attempts_remaining=policy.max_attempts,
            last_issued_at=now,
            owner_id=owner_id,
        )

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at

    def is_live(self, now: datetime) -> bool:
        """Unexpired and still has validation attempts left."""
        return not self.is_expired(now) and self.attempts_remaining > 0

    def cooldown_remaining(self, now: datetime, cooldown_seconds: int) -> int:
        """
        Whole seconds until a replacement may be issued (0 when allowed).

        Only a live challenge holds a cooldown.
        """
        if self.last_issued_at is None or not self.is_live(now):
            return 0
        elapsed = (now - self.last_issued_at).total_seconds()
        remaining = cooldown_seconds - elapsed
        if remaining <= 0:
            return 0
        return max(1, math.ceil(remaining))


@dataclass(frozen=True)
class ChallengeReceipt:
    """Non-secret facts about a freshly issued challenge."""

    purpose: ChallengePurpose
    subject_address: str
    expires_at: datetime
    resend_available_at: datetime


@dataclass(frozen=True)
class ValidationOutcome:
    """Validation result plus the remaining attempt budget on MISMATCH."""

    result: ChallengeResult
    attempts_remaining: int | None = None

    @property
    def ok(self) -> bool:
        return self.result is ChallengeResult.SUCCESS

    @property
    def requires_new_challenge(self) -> bool:
        """True when the caller must request a fresh code to continue."""
        if self.result is ChallengeResult.MISMATCH:
            return not self.attempts_remaining
        return self.result is not ChallengeResult.SUCCESS


@dataclass(frozen=True)
class VerificationRecord:
    """Persisted verification flags for one user (owned by the identity store)."""

    user_id: str
    email: str
    is_identity_verified: bool = False
    is_organization_email_verified: bool = False
    organization_email: str | None = None
    identity_review_pending: bool = False
    display_name: str | None = None


@dataclass(frozen=True)
class VerificationStatus:
    """
    Derived verification state attached 1:1 to a user.

    Never constructed from independently stored booleans: see
    state_machine.derive_status().
    """

    is_identity_verified: bool
    is_organization_email_verified: bool
    is_fully_verified: bool
    current_step: VerificationStep
    pending_actions: frozenset[PendingAction] = field(default_factory=frozenset)


@dataclass(frozen=True)
class CapabilitySet:
    """Boolean permissions recomputed on every read."""

    can_buy: bool
    can_sell: bool
    can_contact: bool


@dataclass(frozen=True)
class CapabilityCheck:
    """Outcome of gating a single action. Blocked is a normal outcome."""

    allowed: bool
    required_step: VerificationStep | None = None


@dataclass(frozen=True)
class ResetAuthorization:
    """Short-lived authorization to update the password for an address."""

    email: str
    token: str
    expires_at: datetime


class ChallengeStore(Protocol):
    """
    Port interface for OTP challenge persistence.

    Implementations must linearize operations per (purpose, address) key:
    issue() is an atomic check-cooldown-and-replace, consume() an atomic
    check-and-delete.
    """

    def issue(self, challenge: OtpChallenge, cooldown_seconds: int, now: datetime) -> int:
        """
        Store challenge, superseding any prior one for the same key.

        Args:
            challenge: Freshly issued challenge
            cooldown_seconds: Minimum spacing between issuances for a live key
            now: Current time used for cooldown and liveness checks

        Returns:
            0 if stored, otherwise the whole seconds left on the cooldown
            (the existing challenge is left untouched)
        """
        ...

    def get(self, purpose: ChallengePurpose, address: str) -> OtpChallenge | None:
        """Return the current challenge for the key, if any."""
        ...

    def record_failure(
        self, purpose: ChallengePurpose, address: str, challenge_id: str
    ) -> int | None:
        """
        Atomically decrement attempts_remaining.

        Returns:
            Attempts left after the decrement, or None if the challenge is
            gone, superseded, or already exhausted
        """
        ...

    def consume(
        self, purpose: ChallengePurpose, address: str, challenge_id: str, now: datetime
    ) -> bool:
        """
        Atomically delete a live challenge.

        Returns:
            True for exactly one caller; False if it was already consumed,
            superseded, exhausted or expired
        """
        ...

    def discard(self, purpose: ChallengePurpose, address: str, challenge_id: str) -> None:
        """Delete the challenge if it is still the one identified."""
        ...

    def release_cooldown(
        self, purpose: ChallengePurpose, address: str, challenge_id: str
    ) -> None:
        """Clear last_issued_at so a replacement may be requested immediately."""
        ...

    def purge_expired(self, now: datetime) -> int:
        """Delete every expired challenge, returning the number removed."""
        ...


class IdentityStore(Protocol):
    """Port interface for the user verification record."""

    def load_verification(self, user_id: str) -> VerificationRecord | None:
        """Return the record, or None if the user does not exist."""
        ...

    def save_verification(self, record: VerificationRecord) -> VerificationRecord:
        """
        Persist verification flags.

        Flags are merged forward-only: a flag already set is never cleared.

        Returns:
            The record as persisted after the merge
        """
        ...

    def create_user(self, email: str, display_name: str | None) -> VerificationRecord | None:
        """
        Create an unverified user record.

        Returns:
            The new record, or None if an account already uses the email
        """
        ...


class NotificationChannel(Protocol):
    """Port interface for OTP delivery (email/SMS)."""

    def send_code(
        self,
        address: str,
        code: str,
        purpose: ChallengePurpose,
        display_name: str | None = None,
    ) -> None:
        """
        Deliver a code to an address.

        Raises:
            NotificationDeliveryError: Delivery failed; permanent=True when
                retrying can never succeed (e.g. the address is rejected)
        """
        ...


class SessionIssuer(Protocol):
    """Port interface for refreshing a user's authenticated session."""

    def refresh_session(self, user_id: str, status: VerificationStatus) -> None:
        """
        Re-issue the user's session with claims for the given status.

        Raises:
            SessionRefreshError: The issuer could not refresh the session
        """
        ...


class PasswordResetHandler(Protocol):
    """Port interface for the collaborator that performs password updates."""

    def authorize(self, authorization: ResetAuthorization) -> None:
        """Accept a reset authorization for later redemption."""
        ...
