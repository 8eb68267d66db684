"""
OTP challenge manager - issue, validate and rate-limit one-time passcodes.

Challenge Lifecycle
===================

    issued     -> consumed      (correct code, single use)
    issued     -> superseded    (new challenge for the same key after cooldown)
    issued     -> expired       (TTL exceeded; deleted lazily or by the sweep)
    issued     -> exhausted     (attempt budget spent; deleted on next validation)
    issued     -> discarded     (permanent delivery failure)

At most one challenge exists per (purpose, address). The manager is
purpose-agnostic: it never touches verification state, the caller decides
what a successful validation means.

Security Design
---------------
- Codes come from the secrets module and are stored only as bcrypt hashes.
- bcrypt.checkpw() runs on every validation, against a dummy hash when no
  challenge exists, so response time does not reveal whether one does.
- Check-and-delete and attempt decrements are delegated to the store,
  which performs them atomically per key.
"""

import logging
import secrets
from dataclasses import dataclass, field
from datetime import timedelta
from functools import lru_cache

import bcrypt

from .addresses import is_valid_address, normalize_address
from .exceptions import CooldownActive, DeliveryFailed, InvalidAddress, NotificationDeliveryError
from .ports import (
    ChallengePolicy,
    ChallengePurpose,
    ChallengeReceipt,
    ChallengeResult,
    ChallengeStore,
    Clock,
    NotificationChannel,
    OtpChallenge,
    ValidationOutcome,
    system_clock,
)

logger = logging.getLogger(__name__)


@lru_cache
def _dummy_hash(cost: int) -> str:
    """Hash compared against when no challenge exists, at the same work factor."""
    return bcrypt.hashpw(b"dummy_code_for_timing_safety", bcrypt.gensalt(rounds=cost)).decode()


@dataclass
class OtpChallengeManager:
    """
    Domain service for OTP challenges.

    Orchestrates code generation, hashing, cooldown enforcement,
    delivery and validation for any ChallengePurpose.
    """

    store: ChallengeStore
    notifier: NotificationChannel
    policy: ChallengePolicy = field(default_factory=ChallengePolicy)
    clock: Clock = system_clock

    def request_challenge(
        self,
        purpose: ChallengePurpose,
        address: str,
        display_name: str | None = None,
        owner_id: str | None = None,
    ) -> ChallengeReceipt:
        """
        Issue a new challenge for (purpose, address) and deliver its code.

        Any prior challenge for the same key is superseded, including one
        held by a different owner.

        Args:
            purpose: Flow the code belongs to
            address: Recipient email (will be normalized)
            display_name: Optional greeting name for the notification
            owner_id: User the code is bound to; only that user may redeem it

        Returns:
            ChallengeReceipt with expiry and next resend time

        Raises:
            InvalidAddress: Address is syntactically invalid
            CooldownActive: A live challenge was issued too recently
            DeliveryFailed: The code could not be delivered
        """
        normalized = normalize_address(address)
        if not is_valid_address(normalized):
            raise InvalidAddress(normalized, "Invalid email address")

        now = self.clock()
        code = self._generate_code()
        challenge = OtpChallenge.issue(
            challenge_id=secrets.token_hex(8),
            purpose=purpose,
            subject_address=normalized,
            code_hash=self._hash_code(code),
            now=now,
            policy=self.policy,
            owner_id=owner_id,
        )

        retry_after = self.store.issue(challenge, self.policy.cooldown_seconds, now)
        if retry_after:
            logger.debug(
                "Cooldown active for %s/%s (%ds left)", purpose.value, normalized, retry_after
            )
            raise CooldownActive(retry_after)

        self._deliver(challenge, code, display_name)
        logger.info("Issued %s challenge for %s", purpose.value, normalized)
        return ChallengeReceipt(
            purpose=purpose,
            subject_address=normalized,
            expires_at=challenge.expires_at,
            resend_available_at=now + timedelta(seconds=self.policy.cooldown_seconds),
        )

    def validate_challenge(
        self,
        purpose: ChallengePurpose,
        address: str,
        code: str,
        owner_id: str | None = None,
    ) -> ValidationOutcome:
        """
        Validate a submitted code against the live challenge.

        Return values by scenario:
        - SUCCESS: Code matches; the challenge is consumed (single use)
        - NOT_FOUND: No challenge (never requested, consumed, lost a race,
          or bound to a different owner)
        - EXPIRED: TTL exceeded; the challenge is deleted
        - MISMATCH: Wrong code; attempts_remaining is decremented
        - TOO_MANY_ATTEMPTS: Budget already spent; the challenge is deleted

        Args:
            purpose: Flow the code belongs to
            address: Subject email (will be normalized)
            code: Submitted code
            owner_id: Caller the challenge must be bound to

        Returns:
            ValidationOutcome with the result and remaining attempts
        """
        normalized = normalize_address(address)
        now = self.clock()
        challenge = self.store.get(purpose, normalized)

        # Always run bcrypt before any state-based return
        stored_hash = (
            challenge.code_hash if challenge is not None else _dummy_hash(self.policy.bcrypt_cost)
        )
        code_valid = self._check_code(code, stored_hash)

        # Another owner's challenge is invisible and its budget untouched
        if challenge is None or challenge.owner_id != owner_id:
            return ValidationOutcome(ChallengeResult.NOT_FOUND)

        if challenge.is_expired(now):
            self.store.discard(purpose, normalized, challenge.challenge_id)
            logger.info("Expired %s challenge for %s", purpose.value, normalized)
            return ValidationOutcome(ChallengeResult.EXPIRED)

        if challenge.attempts_remaining <= 0:
            self.store.discard(purpose, normalized, challenge.challenge_id)
            logger.info("Attempt budget spent for %s/%s", purpose.value, normalized)
            return ValidationOutcome(ChallengeResult.TOO_MANY_ATTEMPTS)

        if not code_valid:
            remaining = self.store.record_failure(purpose, normalized, challenge.challenge_id)
            if remaining is None:
                return self._resolve_lost_failure(purpose, normalized, challenge.challenge_id)
            return ValidationOutcome(ChallengeResult.MISMATCH, attempts_remaining=remaining)

        if not self.store.consume(purpose, normalized, challenge.challenge_id, now):
            # Another validation consumed it first
            return ValidationOutcome(ChallengeResult.NOT_FOUND)

        logger.info("Validated %s challenge for %s", purpose.value, normalized)
        return ValidationOutcome(ChallengeResult.SUCCESS)

    def _resolve_lost_failure(
        self, purpose: ChallengePurpose, address: str, challenge_id: str
    ) -> ValidationOutcome:
        """Outcome for a mismatch whose decrement was refused by the store."""
        current = self.store.get(purpose, address)
        if current is None or current.challenge_id != challenge_id:
            # Superseded or removed by a concurrent request
            return ValidationOutcome(ChallengeResult.NOT_FOUND)
        # A concurrent guess spent the last attempt
        self.store.discard(purpose, address, challenge_id)
        logger.info("Attempt budget spent for %s/%s", purpose.value, address)
        return ValidationOutcome(ChallengeResult.TOO_MANY_ATTEMPTS)

    def purge_expired(self) -> int:
        """Delete expired challenges; validation re-checks expiry regardless."""
        removed = self.store.purge_expired(self.clock())
        if removed:
            logger.info("Purged %d expired challenge(s)", removed)
        return removed

    def _deliver(self, challenge: OtpChallenge, code: str, display_name: str | None) -> None:
        purpose = challenge.purpose
        address = challenge.subject_address
        last_error: NotificationDeliveryError | None = None

        for attempt in range(1, self.policy.delivery_attempts + 1):
            try:
                self.notifier.send_code(address, code, purpose, display_name)
                return
            except NotificationDeliveryError as exc:
                if exc.permanent:
                    self.store.discard(purpose, address, challenge.challenge_id)
                    logger.warning("Permanent delivery failure for %s: %s", address, exc)
                    raise DeliveryFailed(address, terminal=True) from exc
                logger.warning(
                    "Delivery attempt %d/%d failed for %s: %s",
                    attempt,
                    self.policy.delivery_attempts,
                    address,
                    exc,
                )
                last_error = exc

        # Challenge stays valid for a late delivery; a replacement may be requested now
        self.store.release_cooldown(purpose, address, challenge.challenge_id)
        logger.error(
            "Delivery failed for %s after %d attempt(s)", address, self.policy.delivery_attempts
        )
        raise DeliveryFailed(address, terminal=False) from last_error

    def _generate_code(self) -> str:
        """
        Generate a cryptographically secure numeric code.

        Returns string to preserve leading zeros (000000-999999).
        """
        return "".join(secrets.choice("0123456789") for _ in range(self.policy.code_length))

    def _hash_code(self, code: str) -> str:
        return bcrypt.hashpw(code.encode(), bcrypt.gensalt(rounds=self.policy.bcrypt_cost)).decode()

    def _check_code(self, code: str, code_hash: str) -> bool:
        """Constant-time comparison via bcrypt."""
        # bcrypt rejects inputs over 72 bytes
        return bcrypt.checkpw(code.encode()[:72], code_hash.encode())
