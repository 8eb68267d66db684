"""
Verification state machine - per-user verification flags.

States (forward-only):

    Unverified -> OrganizationEmailVerified -> FullyVerified
                  IdentityVerified (independent sub-flag)

FullyVerified holds iff both flags hold; it is never stored on its own.
There is no de-verification path here: revocation is an administrative
action outside this core. Forward-only merging is also enforced by the
identity store (see IdentityStore.save_verification), so concurrent
transitions for the same user cannot lose an update.
"""

import logging
from dataclasses import dataclass, replace

from .exceptions import UserNotFound
from .ports import (
    IdentityStore,
    PendingAction,
    VerificationRecord,
    VerificationStatus,
    VerificationStep,
)

logger = logging.getLogger(__name__)


def derive_status(record: VerificationRecord) -> VerificationStatus:
    """
    Derive the full status from the two persisted flags.

    current_step is the first unmet requirement, organization before
    identity, or COMPLETE when both are met.
    """
    org = record.is_organization_email_verified
    identity = record.is_identity_verified
    fully = org and identity

    if fully:
        step = VerificationStep.COMPLETE
    elif not org:
        step = VerificationStep.ORGANIZATION
    else:
        step = VerificationStep.IDENTITY

    pending: set[PendingAction] = set()
    if not org:
        pending.add(PendingAction.VERIFY_EMAIL)
    if not identity:
        if record.identity_review_pending:
            pending.add(PendingAction.ADMIN_REVIEW)
        else:
            pending.add(PendingAction.UPLOAD_DOCUMENTS)

    return VerificationStatus(
        is_identity_verified=identity,
        is_organization_email_verified=org,
        is_fully_verified=fully,
        current_step=step,
        pending_actions=frozenset(pending),
    )


@dataclass
class VerificationStateMachine:
    """Sole writer of verification flags, via the two idempotent mark operations."""

    identity_store: IdentityStore

    def get_status(self, user_id: str) -> VerificationStatus:
        """
        Read-only status lookup.

        Raises:
            UserNotFound: The identity store has no record for user_id
        """
        return derive_status(self._load(user_id))

    def mark_organization_email_verified(
        self, user_id: str, organization_email: str | None = None
    ) -> VerificationStatus:
        """
        Record organization-email verification.

        Idempotent: an already verified user is returned unchanged, including
        the organization email recorded the first time.

        Raises:
            UserNotFound: The identity store has no record for user_id
        """
        record = self._load(user_id)
        if record.is_organization_email_verified:
            return derive_status(record)

        saved = self.identity_store.save_verification(
            replace(
                record,
                is_organization_email_verified=True,
                organization_email=organization_email or record.organization_email,
            )
        )
        logger.info("User %s organization email verified", user_id)
        return derive_status(saved)

    def mark_identity_verified(self, user_id: str) -> VerificationStatus:
        """
        Record identity verification. Same idempotence contract.

        Raises:
            UserNotFound: The identity store has no record for user_id
        """
        record = self._load(user_id)
        if record.is_identity_verified:
            return derive_status(record)

        saved = self.identity_store.save_verification(
            replace(record, is_identity_verified=True, identity_review_pending=False)
        )
        logger.info("User %s identity verified", user_id)
        return derive_status(saved)

    def _load(self, user_id: str) -> VerificationRecord:
        record = self.identity_store.load_verification(user_id)
        if record is None:
            raise UserNotFound(user_id)
        return record
