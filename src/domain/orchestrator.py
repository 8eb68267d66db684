"""
Verification orchestrator - the facade used by callers.

Flows
=====

Signup:
    request(signup, personal email) -> validate -> create unverified user record

Organization email (bound to the requesting user):
    request(organization_email, email, user) -> validate as that user
        -> mark organization email verified -> refresh session

Password reset:
    request(password_reset, email) -> validate
        -> hand a short-lived ResetAuthorization to the password collaborator

Per flow instance (VerificationFlow):

    AWAITING_CHALLENGE -> AWAITING_CODE -> VERIFIED
                                        -> FAILED

FAILED accepts another code after a MISMATCH with attempts left; after
EXPIRED, TOO_MANY_ATTEMPTS or NOT_FOUND the flow must send() a new challenge.

This is the only layer that turns low-level results into user-facing
messages (describe_outcome / describe_error).
"""

import logging
import secrets
from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum

from . import capabilities
from .addresses import (
    DEFAULT_PERSONAL_EMAIL_PROVIDERS,
    DEFAULT_SIGNUP_EMAIL_DOMAINS,
    is_allowed_signup_address,
    is_personal_address,
    normalize_address,
)
from .challenges import OtpChallengeManager
from .exceptions import (
    AccountAlreadyExists,
    BypassDisabled,
    CooldownActive,
    DeliveryFailed,
    FlowStateError,
    InvalidAddress,
    VerificationError,
)
from .ports import (
    Action,
    CapabilityCheck,
    CapabilitySet,
    ChallengePurpose,
    ChallengeReceipt,
    ChallengeResult,
    IdentityStore,
    PasswordResetHandler,
    ResetAuthorization,
    ValidationOutcome,
    VerificationStatus,
)
from .session_sync import SessionSynchronizer
from .state_machine import VerificationStateMachine

logger = logging.getLogger(__name__)


class FlowState(str, Enum):
    AWAITING_CHALLENGE = "awaiting_challenge"
    AWAITING_CODE = "awaiting_code"
    VERIFIED = "verified"
    FAILED = "failed"


@dataclass(frozen=True)
class FlowCompletion:
    """
    Result of submitting a code for any flow.

    Exactly one payload is set on success, depending on the purpose:
    user_id + status (signup), status (organization email) or
    authorization (password reset).
    """

    outcome: ValidationOutcome
    user_id: str | None = None
    status: VerificationStatus | None = None
    authorization: ResetAuthorization | None = None

    @property
    def ok(self) -> bool:
        return self.outcome.ok


@dataclass(frozen=True)
class StatusReport:
    """Verification status plus everything derived from it."""

    status: VerificationStatus
    capabilities: CapabilitySet
    message: str


def describe_outcome(outcome: ValidationOutcome) -> str:
    """User-facing message for a validation outcome."""
    result = outcome.result
    if result is ChallengeResult.SUCCESS:
        return "Code verified"
    if result is ChallengeResult.MISMATCH:
        if not outcome.attempts_remaining:
            return "Incorrect code. No attempts remaining, please request a new code."
        return f"Incorrect code. {outcome.attempts_remaining} attempt(s) remaining."
    if result is ChallengeResult.EXPIRED:
        return "This code has expired. Please request a new code."
    if result is ChallengeResult.TOO_MANY_ATTEMPTS:
        return "Too many incorrect attempts. Please request a new code."
    return "No active code found. Please request a new code."


def describe_error(error: VerificationError) -> str:
    """User-facing message for a request-side error."""
    if isinstance(error, CooldownActive):
        return f"Please wait {error.retry_after_seconds} seconds before requesting a new code."
    if isinstance(error, DeliveryFailed):
        if error.terminal:
            return "We could not deliver a code to this address. Please check it and try again."
        return "We could not send your code right now. Please request a new code."
    if isinstance(error, InvalidAddress):
        return error.reason
    if isinstance(error, AccountAlreadyExists):
        return "An account with this email already exists."
    return "Verification failed"


@dataclass
class VerificationOrchestrator:
    """
    Facade coordinating challenges, verification state and session sync.

    Built per request from injected collaborators; holds no mutable state
    of its own.
    """

    challenges: OtpChallengeManager
    state_machine: VerificationStateMachine
    synchronizer: SessionSynchronizer
    identity_store: IdentityStore
    reset_handler: PasswordResetHandler
    personal_email_providers: tuple[str, ...] = DEFAULT_PERSONAL_EMAIL_PROVIDERS
    signup_email_domains: tuple[str, ...] = DEFAULT_SIGNUP_EMAIL_DOMAINS
    reset_authorization_ttl_seconds: int = 900
    bypass_enabled: bool = False

    def open_flow(
        self,
        purpose: ChallengePurpose,
        address: str,
        user_id: str | None = None,
        display_name: str | None = None,
    ) -> "VerificationFlow":
        return VerificationFlow(
            orchestrator=self,
            purpose=purpose,
            address=address,
            user_id=user_id,
            display_name=display_name,
        )

    def request_challenge(
        self,
        purpose: ChallengePurpose,
        address: str,
        display_name: str | None = None,
        user_id: str | None = None,
    ) -> ChallengeReceipt:
        """
        Send a code for any flow.

        Signup accepts only allowed personal providers. Organization-email
        challenges reject consumer mail providers and are bound to user_id,
        so only that user can redeem the code.

        Raises:
            InvalidAddress, CooldownActive, DeliveryFailed
            UserNotFound: user_id has no record (organization email)
        """
        if purpose is ChallengePurpose.SIGNUP:
            self._require_signup_address(address)
            return self.challenges.request_challenge(purpose, address, display_name)
        if purpose is ChallengePurpose.ORGANIZATION_EMAIL:
            if user_id is None:
                raise ValueError("user_id is required for organization email verification")
            self._require_organization_address(address)
            self.state_machine.get_status(user_id)
            return self.challenges.request_challenge(
                purpose, address, display_name, owner_id=user_id
            )
        return self.challenges.request_challenge(purpose, address, display_name)

    def validate_challenge(
        self, purpose: ChallengePurpose, address: str, code: str
    ) -> ValidationOutcome:
        """Validate without any follow-up transition."""
        return self.challenges.validate_challenge(purpose, address, code)

    def complete(
        self,
        purpose: ChallengePurpose,
        address: str,
        code: str,
        user_id: str | None = None,
        display_name: str | None = None,
    ) -> FlowCompletion:
        """Validate a code and run the follow-up for its purpose."""
        if purpose is ChallengePurpose.SIGNUP:
            return self.complete_signup(address, code, display_name)
        if purpose is ChallengePurpose.ORGANIZATION_EMAIL:
            if user_id is None:
                raise ValueError("user_id is required for organization email verification")
            return self.complete_organization_email(user_id, address, code)
        return self.complete_password_reset(address, code)

    def complete_signup(
        self, email: str, code: str, display_name: str | None = None
    ) -> FlowCompletion:
        """
        Validate a signup code and create the unverified user record.

        Raises:
            AccountAlreadyExists: An account already uses the email
        """
        outcome = self.challenges.validate_challenge(ChallengePurpose.SIGNUP, email, code)
        if not outcome.ok:
            return FlowCompletion(outcome=outcome)

        record = self.identity_store.create_user(normalize_address(email), display_name)
        if record is None:
            raise AccountAlreadyExists(normalize_address(email))

        logger.info("Created user %s from signup", record.user_id)
        return FlowCompletion(
            outcome=outcome,
            user_id=record.user_id,
            status=self.state_machine.get_status(record.user_id),
        )

    def complete_organization_email(self, user_id: str, email: str, code: str) -> FlowCompletion:
        """
        Validate an organization-email code and record the verification.

        The code is accepted only from the user it was requested for.

        Raises:
            UserNotFound: user_id has no record (checked before the code is spent)
        """
        # Fail hard before consuming the challenge
        self.state_machine.get_status(user_id)

        outcome = self.challenges.validate_challenge(
            ChallengePurpose.ORGANIZATION_EMAIL, email, code, owner_id=user_id
        )
        if not outcome.ok:
            return FlowCompletion(outcome=outcome)

        status = self.state_machine.mark_organization_email_verified(
            user_id, organization_email=normalize_address(email)
        )
        self.synchronizer.sync_after_verification(user_id)
        return FlowCompletion(outcome=outcome, user_id=user_id, status=status)

    def complete_password_reset(self, email: str, code: str) -> FlowCompletion:
        """Validate a reset code and issue a ResetAuthorization."""
        outcome = self.challenges.validate_challenge(ChallengePurpose.PASSWORD_RESET, email, code)
        if not outcome.ok:
            return FlowCompletion(outcome=outcome)

        authorization = ResetAuthorization(
            email=normalize_address(email),
            token=secrets.token_urlsafe(32),
            expires_at=self.challenges.clock()
            + timedelta(seconds=self.reset_authorization_ttl_seconds),
        )
        self.reset_handler.authorize(authorization)
        logger.info("Issued password reset authorization for %s", authorization.email)
        return FlowCompletion(outcome=outcome, authorization=authorization)

    def record_identity_verified(self, user_id: str) -> VerificationStatus:
        """Entry point for the external identity-review system."""
        status = self.state_machine.mark_identity_verified(user_id)
        self.synchronizer.sync_after_verification(user_id)
        return status

    def get_verification_status(self, user_id: str) -> StatusReport:
        """
        Raises:
            UserNotFound: Propagated, never defaulted to any verification level
        """
        status = self.state_machine.get_status(user_id)
        return StatusReport(
            status=status,
            capabilities=capabilities.derive(status),
            message=capabilities.status_message(status),
        )

    def check_capability(self, user_id: str, action: Action) -> CapabilityCheck:
        status = self.state_machine.get_status(user_id)
        return capabilities.check_capability(status, action)

    def complete_verification_bypass(
        self, user_id: str, organization_email: str
    ) -> VerificationStatus:
        """
        Mark a user fully verified without any code (non-production only).

        Raises:
            BypassDisabled: Bypass is not enabled for this deployment
            InvalidAddress: organization_email is malformed or personal
        """
        if not self.bypass_enabled:
            raise BypassDisabled("Verification bypass is disabled")
        self._require_organization_address(organization_email)

        logger.warning("Verification bypass used for user %s", user_id)
        self.state_machine.mark_organization_email_verified(
            user_id, organization_email=normalize_address(organization_email)
        )
        status = self.state_machine.mark_identity_verified(user_id)
        self.synchronizer.sync_after_verification(user_id)
        return status

    def _require_signup_address(self, address: str) -> None:
        if not is_allowed_signup_address(address, self.signup_email_domains):
            raise InvalidAddress(
                normalize_address(address),
                "Please use a personal email (Gmail, Yahoo, etc.) to register.",
            )

    def _require_organization_address(self, address: str) -> None:
        if is_personal_address(address, self.personal_email_providers):
            raise InvalidAddress(
                normalize_address(address),
                "Please use your organization email address. Personal emails are not accepted.",
            )


@dataclass
class VerificationFlow:
    """
    One caller's progress through a single (purpose, address) flow.

    Not persisted; a caller holding it across requests gets client-side
    step tracking, the challenge store remains the source of truth.
    """

    orchestrator: VerificationOrchestrator
    purpose: ChallengePurpose
    address: str
    user_id: str | None = None
    display_name: str | None = None
    state: FlowState = FlowState.AWAITING_CHALLENGE
    last_outcome: ValidationOutcome | None = field(default=None)

    @property
    def can_submit(self) -> bool:
        if self.state is FlowState.AWAITING_CODE:
            return True
        if self.state is FlowState.FAILED and self.last_outcome is not None:
            return not self.last_outcome.requires_new_challenge
        return False

    def send(self) -> ChallengeReceipt:
        """
        Request (or re-request) the challenge.

        Raises:
            FlowStateError: The flow already verified
            InvalidAddress, CooldownActive, DeliveryFailed
        """
        if self.state is FlowState.VERIFIED:
            raise FlowStateError("Flow already verified")
        try:
            receipt = self.orchestrator.request_challenge(
                self.purpose, self.address, self.display_name, self.user_id
            )
        except DeliveryFailed as exc:
            # A non-terminal failure leaves a valid challenge behind
            self.state = FlowState.AWAITING_CHALLENGE if exc.terminal else FlowState.AWAITING_CODE
            raise
        self.state = FlowState.AWAITING_CODE
        self.last_outcome = None
        return receipt

    def submit(self, code: str) -> FlowCompletion:
        """
        Submit a code for this flow.

        Raises:
            FlowStateError: No code can be accepted in the current state
        """
        if not self.can_submit:
            raise FlowStateError(f"Cannot submit a code while {self.state.value}")

        completion = self.orchestrator.complete(
            self.purpose, self.address, code, self.user_id, self.display_name
        )
        self.last_outcome = completion.outcome
        self.state = FlowState.VERIFIED if completion.ok else FlowState.FAILED
        return completion

    @property
    def requires_new_challenge(self) -> bool:
        return self.state is FlowState.FAILED and not self.can_submit
