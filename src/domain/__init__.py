"""
Domain layer - Pure business logic with zero framework imports.

This package contains the verification core: OTP challenge protocol,
verification state machine, capability gate, session synchronizer and
the orchestrator facade. It defines its own port interfaces for
infrastructure abstraction, ensuring true hexagonal architecture decoupling.
"""

from .challenges import OtpChallengeManager
from .exceptions import (
    AccountAlreadyExists,
    BypassDisabled,
    CooldownActive,
    DeliveryFailed,
    FlowStateError,
    InvalidAddress,
    NotificationDeliveryError,
    SessionRefreshError,
    UserNotFound,
    VerificationError,
)
from .orchestrator import (
    FlowCompletion,
    FlowState,
    StatusReport,
    VerificationFlow,
    VerificationOrchestrator,
)
from .ports import (
    Action,
    CapabilityCheck,
    CapabilitySet,
    ChallengePolicy,
    ChallengePurpose,
    ChallengeResult,
    ChallengeStore,
    IdentityStore,
    NotificationChannel,
    OtpChallenge,
    PasswordResetHandler,
    PendingAction,
    ResetAuthorization,
    SessionIssuer,
    ValidationOutcome,
    VerificationRecord,
    VerificationStatus,
    VerificationStep,
)
from .session_sync import SessionSynchronizer
from .state_machine import VerificationStateMachine

__all__ = [
    "AccountAlreadyExists",
    "Action",
    "BypassDisabled",
    "CapabilityCheck",
    "CapabilitySet",
    "ChallengePolicy",
    "ChallengePurpose",
    "ChallengeResult",
    "ChallengeStore",
    "CooldownActive",
    "DeliveryFailed",
    "FlowCompletion",
    "FlowState",
    "FlowStateError",
    "IdentityStore",
    "InvalidAddress",
    "NotificationChannel",
    "NotificationDeliveryError",
    "OtpChallenge",
    "OtpChallengeManager",
    "PasswordResetHandler",
    "PendingAction",
    "ResetAuthorization",
    "SessionIssuer",
    "SessionRefreshError",
    "SessionSynchronizer",
    "StatusReport",
    "UserNotFound",
    "ValidationOutcome",
    "VerificationError",
    "VerificationFlow",
    "VerificationOrchestrator",
    "VerificationRecord",
    "VerificationStateMachine",
    "VerificationStatus",
    "VerificationStep",
]
