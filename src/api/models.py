"""
API request and response models.

Pydantic models for FastAPI endpoint validation and OpenAPI schema generation.
"""

from datetime import datetime

from pydantic import BaseModel, EmailStr, Field

from src.domain.orchestrator import StatusReport
from src.domain.ports import Action, ChallengePurpose, VerificationStep


class SendChallengeRequest(BaseModel):
    """Request model for sending an OTP challenge."""

    purpose: ChallengePurpose
    address: EmailStr
    display_name: str | None = Field(default=None, max_length=120)


class SendChallengeResponse(BaseModel):
    """Response model for a delivered challenge."""

    message: str
    address: str
    expires_in_seconds: int
    resend_after_seconds: int


class ValidateChallengeRequest(BaseModel):
    """Request model for submitting an OTP code."""

    purpose: ChallengePurpose
    address: EmailStr
    code: str = Field(
        ...,
        min_length=4,
        max_length=10,
        pattern=r"^\d+$",
        description="Numeric OTP code (6 digits by default)",
    )
    display_name: str | None = Field(default=None, max_length=120)


_NEXT_STEP = {
    VerificationStep.ORGANIZATION: "organization-email",
    VerificationStep.IDENTITY: "identity",
    VerificationStep.COMPLETE: "complete",
    VerificationStep.NONE: "complete",
}


class VerificationStatusResponse(BaseModel):
    """Verification status with derived capabilities."""

    is_identity_verified: bool
    is_organization_email_verified: bool
    is_fully_verified: bool
    current_step: VerificationStep
    next_step: str
    pending_actions: list[str]
    can_buy: bool
    can_sell: bool
    can_contact: bool
    status_message: str

    @classmethod
    def from_report(cls, report: StatusReport) -> "VerificationStatusResponse":
        status = report.status
        return cls(
            is_identity_verified=status.is_identity_verified,
            is_organization_email_verified=status.is_organization_email_verified,
            is_fully_verified=status.is_fully_verified,
            current_step=status.current_step,
            next_step=_NEXT_STEP[status.current_step],
            pending_actions=sorted(action.value for action in status.pending_actions),
            can_buy=report.capabilities.can_buy,
            can_sell=report.capabilities.can_sell,
            can_contact=report.capabilities.can_contact,
            status_message=report.message,
        )


class ValidateChallengeResponse(BaseModel):
    """Response model for a successful code validation."""

    message: str
    purpose: ChallengePurpose
    user_id: str | None = None
    session_token: str | None = Field(
        default=None, description="Bearer token for the new account (signup only)"
    )
    verification: VerificationStatusResponse | None = None
    reset_token: str | None = None
    reset_expires_at: datetime | None = None


class CheckCapabilityRequest(BaseModel):
    """Request model for gating a marketplace action."""

    action: Action


class CheckCapabilityResponse(BaseModel):
    """Capability check result; blocked is a normal outcome."""

    allowed: bool
    required_step: VerificationStep | None = None


class BypassRequest(BaseModel):
    """Request model for the non-production verification bypass."""

    organization_email: EmailStr


class ErrorResponse(BaseModel):
    """Standard error response model."""

    detail: str


class ChallengeErrorDetail(BaseModel):
    """Structured error detail for challenge operations."""

    error: str
    message: str
    attempts_remaining: int | None = None
    retry_after_seconds: int | None = None
    terminal: bool | None = None


class ChallengeErrorResponse(BaseModel):
    """Error response carrying a structured detail."""

    detail: ChallengeErrorDetail
