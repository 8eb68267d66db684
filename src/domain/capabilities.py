"""
Capability gate - pure mapping from verification status to permissions.

    can_buy     = organization email verified
    can_contact = organization email verified
    can_sell    = fully verified

Nothing here is cached or persisted; callers recompute on every read so a
verification transition is visible immediately.
"""

from .ports import Action, CapabilityCheck, CapabilitySet, VerificationStatus, VerificationStep

_STATUS_MESSAGES = {
    VerificationStep.COMPLETE: "Account fully verified - access to all features",
    VerificationStep.ORGANIZATION: "Please verify your organization email to access this feature",
    VerificationStep.IDENTITY: "Please complete identity verification to access seller features",
}


def derive(status: VerificationStatus) -> CapabilitySet:
    return CapabilitySet(
        can_buy=status.is_organization_email_verified,
        can_sell=status.is_fully_verified,
        can_contact=status.is_organization_email_verified,
    )


def check_capability(status: VerificationStatus, action: Action) -> CapabilityCheck:
    """
    Gate a single action.

    A blocked result names the verification flow the user must complete
    next: organization email first, then identity for selling.
    """
    capabilities = derive(status)
    allowed = {
        Action.BUY: capabilities.can_buy,
        Action.SELL: capabilities.can_sell,
        Action.CONTACT: capabilities.can_contact,
    }[action]

    if allowed:
        return CapabilityCheck(allowed=True)
    if not status.is_organization_email_verified:
        return CapabilityCheck(allowed=False, required_step=VerificationStep.ORGANIZATION)
    return CapabilityCheck(allowed=False, required_step=VerificationStep.IDENTITY)


def status_message(status: VerificationStatus) -> str:
    return _STATUS_MESSAGES.get(status.current_step, "Verification in progress")
