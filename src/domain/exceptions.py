"""
Domain exceptions - Semantic error types for verification.

This module defines domain-specific exceptions that communicate
business rule violations without leaking infrastructure details.
Validation mismatches are not exceptions: see ports.ValidationOutcome.
"""


class VerificationError(Exception):
    """Base class for verification domain errors."""

    pass


class CooldownActive(VerificationError):
    """A live challenge for the key was issued too recently."""

    def __init__(self, retry_after_seconds: int) -> None:
        super().__init__(f"Cooldown active, retry after {retry_after_seconds}s")
        self.retry_after_seconds = retry_after_seconds


class DeliveryFailed(VerificationError):
    """
    The notification channel could not deliver the code.

    terminal=True means the challenge was discarded (the address can never
    receive it); otherwise the challenge is still valid.
    """

    def __init__(self, address: str, terminal: bool) -> None:
        super().__init__(f"Delivery failed for {address}")
        self.address = address
        self.terminal = terminal


class InvalidAddress(VerificationError):
    """Address is malformed or not acceptable for the requested flow."""

    def __init__(self, address: str, reason: str) -> None:
        super().__init__(f"{reason}: {address}")
        self.address = address
        self.reason = reason


class UserNotFound(VerificationError):
    """Identity store has no record for the user."""

    def __init__(self, user_id: str) -> None:
        super().__init__(f"User not found: {user_id}")
        self.user_id = user_id


class AccountAlreadyExists(VerificationError):
    """Signup completed for an email that already has an account."""

    pass


class FlowStateError(VerificationError):
    """Operation not permitted in the flow's current state."""

    pass


class BypassDisabled(VerificationError):
    """Verification bypass requested where it is not enabled."""

    pass


class NotificationDeliveryError(Exception):
    """Raised by notification channel adapters."""

    def __init__(self, message: str, permanent: bool = False) -> None:
        super().__init__(message)
        self.permanent = permanent


class SessionRefreshError(Exception):
    """Raised by session issuer adapters."""

    pass
