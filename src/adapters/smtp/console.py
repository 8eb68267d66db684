"""
Console notification adapter - Implements NotificationChannel protocol.

This module provides a console-based implementation of the domain's
notification port, logging OTP codes to stdout for demo purposes.
"""

import logging

from src.domain.exceptions import NotificationDeliveryError
from src.domain.ports import ChallengePurpose

logger = logging.getLogger(__name__)

_SUBJECTS = {
    ChallengePurpose.SIGNUP: "Confirm your email",
    ChallengePurpose.ORGANIZATION_EMAIL: "Verify your organization email",
    ChallengePurpose.PASSWORD_RESET: "Reset your password",
}


class ConsoleNotificationChannel:
    """
    Implements NotificationChannel protocol via console logging.

    Uses structural subtyping - no explicit inheritance from Protocol.
    For demo/development purposes - prints OTP codes to stdout.
    Addresses listed in rejected_addresses simulate a permanent bounce.
    """

    def __init__(self, rejected_addresses: frozenset[str] = frozenset()) -> None:
        self._rejected = rejected_addresses

    def send_code(
        self,
        address: str,
        code: str,
        purpose: ChallengePurpose,
        display_name: str | None = None,
    ) -> None:
        """
        Log OTP code to console (simulates email delivery).

        In production, this would be replaced with an SMTP adapter.
        The code is logged at INFO level to be visible in docker-compose logs.

        Args:
            address: Recipient email address (normalized by domain layer)
            code: 6-digit OTP code
            purpose: Flow the code belongs to
            display_name: Optional recipient name for the greeting

        Raises:
            NotificationDeliveryError: Address is on the rejected list
        """
        if address in self._rejected:
            raise NotificationDeliveryError(f"Recipient rejected: {address}", permanent=True)

        greeting = display_name or address
        logger.info(
            "[OTP] Purpose: %s Email: %s Code: %s (%s, %s)",
            purpose.value,
            address,
            code,
            _SUBJECTS[purpose],
            greeting,
        )
