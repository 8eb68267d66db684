"""Session issuer adapters."""

from .local import LocalSessionIssuer, SessionClaims

__all__ = ["LocalSessionIssuer", "SessionClaims"]
