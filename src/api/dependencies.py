"""
FastAPI dependencies - Dependency injection factories.

This module provides Depends() factories for injecting
domain services and infrastructure adapters into routes.

Long-lived adapters (stores, notifier, session issuer) live on app.state,
created during lifespan startup. Domain services are built per request
from them, so no request shares a mutable orchestrator with another.

Callers identify themselves with the bearer token issued at signup; user
ids bound to challenges always come from that token, never from a body.
"""

import hmac

from fastapi import Depends, Header, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from starlette.datastructures import State

from src.adapters.session.local import LocalSessionIssuer
from src.config.settings import Settings
from src.domain.challenges import OtpChallengeManager
from src.domain.orchestrator import VerificationOrchestrator
from src.domain.session_sync import SessionSynchronizer
from src.domain.state_machine import VerificationStateMachine


def get_app_settings(request: Request) -> Settings:
    """Settings the application was created with."""
    return request.app.state.settings


def build_challenge_manager(state: State) -> OtpChallengeManager:
    """Wire the challenge manager from application state."""
    return OtpChallengeManager(
        store=state.challenge_store,
        notifier=state.notifier,
        policy=state.settings.challenge_policy(),
        clock=state.clock,
    )


def build_orchestrator(state: State) -> VerificationOrchestrator:
    """
    Create the orchestrator with injected dependencies.

    Wires together the challenge manager, state machine, session
    synchronizer and external collaborators.
    """
    settings: Settings = state.settings
    state_machine = VerificationStateMachine(identity_store=state.identity_store)
    synchronizer = SessionSynchronizer(
        issuer=state.session_issuer,
        state_machine=state_machine,
        retry_delay_seconds=settings.session_refresh_delay_seconds,
    )
    return VerificationOrchestrator(
        challenges=build_challenge_manager(state),
        state_machine=state_machine,
        synchronizer=synchronizer,
        identity_store=state.identity_store,
        reset_handler=state.reset_handler,
        personal_email_providers=tuple(settings.personal_email_domains),
        signup_email_domains=tuple(settings.signup_email_domains),
        reset_authorization_ttl_seconds=settings.reset_authorization_ttl_seconds,
        bypass_enabled=settings.verification_bypass_allowed,
    )


def get_orchestrator(request: Request) -> VerificationOrchestrator:
    """Per-request orchestrator."""
    return build_orchestrator(request.app.state)


def require_internal_api_key(
    x_internal_api_key: str = Header(default=""),
    settings: Settings = Depends(get_app_settings),
) -> None:
    """
    Authorize service-to-service calls via X-Internal-API-Key.

    An unset key disables internal endpoints entirely.
    """
    expected = settings.internal_api_key.strip()
    if not expected or not hmac.compare_digest(
        x_internal_api_key.strip().encode(), expected.encode()
    ):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Internal API key required",
        )


def get_session_issuer(request: Request) -> LocalSessionIssuer:
    """Session issuer from app state (also resolves bearer tokens)."""
    return request.app.state.session_issuer


# Bearer session security scheme for OpenAPI documentation
http_bearer = HTTPBearer(auto_error=False)


def get_session_user_id(
    credentials: HTTPAuthorizationCredentials | None = Depends(http_bearer),
    sessions: LocalSessionIssuer = Depends(get_session_issuer),
) -> str | None:
    """
    Resolve the caller from the Authorization: Bearer header.

    Returns None when no credentials are sent, so flows that need no
    account (signup, password reset) stay open. A token that does not
    resolve is always a 401.
    """
    if credentials is None:
        return None
    user_id = sessions.resolve_token(credentials.credentials)
    if user_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid session token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user_id
