"""
FastAPI application factory and configuration.

This module creates the FastAPI application instance,
configures logging, lifespan events and the background sweep.
"""

import asyncio
import contextlib
import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from psycopg_pool import ConnectionPool

from src.adapters.repository.memory import (
    InMemoryChallengeStore,
    InMemoryIdentityStore,
    InMemoryPasswordResetHandler,
)
from src.adapters.repository.postgres import (
    PostgresChallengeStore,
    PostgresIdentityStore,
    run_migrations,
)
from src.adapters.session.local import LocalSessionIssuer
from src.adapters.smtp.console import ConsoleNotificationChannel
from src.api.dependencies import build_challenge_manager
from src.api.v1 import router as v1_router
from src.config.logging import configure_logging
from src.config.settings import Settings, get_settings
from src.domain.ports import system_clock

logger = logging.getLogger(__name__)

# OpenAPI tags for documentation grouping
tags_metadata = [
    {
        "name": "v1",
        "description": "Verification API v1 - OTP challenges, verification status "
        "and capability checks",
    },
]


async def sweep_expired_challenges(app: FastAPI, interval_seconds: float) -> None:
    """
    Periodically delete expired challenges.

    An optimization only: validation re-checks expiry on every attempt.
    """
    while True:
        await asyncio.sleep(interval_seconds)
        manager = build_challenge_manager(app.state)
        try:
            await asyncio.to_thread(manager.purge_expired)
        except Exception:
            logger.exception("Expired challenge sweep failed")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    FastAPI lifespan context manager.

    Manages application startup and shutdown:
    - Creates storage adapters (database pool + migrations, or in-memory)
    - Creates notification, session and password-reset collaborators
    - Starts the expired-challenge sweep
    - Stops the sweep and closes the connection pool on shutdown
    """
    settings: Settings = app.state.settings

    logger.info("Starting application (storage=%s)...", settings.storage_backend)

    pool = None
    if settings.storage_backend == "postgres":
        logger.info("Connecting to database...")
        pool = ConnectionPool(
            conninfo=settings.database_url,
            min_size=settings.pool_min_size,
            max_size=settings.pool_max_size,
        )
        logger.info("Running database migrations...")
        run_migrations(pool)
        app.state.challenge_store = PostgresChallengeStore(pool)
        app.state.identity_store = PostgresIdentityStore(pool)
    else:
        app.state.challenge_store = InMemoryChallengeStore()
        app.state.identity_store = InMemoryIdentityStore()

    # Store pool in app state for dependency injection
    app.state.pool = pool
    app.state.notifier = ConsoleNotificationChannel()
    app.state.session_issuer = LocalSessionIssuer(clock=app.state.clock)
    app.state.reset_handler = InMemoryPasswordResetHandler()

    sweeper = None
    if settings.sweep_interval_seconds > 0:
        sweeper = asyncio.create_task(
            sweep_expired_challenges(app, settings.sweep_interval_seconds)
        )

    logger.info("Application startup complete")

    yield

    # Shutdown
    logger.info("Shutting down application...")
    if sweeper is not None:
        sweeper.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await sweeper
    if pool is not None:
        pool.close()
        logger.info("Database connection pool closed")


def create_app(settings: Settings | None = None) -> FastAPI:
    """Build the application for the given settings (defaults to the environment)."""
    settings = settings or get_settings()
    configure_logging(settings.log_level)

    application = FastAPI(
        title="verigate",
        description="Marketplace Verification API - OTP challenges, two-tier trust "
        "verification and capability gating",
        version="0.1.0",
        openapi_tags=tags_metadata,
        lifespan=lifespan,
    )
    application.state.settings = settings
    application.state.clock = system_clock

    # Include v1 API routes
    application.include_router(v1_router, prefix="/v1")

    @application.get("/health")
    def health_check(request: Request) -> dict[str, str]:
        """
        Health check endpoint with database validation.

        Returns 200 OK if application and database are healthy.
        Raises exception if database connection fails.
        """
        pool = getattr(request.app.state, "pool", None)
        if pool is not None:
            with pool.connection() as conn:
                conn.execute("SELECT 1")

        return {"status": "healthy"}

    return application


app = create_app()
