"""Repository adapters - Database and in-memory implementations."""

from .memory import InMemoryChallengeStore, InMemoryIdentityStore, InMemoryPasswordResetHandler
from .postgres import PostgresChallengeStore, PostgresIdentityStore, run_migrations

__all__ = [
    "InMemoryChallengeStore",
    "InMemoryIdentityStore",
    "InMemoryPasswordResetHandler",
    "PostgresChallengeStore",
    "PostgresIdentityStore",
    "run_migrations",
]
