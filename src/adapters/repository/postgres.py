"""
PostgreSQL repository adapters - Implement ChallengeStore and IdentityStore.

This module provides the PostgreSQL implementations of the domain's
repository ports using psycopg3 with raw SQL.

Atomicity Design:
-----------------
1. **issue()**: INSERT ... ON CONFLICT DO UPDATE ... WHERE replaces the
   existing challenge only when it holds no cooldown. The primary key on
   (purpose, subject_address) guarantees that concurrent issuers for the
   same key cannot both win.

2. **consume()**: DELETE ... WHERE challenge_id = %s AND attempts_remaining > 0
   is an atomic check-and-delete; rowcount tells exactly one caller it won,
   so a replayed correct code cannot succeed twice.

3. **record_failure()**: UPDATE ... RETURNING decrements in a single
   statement, so concurrent wrong guesses each spend one attempt.

4. **save_verification()**: flags are OR-merged in SQL, so verification
   is forward-only even across processes.

Timestamps come from the domain clock rather than NOW() so that expiry and
cooldown behave identically across adapters.
"""

import logging
import uuid
from datetime import datetime, timedelta
from pathlib import Path

from psycopg_pool import ConnectionPool

from src.domain.ports import ChallengePurpose, OtpChallenge, VerificationRecord

logger = logging.getLogger(__name__)

_CHALLENGE_COLUMNS = (
    "challenge_id, purpose, subject_address, code_hash, issued_at, expires_at, "
    "attempts_remaining, last_issued_at, owner_id"
)

_USER_COLUMNS = (
    "user_id, email, is_identity_verified, is_organization_email_verified, "
    "organization_email, identity_review_pending, display_name"
)


def _challenge_from_row(row: tuple) -> OtpChallenge:
    return OtpChallenge(
        challenge_id=row[0],
        purpose=ChallengePurpose(row[1]),
        subject_address=row[2],
        code_hash=row[3],
        issued_at=row[4],
        expires_at=row[5],
        attempts_remaining=row[6],
        last_issued_at=row[7],
        owner_id=row[8],
    )


def _record_from_row(row: tuple) -> VerificationRecord:
    return VerificationRecord(
        user_id=row[0],
        email=row[1],
        is_identity_verified=row[2],
        is_organization_email_verified=row[3],
        organization_email=row[4],
        identity_review_pending=row[5],
        display_name=row[6],
    )


class PostgresChallengeStore:
    """
    Implements ChallengeStore protocol via psycopg3.

    Uses structural subtyping - no explicit inheritance from Protocol.
    All SQL uses parameterized queries for security.
    """

    def __init__(self, pool: ConnectionPool) -> None:
        """
        Initialize store with connection pool.

        Args:
            pool: psycopg3 ConnectionPool for database connections
        """
        self._pool = pool

    def issue(self, challenge: OtpChallenge, cooldown_seconds: int, now: datetime) -> int:
        """
        Atomically store a challenge unless the key is cooling down.

        The existing row is overwritten only if it has no cooldown, its
        cooldown has elapsed, it has expired, or its attempts are spent.

        Returns:
            0 if stored, else whole seconds remaining on the cooldown
        """
        upsert_sql = f"""
            INSERT INTO otp_challenges ({_CHALLENGE_COLUMNS})
            VALUES (%(challenge_id)s, %(purpose)s, %(address)s, %(code_hash)s,
                    %(issued_at)s, %(expires_at)s, %(attempts)s, %(last_issued_at)s,
                    %(owner_id)s)
            ON CONFLICT (purpose, subject_address) DO UPDATE
            SET challenge_id = EXCLUDED.challenge_id,
                code_hash = EXCLUDED.code_hash,
                issued_at = EXCLUDED.issued_at,
                expires_at = EXCLUDED.expires_at,
                attempts_remaining = EXCLUDED.attempts_remaining,
                last_issued_at = EXCLUDED.last_issued_at,
                owner_id = EXCLUDED.owner_id
            WHERE otp_challenges.last_issued_at IS NULL
               OR otp_challenges.last_issued_at <= %(cooldown_cutoff)s
               OR otp_challenges.expires_at < %(now)s
               OR otp_challenges.attempts_remaining <= 0
        """
        params = {
            "challenge_id": challenge.challenge_id,
            "purpose": challenge.purpose.value,
            "address": challenge.subject_address,
            "code_hash": challenge.code_hash,
            "issued_at": challenge.issued_at,
            "expires_at": challenge.expires_at,
            "attempts": challenge.attempts_remaining,
            "last_issued_at": challenge.last_issued_at,
            "owner_id": challenge.owner_id,
            "cooldown_cutoff": now - timedelta(seconds=cooldown_seconds),
            "now": now,
        }

        with self._pool.connection() as conn, conn.cursor() as cursor:
            cursor.execute(upsert_sql, params)
            if cursor.rowcount == 1:
                conn.commit()
                return 0

            # Conflict held: report the cooldown of the row that won
            cursor.execute(
                f"SELECT {_CHALLENGE_COLUMNS} FROM otp_challenges "
                "WHERE purpose = %s AND subject_address = %s",
                (challenge.purpose.value, challenge.subject_address),
            )
            row = cursor.fetchone()
            conn.commit()

        if row is None:
            # Deleted between statements; the caller may simply retry
            return 1
        return _challenge_from_row(row).cooldown_remaining(now, cooldown_seconds) or 1

    def get(self, purpose: ChallengePurpose, address: str) -> OtpChallenge | None:
        sql = f"""
            SELECT {_CHALLENGE_COLUMNS}
            FROM otp_challenges
            WHERE purpose = %s AND subject_address = %s
        """
        with self._pool.connection() as conn, conn.cursor() as cursor:
            cursor.execute(sql, (purpose.value, address))
            row = cursor.fetchone()
        return _challenge_from_row(row) if row is not None else None

    def record_failure(
        self, purpose: ChallengePurpose, address: str, challenge_id: str
    ) -> int | None:
        sql = """
            UPDATE otp_challenges
            SET attempts_remaining = attempts_remaining - 1
            WHERE purpose = %s AND subject_address = %s AND challenge_id = %s
              AND attempts_remaining > 0
            RETURNING attempts_remaining
        """
        with self._pool.connection() as conn, conn.cursor() as cursor:
            cursor.execute(sql, (purpose.value, address, challenge_id))
            row = cursor.fetchone()
            conn.commit()
        return row[0] if row is not None else None

    def consume(
        self, purpose: ChallengePurpose, address: str, challenge_id: str, now: datetime
    ) -> bool:
        sql = """
            DELETE FROM otp_challenges
            WHERE purpose = %s AND subject_address = %s AND challenge_id = %s
              AND attempts_remaining > 0
              AND expires_at >= %s
        """
        with self._pool.connection() as conn, conn.cursor() as cursor:
            cursor.execute(sql, (purpose.value, address, challenge_id, now))
            conn.commit()
            return cursor.rowcount == 1

    def discard(self, purpose: ChallengePurpose, address: str, challenge_id: str) -> None:
        sql = """
            DELETE FROM otp_challenges
            WHERE purpose = %s AND subject_address = %s AND challenge_id = %s
        """
        with self._pool.connection() as conn:
            conn.execute(sql, (purpose.value, address, challenge_id))
            conn.commit()

    def release_cooldown(
        self, purpose: ChallengePurpose, address: str, challenge_id: str
    ) -> None:
        sql = """
            UPDATE otp_challenges
            SET last_issued_at = NULL
            WHERE purpose = %s AND subject_address = %s AND challenge_id = %s
        """
        with self._pool.connection() as conn:
            conn.execute(sql, (purpose.value, address, challenge_id))
            conn.commit()

    def purge_expired(self, now: datetime) -> int:
        with self._pool.connection() as conn, conn.cursor() as cursor:
            cursor.execute("DELETE FROM otp_challenges WHERE expires_at < %s", (now,))
            conn.commit()
            return cursor.rowcount


class PostgresIdentityStore:
    """
    Implements IdentityStore protocol via psycopg3.

    Verification flags only ever move from FALSE to TRUE in SQL.
    """

    def __init__(self, pool: ConnectionPool) -> None:
        self._pool = pool

    def load_verification(self, user_id: str) -> VerificationRecord | None:
        sql = f"SELECT {_USER_COLUMNS} FROM user_verifications WHERE user_id = %s"
        with self._pool.connection() as conn, conn.cursor() as cursor:
            cursor.execute(sql, (user_id,))
            row = cursor.fetchone()
        return _record_from_row(row) if row is not None else None

    def save_verification(self, record: VerificationRecord) -> VerificationRecord:
        sql = f"""
            UPDATE user_verifications
            SET is_identity_verified = is_identity_verified OR %(identity)s,
                is_organization_email_verified = is_organization_email_verified OR %(org)s,
                organization_email = COALESCE(organization_email, %(org_email)s),
                identity_review_pending = %(review_pending)s,
                updated_at = NOW()
            WHERE user_id = %(user_id)s
            RETURNING {_USER_COLUMNS}
        """
        params = {
            "identity": record.is_identity_verified,
            "org": record.is_organization_email_verified,
            "org_email": record.organization_email,
            "review_pending": record.identity_review_pending,
            "user_id": record.user_id,
        }
        with self._pool.connection() as conn, conn.cursor() as cursor:
            cursor.execute(sql, params)
            row = cursor.fetchone()
            conn.commit()
        if row is None:
            raise LookupError(f"No verification record for user {record.user_id}")
        return _record_from_row(row)

    def set_identity_review_pending(self, user_id: str, pending: bool = True) -> None:
        """Set by the external document-review system; read-only to the domain."""
        sql = """
            UPDATE user_verifications
            SET identity_review_pending = %s, updated_at = NOW()
            WHERE user_id = %s
        """
        with self._pool.connection() as conn, conn.cursor() as cursor:
            cursor.execute(sql, (pending, user_id))
            conn.commit()
            if cursor.rowcount != 1:
                raise LookupError(f"No verification record for user {user_id}")

    def create_user(self, email: str, display_name: str | None) -> VerificationRecord | None:
        sql = f"""
            INSERT INTO user_verifications (user_id, email, display_name)
            VALUES (%s, %s, %s)
            ON CONFLICT (email) DO NOTHING
            RETURNING {_USER_COLUMNS}
        """
        with self._pool.connection() as conn, conn.cursor() as cursor:
            cursor.execute(sql, (uuid.uuid4().hex, email, display_name))
            row = cursor.fetchone()
            conn.commit()
        return _record_from_row(row) if row is not None else None


def run_migrations(pool: ConnectionPool) -> None:
    """
    Execute all SQL migration files from the migrations directory.

    Migrations are executed in sorted order (alphabetically by filename).
    Each migration should be idempotent (use IF NOT EXISTS, etc.).

    Args:
        pool: psycopg3 ConnectionPool instance
    """
    # Structure: src/adapters/repository/postgres.py -> migrations/
    migrations_dir = Path(__file__).parent.parent.parent.parent / "migrations"

    if not migrations_dir.exists():
        logger.warning(f"Migrations directory not found: {migrations_dir}")
        return

    sql_files = sorted(migrations_dir.glob("*.sql"))

    if not sql_files:
        logger.info("No migration files found")
        return

    logger.info(f"Running {len(sql_files)} migration(s)")

    for sql_file in sql_files:
        logger.info(f"Executing migration: {sql_file.name}")
        try:
            sql_content = sql_file.read_text()

            with pool.connection() as conn:
                conn.execute(sql_content)

            logger.info(f"Migration complete: {sql_file.name}")
        except Exception as e:
            logger.error(f"Migration failed: {sql_file.name} - {e}")
            raise RuntimeError(f"Database migration failed: {sql_file.name}") from e
